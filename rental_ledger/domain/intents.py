"""
Intents -- what a caller asks the ledger to record.

Responsibility:
    ``Actor`` is the caller identity handed in by the identity provider;
    ``MovementIntent`` is the fully-specified request the Allocation Manager
    passes to the Ledger Store.  Both are frozen so a validated intent cannot
    change between validation and append.

Architecture position:
    Domain -- pure values, zero I/O.  Shape checks only; rules that need
    stored state (stock, outstanding, item lifecycle) live in the services.
"""

from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

from rental_ledger.domain.types import (
    AdjustmentDirection,
    MovementType,
    ReferenceType,
)


@dataclass(frozen=True)
class Actor:
    """Authenticated caller: who is acting and under which role."""

    actor_id: UUID
    role: str

    def has_role(self, roles: frozenset[str] | tuple[str, ...]) -> bool:
        return self.role in roles


@dataclass(frozen=True)
class MovementIntent:
    """
    A single movement to append.

    ``quantity`` is always the positive magnitude; for adjustments the
    sign lives in ``adjustment_direction``.
    """

    item_id: UUID
    outlet_id: UUID
    movement_type: MovementType
    quantity: int
    reference_type: ReferenceType
    reference_id: UUID | None
    actor: Actor
    notes: str | None = None
    reason_code: str | None = None
    adjustment_direction: AdjustmentDirection | None = None

    def __post_init__(self) -> None:
        # Coerce raw strings so downstream dispatch sees enum members.
        object.__setattr__(self, "movement_type", MovementType(self.movement_type))
        object.__setattr__(self, "reference_type", ReferenceType(self.reference_type))
        if self.adjustment_direction is not None:
            object.__setattr__(
                self,
                "adjustment_direction",
                AdjustmentDirection(self.adjustment_direction),
            )

    @property
    def has_notes(self) -> bool:
        return bool(self.notes and self.notes.strip())
