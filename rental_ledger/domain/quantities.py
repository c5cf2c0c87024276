"""
ItemQuantities -- pure quantity state and movement effects.

Responsibility:
    Defines the five quantity buckets of an inventory item and the effect
    each movement type has on them.  Both the incrementally maintained
    summary row (LedgerStore) and the full replay (QuantityProjector) go
    through ``ItemQuantities.apply`` so the two strategies cannot diverge.

Architecture position:
    Domain -- pure functional core, zero I/O.

Invariants enforced:
    - total == available + allocated + damaged + lost
    - every bucket >= 0
    - EFFECTS covers every MovementType (checked at import time)

Failure modes:
    - QuantityUnderflowError when a movement would drive a bucket negative.
    - ValueError when an ItemQuantities is constructed in an unbalanced state.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Iterable, Protocol

from rental_ledger.domain.types import (
    AdjustmentDirection,
    MovementType,
    ReferenceType,
)

BUCKETS = ("total", "available", "allocated", "damaged", "lost")


class QuantityUnderflowError(ValueError):
    """A movement would drive a quantity bucket below zero."""

    def __init__(self, bucket: str, current: int, change: int):
        self.bucket = bucket
        self.current = current
        self.change = change
        super().__init__(
            f"{bucket} would become {current + change} (current {current}, change {change})"
        )


@dataclass(frozen=True)
class QuantityDelta:
    """Signed change to each bucket caused by one movement."""

    total: int = 0
    available: int = 0
    allocated: int = 0
    damaged: int = 0
    lost: int = 0

    def __post_init__(self) -> None:
        # Units are conserved except where total itself moves.
        moved = self.available + self.allocated + self.damaged + self.lost
        if moved != self.total:
            raise ValueError(f"Unbalanced delta: buckets sum to {moved}, total {self.total}")


@dataclass(frozen=True)
class ItemQuantities:
    """Snapshot of one item's quantity buckets."""

    total: int = 0
    available: int = 0
    allocated: int = 0
    damaged: int = 0
    lost: int = 0

    def __post_init__(self) -> None:
        for bucket in BUCKETS:
            value = getattr(self, bucket)
            if isinstance(value, bool) or not isinstance(value, int):
                raise ValueError(f"{bucket} must be an integer, got {value!r}")
            if value < 0:
                raise ValueError(f"{bucket} must be non-negative, got {value}")
        parts = self.available + self.allocated + self.damaged + self.lost
        if self.total != parts:
            raise ValueError(
                f"Quantity imbalance: total={self.total} but "
                f"available+allocated+damaged+lost={parts}"
            )

    @classmethod
    def zero(cls) -> ItemQuantities:
        return cls()

    def apply(self, delta: QuantityDelta) -> ItemQuantities:
        """Return the quantities after ``delta``; never mutates self."""
        for bucket in BUCKETS:
            current = getattr(self, bucket)
            change = getattr(delta, bucket)
            if current + change < 0:
                raise QuantityUnderflowError(bucket, current, change)
        return ItemQuantities(
            total=self.total + delta.total,
            available=self.available + delta.available,
            allocated=self.allocated + delta.allocated,
            damaged=self.damaged + delta.damaged,
            lost=self.lost + delta.lost,
        )

    def as_dict(self) -> dict[str, int]:
        return {bucket: getattr(self, bucket) for bucket in BUCKETS}


# ---------------------------------------------------------------------------
# Movement effects
# ---------------------------------------------------------------------------


def _stock_in(qty: int, reference_type: ReferenceType, direction) -> QuantityDelta:
    return QuantityDelta(total=qty, available=qty)


def _allocation(qty: int, reference_type: ReferenceType, direction) -> QuantityDelta:
    return QuantityDelta(available=-qty, allocated=qty)


def _return(qty: int, reference_type: ReferenceType, direction) -> QuantityDelta:
    return QuantityDelta(allocated=-qty, available=qty)


def _damage(qty: int, reference_type: ReferenceType, direction) -> QuantityDelta:
    # Manual damage is a warehouse write-off out of the available pool.
    if reference_type.is_claim:
        return QuantityDelta(allocated=-qty, damaged=qty)
    return QuantityDelta(available=-qty, damaged=qty)


def _loss(qty: int, reference_type: ReferenceType, direction) -> QuantityDelta:
    if reference_type.is_claim:
        return QuantityDelta(allocated=-qty, lost=qty)
    return QuantityDelta(available=-qty, lost=qty)


def _adjustment(qty: int, reference_type: ReferenceType, direction) -> QuantityDelta:
    if direction is None:
        raise ValueError("Adjustment requires a direction")
    sign = 1 if AdjustmentDirection(direction) is AdjustmentDirection.INCREASE else -1
    return QuantityDelta(total=sign * qty, available=sign * qty)


EFFECTS: dict[MovementType, Callable[..., QuantityDelta]] = {
    MovementType.STOCK_IN: _stock_in,
    MovementType.ALLOCATION: _allocation,
    MovementType.RETURN: _return,
    MovementType.DAMAGE: _damage,
    MovementType.LOSS: _loss,
    MovementType.ADJUSTMENT: _adjustment,
}

_missing = set(MovementType) - set(EFFECTS)
if _missing:
    raise RuntimeError(f"No quantity effect defined for {sorted(m.value for m in _missing)}")


def effect_of(
    movement_type: MovementType | str,
    quantity: int,
    reference_type: ReferenceType | str,
    direction: AdjustmentDirection | str | None = None,
) -> QuantityDelta:
    """Compute the bucket changes of a single movement."""
    return EFFECTS[MovementType(movement_type)](
        quantity, ReferenceType(reference_type), direction
    )


class MovementLike(Protocol):
    movement_type: str
    quantity: int
    reference_type: str
    adjustment_direction: str | None


def fold_movements(movements: Iterable[MovementLike]) -> ItemQuantities:
    """Replay movements in order, starting from zero."""
    state = ItemQuantities.zero()
    for movement in movements:
        state = state.apply(
            effect_of(
                movement.movement_type,
                movement.quantity,
                movement.reference_type,
                movement.adjustment_direction,
            )
        )
    return state
