"""
Closed vocabularies for movements and references.

Movement and reference kinds are ``str`` enums so they can be stored as
plain strings and compared with raw column values, and so every dispatch
over them can be checked for exhaustiveness (see ``quantities.EFFECTS``).
"""

from enum import Enum


class MovementType(str, Enum):
    """What happened to the units.

    The stored quantity is always positive; the type alone decides which
    quantity buckets move.
    """

    STOCK_IN = "stock_in"
    ALLOCATION = "allocation"
    RETURN = "return"
    DAMAGE = "damage"
    LOSS = "loss"
    ADJUSTMENT = "adjustment"


class ReferenceType(str, Enum):
    """What the movement was made on behalf of."""

    SUBSCRIPTION = "subscription"
    EVENT = "event"
    MANUAL = "manual"

    @property
    def is_claim(self) -> bool:
        """Subscription and event references can hold an allocation."""
        return self is not ReferenceType.MANUAL


class AdjustmentDirection(str, Enum):
    """Direction of a manual recount correction."""

    INCREASE = "increase"
    DECREASE = "decrease"


# Movement types that resolve (part of) an allocation.
RESOLVING_TYPES: frozenset[MovementType] = frozenset(
    {MovementType.RETURN, MovementType.DAMAGE, MovementType.LOSS}
)

# Movement types whose notes are mandatory and must be non-blank.
NOTES_REQUIRED_TYPES: frozenset[MovementType] = frozenset(
    {MovementType.DAMAGE, MovementType.LOSS, MovementType.ADJUSTMENT}
)
