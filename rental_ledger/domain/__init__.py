"""Pure domain values: movement vocabularies, quantities, intents, clock."""

from rental_ledger.domain.clock import Clock, DeterministicClock, SystemClock
from rental_ledger.domain.intents import Actor, MovementIntent
from rental_ledger.domain.quantities import (
    ItemQuantities,
    QuantityDelta,
    QuantityUnderflowError,
    effect_of,
    fold_movements,
)
from rental_ledger.domain.types import (
    AdjustmentDirection,
    MovementType,
    ReferenceType,
)

__all__ = [
    "Actor",
    "AdjustmentDirection",
    "Clock",
    "DeterministicClock",
    "ItemQuantities",
    "MovementIntent",
    "MovementType",
    "QuantityDelta",
    "QuantityUnderflowError",
    "ReferenceType",
    "SystemClock",
    "effect_of",
    "fold_movements",
]
