"""
BaseService: writers that run inside a transaction someone else owns.

A service flushes; it never commits or rolls back.  AllocationManager opens
the transaction (services.transaction.ledger_transaction) and decides its
fate, so a movement row, the item's summary update and the allocation
update are committed together or not at all.  Reads that do not feed a
write belong in rental_ledger/selectors/.
"""

from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from rental_ledger.db.base import Base
from rental_ledger.domain.clock import Clock, SystemClock

ModelType = TypeVar("ModelType", bound=Base)


class BaseService(Generic[ModelType]):

    def __init__(self, session: Session, clock: Clock | None = None):
        self.session = session
        self.clock = clock or SystemClock()
