"""
Module: rental_ledger.selectors.base
Responsibility: Shared plumbing for the read side (projector, resolver,
    reports).
Architecture position: Selectors.  May import from db/, models/ and domain/;
    never from services/.

Selectors only read.  They run on whatever session the caller hands them,
so inside a write transaction they see its uncommitted rows, and they hand
back frozen DTOs or plain values rather than ORM objects.
"""

from collections.abc import Callable
from typing import Any, Generic, TypeVar
from uuid import UUID

from sqlalchemy.orm import Session

from rental_ledger.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseSelector(Generic[ModelType]):

    def __init__(self, session: Session):
        self.session = session

    def _get_or_raise(
        self,
        model: type[ModelType],
        ident: UUID,
        missing: Callable[[str], Exception],
    ) -> ModelType:
        """Load a row by primary key or raise ``missing(str(ident))``."""
        row: Any = self.session.get(model, ident)
        if row is None:
            raise missing(str(ident))
        return row
