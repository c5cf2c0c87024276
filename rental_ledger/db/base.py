"""
Module: rental_ledger.db.base
Responsibility: Declarative base for the ledger tables (items, movements,
    allocations) and the column types they share.
Architecture position: DB layer.  Imported by models/; imports nothing from
    the rest of the package.

Column conventions:
    - Primary keys, item/outlet/reference ids and actor ids are UUIDs stored
      as 36-character strings, so one schema serves PostgreSQL and SQLite.
    - Unit counts are BigInteger; units are never fractional.
    - Timestamps carry a time zone.
"""

from datetime import datetime
from typing import Any, ClassVar
from uuid import UUID, uuid4

from sqlalchemy import BigInteger, DateTime, String, func
from sqlalchemy.engine import Dialect
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


class UUIDString(TypeDecorator):
    """UUID column stored as text; loads back as ``uuid.UUID``."""

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value: Any, dialect: Dialect) -> str | None:
        return None if value is None else str(value)

    def process_result_value(self, value: Any, dialect: Dialect) -> UUID | None:
        return None if value is None else UUID(value)


class Base(DeclarativeBase):
    """Every ledger table has a random UUID primary key."""

    type_annotation_map: ClassVar[dict] = {
        UUID: UUIDString(),
        int: BigInteger,
        datetime: DateTime(timezone=True),
    }

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.id}>"


class TrackedBase(Base):
    """
    Rows whose counters change over time: items and allocations.

    ``created_*`` is fixed at insert.  ``updated_*`` names the last writer;
    use ``touch`` rather than assigning it directly.
    """

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(server_default=func.now())
    created_by_id: Mapped[UUID]
    updated_at: Mapped[datetime] = mapped_column(
        server_default=func.now(), onupdate=func.now()
    )
    updated_by_id: Mapped[UUID | None]

    def touch(self, actor_id: UUID) -> None:
        self.updated_by_id = actor_id
