"""Persistence plumbing: declarative base, engine, sessions, immutability."""

from rental_ledger.db.base import Base, TrackedBase, UUIDString
from rental_ledger.db.engine import (
    create_engine_from_url,
    create_session_factory,
    create_tables,
    drop_tables,
    is_postgres,
    session_scope,
)

__all__ = [
    "Base",
    "TrackedBase",
    "UUIDString",
    "create_engine_from_url",
    "create_session_factory",
    "create_tables",
    "drop_tables",
    "is_postgres",
    "session_scope",
]
