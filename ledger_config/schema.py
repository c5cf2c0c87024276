"""
LedgerSettings schema.

Frozen dataclasses describing every tunable of the ledger.  The loader
parses YAML into these types; nothing else constructs them from files.
Validation happens in ``__post_init__`` so an invalid setting fails at load
time, never halfway through a transaction.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class RetrySettings:
    """Bounded retry of ConcurrencyConflictError."""

    max_attempts: int = 3
    backoff_seconds: float = 0.05

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError(f"retry.max_attempts must be >= 1, got {self.max_attempts}")
        if self.backoff_seconds < 0:
            raise ValueError(
                f"retry.backoff_seconds must be >= 0, got {self.backoff_seconds}"
            )


@dataclass(frozen=True)
class LedgerSettings:
    """Runtime settings for the rental inventory ledger."""

    database_url: str = "sqlite:///rental_ledger.db"
    pool_size: int = 5
    max_overflow: int = 10
    lock_timeout_seconds: float = 10.0
    privileged_roles: frozenset[str] = frozenset({"admin", "manager"})
    low_stock_ratio: float = 0.2
    retry: RetrySettings = field(default_factory=RetrySettings)
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        if not self.database_url:
            raise ValueError("database_url must not be empty")
        if self.pool_size < 1:
            raise ValueError(f"pool_size must be >= 1, got {self.pool_size}")
        if self.max_overflow < 0:
            raise ValueError(f"max_overflow must be >= 0, got {self.max_overflow}")
        if self.lock_timeout_seconds <= 0:
            raise ValueError(
                f"lock_timeout_seconds must be positive, got {self.lock_timeout_seconds}"
            )
        if not 0 <= self.low_stock_ratio <= 1:
            raise ValueError(
                f"low_stock_ratio must be between 0 and 1, got {self.low_stock_ratio}"
            )
        if not self.privileged_roles:
            raise ValueError("privileged_roles must name at least one role")
        if self.log_level.upper() not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unknown log_level: {self.log_level}")
