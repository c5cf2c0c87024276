"""
YAML loader for ledger settings.

Internal to ``ledger_config``: callers use ``get_active_config()``.

* Missing file        -> ``FileNotFoundError`` propagates.
* Malformed YAML      -> ``yaml.YAMLError`` propagates.
* Unknown keys        -> ``ValueError`` (typos must not silently fall back
  to defaults).
* Out-of-range values -> ``ValueError`` from the schema.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

from ledger_config.schema import LedgerSettings, RetrySettings

_TOP_LEVEL_KEYS = frozenset(
    {
        "database_url",
        "pool_size",
        "max_overflow",
        "lock_timeout_seconds",
        "privileged_roles",
        "low_stock_ratio",
        "retry",
        "log_level",
    }
)
_RETRY_KEYS = frozenset({"max_attempts", "backoff_seconds"})


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a single YAML file; an empty file yields ``{}``."""
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected a mapping at top level")
    return data


def _reject_unknown(data: dict[str, Any], allowed: frozenset[str], where: str) -> None:
    unknown = sorted(set(data) - allowed)
    if unknown:
        raise ValueError(f"Unknown {where} setting(s): {', '.join(unknown)}")


def parse_retry(data: dict[str, Any] | None) -> RetrySettings:
    if not data:
        return RetrySettings()
    _reject_unknown(data, _RETRY_KEYS, "retry")
    return RetrySettings(
        max_attempts=int(data.get("max_attempts", RetrySettings.max_attempts)),
        backoff_seconds=float(data.get("backoff_seconds", RetrySettings.backoff_seconds)),
    )


def parse_settings(data: dict[str, Any], database_url: str | None = None) -> LedgerSettings:
    """
    Build LedgerSettings from a parsed YAML mapping.

    ``database_url`` (from the environment) wins over the file's value.
    """
    _reject_unknown(data, _TOP_LEVEL_KEYS, "ledger")
    defaults = LedgerSettings()

    roles = data.get("privileged_roles", defaults.privileged_roles)
    if isinstance(roles, str):
        roles = [roles]

    return LedgerSettings(
        database_url=database_url or data.get("database_url", defaults.database_url),
        pool_size=int(data.get("pool_size", defaults.pool_size)),
        max_overflow=int(data.get("max_overflow", defaults.max_overflow)),
        lock_timeout_seconds=float(
            data.get("lock_timeout_seconds", defaults.lock_timeout_seconds)
        ),
        privileged_roles=frozenset(str(r) for r in roles),
        low_stock_ratio=float(data.get("low_stock_ratio", defaults.low_stock_ratio)),
        retry=parse_retry(data.get("retry")),
        log_level=str(data.get("log_level", defaults.log_level)).upper(),
    )


def load_settings(path: Path, database_url: str | None = None) -> LedgerSettings:
    return parse_settings(load_yaml_file(path), database_url=database_url)
