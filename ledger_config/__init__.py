"""
ledger_config -- single public entrypoint for ledger configuration.

Responsibility:
    ``get_active_config()`` is the ONLY way to obtain settings at runtime.
    No other component reads configuration files or environment variables.

Resolution order:
    1. ``config_path`` argument
    2. ``RENTAL_LEDGER_CONFIG`` environment variable
    3. ``ledger_config/sets/default.yaml``

    ``RENTAL_LEDGER_DATABASE_URL``, when set, overrides ``database_url``
    from whichever file was loaded.

Failure modes:
    - ``FileNotFoundError`` -- the selected file does not exist.
    - ``ValueError`` -- unknown keys or out-of-range values.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from ledger_config.loader import load_settings
from ledger_config.schema import LedgerSettings, RetrySettings

_logger = logging.getLogger("rental_ledger.config")

_DEFAULT_CONFIG_DIR = Path(__file__).parent / "sets"
DEFAULT_CONFIG_PATH = _DEFAULT_CONFIG_DIR / "default.yaml"

CONFIG_PATH_ENV = "RENTAL_LEDGER_CONFIG"
DATABASE_URL_ENV = "RENTAL_LEDGER_DATABASE_URL"


def get_active_config(config_path: Path | str | None = None) -> LedgerSettings:
    """The ONLY public configuration entrypoint."""
    path = Path(
        config_path
        or os.environ.get(CONFIG_PATH_ENV)
        or DEFAULT_CONFIG_PATH
    )
    database_url = os.environ.get(DATABASE_URL_ENV) or None
    settings = load_settings(path, database_url=database_url)

    _logger.info(
        "LEDGER_CONFIG_TRACE",
        extra={
            "config_path": str(path),
            "database_dialect": settings.database_url.split(":", 1)[0],
            "privileged_roles": sorted(settings.privileged_roles),
            "retry_max_attempts": settings.retry.max_attempts,
        },
    )
    return settings


__all__ = [
    "DEFAULT_CONFIG_PATH",
    "LedgerSettings",
    "RetrySettings",
    "get_active_config",
]
