"""
PostgreSQL triggers that refuse edits to ledger history.

The ORM listeners in db/immutability.py only see changes made through a
Session.  These triggers also stop raw SQL and bulk statements:

    inventory_movements    no UPDATE, no DELETE
    inventory_allocations  no DELETE
    inventory_items        no DELETE once the item has movements

The SQL lives in db/sql/ and uses CREATE OR REPLACE, so installing twice is
harmless.  SQLite has no equivalent; there the listeners are the only guard.
"""

from pathlib import Path

from sqlalchemy import bindparam, text
from sqlalchemy.engine import Engine

from rental_ledger.logging_config import get_logger

logger = get_logger("db.triggers")

SQL_DIR = Path(__file__).parent / "sql"

INSTALL_SCRIPTS = ("01_inventory_movement.sql", "02_inventory_allocation.sql")
UNINSTALL_SCRIPT = "99_drop_all.sql"

ALL_TRIGGER_NAMES = (
    "trg_inventory_movement_immutability_update",
    "trg_inventory_movement_immutability_delete",
    "trg_inventory_allocation_delete",
    "trg_inventory_item_delete",
)

_INSTALLED_QUERY = text(
    "SELECT tgname FROM pg_trigger WHERE tgname IN :names ORDER BY tgname"
).bindparams(bindparam("names", expanding=True))


def _run_scripts(engine: Engine, *filenames: str) -> None:
    sql = "\n".join((SQL_DIR / name).read_text() for name in filenames)
    with engine.begin() as conn:
        conn.execute(text(sql))


def install_immutability_triggers(engine: Engine) -> None:
    _run_scripts(engine, *INSTALL_SCRIPTS)
    logger.info("immutability_triggers_installed", extra={"scripts": list(INSTALL_SCRIPTS)})


def uninstall_immutability_triggers(engine: Engine) -> None:
    """Drop the triggers and their functions; used by drop_tables."""
    _run_scripts(engine, UNINSTALL_SCRIPT)


def get_installed_triggers(engine: Engine) -> list[str]:
    with engine.connect() as conn:
        return list(
            conn.execute(_INSTALLED_QUERY, {"names": list(ALL_TRIGGER_NAMES)}).scalars()
        )


def triggers_installed(engine: Engine) -> bool:
    return set(get_installed_triggers(engine)) == set(ALL_TRIGGER_NAMES)
