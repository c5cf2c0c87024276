#!/usr/bin/env python3
"""
Operator CLI for the rental inventory ledger.

Usage:
    python -m rental_ledger.cli init-db
    python -m rental_ledger.cli stock [--outlet UUID] [--include-inactive]
    python -m rental_ledger.cli alerts [--outlet UUID]
    python -m rental_ledger.cli verify [--outlet UUID]

Global options:
    --config PATH         settings YAML (default: RENTAL_LEDGER_CONFIG or sets/default.yaml)
    --database-url URL    override the configured database

Exit codes: 0 ok, 1 error, 2 drift found by ``verify``.
"""

import argparse
import sys
from uuid import UUID

from ledger_config import get_active_config
from rental_ledger.db.engine import (
    create_engine_from_url,
    create_session_factory,
    create_tables,
    session_scope,
)
from rental_ledger.logging_config import configure_logging, get_logger
from rental_ledger.selectors.quantity_projector import QuantityProjector
from rental_ledger.selectors.reporting import InventoryReportSelector

logger = get_logger("cli")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="rental_ledger",
        description="Rental inventory ledger operations",
    )
    parser.add_argument("--config", help="Path to a settings YAML file")
    parser.add_argument("--database-url", help="Override the configured database URL")

    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init-db", help="Create tables (and PostgreSQL triggers)")

    stock = sub.add_parser("stock", help="Show per-item quantities")
    stock.add_argument("--outlet", type=UUID, help="Limit to one outlet")
    stock.add_argument(
        "--include-inactive", action="store_true", help="Include deactivated items"
    )

    alerts = sub.add_parser("alerts", help="Show low and out-of-stock items")
    alerts.add_argument("--outlet", type=UUID, help="Limit to one outlet")

    verify = sub.add_parser("verify", help="Replay movements and compare with summaries")
    verify.add_argument("--outlet", type=UUID, help="Limit to one outlet")

    return parser


def _print_stock(rows) -> None:
    if not rows:
        print("No items.")
        return
    print(
        f"{'ITEM':<32} {'CATEGORY':<16} {'TOTAL':>6} {'AVAIL':>6} "
        f"{'ALLOC':>6} {'DMG':>5} {'LOST':>5}"
    )
    for row in rows:
        name = row.name if row.is_active else f"{row.name} (inactive)"
        print(
            f"{name[:32]:<32} {row.category[:16]:<16} {row.total:>6} "
            f"{row.available:>6} {row.allocated:>6} {row.damaged:>5} {row.lost:>5}"
        )


def _print_alerts(alerts) -> None:
    if not alerts:
        print("No stock alerts.")
        return
    for alert in alerts:
        level = f"reorder at {alert.reorder_level}" if alert.reorder_level is not None else ""
        print(
            f"[{alert.severity.upper()}] {alert.name} ({alert.category}): "
            f"{alert.available}/{alert.total} available {level}".rstrip()
        )


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)

    try:
        settings = get_active_config(args.config)
    except (FileNotFoundError, ValueError) as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 1

    configure_logging(level=settings.log_level, stream=sys.stderr)
    database_url = args.database_url or settings.database_url

    engine = create_engine_from_url(
        database_url,
        pool_size=settings.pool_size,
        max_overflow=settings.max_overflow,
        lock_timeout_seconds=settings.lock_timeout_seconds,
    )
    try:
        if args.command == "init-db":
            create_tables(engine)
            print(f"Ledger tables ready ({engine.dialect.name}).")
            return 0

        factory = create_session_factory(engine)
        with session_scope(factory) as session:
            if args.command == "stock":
                _print_stock(
                    InventoryReportSelector(session).stock_summary(
                        outlet_id=args.outlet,
                        include_inactive=args.include_inactive,
                    )
                )
                return 0

            if args.command == "alerts":
                _print_alerts(
                    InventoryReportSelector(
                        session, low_stock_ratio=settings.low_stock_ratio
                    ).stock_alerts(outlet_id=args.outlet)
                )
                return 0

            drifted = QuantityProjector(session).verify_all(outlet_id=args.outlet)
            if drifted:
                print(f"Drift detected in {len(drifted)} item(s):")
                for item_id in drifted:
                    print(f"  {item_id}")
                return 2
            print("All item summaries match their movement history.")
            return 0
    finally:
        engine.dispose()


if __name__ == "__main__":
    sys.exit(main())
