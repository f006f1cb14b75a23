"""Idempotent, additive schema upgrades for SQLite databases created by older builds."""

from __future__ import annotations

import logging
from typing import Iterable

from sqlalchemy import text
from sqlalchemy.engine import Engine

logger = logging.getLogger(__name__)

# Columns added after the first release, per table. Never drop or rename here.
ADDITIVE_COLUMNS: dict[str, dict[str, str]] = {
    "sales": {
        "net_pence": "INTEGER",
        "cost_per_unit_pence": "INTEGER",
        "cost_total_pence": "INTEGER",
        "notes": "TEXT",
    },
    "subscriptions": {
        "stripe_price_id": "VARCHAR(255)",
        "cancel_at_period_end": "BOOLEAN DEFAULT 0 NOT NULL",
        "current_period_start": "DATETIME",
        "current_period_end": "DATETIME",
    },
}


def _column_names(engine: Engine, table: str) -> set[str]:
    with engine.connect() as conn:
        rows = conn.execute(text(f"PRAGMA table_info({table})")).mappings().all()
    return {row["name"] for row in rows}


def _add_column_sqlite(engine: Engine, table: str, col_def: str) -> None:
    with engine.begin() as conn:
        conn.execute(text(f"ALTER TABLE {table} ADD COLUMN {col_def}"))


def _create_index_if_not_exists(engine: Engine, table: str, name: str, cols: Iterable[str], unique: bool = False) -> None:
    cols_sql = ", ".join(cols)
    unique_sql = "UNIQUE " if unique else ""
    with engine.begin() as conn:
        conn.execute(text(f"CREATE {unique_sql}INDEX IF NOT EXISTS {name} ON {table} ({cols_sql})"))


def run_migrations(engine: Engine) -> None:
    """Bring an existing SQLite schema up to date. Other dialects are left alone."""

    if engine.dialect.name != "sqlite":
        return
    for table, wanted in ADDITIVE_COLUMNS.items():
        existing = _column_names(engine, table)
        if not existing:
            # Fresh database; create_all already built the current shape.
            continue
        for name, dtype in wanted.items():
            if name not in existing:
                logger.info("adding column %s.%s", table, name)
                _add_column_sqlite(engine, table, f"{name} {dtype}")

    if _column_names(engine, "payments"):
        _create_index_if_not_exists(engine, "payments", "ix_payments_stripe_payment_id_unique", ["stripe_payment_id"], unique=True)
    if _column_names(engine, "sales"):
        _create_index_if_not_exists(engine, "sales", "ix_sales_owner_sold_at", ["owner_id", "sold_at"])
