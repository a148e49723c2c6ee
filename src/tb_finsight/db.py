# TB FinSight - Trial Balance Reporting & Ratio Analysis for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.


"""
Database layer for TB FinSight.

This module provides the repository used by every pipeline stage to talk to
the SQLite database. It is responsible for:

- Initializing the database schema (idempotent).
- Exposing a small set of typed CRUD primitives (`select`, `insert`,
  `upsert`, `delete`, `count`) through the `Store` class.
- Running multi-statement writes inside serialized transactions.
- Converting amounts between monetary units and integer cents.
- Translating low-level `sqlite3.Error` exceptions into `BackendError`.

A `Store` is opened once per command and passed explicitly into each stage
(ingestion, mapping, aggregation, ratios). There is no module-level client.

------------------------------------------------------------------------------
Schema Overview
------------------------------------------------------------------------------

1) financial_periods
   One row per reporting quarter. UNIQUE (year, quarter).
   - id, year, quarter (1..4), quarter_end_date (ISO date), period_name
     ("Q1 2025"), created_at

2) uploads
   One row per ingestion batch (CSV file, extraction result, manual input).
   - id, period_id, created_at, source_type, source_label,
     rows_inserted, rows_rejected, notes

3) ledger_entries
   Raw trial balance lines for a period. Duplicate ledger names are allowed.
   - id, period_id, upload_id, ledger_name,
     debit_cents, credit_cents, closing_balance_cents  (debit-positive),
     account_type, account_category, parent_group,
     confidence (NULL for plain CSV rows), created_at

4) line_items
   Schedule III taxonomy (reference data, seeded from CSV).
   - id, code, display_name, report_type, report_section,
     report_sub_section, display_order, measure

5) mappings
   Ledger name -> line item, scoped to a period.
   UNIQUE (tally_ledger_name, period_id); rows are never updated in place.
   - id, tally_ledger_name, master_item_id, period_id, source
     ("auto" | "manual"), confidence, created_at

6) ratio_definitions
   Named ratio formulas with their default comparison values.
   - id, ratio_key, ratio_name, ratio_category, formula,
     formula_description, direction, unit, target_value, benchmark_value,
     industry_average, display_order, is_active

7) user_benchmarks
   Per-user overrides. UNIQUE (user_id, ratio_definition_id).
   - id, user_id, ratio_definition_id, custom_target_value,
     custom_industry_average, benchmark_source, notes, is_active, updated_at

8) calculated_ratios
   Last computed value of a ratio for a period.
   UNIQUE (ratio_definition_id, period_id).
   - id, ratio_definition_id, period_id, calculated_value, calculation_date

------------------------------------------------------------------------------
SQLite Notes
------------------------------------------------------------------------------

- All timestamps are stored as ISO-8601 text (UTC).
- Foreign key enforcement is explicitly enabled.
- The connection runs in autocommit mode; `Store.transaction()` issues
  `BEGIN IMMEDIATE`, which takes the write lock up front so that two
  overlapping invocations on the same database file are serialized.
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Iterable, Iterator, Mapping, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

import pandas as pd

from .errors import BackendError

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Dataclasses
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DatabaseConfig:
    """
    Database configuration for TB FinSight.

    Attributes
    ----------
    engine:
        Database engine identifier. Only "sqlite" is supported.
    path:
        Path to the SQLite database file.
    """

    engine: str
    path: Path


@dataclass(frozen=True)
class ImportStats:
    """
    Summary of one ingestion batch.

    Attributes
    ----------
    upload_id:
        Identifier of the row in `uploads`.
    period_id:
        Financial period the entries were attached to.
    rows_inserted:
        Number of rows inserted into `ledger_entries`.
    rows_rejected:
        Number of rows rejected by the normalizer.
    """

    upload_id: int
    period_id: int
    rows_inserted: int
    rows_rejected: int


BENCHMARK_SOURCES: tuple[str, ...] = (
    "Custom",
    "Industry Association",
    "Internal Historical",
    "External Research",
    "Regulatory",
)


# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_SCHEMA_STATEMENTS: tuple[str, ...] = (
    """
    CREATE TABLE IF NOT EXISTS financial_periods (
        id               INTEGER PRIMARY KEY AUTOINCREMENT,
        year             INTEGER NOT NULL,
        quarter          INTEGER NOT NULL CHECK (quarter BETWEEN 1 AND 4),
        quarter_end_date TEXT    NOT NULL,
        period_name      TEXT    NOT NULL,
        created_at       TEXT    NOT NULL,
        UNIQUE (year, quarter)
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS uploads (
        id            INTEGER PRIMARY KEY AUTOINCREMENT,
        period_id     INTEGER NOT NULL,
        created_at    TEXT    NOT NULL,
        source_type   TEXT    NOT NULL,  -- 'csv' | 'extraction' | 'manual'
        source_label  TEXT    NOT NULL,
        rows_inserted INTEGER NOT NULL DEFAULT 0,
        rows_rejected INTEGER NOT NULL DEFAULT 0,
        notes         TEXT,
        FOREIGN KEY (period_id) REFERENCES financial_periods(id)
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS ledger_entries (
        id                    INTEGER PRIMARY KEY AUTOINCREMENT,
        period_id             INTEGER NOT NULL,
        upload_id             INTEGER,
        ledger_name           TEXT    NOT NULL,
        debit_cents           INTEGER NOT NULL DEFAULT 0,
        credit_cents          INTEGER NOT NULL DEFAULT 0,
        closing_balance_cents INTEGER NOT NULL,
        account_type          TEXT    NOT NULL DEFAULT 'OTHER',
        account_category      TEXT    NOT NULL DEFAULT '',
        parent_group          TEXT,
        confidence            REAL,
        created_at            TEXT    NOT NULL,
        FOREIGN KEY (period_id) REFERENCES financial_periods(id),
        FOREIGN KEY (upload_id) REFERENCES uploads(id)
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS line_items (
        id                 INTEGER PRIMARY KEY,
        code               TEXT    NOT NULL UNIQUE,
        display_name       TEXT    NOT NULL,
        report_type        TEXT    NOT NULL,  -- 'BALANCE_SHEET' | 'PROFIT_LOSS'
        report_section     TEXT    NOT NULL,
        report_sub_section TEXT,
        display_order      INTEGER NOT NULL,
        measure            TEXT
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS mappings (
        id                INTEGER PRIMARY KEY AUTOINCREMENT,
        tally_ledger_name TEXT    NOT NULL,
        master_item_id    INTEGER NOT NULL,
        period_id         INTEGER NOT NULL,
        source            TEXT    NOT NULL DEFAULT 'manual',
        confidence        REAL,
        created_at        TEXT    NOT NULL,
        UNIQUE (tally_ledger_name, period_id),
        FOREIGN KEY (master_item_id) REFERENCES line_items(id),
        FOREIGN KEY (period_id) REFERENCES financial_periods(id)
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS ratio_definitions (
        id                  INTEGER PRIMARY KEY AUTOINCREMENT,
        ratio_key           TEXT    NOT NULL UNIQUE,
        ratio_name          TEXT    NOT NULL UNIQUE,
        ratio_category      TEXT    NOT NULL,
        formula             TEXT    NOT NULL,
        formula_description TEXT    NOT NULL DEFAULT '',
        direction           TEXT    NOT NULL,
        unit                TEXT    NOT NULL DEFAULT 'ratio',
        target_value        REAL,
        benchmark_value     REAL,
        industry_average    REAL,
        display_order       INTEGER NOT NULL DEFAULT 0,
        is_active           INTEGER NOT NULL DEFAULT 1
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS user_benchmarks (
        id                      INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id                 TEXT    NOT NULL,
        ratio_definition_id     INTEGER NOT NULL,
        custom_target_value     REAL,
        custom_industry_average REAL,
        benchmark_source        TEXT    NOT NULL DEFAULT 'Custom'
            CHECK (benchmark_source IN ('Custom', 'Industry Association',
                   'Internal Historical', 'External Research', 'Regulatory')),
        notes                   TEXT,
        is_active               INTEGER NOT NULL DEFAULT 1,
        updated_at              TEXT    NOT NULL,
        UNIQUE (user_id, ratio_definition_id),
        FOREIGN KEY (ratio_definition_id) REFERENCES ratio_definitions(id)
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS calculated_ratios (
        id                  INTEGER PRIMARY KEY AUTOINCREMENT,
        ratio_definition_id INTEGER NOT NULL,
        period_id           INTEGER NOT NULL,
        calculated_value    REAL    NOT NULL,
        calculation_date    TEXT    NOT NULL,
        UNIQUE (ratio_definition_id, period_id),
        FOREIGN KEY (ratio_definition_id) REFERENCES ratio_definitions(id),
        FOREIGN KEY (period_id) REFERENCES financial_periods(id)
    );
    """,
    "CREATE INDEX IF NOT EXISTS idx_ledger_entries_period "
    "ON ledger_entries(period_id);",
    "CREATE INDEX IF NOT EXISTS idx_mappings_period ON mappings(period_id);",
)

# Table -> allowed columns. Every identifier interpolated into SQL by `Store`
# is checked against this whitelist.
TABLE_COLUMNS: dict[str, tuple[str, ...]] = {
    "financial_periods": (
        "id",
        "year",
        "quarter",
        "quarter_end_date",
        "period_name",
        "created_at",
    ),
    "uploads": (
        "id",
        "period_id",
        "created_at",
        "source_type",
        "source_label",
        "rows_inserted",
        "rows_rejected",
        "notes",
    ),
    "ledger_entries": (
        "id",
        "period_id",
        "upload_id",
        "ledger_name",
        "debit_cents",
        "credit_cents",
        "closing_balance_cents",
        "account_type",
        "account_category",
        "parent_group",
        "confidence",
        "created_at",
    ),
    "line_items": (
        "id",
        "code",
        "display_name",
        "report_type",
        "report_section",
        "report_sub_section",
        "display_order",
        "measure",
    ),
    "mappings": (
        "id",
        "tally_ledger_name",
        "master_item_id",
        "period_id",
        "source",
        "confidence",
        "created_at",
    ),
    "ratio_definitions": (
        "id",
        "ratio_key",
        "ratio_name",
        "ratio_category",
        "formula",
        "formula_description",
        "direction",
        "unit",
        "target_value",
        "benchmark_value",
        "industry_average",
        "display_order",
        "is_active",
    ),
    "user_benchmarks": (
        "id",
        "user_id",
        "ratio_definition_id",
        "custom_target_value",
        "custom_industry_average",
        "benchmark_source",
        "notes",
        "is_active",
        "updated_at",
    ),
    "calculated_ratios": (
        "id",
        "ratio_definition_id",
        "period_id",
        "calculated_value",
        "calculation_date",
    ),
}


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _ensure_sqlite(cfg: DatabaseConfig) -> None:
    """Raise if the configuration does not refer to a supported engine."""
    if cfg.engine.lower() != "sqlite":
        msg = (
            f"Unsupported database engine: {cfg.engine!r}. "
            "Only 'sqlite' is supported for now."
        )
        raise ValueError(msg)


def _check_columns(table: str, columns: Iterable[str]) -> None:
    """Validate a table name and its column names against the schema."""
    if table not in TABLE_COLUMNS:
        raise ValueError(f"Unknown table: {table!r}")
    allowed = TABLE_COLUMNS[table]
    unknown = [c for c in columns if c not in allowed]
    if unknown:
        raise ValueError(f"Unknown column(s) for table {table!r}: {unknown}")


def _where_clause(filters: Optional[Mapping[str, Any]]) -> tuple[str, list[Any]]:
    """
    Build a WHERE clause from simple equality filters.

    - scalar value -> ``col = ?``
    - None         -> ``col IS NULL``
    - list/tuple   -> ``col IN (?, ?, ...)`` (an empty list matches nothing)
    """
    if not filters:
        return "", []

    parts: list[str] = []
    params: list[Any] = []
    for col, value in filters.items():
        if value is None:
            parts.append(f"{col} IS NULL")
        elif isinstance(value, (list, tuple, set, frozenset)):
            values = list(value)
            if not values:
                parts.append("0 = 1")
                continue
            placeholders = ", ".join("?" for _ in values)
            parts.append(f"{col} IN ({placeholders})")
            params.extend(values)
        else:
            parts.append(f"{col} = ?")
            params.append(value)
    return " WHERE " + " AND ".join(parts), params


def _now_utc_iso() -> str:
    """Return the current UTC datetime as ISO string."""
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def to_cents(amount: float) -> int:
    """Convert a monetary amount to signed integer cents."""
    return int(round(float(amount) * 100))


def from_cents(cents: Optional[int]) -> float:
    """Convert signed integer cents back to a monetary amount."""
    if cents is None:
        return 0.0
    return int(cents) / 100.0


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class Store:
    """
    Repository over the TB FinSight SQLite database.

    The store owns a single connection. It is usable as a context manager:

        with Store(cfg) as store:
            rows = store.select("financial_periods", order_by="year DESC")

    All write primitives join the enclosing `transaction()` when one is
    active, otherwise they run in their own transaction. Any `sqlite3.Error`
    is re-raised as `BackendError` after the transaction is rolled back.
    """

    def __init__(self, cfg: DatabaseConfig) -> None:
        _ensure_sqlite(cfg)
        cfg.path.parent.mkdir(parents=True, exist_ok=True)

        self.cfg = cfg
        self._depth = 0
        try:
            # isolation_level=None: autocommit, transactions are explicit.
            self.conn = sqlite3.connect(cfg.path, isolation_level=None)
            self.conn.row_factory = sqlite3.Row
            self.conn.execute("PRAGMA foreign_keys = ON;")
        except sqlite3.Error as exc:
            raise BackendError(f"Cannot open database {cfg.path}: {exc}") from exc

        self._create_schema_if_needed()

    # -- lifecycle ---------------------------------------------------------

    def close(self) -> None:
        self.conn.close()

    def __enter__(self) -> "Store":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _create_schema_if_needed(self) -> None:
        """Create tables and indexes if they do not exist yet."""
        with self.transaction():
            for statement in _SCHEMA_STATEMENTS:
                self._execute(statement)
        logger.debug("Schema ready in %s", self.cfg.path)

    # -- low-level ---------------------------------------------------------

    def _execute(self, sql: str, params: Sequence[Any] = ()) -> sqlite3.Cursor:
        try:
            return self.conn.execute(sql, tuple(params))
        except sqlite3.Error as exc:
            raise BackendError(f"Database error: {exc}") from exc

    @contextmanager
    def transaction(self) -> Iterator["Store"]:
        """
        Run the enclosed block as one atomic unit of work.

        Nested calls join the outermost transaction. On any exception the
        whole transaction is rolled back and the exception propagates.
        """
        if self._depth > 0:
            self._depth += 1
            try:
                yield self
            finally:
                self._depth -= 1
            return

        self._execute("BEGIN IMMEDIATE;")
        self._depth = 1
        try:
            yield self
        except BaseException:
            self._depth = 0
            logger.debug("Rolling back transaction on %s", self.cfg.path)
            self.conn.rollback()
            raise
        self._depth = 0
        try:
            self._execute("COMMIT;")
        except BackendError:
            self.conn.rollback()
            raise

    # -- CRUD primitives ---------------------------------------------------

    def select(
        self,
        table: str,
        filters: Optional[Mapping[str, Any]] = None,
        *,
        order_by: Optional[str | Sequence[str]] = None,
        columns: Optional[Sequence[str]] = None,
        limit: Optional[int] = None,
    ) -> list[dict[str, Any]]:
        """
        Return rows of `table` matching all equality `filters`.

        `order_by` accepts column names, optionally suffixed with " DESC".
        """
        cols = list(columns) if columns else list(TABLE_COLUMNS.get(table, ()))
        order_terms: list[str] = []
        if order_by:
            terms = [order_by] if isinstance(order_by, str) else list(order_by)
            for term in terms:
                name, _, direction = term.strip().partition(" ")
                direction = direction.strip().upper()
                if direction not in ("", "ASC", "DESC"):
                    raise ValueError(f"Invalid sort direction in {term!r}")
                order_terms.append(f"{name} {direction}".strip())
        _check_columns(
            table,
            [*cols, *(filters or {}).keys(), *(t.split(" ")[0] for t in order_terms)],
        )

        where, params = _where_clause(filters)
        sql = f"SELECT {', '.join(cols)} FROM {table}{where}"
        if order_terms:
            sql += " ORDER BY " + ", ".join(order_terms)
        if limit is not None:
            sql += " LIMIT ?"
            params.append(int(limit))

        cur = self._execute(sql + ";", params)
        return [dict(row) for row in cur.fetchall()]

    def select_one(
        self,
        table: str,
        filters: Optional[Mapping[str, Any]] = None,
        *,
        order_by: Optional[str | Sequence[str]] = None,
    ) -> Optional[dict[str, Any]]:
        rows = self.select(table, filters, order_by=order_by, limit=1)
        return rows[0] if rows else None

    def count(self, table: str, filters: Optional[Mapping[str, Any]] = None) -> int:
        _check_columns(table, (filters or {}).keys())
        where, params = _where_clause(filters)
        cur = self._execute(f"SELECT COUNT(*) FROM {table}{where};", params)
        return int(cur.fetchone()[0])

    def insert(self, table: str, rows: Iterable[Mapping[str, Any]]) -> list[int]:
        """Insert rows and return their new ids."""
        ids: list[int] = []
        with self.transaction():
            for row in rows:
                _check_columns(table, row.keys())
                cols = list(row.keys())
                placeholders = ", ".join("?" for _ in cols)
                cur = self._execute(
                    f"INSERT INTO {table} ({', '.join(cols)}) VALUES ({placeholders});",
                    [row[c] for c in cols],
                )
                ids.append(int(cur.lastrowid))
        return ids

    def upsert(
        self,
        table: str,
        rows: Iterable[Mapping[str, Any]],
        conflict_keys: Sequence[str],
        *,
        update: bool = True,
    ) -> int:
        """
        Insert rows, resolving conflicts on `conflict_keys`.

        With ``update=True`` the non-key columns of an existing row are
        overwritten; with ``update=False`` conflicting rows are skipped.

        Returns
        -------
        int
            Number of rows inserted or updated (skipped rows are not counted).
        """
        _check_columns(table, conflict_keys)
        affected = 0
        with self.transaction():
            for row in rows:
                _check_columns(table, row.keys())
                cols = list(row.keys())
                placeholders = ", ".join("?" for _ in cols)
                sql = (
                    f"INSERT INTO {table} ({', '.join(cols)}) "
                    f"VALUES ({placeholders}) "
                    f"ON CONFLICT ({', '.join(conflict_keys)}) "
                )
                updatable = [c for c in cols if c not in conflict_keys and c != "id"]
                if update and updatable:
                    sql += "DO UPDATE SET " + ", ".join(
                        f"{c} = excluded.{c}" for c in updatable
                    )
                else:
                    sql += "DO NOTHING"
                cur = self._execute(sql + ";", [row[c] for c in cols])
                affected += max(cur.rowcount, 0)
        return affected

    def update(
        self,
        table: str,
        values: Mapping[str, Any],
        filters: Mapping[str, Any],
    ) -> int:
        """Update matching rows in place. Returns the number of rows changed."""
        if not filters:
            raise ValueError("update() requires at least one filter.")
        _check_columns(table, [*values.keys(), *filters.keys()])
        assignments = ", ".join(f"{c} = ?" for c in values)
        where, params = _where_clause(filters)
        with self.transaction():
            cur = self._execute(
                f"UPDATE {table} SET {assignments}{where};",
                [*values.values(), *params],
            )
        return int(cur.rowcount)

    def delete(self, table: str, filters: Mapping[str, Any]) -> int:
        """Delete matching rows. Returns the number of rows removed."""
        if not filters:
            raise ValueError("delete() requires at least one filter.")
        _check_columns(table, filters.keys())
        where, params = _where_clause(filters)
        with self.transaction():
            cur = self._execute(f"DELETE FROM {table}{where};", params)
        return int(cur.rowcount)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def init_database(cfg: DatabaseConfig) -> None:
    """
    Initialize the database schema if needed.

    - Creates the SQLite file (and its parent directory) if missing.
    - Creates all tables and indexes if they are missing.
    - This function is idempotent: calling it multiple times is safe.

    Raises
    ------
    ValueError
        If cfg.engine is not supported.
    BackendError
        If schema creation fails.
    """
    with Store(cfg):
        pass


def load_ledger_entries(store: Store, period_id: int) -> pd.DataFrame:
    """
    Load the ledger entries of a period as a DataFrame.

    Returns
    -------
    pandas.DataFrame
        Columns: id, ledger_name, debit, credit, closing_balance,
        account_type, account_category, parent_group, confidence.
        Amounts are reconstructed from integer cents.
    """
    columns = [
        "id",
        "ledger_name",
        "debit",
        "credit",
        "closing_balance",
        "account_type",
        "account_category",
        "parent_group",
        "confidence",
    ]
    rows = store.select("ledger_entries", {"period_id": period_id}, order_by="id")
    if not rows:
        return pd.DataFrame(columns=columns)

    df = pd.DataFrame(rows)
    df["debit"] = df["debit_cents"].astype(float) / 100.0
    df["credit"] = df["credit_cents"].astype(float) / 100.0
    df["closing_balance"] = df["closing_balance_cents"].astype(float) / 100.0
    return df[columns]


def list_uploads(store: Store, period_id: Optional[int] = None) -> pd.DataFrame:
    """Return ingestion batches, newest first."""
    filters = {"period_id": period_id} if period_id is not None else None
    rows = store.select("uploads", filters, order_by="id DESC")
    return pd.DataFrame(rows, columns=list(TABLE_COLUMNS["uploads"]))
