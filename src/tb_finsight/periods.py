# TB FinSight - Trial Balance Reporting & Ratio Analysis for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Financial period helpers for TB FinSight.

Trial balances are reported per calendar quarter. A FinancialPeriod is
created the first time data is uploaded for a new (year, quarter) pair and
is never mutated afterwards.

This module defines the FinancialPeriod value object and helpers to derive,
resolve and list periods from the database.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Optional, Union

from .db import Store, _now_utc_iso
from .errors import NoPeriodError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FinancialPeriod:
    """A reporting quarter with a human-readable name (e.g. "Q1 2025")."""

    id: int
    year: int
    quarter: int
    quarter_end_date: date
    period_name: str


def _row_to_period(row: dict[str, Any]) -> FinancialPeriod:
    return FinancialPeriod(
        id=int(row["id"]),
        year=int(row["year"]),
        quarter=int(row["quarter"]),
        quarter_end_date=date.fromisoformat(str(row["quarter_end_date"])),
        period_name=str(row["period_name"]),
    )


def _to_date(value: Union[date, datetime, str]) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value).strip())
    except ValueError as exc:
        raise ValueError(
            f"Invalid period date {value!r}, expected YYYY-MM-DD format."
        ) from exc


def quarter_for(value: Union[date, datetime, str]) -> tuple[int, int]:
    """Return the (year, quarter) a date falls into (Jan-Mar is Q1)."""
    d = _to_date(value)
    return d.year, (d.month + 2) // 3


def period_name(year: int, quarter: int) -> str:
    """Display name of a period, e.g. ``period_name(2025, 1) == "Q1 2025"``."""
    return f"Q{quarter} {year}"


def resolve_period(
    store: Store,
    quarter_end_date: Union[date, datetime, str],
    *,
    create: bool = True,
) -> FinancialPeriod:
    """
    Return the period containing `quarter_end_date`, creating it if allowed.

    The first date seen for a quarter becomes its `quarter_end_date`.

    Raises
    ------
    NoPeriodError
        If the period does not exist and `create` is False.
    """
    d = _to_date(quarter_end_date)
    year, quarter = quarter_for(d)

    with store.transaction():
        row = store.select_one("financial_periods", {"year": year, "quarter": quarter})
        if row is not None:
            return _row_to_period(row)

        if not create:
            raise NoPeriodError(
                f"No financial period for {period_name(year, quarter)}."
            )

        name = period_name(year, quarter)
        (new_id,) = store.insert(
            "financial_periods",
            [
                {
                    "year": year,
                    "quarter": quarter,
                    "quarter_end_date": d.isoformat(),
                    "period_name": name,
                    "created_at": _now_utc_iso(),
                }
            ],
        )
        logger.info("Created financial period %s (id=%s)", name, new_id)
        return FinancialPeriod(
            id=new_id,
            year=year,
            quarter=quarter,
            quarter_end_date=d,
            period_name=name,
        )


def get_period(store: Store, period_id: int) -> Optional[FinancialPeriod]:
    row = store.select_one("financial_periods", {"id": period_id})
    return _row_to_period(row) if row is not None else None


def list_periods(store: Store) -> list[FinancialPeriod]:
    """All periods, newest quarter first."""
    rows = store.select(
        "financial_periods", order_by=["year DESC", "quarter DESC"]
    )
    return [_row_to_period(r) for r in rows]


def latest_period(store: Store) -> Optional[FinancialPeriod]:
    periods = list_periods(store)
    return periods[0] if periods else None


def previous_period(store: Store, period: FinancialPeriod) -> Optional[FinancialPeriod]:
    """
    The closest period strictly before `period`.

    This is the default comparison period for variance analysis.
    """
    for candidate in list_periods(store):
        if (candidate.year, candidate.quarter) < (period.year, period.quarter):
            return candidate
    return None


def require_period(store: Store, period_id: Optional[int] = None) -> FinancialPeriod:
    """
    Resolve the period an operation should run against.

    With an explicit `period_id` the period must exist; otherwise the latest
    period is used.

    Raises
    ------
    NoPeriodError
        If no period can be resolved.
    """
    if period_id is None:
        period = latest_period(store)
        if period is None:
            raise NoPeriodError()
        return period

    period = get_period(store, period_id)
    if period is None:
        raise NoPeriodError(f"Financial period #{period_id} not found.")
    return period
