# TB FinSight - Trial Balance Reporting & Ratio Analysis for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Data quality checks for a period.

- `mapping_statistics`: how many distinct ledger names are mapped.
- `stock_reconciliation`: recompute COGS from the stock ledgers
  (opening stock + purchases - closing stock) and compare it with any COGS
  ledger already present.
- `period_readiness`: whether a period is complete enough for reporting,
  with the guidance to show when it is not.

Ledger names are matched with case-insensitive patterns, the same way Tally
ledgers are recognised elsewhere ("Opening Stock", "Purchase Returns", ...).
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

import pandas as pd

from .db import Store, load_ledger_entries
from .engine import section_kind
from .periods import get_period
from .mapping_service import mapped_ledger_names

logger = logging.getLogger(__name__)

READY_MAPPING_PERCENTAGE = 80.0
COGS_TOLERANCE = 0.05

_OPENING_STOCK = r"opening.*(?:stock|inventory)"
_CLOSING_STOCK = r"closing.*(?:stock|inventory)"
_PURCHASES = r"purchase"
_RETURNS = r"return"
_COGS = r"cost.*goods.*sold|cogs"
_STOCK = r"stock|inventory"

GUIDANCE_UPLOAD = "upload data first"
GUIDANCE_MAPPING = "complete mapping first"


@dataclass(frozen=True)
class MappingStatistics:
    total_ledgers: int
    mapped_ledgers: int
    completion_percentage: float

    @property
    def unmapped_ledgers(self) -> int:
        return self.total_ledgers - self.mapped_ledgers


@dataclass(frozen=True)
class StockReconciliation:
    """
    COGS check for a period.

    `status` is one of NO_STOCK_DATA, MISSING_STOCK_DETAILS, COGS_MISMATCH
    or VALIDATED.
    """

    opening_stock: float
    closing_stock: float
    purchases: float
    existing_cogs: float
    calculated_cogs: float
    cogs_variance: float
    stock_entries: int
    status: str

    @property
    def has_complete_stock_data(self) -> bool:
        return self.opening_stock > 0 and self.closing_stock > 0


@dataclass(frozen=True)
class PeriodReadiness:
    is_ready: bool
    statistics: MappingStatistics
    has_assets: bool = False
    has_liabilities: bool = False
    has_equity: bool = False
    has_revenue: bool = False
    has_expenses: bool = False
    warnings: list[str] = field(default_factory=list)
    guidance: Optional[str] = None


def mapping_statistics(store: Store, period_id: int) -> MappingStatistics:
    """Distinct ledger names of a period and how many of them are mapped."""
    entries = load_ledger_entries(store, period_id)
    names = set(entries["ledger_name"])
    mapped = len(names & mapped_ledger_names(store, period_id))
    total = len(names)
    pct = round(mapped / total * 100.0, 2) if total else 0.0
    return MappingStatistics(
        total_ledgers=total, mapped_ledgers=mapped, completion_percentage=pct
    )


def _sum_matching(
    df: pd.DataFrame, pattern: str, exclude: Optional[str] = None
) -> float:
    names = df["ledger_name"]
    mask = names.str.contains(pattern, case=False, regex=True)
    if exclude:
        mask &= ~names.str.contains(exclude, case=False, regex=True)
    return round(float(df.loc[mask, "closing_balance"].sum()), 2)


def stock_reconciliation(store: Store, period_id: int) -> StockReconciliation:
    """Recompute COGS from the stock ledgers of a period."""
    df = load_ledger_entries(store, period_id)

    opening = _sum_matching(df, _OPENING_STOCK)
    closing = _sum_matching(df, _CLOSING_STOCK)
    purchases = _sum_matching(df, _PURCHASES, exclude=_RETURNS)
    existing = _sum_matching(df, _COGS)
    is_stock = df["ledger_name"].str.contains(_STOCK, case=False, regex=True)
    stock_entries = int(is_stock.sum())

    calculated = round(opening + purchases - closing, 2)
    variance = round(calculated - existing, 2)

    if stock_entries == 0:
        status = "NO_STOCK_DATA"
    elif opening == 0 and closing == 0:
        status = "MISSING_STOCK_DETAILS"
    elif abs(variance) > abs(calculated) * COGS_TOLERANCE:
        status = "COGS_MISMATCH"
    else:
        status = "VALIDATED"

    return StockReconciliation(
        opening_stock=opening,
        closing_stock=closing,
        purchases=purchases,
        existing_cogs=existing,
        calculated_cogs=calculated,
        cogs_variance=variance,
        stock_entries=stock_entries,
        status=status,
    )


def _mapped_kinds(store: Store, period_id: int) -> set[str]:
    mapped_ids = {
        int(r["master_item_id"])
        for r in store.select(
            "mappings", {"period_id": period_id}, columns=["master_item_id"]
        )
    }
    if not mapped_ids:
        return set()
    items = store.select(
        "line_items",
        {"id": sorted(mapped_ids)},
        columns=["report_section", "report_type"],
    )
    return {section_kind(r["report_section"], r["report_type"]) for r in items}


def period_readiness(store: Store, period_id: int) -> PeriodReadiness:
    """
    Decide whether a period can be reported on.

    A period is ready when at least 80 % of its ledger names are mapped and
    assets, liabilities and revenue are all represented. Otherwise
    `guidance` tells the user what to do next.
    """
    stats = mapping_statistics(store, period_id)
    if get_period(store, period_id) is None or stats.total_ledgers == 0:
        return PeriodReadiness(
            is_ready=False,
            statistics=stats,
            warnings=["No ledger entries uploaded for this period"],
            guidance=GUIDANCE_UPLOAD,
        )

    kinds = _mapped_kinds(store, period_id)
    has_assets = bool(kinds & {"current_assets", "non_current_assets"})
    has_liabilities = bool(kinds & {"current_liabilities", "non_current_liabilities"})
    has_revenue = "revenue" in kinds

    warnings: list[str] = []
    if stats.completion_percentage < READY_MAPPING_PERCENTAGE:
        warnings.append(
            f"Less than 80% of entries are mapped ({stats.completion_percentage:.1f}%)"
        )
    if not has_assets:
        warnings.append("No asset accounts mapped")
    if not has_liabilities:
        warnings.append("No liability accounts mapped")
    if not has_revenue:
        warnings.append("No revenue accounts mapped")

    is_ready = not warnings
    if not is_ready:
        logger.info("Period #%s not ready: %s", period_id, "; ".join(warnings))

    return PeriodReadiness(
        is_ready=is_ready,
        statistics=stats,
        has_assets=has_assets,
        has_liabilities=has_liabilities,
        has_equity="equity" in kinds,
        has_revenue=has_revenue,
        has_expenses="expenses" in kinds,
        warnings=warnings,
        guidance=None if is_ready else GUIDANCE_MAPPING,
    )
