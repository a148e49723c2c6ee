# TB FinSight - Trial Balance Reporting & Ratio Analysis for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Core aggregation engine for TB FinSight.

This module turns a period's mapped ledger entries into statement lines and
the measures used by the ratio engine.

1. Line item aggregation
   ---------------------
   `aggregate()` joins the period's mappings to its ledger entries on the
   ledger name, groups by target line item and sums the closing balances
   (the line item's net amount). When a comparison period is given, the same
   grouping is computed for it and each current line item gets:

       previous_amount     = comparison net amount (0 when absent)
       variance            = current - previous
       variance_percentage = variance / |previous| * 100, or 0 when
                             previous is 0 (no prior value, not infinity)

   Without a comparison period all three are 0.

   Only line items present in the current period are returned, ordered by
   display order. Aggregation is read-only and therefore idempotent.

2. Category totals and materiality
   --------------------------------
   `category_totals()` sums line items per report section (one level, no
   deeper hierarchy). `filter_material()` hides items whose absolute amount
   is below the materiality threshold (default 10 lakhs) unless asked to
   show them; nothing is ever deleted.

3. Measures
   --------
   `build_measures()` converts line item totals into named measures
   (current_assets, total_equity, revenue, net_profit, ...). Balances are
   stored debit-positive, so credit-normal sections (liabilities, equity,
   revenue) are sign-flipped to give natural positive figures.

4. Cash flow grouping
   ------------------
   `cash_flow()` classifies balance sheet lines into operating (current
   assets and liabilities), investing (non-current assets) and financing
   (non-current liabilities and equity) activities.
"""

import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Optional

import pandas as pd

from .db import Store, load_ledger_entries

logger = logging.getLogger(__name__)

DEFAULT_MATERIALITY_THRESHOLD = 1_000_000.0

_NON_CURRENT = re.compile(r"NON[- ]?CURRENT|FIXED|LONG[- ]TERM")


@dataclass(frozen=True)
class LineItemTotal:
    """
    Aggregated amount of one line item for a period.

    Attributes
    ----------
    item_id, item_code, item_name:
        Identity of the target line item.
    category:
        Report section (e.g. "Current Assets").
    sub_category:
        Optional report sub-section.
    report_type:
        "BALANCE_SHEET" or "PROFIT_LOSS".
    display_order:
        Ordering hint from the taxonomy.
    current_amount, previous_amount:
        Net amounts (sum of closing balances, debit-positive).
    variance, variance_percentage:
        Period-over-period change.
    """

    item_id: int
    item_code: str
    item_name: str
    category: str
    sub_category: Optional[str]
    report_type: str
    display_order: int
    current_amount: float
    previous_amount: float
    variance: float
    variance_percentage: float


@dataclass(frozen=True)
class CategoryTotal:
    category: str
    report_type: str
    current_amount: float
    previous_amount: float
    variance: float
    variance_percentage: float


@dataclass(frozen=True)
class CashFlowLine:
    activity: str  # OPERATING | INVESTING | FINANCING
    total: LineItemTotal


def variance_percentage(current: float, previous: float) -> float:
    """Percentage change against |previous|; 0 when previous is 0."""
    if previous == 0:
        return 0.0
    return (current - previous) / abs(previous) * 100.0


def net_amounts_by_item(store: Store, period_id: int) -> dict[int, float]:
    """
    Sum the closing balances of mapped entries per line item for a period.

    Entries whose ledger name has no mapping are ignored, as are mappings
    whose ledger name has no entry in the period.
    """
    mappings = pd.DataFrame(
        store.select(
            "mappings",
            {"period_id": period_id},
            columns=["tally_ledger_name", "master_item_id"],
        ),
        columns=["tally_ledger_name", "master_item_id"],
    )
    if mappings.empty:
        return {}

    entries = load_ledger_entries(store, period_id)[["ledger_name", "closing_balance"]]
    merged = mappings.merge(
        entries, left_on="tally_ledger_name", right_on="ledger_name", how="inner"
    )
    if merged.empty:
        return {}

    grouped = merged.groupby("master_item_id")["closing_balance"].sum()
    return {int(k): round(float(v), 2) for k, v in grouped.items()}


def aggregate(
    store: Store,
    period_id: int,
    comparison_period_id: Optional[int] = None,
) -> list[LineItemTotal]:
    """
    Aggregate a period's mapped entries into line item totals.

    Args:
        store: Open database store.
        period_id: Period to report on.
        comparison_period_id: Optional period used for variance.

    Returns:
        One LineItemTotal per line item with mapped entries in the current
        period, ordered by display order. Empty when nothing is mapped.
    """
    current = net_amounts_by_item(store, period_id)
    if not current:
        return []

    previous: dict[int, float] = {}
    if comparison_period_id is not None:
        previous = net_amounts_by_item(store, comparison_period_id)

    items = {
        int(r["id"]): r
        for r in store.select("line_items", {"id": list(current.keys())})
    }

    totals: list[LineItemTotal] = []
    for item_id, amount in current.items():
        item = items[item_id]
        prev = previous.get(item_id, 0.0)
        if comparison_period_id is None:
            variance, pct = 0.0, 0.0
        else:
            variance = round(amount - prev, 2)
            pct = variance_percentage(amount, prev)
        totals.append(
            LineItemTotal(
                item_id=item_id,
                item_code=str(item["code"]),
                item_name=str(item["display_name"]),
                category=str(item["report_section"]),
                sub_category=item["report_sub_section"],
                report_type=str(item["report_type"]),
                display_order=int(item["display_order"]),
                current_amount=amount,
                previous_amount=prev,
                variance=variance,
                variance_percentage=pct,
            )
        )

    totals.sort(key=lambda t: (t.display_order, t.item_id))
    logger.debug("Aggregated %d line items for period #%s", len(totals), period_id)
    return totals


def category_totals(totals: Iterable[LineItemTotal]) -> list[CategoryTotal]:
    """Sum line item totals per category, in first-appearance order."""
    sums: dict[str, list] = {}
    for t in totals:
        entry = sums.setdefault(t.category, [t.report_type, 0.0, 0.0, 0.0])
        entry[1] += t.current_amount
        entry[2] += t.previous_amount
        entry[3] += t.variance

    out: list[CategoryTotal] = []
    for category, (report_type, current, previous, variance) in sums.items():
        current = round(current, 2)
        previous = round(previous, 2)
        out.append(
            CategoryTotal(
                category=category,
                report_type=report_type,
                current_amount=current,
                previous_amount=previous,
                variance=round(variance, 2),
                variance_percentage=variance_percentage(current, previous),
            )
        )
    return out


def is_material(
    total: LineItemTotal, threshold: float = DEFAULT_MATERIALITY_THRESHOLD
) -> bool:
    return abs(total.current_amount) >= threshold


def filter_material(
    totals: Iterable[LineItemTotal],
    threshold: float = DEFAULT_MATERIALITY_THRESHOLD,
    show_immaterial: bool = False,
) -> list[LineItemTotal]:
    """Drop immaterial items from a view unless `show_immaterial` is set."""
    totals = list(totals)
    if show_immaterial:
        return totals
    return [t for t in totals if is_material(t, threshold)]


# ---------------------------------------------------------------------------
# Measures
# ---------------------------------------------------------------------------


def section_kind(category: str, report_type: str) -> str:
    """
    Classify a report section.

    Returns one of: current_assets, non_current_assets, current_liabilities,
    non_current_liabilities, equity, revenue, expenses, other.
    """
    upper = category.upper()
    if report_type == "PROFIT_LOSS":
        if "REVENUE" in upper or "INCOME" in upper:
            return "revenue"
        if "EXPENSE" in upper or "EXPENDITURE" in upper:
            return "expenses"
        return "other"
    if "ASSET" in upper:
        return "non_current_assets" if _NON_CURRENT.search(upper) else "current_assets"
    if "LIABILIT" in upper:
        if _NON_CURRENT.search(upper):
            return "non_current_liabilities"
        return "current_liabilities"
    if "EQUITY" in upper:
        return "equity"
    return "other"


_CREDIT_NORMAL = {"current_liabilities", "non_current_liabilities", "equity", "revenue"}
_ASSET_KINDS = ("current_assets", "non_current_assets")


def _natural(kind: str, amount: float) -> float:
    return -amount if kind in _CREDIT_NORMAL else amount


def build_measures(
    totals: Iterable[LineItemTotal],
    item_measures: Optional[dict[int, str]] = None,
    previous_totals: Optional[Iterable[LineItemTotal]] = None,
) -> dict[str, float]:
    """
    Build the named measures that ratio formulas reference.

    Args:
        totals: Output of `aggregate()`.
        item_measures: Optional {line item id -> measure tag} (the taxonomy
            ``measure`` column), used for inventory, cost_of_goods_sold and
            cash.
        previous_totals: Optional `aggregate()` output of the comparison
            period. Its asset lines are summed as they are, including lines
            absent from the current period.

    Returns:
        A dictionary of float measures. `average_total_assets` averages
        the current and previous total assets when previous amounts exist
        (from `previous_totals`, else from each line's previous_amount),
        otherwise it equals `total_assets`.
    """
    item_measures = item_measures or {}
    current: dict[str, float] = {
        "current_assets": 0.0,
        "non_current_assets": 0.0,
        "current_liabilities": 0.0,
        "non_current_liabilities": 0.0,
        "equity": 0.0,
        "revenue": 0.0,
        "expenses": 0.0,
        "inventory": 0.0,
        "cost_of_goods_sold": 0.0,
        "cash": 0.0,
    }
    previous_total_assets = 0.0
    has_previous = False

    for t in totals:
        kind = section_kind(t.category, t.report_type)
        if kind == "other":
            continue
        current[kind] += _natural(kind, t.current_amount)
        if kind in _ASSET_KINDS:
            previous_total_assets += t.previous_amount
            has_previous = has_previous or t.previous_amount != 0

        tag = item_measures.get(t.item_id)
        if tag in ("inventory", "cost_of_goods_sold", "cash"):
            current[tag] += _natural(kind, t.current_amount)

    if previous_totals is not None:
        previous_total_assets = 0.0
        has_previous = False
        for t in previous_totals:
            if section_kind(t.category, t.report_type) in _ASSET_KINDS:
                previous_total_assets += t.current_amount
                has_previous = has_previous or t.current_amount != 0

    total_assets = current["current_assets"] + current["non_current_assets"]
    total_liabilities = (
        current["current_liabilities"] + current["non_current_liabilities"]
    )
    if has_previous:
        average_total_assets = (total_assets + previous_total_assets) / 2.0
    else:
        average_total_assets = total_assets

    measures = {
        "current_assets": current["current_assets"],
        "non_current_assets": current["non_current_assets"],
        "total_assets": total_assets,
        "average_total_assets": average_total_assets,
        "current_liabilities": current["current_liabilities"],
        "non_current_liabilities": current["non_current_liabilities"],
        "total_liabilities": total_liabilities,
        "total_equity": current["equity"],
        "revenue": current["revenue"],
        "total_expenses": current["expenses"],
        "inventory": current["inventory"],
        "cash": current["cash"],
        "cost_of_goods_sold": current["cost_of_goods_sold"],
        "gross_profit": current["revenue"] - current["cost_of_goods_sold"],
        "net_profit": current["revenue"] - current["expenses"],
    }
    return {k: round(v, 2) for k, v in measures.items()}


def item_measure_tags(store: Store) -> dict[int, str]:
    """{line item id -> measure tag} for tagged taxonomy items."""
    return {
        int(r["id"]): str(r["measure"])
        for r in store.select("line_items", columns=["id", "measure"])
        if r["measure"]
    }


# ---------------------------------------------------------------------------
# Cash flow
# ---------------------------------------------------------------------------

CASH_FLOW_ACTIVITIES: tuple[str, ...] = ("OPERATING", "INVESTING", "FINANCING")


def cash_flow_activity(total: LineItemTotal) -> Optional[str]:
    """Activity of a balance sheet line, or None for P&L lines."""
    kind = section_kind(total.category, total.report_type)
    if kind in ("current_assets", "current_liabilities"):
        return "OPERATING"
    if kind == "non_current_assets":
        return "INVESTING"
    if kind in ("non_current_liabilities", "equity"):
        return "FINANCING"
    return None


def cash_flow(totals: Iterable[LineItemTotal]) -> list[CashFlowLine]:
    """Balance sheet lines grouped by activity, in activity then display order."""
    lines = [
        CashFlowLine(activity=activity, total=t)
        for t in totals
        if (activity := cash_flow_activity(t)) is not None
    ]
    order = {a: i for i, a in enumerate(CASH_FLOW_ACTIVITIES)}
    lines.sort(key=lambda line: (order[line.activity], line.total.display_order))
    return lines


def cash_flow_totals(lines: Iterable[CashFlowLine]) -> dict[str, float]:
    """Sum of current amounts per activity (every activity present)."""
    sums = {a: 0.0 for a in CASH_FLOW_ACTIVITIES}
    for line in lines:
        sums[line.activity] += line.total.current_amount
    return {a: round(v, 2) for a, v in sums.items()}
