# TB FinSight - Trial Balance Reporting & Ratio Analysis for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
View utilities for TB FinSight.

This module turns engine and ratio results into pandas DataFrames ready for
display or CSV export:

- statement_view:  balance sheet or profit & loss, with one header row and
                   one total row per category, immaterial items hidden,
- cash_flow_view:  balance sheet lines grouped by activity,
- ratios_to_dataframe / suggestions_to_dataframe: flat tables.

Formatting helpers (`format_inr`, `format_percentage`) are for human display
only; amounts in DataFrames stay numeric. `export_csv` writes files with
every field double-quoted.
"""

import csv
import math
from collections.abc import Iterable
from pathlib import Path
from typing import Optional, Union

import pandas as pd

from .classifier import Suggestion
from .engine import (
    CashFlowLine,
    LineItemTotal,
    cash_flow_totals,
    category_totals,
    filter_material,
)
from .mapping import Taxonomy
from .ratios import RatioResult

STATEMENT_COLUMNS = [
    "display_order",
    "row_type",
    "code",
    "name",
    "current_amount",
    "previous_amount",
    "variance",
    "variance_percentage",
]


def _group_indian(digits: str) -> str:
    """Group an integer digit string the Indian way: 12,34,56,789."""
    if len(digits) <= 3:
        return digits
    head, tail = digits[:-3], digits[-3:]
    groups = []
    while len(head) > 2:
        groups.insert(0, head[-2:])
        head = head[:-2]
    if head:
        groups.insert(0, head)
    return ",".join(groups) + "," + tail


def format_inr(amount: float, decimals: int = 0) -> str:
    """
    Format an amount in rupees with Indian digit grouping.

    >>> format_inr(123456789)
    '₹12,34,56,789'
    >>> format_inr(-1500.5, decimals=2)
    '-₹1,500.50'
    """
    if amount is None or (isinstance(amount, float) and math.isnan(amount)):
        return ""
    text = f"{abs(amount):.{decimals}f}"
    integer, _, fraction = text.partition(".")
    grouped = _group_indian(integer)
    if fraction:
        grouped = f"{grouped}.{fraction}"
    sign = "-" if round(amount, decimals) < 0 else ""
    return f"{sign}₹{grouped}"


def format_percentage(pct: float, decimals: int = 1) -> str:
    """Signed percentage, e.g. '+11.1%'."""
    if pct is None or math.isnan(pct):
        return ""
    return f"{pct:+.{decimals}f}%"


def _renumber_display_order(df: pd.DataFrame) -> pd.DataFrame:
    df = df.reset_index(drop=True)
    df["display_order"] = (df.index + 1) * 10
    return df


def _item_row(t: LineItemTotal) -> dict[str, object]:
    return {
        "row_type": "item",
        "code": t.item_code,
        "name": t.item_name,
        "current_amount": t.current_amount,
        "previous_amount": t.previous_amount,
        "variance": t.variance,
        "variance_percentage": round(t.variance_percentage, 2),
    }


def statement_view(
    totals: Iterable[LineItemTotal],
    report_type: str,
    materiality_threshold: float = 0.0,
    show_immaterial: bool = False,
) -> pd.DataFrame:
    """
    Build a statement table for one report type.

    Category totals always include immaterial items; only the item rows
    are hidden.
    """
    totals = [t for t in totals if t.report_type == report_type]
    if not totals:
        return pd.DataFrame(columns=STATEMENT_COLUMNS)

    visible = filter_material(totals, materiality_threshold, show_immaterial)
    rows: list[dict[str, object]] = []
    for cat in category_totals(totals):
        rows.append({"row_type": "category", "code": "", "name": cat.category})
        rows.extend(_item_row(t) for t in visible if t.category == cat.category)
        rows.append(
            {
                "row_type": "total",
                "code": "",
                "name": f"Total {cat.category}",
                "current_amount": cat.current_amount,
                "previous_amount": cat.previous_amount,
                "variance": cat.variance,
                "variance_percentage": round(cat.variance_percentage, 2),
            }
        )

    df = _renumber_display_order(pd.DataFrame(rows))
    return df.reindex(columns=STATEMENT_COLUMNS)


def cash_flow_view(lines: Iterable[CashFlowLine]) -> pd.DataFrame:
    """Activity header, item rows and activity total for each activity."""
    lines = list(lines)
    if not lines:
        return pd.DataFrame(columns=["activity", *STATEMENT_COLUMNS])

    sums = cash_flow_totals(lines)
    rows: list[dict[str, object]] = []
    for activity, total in sums.items():
        members = [line.total for line in lines if line.activity == activity]
        if not members:
            continue
        label = activity.title()
        rows.append(
            {
                "activity": activity,
                "row_type": "category",
                "code": "",
                "name": f"{label} Activities",
            }
        )
        rows.extend({"activity": activity, **_item_row(t)} for t in members)
        rows.append(
            {
                "activity": activity,
                "row_type": "total",
                "code": "",
                "name": f"Net {label} Activities",
                "current_amount": total,
            }
        )

    df = _renumber_display_order(pd.DataFrame(rows))
    return df.reindex(columns=["activity", *STATEMENT_COLUMNS])


def ratios_to_dataframe(ratios: list[RatioResult], decimals: int = 2) -> pd.DataFrame:
    """
    Convert a list of RatioResult objects into a pandas DataFrame.

    Columns: ratio_name, category, value, unit, target, benchmark,
    industry_average, status, trend, custom_benchmark. Rows follow the
    ratio display order.
    """
    columns = [
        "ratio_name",
        "category",
        "value",
        "unit",
        "target",
        "benchmark",
        "industry_average",
        "status",
        "trend",
        "custom_benchmark",
    ]
    if not ratios:
        return pd.DataFrame(columns=columns)

    rows = [
        {
            "ratio_name": r.ratio_name,
            "category": r.ratio_category,
            "value": round(r.calculated_value, decimals),
            "unit": r.unit,
            "target": r.target_value,
            "benchmark": r.benchmark_value,
            "industry_average": r.industry_average,
            "status": r.performance_status,
            "trend": r.trend_direction,
            "custom_benchmark": r.has_custom_benchmark,
            "_order": r.display_order,
        }
        for r in ratios
    ]
    df = pd.DataFrame(rows).sort_values(["_order", "ratio_name"], kind="stable")
    return df[columns].reset_index(drop=True)


def suggestions_to_dataframe(
    suggestions: list[Suggestion], taxonomy: Optional[Taxonomy] = None
) -> pd.DataFrame:
    """Suggestions with the target line item's code and name when known."""
    columns = [
        "ledger_name",
        "suggested_item_id",
        "code",
        "display_name",
        "confidence",
        "reasoning",
    ]
    rows = []
    for s in suggestions:
        item = taxonomy.get(s.suggested_item_id) if taxonomy is not None else None
        rows.append(
            {
                "ledger_name": s.ledger_name,
                "suggested_item_id": s.suggested_item_id,
                "code": item.code if item else "",
                "display_name": item.display_name if item else "",
                "confidence": s.confidence,
                "reasoning": s.reasoning,
            }
        )
    return pd.DataFrame(rows, columns=columns)


def export_csv(
    df: pd.DataFrame,
    path: Union[str, Path],
    title: Optional[str] = None,
) -> Path:
    """
    Write `df` as CSV with every field double-quoted.

    When `title` is given it is written as a first, single-field line.
    Parent directories are created as needed.
    """
    out = Path(path)
    out.parent.mkdir(parents=True, exist_ok=True)
    with out.open("w", encoding="utf-8", newline="") as fh:
        if title:
            csv.writer(fh, quoting=csv.QUOTE_ALL).writerow([title])
        df.to_csv(fh, index=False, quoting=csv.QUOTE_ALL)
    return out
