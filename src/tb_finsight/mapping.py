# TB FinSight - Trial Balance Reporting & Ratio Analysis for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Schedule III taxonomy for TB FinSight.

The taxonomy is the fixed set of target line items that ledger accounts are
mapped to (e.g. "Trade Receivables" under "Current Assets"). It is reference
data: defined once in a CSV file and seeded into the `line_items` table.

A taxonomy CSV defines, for each line item:
- its id and a stable code,
- its display name,
- the report it belongs to (BALANCE_SHEET or PROFIT_LOSS),
- its report section and optional sub-section,
- its display order,
- and optionally a measure tag (e.g. "inventory", "cost_of_goods_sold")
  used by the engine to build the measures that feed ratio formulas.

This module exposes:
- LineItem:  Representation of a single taxonomy node.
- Taxonomy:  Container for all line items, with lookup helpers.
- seed_line_items / load_taxonomy: persistence helpers.
"""

import logging
from dataclasses import dataclass
from typing import Any, Optional

import pandas as pd

from .db import Store

logger = logging.getLogger(__name__)

REPORT_TYPES: tuple[str, ...] = ("BALANCE_SHEET", "PROFIT_LOSS")

_REQUIRED_COLUMNS = {
    "id",
    "code",
    "display_name",
    "report_type",
    "report_section",
    "display_order",
}


@dataclass(frozen=True)
class LineItem:
    """Definition of a single Schedule III line item.

    Attributes:
        id: Unique integer identifier (referenced by mappings).
        code: Stable short code (e.g. 'CA-TR').
        display_name: Human-readable label (e.g. 'Trade Receivables').
        report_type: 'BALANCE_SHEET' or 'PROFIT_LOSS'.
        report_section: Section heading (e.g. 'Current Assets').
        report_sub_section: Optional sub-heading (e.g. 'Financial Assets').
        display_order: Ordering hint used when rendering statements.
        measure: Optional measure tag consumed by the ratio engine.
    """

    id: int
    code: str
    display_name: str
    report_type: str
    report_section: str
    report_sub_section: Optional[str]
    display_order: int
    measure: str = ""


def _optional_str(value: Any) -> Optional[str]:
    if value is None or pd.isna(value):
        return None
    text = str(value).strip()
    return text or None


class Taxonomy:
    """In-memory representation of the line item taxonomy."""

    def __init__(self, items: list[LineItem]):
        self.items: list[LineItem] = sorted(
            items, key=lambda i: (i.display_order, i.id)
        )
        self._by_id = {i.id: i for i in self.items}
        if len(self._by_id) != len(self.items):
            raise ValueError("Duplicate line item id in taxonomy.")

    def __len__(self) -> int:
        return len(self.items)

    def __iter__(self):
        return iter(self.items)

    def get(self, item_id: int) -> Optional[LineItem]:
        return self._by_id.get(int(item_id))

    def sections(self, report_type: Optional[str] = None) -> list[str]:
        """Section names in display order (first occurrence wins)."""
        seen: list[str] = []
        for item in self.items:
            if report_type and item.report_type != report_type:
                continue
            if item.report_section not in seen:
                seen.append(item.report_section)
        return seen

    @staticmethod
    def from_dataframe(df: pd.DataFrame) -> "Taxonomy":
        """Build a Taxonomy from a DataFrame with the taxonomy columns."""
        missing = _REQUIRED_COLUMNS.difference(df.columns)
        if missing:
            cols = ", ".join(sorted(missing))
            raise ValueError(f"Taxonomy is missing required column(s): {cols}")

        items: list[LineItem] = []
        for _, r in df.iterrows():
            report_type = str(r["report_type"]).strip().upper()
            if report_type not in REPORT_TYPES:
                raise ValueError(
                    f"Invalid report_type {r['report_type']!r} for line item {r['id']}"
                )
            items.append(
                LineItem(
                    id=int(r["id"]),
                    code=str(r["code"]).strip(),
                    display_name=str(r["display_name"]).strip(),
                    report_type=report_type,
                    report_section=str(r["report_section"]).strip(),
                    report_sub_section=_optional_str(r.get("report_sub_section")),
                    display_order=int(r["display_order"]),
                    measure=_optional_str(r.get("measure")) or "",
                )
            )
        return Taxonomy(items)

    @staticmethod
    def from_csv(path) -> "Taxonomy":
        """Load a Taxonomy directly from a CSV file."""
        df = pd.read_csv(path, dtype={"code": str})
        df.columns = [c.strip() for c in df.columns]
        return Taxonomy.from_dataframe(df)


def seed_line_items(store: Store, taxonomy: Taxonomy) -> int:
    """
    Insert or refresh the taxonomy in the `line_items` table.

    Seeding is idempotent: existing ids are updated with the CSV values.
    Returns the number of rows written.
    """
    rows = [
        {
            "id": i.id,
            "code": i.code,
            "display_name": i.display_name,
            "report_type": i.report_type,
            "report_section": i.report_section,
            "report_sub_section": i.report_sub_section,
            "display_order": i.display_order,
            "measure": i.measure or None,
        }
        for i in taxonomy
    ]
    written = store.upsert("line_items", rows, conflict_keys=["id"])
    logger.info("Seeded %d line items", written)
    return written


def load_taxonomy(store: Store) -> Taxonomy:
    """Load the taxonomy stored in the database (possibly empty)."""
    rows = store.select("line_items", order_by=["display_order", "id"])
    if not rows:
        return Taxonomy([])
    return Taxonomy.from_dataframe(pd.DataFrame(rows))
