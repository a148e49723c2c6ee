# TB FinSight - Trial Balance Reporting & Ratio Analysis for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
High-level mapping service for TB FinSight.

This module sits between the pure classifier (classifier.py) and the
database layer (db.py). It is responsible for:

- generating suggestions for the ledger names of a period that are not
  mapped yet,
- bulk-applying suggestions above a confidence threshold, atomically and
  idempotently (insert-or-skip on (tally_ledger_name, period_id)),
- manual mapping operations: apply (delete + insert, never update in place)
  and remove,
- listing the mappings of a period with their line item details.

Mappings are always scoped to a period. When no period id is given, the
latest period is used; when no period exists at all, `NoPeriodError` is
raised before anything is written.
"""

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Optional

import pandas as pd

from .classifier import DEFAULT_CONFIDENCE, Suggestion, suggest
from .db import Store, _now_utc_iso, load_ledger_entries
from .io import LedgerEntry
from .mapping import Taxonomy, load_taxonomy
from .periods import require_period

logger = logging.getLogger(__name__)

DEFAULT_AUTO_APPLY_THRESHOLD = 0.8


@dataclass(frozen=True)
class MappingRecord:
    """A stored mapping of one ledger name to one line item for a period."""

    id: int
    tally_ledger_name: str
    master_item_id: int
    period_id: int
    source: str
    confidence: Optional[float]


def entries_from_frame(df: pd.DataFrame) -> list[LedgerEntry]:
    """Rebuild LedgerEntry objects from `db.load_ledger_entries` output."""
    entries: list[LedgerEntry] = []
    for row in df.itertuples(index=False):
        confidence = None if pd.isna(row.confidence) else float(row.confidence)
        parent_group = None if pd.isna(row.parent_group) else str(row.parent_group)
        entries.append(
            LedgerEntry(
                ledger_name=str(row.ledger_name),
                debit=float(row.debit),
                credit=float(row.credit),
                closing_balance=float(row.closing_balance),
                account_type=str(row.account_type),
                account_category=str(row.account_category or ""),
                confidence=confidence,
                parent_group=parent_group,
            )
        )
    return entries


def mapped_ledger_names(store: Store, period_id: int) -> set[str]:
    rows = store.select(
        "mappings", {"period_id": period_id}, columns=["tally_ledger_name"]
    )
    return {r["tally_ledger_name"] for r in rows}


def unmapped_ledger_names(store: Store, period_id: int) -> list[str]:
    """Distinct ledger names of the period without a mapping, sorted."""
    df = load_ledger_entries(store, period_id)
    mapped = mapped_ledger_names(store, period_id)
    return sorted(set(df["ledger_name"]) - mapped)


def suggest_for_period(
    store: Store,
    period_id: Optional[int] = None,
    *,
    taxonomy: Optional[Taxonomy] = None,
    default_confidence: float = DEFAULT_CONFIDENCE,
) -> list[Suggestion]:
    """
    Suggest mappings for the unmapped ledger names of a period.

    Raises
    ------
    NoPeriodError
        If no period can be resolved.
    """
    period = require_period(store, period_id)
    if taxonomy is None:
        taxonomy = load_taxonomy(store)

    mapped = mapped_ledger_names(store, period.id)
    entries = [
        e
        for e in entries_from_frame(load_ledger_entries(store, period.id))
        if e.ledger_name not in mapped
    ]
    suggestions = suggest(entries, taxonomy, default_confidence)
    logger.info(
        "%d suggestion(s) for %d unmapped entries in %s",
        len(suggestions),
        len(entries),
        period.period_name,
    )
    return suggestions


def apply_suggestions(
    store: Store,
    suggestions: Iterable[Suggestion],
    period_id: Optional[int] = None,
    threshold: float = DEFAULT_AUTO_APPLY_THRESHOLD,
) -> int:
    """
    Bulk-apply every suggestion with ``confidence >= threshold``.

    All inserts run in a single transaction: either every selected mapping
    is written or none is. Ledger names already mapped for the period are
    skipped, so applying the same suggestions twice is a no-op.

    Returns
    -------
    int
        Number of mappings actually inserted.

    Raises
    ------
    ValueError
        If `threshold` is outside [0, 1].
    NoPeriodError
        If no period can be resolved (nothing is written).
    BackendError
        If the database rejects the batch (e.g. unknown line item); the
        transaction is rolled back.
    """
    if not 0.0 <= threshold <= 1.0:
        raise ValueError(f"threshold must be between 0 and 1, got {threshold}")

    period = require_period(store, period_id)
    created_at = _now_utc_iso()
    rows = [
        {
            "tally_ledger_name": s.ledger_name,
            "master_item_id": int(s.suggested_item_id),
            "period_id": period.id,
            "source": "auto",
            "confidence": float(s.confidence),
            "created_at": created_at,
        }
        for s in suggestions
        if s.confidence >= threshold
    ]
    if not rows:
        return 0

    with store.transaction():
        applied = store.upsert(
            "mappings",
            rows,
            conflict_keys=["tally_ledger_name", "period_id"],
            update=False,
        )

    logger.info(
        "Applied %d of %d suggestion(s) at threshold %.2f for %s",
        applied,
        len(rows),
        threshold,
        period.period_name,
    )
    return applied


def apply_mapping(
    store: Store,
    ledger_name: str,
    master_item_id: int,
    period_id: Optional[int] = None,
) -> MappingRecord:
    """
    Manually map `ledger_name` to a line item for a period.

    An existing mapping for the same ledger name is replaced (delete then
    insert, in one transaction).

    Raises
    ------
    ValueError
        If the ledger name is empty or the line item does not exist.
    NoPeriodError
        If no period can be resolved.
    """
    name = (ledger_name or "").strip()
    if not name:
        raise ValueError("ledger_name cannot be empty.")

    period = require_period(store, period_id)
    if store.select_one("line_items", {"id": int(master_item_id)}) is None:
        raise ValueError(f"Line item #{master_item_id} does not exist.")

    with store.transaction():
        store.delete("mappings", {"tally_ledger_name": name, "period_id": period.id})
        (new_id,) = store.insert(
            "mappings",
            [
                {
                    "tally_ledger_name": name,
                    "master_item_id": int(master_item_id),
                    "period_id": period.id,
                    "source": "manual",
                    "confidence": None,
                    "created_at": _now_utc_iso(),
                }
            ],
        )

    logger.info(
        "Mapped %r to line item #%s in %s", name, master_item_id, period.period_name
    )
    return MappingRecord(
        id=new_id,
        tally_ledger_name=name,
        master_item_id=int(master_item_id),
        period_id=period.id,
        source="manual",
        confidence=None,
    )


def remove_mapping(
    store: Store, ledger_name: str, period_id: Optional[int] = None
) -> bool:
    """Delete the mapping of `ledger_name`. Returns False if there was none."""
    period = require_period(store, period_id)
    removed = store.delete(
        "mappings", {"tally_ledger_name": ledger_name.strip(), "period_id": period.id}
    )
    return removed > 0


def list_mappings(store: Store, period_id: Optional[int] = None) -> pd.DataFrame:
    """
    Mappings of a period joined with their line items.

    Columns: tally_ledger_name, master_item_id, code, display_name,
    report_section, source, confidence. Sorted by display order, then
    ledger name.
    """
    columns = [
        "tally_ledger_name",
        "master_item_id",
        "code",
        "display_name",
        "report_section",
        "source",
        "confidence",
    ]
    period = require_period(store, period_id)
    mappings = pd.DataFrame(store.select("mappings", {"period_id": period.id}))
    if mappings.empty:
        return pd.DataFrame(columns=columns)

    items = pd.DataFrame(store.select("line_items")).rename(
        columns={"id": "master_item_id"}
    )
    df = mappings.merge(items, on="master_item_id", how="left")
    df = df.sort_values(["display_order", "tally_ledger_name"], kind="stable")
    return df[columns].reset_index(drop=True)
