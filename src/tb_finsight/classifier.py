# TB FinSight - Trial Balance Reporting & Ratio Analysis for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Rule-based account classifier.

Given canonical ledger entries and the Schedule III taxonomy, `suggest`
proposes one target line item per distinct ledger name, with a confidence
score and a human-readable reasoning. It works without any AI backend and
is fully deterministic.

Algorithm
---------
1. Determine the entry's account type. Extractor rows carry one; plain CSV
   rows arrive as OTHER, in which case the type is inferred from the ledger
   group, category or name ("Sundry Creditors" -> LIABILITIES).
2. Keep the taxonomy items whose report section textually implies that type:

       ASSETS      -> section contains "ASSET"
       LIABILITIES -> section contains "LIABILIT" (Liability / Liabilities)
       EQUITY      -> section contains "EQUITY"
       REVENUE     -> section contains "INCOME" or "REVENUE"
       EXPENSES    -> section contains "EXPENSE" or "EXPENDITURE"

3. When the entry's category or group names a current / non-current split
   that matches some of those sections, narrow the candidates to them.
4. Pick the first remaining item by display order.

Confidence is the entry's own classifier confidence when present, otherwise
the configured moderate default (0.6). Suggestions are returned sorted by
confidence (highest first), then by ledger name.

This module has no side effects; persisting suggestions is the job of
mapping_service.py.
"""

import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Optional, Union

from .io import LedgerEntry
from .mapping import LineItem, Taxonomy

logger = logging.getLogger(__name__)

DEFAULT_CONFIDENCE = 0.6

SECTION_KEYWORDS: dict[str, tuple[str, ...]] = {
    "ASSETS": ("ASSET",),
    "LIABILITIES": ("LIABILIT",),
    "EQUITY": ("EQUITY",),
    "REVENUE": ("INCOME", "REVENUE"),
    "EXPENSES": ("EXPENSE", "EXPENDITURE"),
}

# Ordered: the first pattern found in the text decides the account type.
_TYPE_HINTS: tuple[tuple[re.Pattern[str], str], ...] = tuple(
    (re.compile(pattern), account_type)
    for pattern, account_type in (
        (r"\(ASSETS?\)", "ASSETS"),
        (r"\(LIABILIT", "LIABILITIES"),
        (r"PREPAID", "ASSETS"),
        (r"INTEREST ON|CHARGES", "EXPENSES"),
        (r"LIABILIT", "LIABILITIES"),
        (r"CREDITOR", "LIABILITIES"),
        (r"PAYABLE", "LIABILITIES"),
        (r"OUTSTANDING", "LIABILITIES"),
        (r"LOAN", "LIABILITIES"),
        (r"BORROWING", "LIABILITIES"),
        (r"OVERDRAFT|\bOD\b", "LIABILITIES"),
        (r"DUTIES|PROVISION", "LIABILITIES"),
        (r"CAPITAL|RESERVE|RETAINED|SURPLUS", "EQUITY"),
        (r"SALES|REVENUE|INCOME", "REVENUE"),
        (r"EXPENSE|EXPENDITURE|PURCHASE|CONSUMPTION", "EXPENSES"),
        (r"SALARY|WAGES|RENT\b|DEPRECIATION|FEES", "EXPENSES"),
        (r"ASSET|CASH|BANK|DEBTOR|RECEIVABLE|STOCK|INVENTOR|DEPOSIT", "ASSETS"),
        (r"ADVANCE|BUILDING|MACHINERY|EQUIPMENT|VEHICLE|FURNITURE", "ASSETS"),
    )
)

_NON_CURRENT = re.compile(r"NON[- ]?CURRENT|FIXED|LONG[- ]TERM")
_CURRENT = re.compile(r"CURRENT|SHORT[- ]TERM")


@dataclass(frozen=True)
class Suggestion:
    """A proposed mapping of one ledger name to one line item."""

    ledger_name: str
    suggested_item_id: int
    confidence: float
    reasoning: str


def section_matches(account_type: str, report_section: str) -> bool:
    """True when `report_section` textually implies `account_type`."""
    keywords = SECTION_KEYWORDS.get(account_type.upper(), ())
    section = report_section.upper()
    return any(k in section for k in keywords)


def infer_account_type(entry: LedgerEntry) -> Optional[tuple[str, str]]:
    """
    Infer the account type of an OTHER entry.

    The parent group is tried first, then the account category, then the
    ledger name. Returns ``(account_type, source_description)`` or None.
    """
    candidates = (
        ("parent group", entry.parent_group),
        ("category", entry.account_category),
        ("ledger name", entry.ledger_name),
    )
    for label, text in candidates:
        if not text:
            continue
        upper = text.upper()
        for pattern, account_type in _TYPE_HINTS:
            if pattern.search(upper):
                return account_type, f"{label} {text!r}"
    return None


def _narrow_by_term(entry: LedgerEntry, items: list[LineItem]) -> list[LineItem]:
    """Prefer current / non-current sections named by the entry's grouping."""
    hint = " ".join(t for t in (entry.account_category, entry.parent_group) if t)
    hint = hint.upper()
    if not hint:
        return items

    if _NON_CURRENT.search(hint):
        narrowed = [i for i in items if _NON_CURRENT.search(i.report_section.upper())]
    elif _CURRENT.search(hint):
        narrowed = [
            i
            for i in items
            if _CURRENT.search(i.report_section.upper())
            and not _NON_CURRENT.search(i.report_section.upper())
        ]
    else:
        return items
    return narrowed or items


def classify_entry(
    entry: LedgerEntry,
    taxonomy: Taxonomy,
    default_confidence: float = DEFAULT_CONFIDENCE,
) -> Optional[Suggestion]:
    """Return the suggestion for one entry, or None if nothing matches."""
    account_type = entry.account_type.upper()
    reasons: list[str] = []
    confidence = entry.confidence
    if confidence is None:
        confidence = default_confidence

    if account_type == "OTHER" or account_type not in SECTION_KEYWORDS:
        inferred = infer_account_type(entry)
        if inferred is None:
            logger.debug("No account type for %r, no suggestion", entry.ledger_name)
            return None
        account_type, source = inferred
        reasons.append(f"Inferred account type {account_type} from {source}")
        confidence = default_confidence

    candidates = [
        item for item in taxonomy if section_matches(account_type, item.report_section)
    ]
    if not candidates:
        return None

    candidates = _narrow_by_term(entry, candidates)
    best = min(candidates, key=lambda i: (i.display_order, i.id))

    reasons.append(f'Account type "{account_type}" matches "{best.report_section}"')
    if entry.account_category:
        reasons.append(
            f'Category "{entry.account_category}" aligns with classification'
        )
    if entry.confidence is not None and entry.confidence > 0.8:
        reasons.append(f"High classifier confidence ({round(entry.confidence * 100)}%)")

    return Suggestion(
        ledger_name=entry.ledger_name,
        suggested_item_id=best.id,
        confidence=float(confidence),
        reasoning="; ".join(reasons),
    )


def suggest(
    entries: Iterable[LedgerEntry],
    taxonomy: Union[Taxonomy, Iterable[LineItem]],
    default_confidence: float = DEFAULT_CONFIDENCE,
) -> list[Suggestion]:
    """
    Propose one mapping per distinct ledger name.

    Args:
        entries: Canonical ledger entries (duplicates allowed; the first
            occurrence of a ledger name is used).
        taxonomy: Target line items. An empty taxonomy yields [].
        default_confidence: Confidence for entries without their own.

    Returns:
        Suggestions sorted by confidence (desc) then ledger name.
    """
    if not isinstance(taxonomy, Taxonomy):
        taxonomy = Taxonomy(list(taxonomy))
    if not len(taxonomy):
        logger.info("No taxonomy loaded, no suggestions")
        return []

    seen: set[str] = set()
    suggestions: list[Suggestion] = []
    for entry in entries:
        if entry.ledger_name in seen:
            continue
        seen.add(entry.ledger_name)
        suggestion = classify_entry(entry, taxonomy, default_confidence)
        if suggestion is not None:
            suggestions.append(suggestion)

    suggestions.sort(key=lambda s: (-s.confidence, s.ledger_name))
    return suggestions


def reject_suggestion(
    suggestions: Iterable[Suggestion], ledger_name: str
) -> list[Suggestion]:
    """Return the working set without the suggestion for `ledger_name`."""
    return [s for s in suggestions if s.ledger_name != ledger_name]
