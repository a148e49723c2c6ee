# TB FinSight - Trial Balance Reporting & Ratio Analysis for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
I/O module for TB FinSight: the ingestion normalizer.

This module turns raw trial balance rows into canonical ledger entries:

    {ledger_name, debit, credit, closing_balance,
     account_type, account_category, confidence, parent_group}

Expected input formats
----------------------

Two CSV layouts are supported (column names are case-insensitive):

1) Canonical layout
       ledger_name, closing_balance[, parent_group]

2) Tally export layout
       Particulars, Closing Balance[, Debit, Credit]

   ``Particulars`` is an alias for ``ledger_name`` and ``Closing Balance``
   for ``closing_balance``. Explicit ``debit``/``credit`` columns are honored
   in both layouts.

Rows produced by an AI extraction backend are plain mappings with the same
fields plus ``account_type``, ``account_category`` and ``confidence``; they go
through the same `normalize_records` function.

Sign convention
---------------
All amounts are debit-positive: ``closing_balance = debit - credit``.
When only a signed closing balance is provided (or debit and credit are
both zero):

    debit  = max(closing_balance, 0)
    credit = max(-closing_balance, 0)

Validation
----------
Invalid rows never abort a batch. Each one is reported as a ``RowError``
carrying its row number, the original line verbatim and a message.
Blank lines are skipped silently. Duplicate ledger names are allowed.

Amounts must be plain decimals: thousands separators ("1,00,000") are a
display convention only and are rejected here.
"""

import logging
import math
import os
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Optional, Union

import pandas as pd

logger = logging.getLogger(__name__)

ACCOUNT_TYPES: tuple[str, ...] = (
    "ASSETS",
    "LIABILITIES",
    "EQUITY",
    "REVENUE",
    "EXPENSES",
    "OTHER",
)

# Header aliases, keyed by lowercased/stripped source column name.
_COLUMN_ALIASES: dict[str, str] = {
    "ledger_name": "ledger_name",
    "ledger name": "ledger_name",
    "particulars": "ledger_name",
    "closing_balance": "closing_balance",
    "closing balance": "closing_balance",
    "debit": "debit",
    "credit": "credit",
    "parent_group": "parent_group",
    "parent group": "parent_group",
    "group": "parent_group",
}

# Tolerance when checking closing_balance == debit - credit (half a cent).
_BALANCE_TOLERANCE = 0.005


@dataclass(frozen=True)
class LedgerEntry:
    """
    Canonical ledger entry produced by the normalizer.

    Attributes:
        ledger_name: Account name, trimmed, never empty.
        debit: Debit side amount (>= 0).
        credit: Credit side amount (>= 0).
        closing_balance: Signed balance, always equal to debit - credit.
        account_type: One of ACCOUNT_TYPES.
        account_category: Free-text sub-category ("" when unknown).
        confidence: Classifier certainty in [0, 1], or None for CSV rows.
        parent_group: Optional ledger group from the accounting package.
    """

    ledger_name: str
    debit: float
    credit: float
    closing_balance: float
    account_type: str = "OTHER"
    account_category: str = ""
    confidence: Optional[float] = None
    parent_group: Optional[str] = None


@dataclass(frozen=True)
class RowError:
    """A rejected input row: row number, original line verbatim, reason."""

    row: int
    line: str
    message: str


@dataclass
class NormalizationResult:
    """Accepted entries and per-row errors for one batch."""

    entries: list[LedgerEntry] = field(default_factory=list)
    errors: list[RowError] = field(default_factory=list)

    @property
    def accepted(self) -> int:
        return len(self.entries)

    @property
    def rejected(self) -> int:
        return len(self.errors)

    def to_dataframe(self) -> pd.DataFrame:
        """Accepted entries as a DataFrame (one column per LedgerEntry field)."""
        columns = list(LedgerEntry.__dataclass_fields__)
        return pd.DataFrame(
            [e.__dict__ for e in self.entries], columns=columns
        )


class _RowRejected(ValueError):
    """Internal signal carrying the reason a single row is rejected."""


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, float) and math.isnan(value):
        return True
    return isinstance(value, str) and value.strip() == ""


def _parse_amount(value: Any, column: str) -> Optional[float]:
    """Parse an optional amount; blank means absent."""
    if _is_blank(value):
        return None
    if isinstance(value, bool):
        raise _RowRejected(f"{column} must be a number, got {value!r}")
    try:
        amount = float(str(value).strip()) if isinstance(value, str) else float(value)
    except (TypeError, ValueError):
        raise _RowRejected(f"{column} is not a valid number: {value!r}") from None
    if not math.isfinite(amount):
        raise _RowRejected(f"{column} must be a finite number, got {value!r}")
    return amount


def _parse_confidence(value: Any) -> Optional[float]:
    confidence = _parse_amount(value, "confidence")
    if confidence is not None and not 0.0 <= confidence <= 1.0:
        raise _RowRejected(f"confidence must be between 0 and 1, got {value!r}")
    return confidence


def _normalize_account_type(value: Any) -> str:
    if _is_blank(value):
        return "OTHER"
    account_type = str(value).strip().upper()
    if account_type not in ACCOUNT_TYPES:
        logger.debug("Unknown account_type %r coerced to OTHER", value)
        return "OTHER"
    return account_type


def normalize_record(
    record: Mapping[str, Any],
    default_confidence: Optional[float] = None,
) -> LedgerEntry:
    """
    Normalize one raw row into a LedgerEntry.

    Args:
        record: Raw row with at least ``ledger_name`` and either
            ``closing_balance`` or ``debit``/``credit``.
        default_confidence: Confidence used when the record carries none
            (e.g. the overall confidence of an extraction batch).

    Raises:
        ValueError: with a human-readable reason when the row is invalid.
    """
    ledger_name = "" if _is_blank(record.get("ledger_name")) else str(
        record.get("ledger_name")
    ).strip()
    if not ledger_name:
        raise _RowRejected("ledger_name is empty")

    closing = _parse_amount(record.get("closing_balance"), "closing_balance")
    debit = _parse_amount(record.get("debit"), "debit")
    credit = _parse_amount(record.get("credit"), "credit")

    for column, amount in (("debit", debit), ("credit", credit)):
        if amount is not None and amount < 0:
            raise _RowRejected(f"{column} cannot be negative, got {amount}")

    if closing is None and debit is None and credit is None:
        raise _RowRejected("closing_balance is missing")

    # Extractors report "debit": 0, "credit": 0 when they only read a balance.
    split_given = bool(debit) or bool(credit)
    if closing is not None and not split_given:
        debit = max(closing, 0.0)
        credit = max(-closing, 0.0)
    else:
        debit = debit or 0.0
        credit = credit or 0.0
        if closing is None:
            closing = debit - credit
        elif abs(closing - (debit - credit)) > _BALANCE_TOLERANCE:
            raise _RowRejected(
                f"closing_balance {closing} does not equal debit - credit "
                f"({debit} - {credit})"
            )

    confidence = _parse_confidence(record.get("confidence"))
    if confidence is None:
        confidence = default_confidence

    parent_group = record.get("parent_group")
    category = record.get("account_category")

    return LedgerEntry(
        ledger_name=ledger_name,
        debit=debit,
        credit=credit,
        closing_balance=closing,
        account_type=_normalize_account_type(record.get("account_type")),
        account_category="" if _is_blank(category) else str(category).strip(),
        confidence=confidence,
        parent_group=None if _is_blank(parent_group) else str(parent_group).strip(),
    )


def normalize_records(
    records: Iterable[Mapping[str, Any]],
    lines: Optional[Sequence[str]] = None,
    *,
    default_confidence: Optional[float] = None,
    first_row: int = 1,
) -> NormalizationResult:
    """
    Normalize a batch of raw rows, collecting per-row errors.

    Args:
        records: Raw rows (CSV rows or extracted objects).
        lines: Original source lines, aligned with `records`, reported
            verbatim in errors. When omitted, a repr of the record is used.
        default_confidence: See `normalize_record`.
        first_row: Row number of the first record (for error reporting).

    Returns:
        NormalizationResult with accepted entries and RowError items.
    """
    result = NormalizationResult()

    for offset, record in enumerate(records):
        row_number = first_row + offset
        if lines is not None and offset < len(lines):
            line = lines[offset]
        else:
            line = repr(dict(record))

        if all(_is_blank(v) for v in record.values()):
            continue

        try:
            entry = normalize_record(record, default_confidence=default_confidence)
        except _RowRejected as exc:
            result.errors.append(RowError(row=row_number, line=line, message=str(exc)))
            continue
        result.entries.append(entry)

    if result.errors:
        logger.info(
            "Normalized %d row(s), rejected %d", result.accepted, result.rejected
        )
    return result


def read_trial_balance_csv(
    path: Union[str, "os.PathLike[str]"],
) -> NormalizationResult:
    """
    Read a trial balance CSV file and normalize its rows.

    Parameters
    ----------
    path:
        Path to the CSV file.

    Supported input layouts (case-insensitive column names)
    -------------------------------------------------------

    1) ledger_name, closing_balance[, parent_group][, debit, credit]
    2) Particulars, Closing Balance[, Debit, Credit]

    Returns
    -------
    NormalizationResult
        Accepted entries plus one RowError per rejected line. Row numbers
        are file line numbers (the header is line 1).

    Raises
    ------
    ValueError
        If the header does not contain a ledger name and a closing balance
        column. This is a structural problem with the whole file, not a
        per-row validation error.
    """
    with open(path, encoding="utf-8-sig", newline="") as fh:
        text = fh.read()

    source_lines = text.splitlines()
    if not source_lines or not source_lines[0].strip():
        raise ValueError(f"Trial balance CSV is empty: {path}")

    df = pd.read_csv(
        path,
        dtype=str,
        keep_default_na=False,
        skip_blank_lines=False,
        encoding="utf-8-sig",
    )

    renamed: dict[str, str] = {}
    for col in df.columns:
        key = str(col).strip().lower()
        if key in _COLUMN_ALIASES:
            renamed[col] = _COLUMN_ALIASES[key]
    df = df.rename(columns=renamed)

    if not {"ledger_name", "closing_balance"}.issubset(df.columns):
        raise ValueError(
            "Invalid trial balance structure. Expected either:\n"
            "  - ledger_name, closing_balance[, parent_group]\n"
            "  - Particulars, Closing Balance[, Debit, Credit]\n"
            "(column names are case-insensitive)."
        )

    known = ("ledger_name", "closing_balance", "debit", "credit", "parent_group")
    keep = [c for c in known if c in df.columns]
    records = df[keep].fillna("").to_dict(orient="records")

    # With skip_blank_lines=False each DataFrame row maps to one physical line
    # after the header, unless a quoted field spans several lines.
    data_lines = source_lines[1:]
    lines = data_lines if len(data_lines) == len(records) else None

    return normalize_records(records, lines, first_row=2)
