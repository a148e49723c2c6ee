# TB FinSight - Trial Balance Reporting & Ratio Analysis for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Ingestion service: normalize a batch and persist it against its period.

The normalizer (io.py) is pure. This module adds the side effects:

1. resolve (or create) the FinancialPeriod for the quarter end date,
2. optionally remove the entries previously uploaded for that period,
3. insert the accepted entries and one `uploads` row,

all inside a single transaction. Rejected rows are returned to the caller
verbatim in the report; they are never silently dropped.
"""

import logging
import os
from dataclasses import dataclass, field
from datetime import date
from typing import Optional, Union

from .db import ImportStats, Store, _now_utc_iso, to_cents
from .errors import NoPeriodError
from .extraction import ExtractionResult
from .io import NormalizationResult, RowError, normalize_records, read_trial_balance_csv
from .periods import FinancialPeriod, resolve_period

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IngestionReport:
    """
    Outcome of one ingestion.

    `stats` and `period` are None when no row was accepted (nothing is
    written in that case).
    """

    stats: Optional[ImportStats]
    period: Optional[FinancialPeriod]
    errors: list[RowError] = field(default_factory=list)

    @property
    def rows_inserted(self) -> int:
        return self.stats.rows_inserted if self.stats else 0


def ingest_entries(
    store: Store,
    result: NormalizationResult,
    quarter_end_date: Union[date, str],
    *,
    source_type: str,
    source_label: str,
    replace: bool = False,
    notes: Optional[str] = None,
) -> IngestionReport:
    """
    Persist a normalized batch.

    Parameters
    ----------
    store:
        Open database store.
    result:
        Output of the normalizer.
    quarter_end_date:
        Any date inside the reporting quarter; the period is created on
        first upload.
    source_type, source_label:
        Stored on the `uploads` row ("csv", "extraction", "manual").
    replace:
        When True, ledger entries already stored for the period are deleted
        first (a re-upload of the same quarter).
    notes:
        Optional free text stored on the upload.
    """
    if not result.entries:
        logger.warning("No valid rows in %s, nothing imported", source_label)
        return IngestionReport(stats=None, period=None, errors=list(result.errors))

    created_at = _now_utc_iso()
    with store.transaction():
        period = resolve_period(store, quarter_end_date, create=True)

        if replace:
            removed = store.delete("ledger_entries", {"period_id": period.id})
            logger.info(
                "Replaced %d existing entries for %s", removed, period.period_name
            )

        (upload_id,) = store.insert(
            "uploads",
            [
                {
                    "period_id": period.id,
                    "created_at": created_at,
                    "source_type": source_type,
                    "source_label": source_label,
                    "rows_inserted": result.accepted,
                    "rows_rejected": result.rejected,
                    "notes": notes,
                }
            ],
        )

        store.insert(
            "ledger_entries",
            (
                {
                    "period_id": period.id,
                    "upload_id": upload_id,
                    "ledger_name": e.ledger_name,
                    "debit_cents": to_cents(e.debit),
                    "credit_cents": to_cents(e.credit),
                    "closing_balance_cents": to_cents(e.closing_balance),
                    "account_type": e.account_type,
                    "account_category": e.account_category,
                    "parent_group": e.parent_group,
                    "confidence": e.confidence,
                    "created_at": created_at,
                }
                for e in result.entries
            ),
        )

    logger.info(
        "Upload #%s: %d entries into %s, %d rejected",
        upload_id,
        result.accepted,
        period.period_name,
        result.rejected,
    )
    stats = ImportStats(
        upload_id=upload_id,
        period_id=period.id,
        rows_inserted=result.accepted,
        rows_rejected=result.rejected,
    )
    return IngestionReport(stats=stats, period=period, errors=list(result.errors))


def ingest_trial_balance(
    store: Store,
    path: Union[str, "os.PathLike[str]"],
    quarter_end_date: Union[date, str],
    *,
    replace: bool = False,
) -> IngestionReport:
    """Read, normalize and persist a trial balance CSV file."""
    result = read_trial_balance_csv(path)
    return ingest_entries(
        store,
        result,
        quarter_end_date,
        source_type="csv",
        source_label=str(path),
        replace=replace,
    )


def ingest_extraction(
    store: Store,
    extraction: ExtractionResult,
    quarter_end_date: Optional[Union[date, str]] = None,
    *,
    source_label: str = "extraction",
    replace: bool = False,
) -> IngestionReport:
    """
    Normalize and persist the rows returned by an extraction backend.

    Entries without their own confidence inherit the batch
    `metadata.confidence_score`. When `quarter_end_date` is omitted, the
    period date detected by the backend is used.

    Raises
    ------
    NoPeriodError
        If neither an explicit date nor a detected period date is available.
    """
    period_date = quarter_end_date or extraction.period_info.period_date
    if period_date is None:
        raise NoPeriodError(
            "No quarter end date given and none detected in the document."
        )

    result = normalize_records(
        extraction.entries,
        default_confidence=extraction.metadata.confidence_score,
    )
    return ingest_entries(
        store,
        result,
        period_date,
        source_type="extraction",
        source_label=source_label,
        replace=replace,
        notes=extraction.metadata.parsing_notes or None,
    )
