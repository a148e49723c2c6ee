# TB FinSight - Trial Balance Reporting & Ratio Analysis for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Classifier backend interface.

An extraction backend reads a document (scanned trial balance, PDF, image)
and returns structured rows with classifier confidence. The backend itself
is an external collaborator: TB FinSight only depends on the shape of its
response:

    {
      "entries": [ {ledger_name, debit, credit, closing_balance,
                    account_type, account_category, confidence?}, ... ],
      "period_info": {detected_period, period_date, period_confidence},
      "metadata": {confidence_score, parsing_notes}
    }

`JsonExtractionBackend` reads such a response saved to disk, which is how
results produced by an external service are fed into the pipeline.
"""

import json
import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Any, Optional, Protocol, Union

from .errors import BackendError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PeriodInfo:
    detected_period: Optional[str] = None
    period_date: Optional[date] = None
    period_confidence: Optional[float] = None


@dataclass(frozen=True)
class ExtractionMetadata:
    confidence_score: Optional[float] = None
    parsing_notes: str = ""


@dataclass(frozen=True)
class ExtractionResult:
    """
    Structured response of an extraction backend.

    Attributes:
        entries: Raw row mappings, normalized later by io.normalize_records.
        period_info: Period detected in the document, if any.
        metadata: Overall confidence and parsing notes.
    """

    entries: list[dict[str, Any]] = field(default_factory=list)
    period_info: PeriodInfo = field(default_factory=PeriodInfo)
    metadata: ExtractionMetadata = field(default_factory=ExtractionMetadata)


class ClassifierBackend(Protocol):
    """Anything able to turn a document into an ExtractionResult."""

    def extract(
        self, document: Path, hint_date: Optional[date] = None
    ) -> ExtractionResult: ...


def _optional_float(value: Any, label: str) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise BackendError(f"Invalid {label} in extraction result: {value!r}") from exc


def _optional_date(value: Any) -> Optional[date]:
    if value is None or value == "":
        return None
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError as exc:
        raise BackendError(
            f"Invalid period_date in extraction result: {value!r}"
        ) from exc


def parse_extraction(payload: Mapping[str, Any]) -> ExtractionResult:
    """
    Validate and convert a raw backend payload into an ExtractionResult.

    Raises:
        BackendError: if the payload does not have the expected shape.
    """
    if not isinstance(payload, Mapping):
        raise BackendError("Extraction result must be a JSON object.")

    entries = payload.get("entries")
    if not isinstance(entries, list):
        raise BackendError("Extraction result does not contain an 'entries' array.")
    rows = []
    for item in entries:
        if not isinstance(item, Mapping):
            raise BackendError(f"Invalid entry in extraction result: {item!r}")
        rows.append(dict(item))

    period_raw = payload.get("period_info") or {}
    metadata_raw = payload.get("metadata") or {}
    if not isinstance(period_raw, Mapping) or not isinstance(metadata_raw, Mapping):
        raise BackendError("Invalid period_info or metadata in extraction result.")

    period_info = PeriodInfo(
        detected_period=period_raw.get("detected_period") or None,
        period_date=_optional_date(period_raw.get("period_date")),
        period_confidence=_optional_float(
            period_raw.get("period_confidence"), "period_confidence"
        ),
    )
    metadata = ExtractionMetadata(
        confidence_score=_optional_float(
            metadata_raw.get("confidence_score"), "confidence_score"
        ),
        parsing_notes=str(metadata_raw.get("parsing_notes") or ""),
    )

    logger.debug(
        "Parsed extraction result: %d entries, confidence %s",
        len(rows),
        metadata.confidence_score,
    )
    return ExtractionResult(entries=rows, period_info=period_info, metadata=metadata)


def load_extraction_json(path: Union[str, "os.PathLike[str]"]) -> ExtractionResult:
    """Read a saved backend response from a JSON file."""
    try:
        payload = json.loads(Path(path).read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise BackendError(f"Extraction file is not valid JSON: {path}") from exc
    return parse_extraction(payload)


class JsonExtractionBackend:
    """
    Backend that serves pre-computed responses stored as JSON files.

    Each document path is looked up as ``<document>.json`` next to the
    document, or as the document itself when it already is a JSON file.
    """

    def extract(
        self, document: Path, hint_date: Optional[date] = None
    ) -> ExtractionResult:
        document = Path(document)
        source = document if document.suffix == ".json" else document.with_suffix(
            document.suffix + ".json"
        )
        if not source.is_file():
            raise BackendError(f"No extraction result found for {document}")
        return load_extraction_json(source)
