from datetime import date

import pytest

from tb_finsight.db import list_uploads, load_ledger_entries
from tb_finsight.errors import NoPeriodError
from tb_finsight.extraction import ExtractionMetadata, ExtractionResult, PeriodInfo
from tb_finsight.ingestion import ingest_extraction, ingest_trial_balance

from conftest import SAMPLE_CSV


def test_ingest_sample_trial_balance(store):
    report = ingest_trial_balance(store, SAMPLE_CSV, "2025-06-30")

    assert report.errors == []
    assert report.rows_inserted == 26
    assert report.period.period_name == "Q2 2025"

    df = load_ledger_entries(store, report.period.id)
    assert len(df) == 26
    sales = df.loc[df["ledger_name"] == "Sales - Domestic"].iloc[0]
    assert sales["closing_balance"] == -18500000.0
    assert sales["credit"] == 18500000.0
    assert sales["parent_group"] == "Sales Accounts"

    uploads = list_uploads(store, report.period.id)
    assert uploads.loc[0, "rows_inserted"] == 26
    assert uploads.loc[0, "source_type"] == "csv"


def test_rejected_rows_are_returned(store, tmp_path):
    path = tmp_path / "tb.csv"
    path.write_text(
        "ledger_name,closing_balance\nCash,100\n,50\nBank,abc\n", encoding="utf-8"
    )

    report = ingest_trial_balance(store, path, date(2025, 3, 31))

    assert report.rows_inserted == 1
    assert [e.row for e in report.errors] == [3, 4]
    assert report.errors[1].line == "Bank,abc"
    assert report.stats.rows_rejected == 2


def test_nothing_written_when_every_row_is_invalid(store, tmp_path):
    path = tmp_path / "tb.csv"
    path.write_text("ledger_name,closing_balance\nCash,x\n", encoding="utf-8")

    report = ingest_trial_balance(store, path, date(2025, 3, 31))

    assert report.stats is None
    assert report.period is None
    assert len(report.errors) == 1
    assert store.count("financial_periods") == 0
    assert store.count("uploads") == 0


def test_replace_removes_previous_upload_of_the_quarter(store):
    first = ingest_trial_balance(store, SAMPLE_CSV, "2025-06-30")
    ingest_trial_balance(store, SAMPLE_CSV, "2025-06-30")
    assert store.count("ledger_entries", {"period_id": first.period.id}) == 52

    ingest_trial_balance(store, SAMPLE_CSV, "2025-06-30", replace=True)
    assert store.count("ledger_entries", {"period_id": first.period.id}) == 26


def test_ingest_extraction_uses_detected_period_and_batch_confidence(store):
    extraction = ExtractionResult(
        entries=[
            {
                "ledger_name": "Cash",
                "debit": 0,
                "credit": 0,
                "closing_balance": 25000,
                "account_type": "ASSETS",
                "account_category": "Current Assets",
            },
            {
                "ledger_name": "Sales",
                "debit": 0,
                "credit": 0,
                "closing_balance": -150000,
                "account_type": "REVENUE",
                "confidence": 0.9,
            },
        ],
        period_info=PeriodInfo("Q1 2025", date(2025, 3, 31), 0.8),
        metadata=ExtractionMetadata(confidence_score=0.85, parsing_notes="clean scan"),
    )

    report = ingest_extraction(store, extraction)

    assert report.period.period_name == "Q1 2025"
    df = load_ledger_entries(store, report.period.id).set_index("ledger_name")
    assert df.loc["Cash", "confidence"] == pytest.approx(0.85)
    assert df.loc["Sales", "confidence"] == pytest.approx(0.9)
    assert df.loc["Cash", "account_category"] == "Current Assets"
    assert list_uploads(store).loc[0, "notes"] == "clean scan"


def test_ingest_extraction_without_any_date(store):
    extraction = ExtractionResult(
        entries=[{"ledger_name": "Cash", "closing_balance": 1}]
    )
    with pytest.raises(NoPeriodError):
        ingest_extraction(store, extraction)
    assert store.count("ledger_entries") == 0
