import sqlite3

import pytest

from tb_finsight.db import (
    DatabaseConfig,
    Store,
    from_cents,
    init_database,
    list_uploads,
    load_ledger_entries,
    to_cents,
)
from tb_finsight.errors import BackendError

from conftest import make_tmp_db_cfg


def test_init_database_creates_file_and_schema(tmp_path):
    """init_database should create the SQLite file and all tables."""
    cfg = make_tmp_db_cfg(tmp_path)

    assert not cfg.path.exists()
    init_database(cfg)
    init_database(cfg)  # idempotent
    assert cfg.path.exists()

    with sqlite3.connect(cfg.path) as conn:
        cur = conn.execute("SELECT name FROM sqlite_master WHERE type='table'")
        tables = {r[0] for r in cur}
    assert {
        "financial_periods",
        "uploads",
        "ledger_entries",
        "line_items",
        "mappings",
        "ratio_definitions",
        "user_benchmarks",
        "calculated_ratios",
    } <= tables


def test_unsupported_engine_is_rejected(tmp_path):
    cfg = DatabaseConfig(engine="postgres", path=tmp_path / "x.db")
    with pytest.raises(ValueError, match="Unsupported database engine"):
        init_database(cfg)


def test_cents_round_trip():
    assert to_cents(1234.56) == 123456
    assert to_cents(-0.1) == -10
    assert from_cents(-150000) == -1500.0
    assert from_cents(None) == 0.0


def test_select_filters_and_ordering(store):
    store.insert(
        "line_items",
        [
            {
                "id": 2,
                "code": "B",
                "display_name": "Bee",
                "report_type": "BALANCE_SHEET",
                "report_section": "Current Assets",
                "display_order": 20,
            },
            {
                "id": 1,
                "code": "A",
                "display_name": "Ay",
                "report_type": "PROFIT_LOSS",
                "report_section": "Revenue",
                "display_order": 10,
            },
        ],
    )

    rows = store.select("line_items", order_by="display_order")
    assert [r["code"] for r in rows] == ["A", "B"]

    rows = store.select("line_items", {"id": [2]}, columns=["code"])
    assert rows == [{"code": "B"}]
    assert store.select("line_items", {"id": []}) == []
    rows = store.select("line_items", {"report_sub_section": None}, order_by="id DESC")
    assert rows[0]["id"] == 2
    assert store.count("line_items") == 2


def test_unknown_table_or_column_is_rejected(store):
    with pytest.raises(ValueError, match="Unknown table"):
        store.select("sqlite_master")
    with pytest.raises(ValueError, match="Unknown column"):
        store.select("line_items", {"code; DROP TABLE line_items": 1})
    with pytest.raises(ValueError, match="requires at least one filter"):
        store.delete("line_items", {})


def test_upsert_update_and_skip(store):
    row = {
        "id": 1,
        "code": "A",
        "display_name": "First",
        "report_type": "PROFIT_LOSS",
        "report_section": "Revenue",
        "display_order": 1,
    }
    assert store.upsert("line_items", [row], conflict_keys=["id"]) == 1

    renamed = {**row, "display_name": "Renamed"}
    store.upsert("line_items", [renamed], conflict_keys=["id"])
    assert store.select_one("line_items", {"id": 1})["display_name"] == "Renamed"

    skipped = store.upsert(
        "line_items",
        [{**row, "display_name": "Ignored"}],
        conflict_keys=["id"],
        update=False,
    )
    assert skipped == 0
    assert store.select_one("line_items", {"id": 1})["display_name"] == "Renamed"


def test_transaction_rolls_back_on_error(store):
    row = {"code": "A", "display_name": "A", "report_type": "PROFIT_LOSS",
           "report_section": "Revenue", "display_order": 1}

    with pytest.raises(BackendError):
        with store.transaction():
            store.insert("line_items", [{**row, "id": 1}])
            # Duplicate primary key: the whole block must be undone.
            store.insert("line_items", [{**row, "id": 1, "code": "B"}])

    assert store.count("line_items") == 0


def test_load_ledger_entries_empty_and_uploads(store):
    df = load_ledger_entries(store, 42)
    assert df.empty
    assert list(df.columns)[:3] == ["id", "ledger_name", "debit"]
    assert list_uploads(store).empty
