from datetime import date
from pathlib import Path

import pytest

from tb_finsight.db import DatabaseConfig, Store
from tb_finsight.ingestion import ingest_entries
from tb_finsight.io import normalize_records
from tb_finsight.mapping import Taxonomy, seed_line_items
from tb_finsight.ratios import load_ratio_definitions, seed_ratio_definitions

ROOT = Path(__file__).resolve().parents[1]
TAXONOMY_CSV = ROOT / "data" / "taxonomy" / "schedule3_line_items.csv"
RATIOS_TOML = ROOT / "ratios" / "ratio_definitions.toml"
SAMPLE_CSV = ROOT / "data" / "samples" / "trial_balance_sample.csv"


def make_tmp_db_cfg(tmp_path) -> DatabaseConfig:
    """Build a DatabaseConfig pointing to a temporary SQLite file."""
    return DatabaseConfig(engine="sqlite", path=tmp_path / "test_db.sqlite")


@pytest.fixture
def db_cfg(tmp_path) -> DatabaseConfig:
    return make_tmp_db_cfg(tmp_path)


@pytest.fixture
def store(db_cfg):
    """Empty store (schema only)."""
    with Store(db_cfg) as s:
        yield s


@pytest.fixture
def taxonomy() -> Taxonomy:
    return Taxonomy.from_csv(TAXONOMY_CSV)


@pytest.fixture
def seeded_store(store, taxonomy):
    """Store with the Schedule III taxonomy and the ratio definitions."""
    seed_line_items(store, taxonomy)
    seed_ratio_definitions(store, load_ratio_definitions(RATIOS_TOML))
    return store


@pytest.fixture
def add_entries(seeded_store):
    """Return a helper ingesting raw rows for a quarter; yields the period."""

    def _add(quarter_end, rows, **kwargs):
        if isinstance(quarter_end, str):
            quarter_end = date.fromisoformat(quarter_end)
        report = ingest_entries(
            seeded_store,
            normalize_records(rows),
            quarter_end,
            source_type="manual",
            source_label="test",
            **kwargs,
        )
        return report.period

    return _add
