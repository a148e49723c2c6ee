# TB FinSight - Trial Balance Reporting & Ratio Analysis for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Per-user ratio benchmarks.

A user benchmark overrides the default target and/or industry average of a
ratio definition. There is at most one row per (user_id, ratio definition);
saving again updates it in place. Only active benchmarks are used by the
ratio engine.
"""

import logging
from typing import Any, Optional

import pandas as pd

from .db import BENCHMARK_SOURCES, Store, _now_utc_iso

logger = logging.getLogger(__name__)


def validate_benchmark_source(source: str) -> str:
    if source not in BENCHMARK_SOURCES:
        allowed = ", ".join(BENCHMARK_SOURCES)
        raise ValueError(
            f"Invalid benchmark source {source!r}; expected one of: {allowed}"
        )
    return source


def _require_definition(store: Store, ratio_definition_id: int) -> dict[str, Any]:
    row = store.select_one("ratio_definitions", {"id": int(ratio_definition_id)})
    if row is None:
        raise ValueError(f"Ratio definition #{ratio_definition_id} does not exist.")
    return row


def find_definition_id(store: Store, ratio: str) -> int:
    """Resolve a ratio key or name (case-insensitive) to its definition id."""
    wanted = ratio.strip().lower()
    columns = ["id", "ratio_key", "ratio_name"]
    for row in store.select("ratio_definitions", columns=columns):
        if wanted in (row["ratio_key"].lower(), row["ratio_name"].lower()):
            return int(row["id"])
    raise ValueError(f"Unknown ratio {ratio!r}.")


def save_benchmark(
    store: Store,
    user_id: str,
    ratio_definition_id: int,
    *,
    custom_target_value: Optional[float] = None,
    custom_industry_average: Optional[float] = None,
    benchmark_source: str = "Custom",
    notes: Optional[str] = None,
    is_active: bool = True,
) -> dict[str, Any]:
    """
    Create or update the benchmark of `user_id` for one ratio.

    Raises:
        ValueError: on an empty user id, an unknown ratio definition or an
            invalid benchmark source.
    """
    if not (user_id or "").strip():
        raise ValueError("user_id cannot be empty.")
    validate_benchmark_source(benchmark_source)
    _require_definition(store, ratio_definition_id)

    row = {
        "user_id": user_id,
        "ratio_definition_id": int(ratio_definition_id),
        "custom_target_value": custom_target_value,
        "custom_industry_average": custom_industry_average,
        "benchmark_source": benchmark_source,
        "notes": notes,
        "is_active": int(is_active),
        "updated_at": _now_utc_iso(),
    }
    with store.transaction():
        store.upsert(
            "user_benchmarks", [row], conflict_keys=["user_id", "ratio_definition_id"]
        )
        saved = store.select_one(
            "user_benchmarks",
            {"user_id": user_id, "ratio_definition_id": int(ratio_definition_id)},
        )

    logger.info(
        "Saved %s benchmark of %r for ratio #%s",
        benchmark_source,
        user_id,
        ratio_definition_id,
    )
    return saved


def reset_benchmark(
    store: Store, user_id: str, ratio_definition_id: int
) -> dict[str, Any]:
    """Reset the custom values of a benchmark to the definition defaults."""
    definition = _require_definition(store, ratio_definition_id)
    return save_benchmark(
        store,
        user_id,
        ratio_definition_id,
        custom_target_value=definition["target_value"],
        custom_industry_average=definition["industry_average"],
        benchmark_source="Custom",
        notes=None,
    )


def list_benchmarks(
    store: Store, user_id: str, active_only: bool = True
) -> pd.DataFrame:
    """
    Benchmarks of a user joined with their ratio definitions.

    Columns: ratio_definition_id, ratio_name, ratio_category, target_value,
    custom_target_value, industry_average, custom_industry_average,
    benchmark_source, notes, is_active, updated_at.
    """
    columns = [
        "ratio_definition_id",
        "ratio_name",
        "ratio_category",
        "target_value",
        "custom_target_value",
        "industry_average",
        "custom_industry_average",
        "benchmark_source",
        "notes",
        "is_active",
        "updated_at",
    ]
    filters: dict[str, Any] = {"user_id": user_id}
    if active_only:
        filters["is_active"] = 1
    benchmarks = pd.DataFrame(store.select("user_benchmarks", filters))
    if benchmarks.empty:
        return pd.DataFrame(columns=columns)

    definitions = pd.DataFrame(store.select("ratio_definitions")).rename(
        columns={"id": "ratio_definition_id"}
    )
    definitions = definitions[
        [
            "ratio_definition_id",
            "ratio_name",
            "ratio_category",
            "target_value",
            "industry_average",
            "display_order",
        ]
    ]
    df = benchmarks.merge(definitions, on="ratio_definition_id", how="left")
    df = df.sort_values(["display_order", "ratio_name"], kind="stable")
    df["is_active"] = df["is_active"].astype(bool)
    return df[columns].reset_index(drop=True)


def export_benchmarks(store: Store, user_id: str) -> list[dict[str, Any]]:
    """All benchmarks of a user (active or not) as JSON-serializable dicts."""
    df = list_benchmarks(store, user_id, active_only=False)
    records = df.astype(object).where(df.notna(), None).to_dict(orient="records")
    for record in records:
        record["ratio_definition_id"] = int(record["ratio_definition_id"])
        record["is_active"] = bool(record["is_active"])
    return records
