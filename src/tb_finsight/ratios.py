# TB FinSight - Trial Balance Reporting & Ratio Analysis for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.


"""
Financial ratio engine for TB FinSight.

This module turns the measures built by the engine (engine.py) into ratio
results that can be compared with targets and benchmarks.

1. Ratio definitions
   -----------------
   Ratios are defined in a TOML file (``ratios/ratio_definitions.toml``)
   under ``[ratios.<key>]`` sections and seeded into the
   ``ratio_definitions`` table. Each definition specifies:
       - a key and a unique display name,
       - a category (LIQUIDITY, PROFITABILITY, EFFICIENCY, LEVERAGE),
       - an arithmetic formula over measures (e.g.
         "(current_assets - inventory) / current_liabilities"),
       - a direction (higher_is_better / lower_is_better),
       - default target, benchmark and industry average values.

   When a definition omits ``direction``, a default is derived from its
   name: debt-based ratios are lower-is-better, everything else is
   higher-is-better.

2. Computation
   -----------
   `compute_ratios()` evaluates every active definition for a period:

       - if the period has no mappings at all, it returns [] ("not ready"),
       - formulas go through a restricted AST evaluator; a zero denominator
         yields 0.0,
       - active user benchmarks override the definition defaults,
       - each value is graded (`performance_status`) and compared with the
         benchmark (`trend_direction`),
       - each value is upserted into ``calculated_ratios``.

3. Scoring
   -------
   `health_score()` maps tiers to points (excellent 100, good 75,
   warning 50, poor 25) and returns the mean rounded half up.
"""

import ast
import logging
import math
import operator
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional, Union

import pandas as pd
import tomllib  # Python 3.11+

from .db import Store, _now_utc_iso
from .engine import aggregate, build_measures, item_measure_tags

logger = logging.getLogger(__name__)

RATIO_CATEGORIES: tuple[str, ...] = (
    "LIQUIDITY",
    "PROFITABILITY",
    "EFFICIENCY",
    "LEVERAGE",
)

HIGHER_IS_BETTER = "higher_is_better"
LOWER_IS_BETTER = "lower_is_better"
DIRECTIONS: tuple[str, ...] = (HIGHER_IS_BETTER, LOWER_IS_BETTER)

TIER_POINTS: dict[str, int] = {
    "excellent": 100,
    "good": 75,
    "warning": 50,
    "poor": 25,
}

_LOWER_IS_BETTER_NAMES: tuple[str, ...] = (
    "debt to equity",
    "debt ratio",
    "debt to assets",
)


@dataclass(frozen=True)
class RatioDefinition:
    """
    Definition of a financial ratio.

    Attributes:
        key: Internal identifier (e.g. 'current_ratio').
        name: Unique display name (e.g. 'Current Ratio').
        category: One of RATIO_CATEGORIES.
        formula: Arithmetic expression over measure names.
        formula_description: Human-readable formula.
        direction: 'higher_is_better' or 'lower_is_better'.
        unit: Unit hint ('ratio', 'percent', 'times').
        target_value: Default target, if any.
        benchmark_value: Default benchmark, if any.
        industry_average: Default industry average, if any.
        display_order: Ordering hint.
        is_active: Inactive definitions are not computed.
        id: Database id once seeded.
    """

    key: str
    name: str
    category: str
    formula: str
    formula_description: str
    direction: str
    unit: str
    target_value: Optional[float]
    benchmark_value: Optional[float]
    industry_average: Optional[float]
    display_order: int
    is_active: bool = True
    id: Optional[int] = None


@dataclass(frozen=True)
class RatioResult:
    """Computed ratio for a period, with its resolved comparison values."""

    ratio_key: str
    ratio_name: str
    ratio_category: str
    calculated_value: float
    target_value: Optional[float]
    benchmark_value: Optional[float]
    industry_average: Optional[float]
    direction: str
    unit: str
    performance_status: str
    trend_direction: str
    has_custom_benchmark: bool
    benchmark_source: Optional[str]
    display_order: int


def _load_toml(path: Path) -> dict[str, Any]:
    """
    Load a TOML file and return its content as a dictionary.

    Raises:
        FileNotFoundError: if the file does not exist.
        ValueError: if the TOML content cannot be parsed.
    """
    if not path.is_file():
        raise FileNotFoundError(f"Ratio definitions file not found: {path}")

    try:
        return tomllib.loads(path.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as exc:
        raise ValueError(f"Failed to parse TOML ratio definitions: {path}") from exc


_ALLOWED_OPERATORS = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.USub: operator.neg,
    ast.UAdd: operator.pos,
}


def _safe_eval_expr(expr: str, variables: Mapping[str, float]) -> float:
    """
    Safely evaluate a simple arithmetic expression using the given variables.

    Supported:
        - numeric literals
        - variable names (keys from `variables`)
        - binary operations: +, -, *, /
        - unary plus and minus
        - parentheses

    Raises:
        ValueError: if the expression contains unsupported constructs or
            unknown variables.
        ZeroDivisionError: on division by zero.
    """
    try:
        tree = ast.parse(expr, mode="eval")
    except SyntaxError as exc:
        raise ValueError(f"Invalid expression syntax: {expr!r}") from exc

    def _eval(node: ast.AST) -> float:
        if isinstance(node, ast.Expression):
            return _eval(node.body)

        if isinstance(node, ast.Constant):
            value = node.value
            if isinstance(value, (int, float)) and not isinstance(value, bool):
                return float(value)
            raise ValueError(f"Unsupported constant in expression: {node.value!r}")

        if isinstance(node, ast.Name):
            if node.id not in variables:
                raise ValueError(f"Unknown measure in expression: {node.id!r}")
            return float(variables[node.id])

        if isinstance(node, (ast.BinOp, ast.UnaryOp)):
            op_func = _ALLOWED_OPERATORS.get(type(node.op))
            if op_func is None:
                raise ValueError(f"Unsupported operator in expression: {expr!r}")
            if isinstance(node, ast.UnaryOp):
                return float(op_func(_eval(node.operand)))
            return float(op_func(_eval(node.left), _eval(node.right)))

        raise ValueError(f"Unsupported expression node: {type(node).__name__}")

    return _eval(tree)


def evaluate_formula(formula: str, measures: Mapping[str, float]) -> float:
    """Evaluate a ratio formula; a zero denominator yields 0.0."""
    try:
        return _safe_eval_expr(formula, measures)
    except ZeroDivisionError:
        return 0.0


def default_direction_for(ratio_name: str) -> str:
    """Direction of a ratio that does not declare one, from its name."""
    lowered = ratio_name.lower()
    if any(name in lowered for name in _LOWER_IS_BETTER_NAMES):
        return LOWER_IS_BETTER
    return HIGHER_IS_BETTER


def _optional_float(value: Any, field: str, key: str) -> Optional[float]:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"Ratio {key!r}: {field} must be a number, got {value!r}")
    return float(value)


def load_ratio_definitions(path: Union[str, Path]) -> list[RatioDefinition]:
    """
    Load ratio definitions from a TOML file.

    Every ``[ratios.<key>]`` table needs at least ``name``, ``category`` and
    ``formula``. Definitions are returned sorted by display order.

    Raises:
        FileNotFoundError: if the file does not exist.
        ValueError: on a malformed definition (unknown category or
            direction, invalid formula, duplicate name).
    """
    data = _load_toml(Path(path))
    section = data.get("ratios") or {}
    if not isinstance(section, Mapping):
        raise ValueError(f"[ratios] must be a table in {path}")

    definitions: list[RatioDefinition] = []
    names: set[str] = set()
    for key, cfg in section.items():
        if not isinstance(cfg, Mapping):
            raise ValueError(f"[ratios.{key}] must be a table in {path}")

        name = str(cfg.get("name") or "").strip()
        formula = str(cfg.get("formula") or "").strip()
        if not name or not formula:
            raise ValueError(f"Ratio {key!r} needs a name and a formula.")
        if name in names:
            raise ValueError(f"Duplicate ratio name {name!r} in {path}")
        names.add(name)

        category = str(cfg.get("category") or "").strip().upper()
        if category not in RATIO_CATEGORIES:
            raise ValueError(f"Ratio {key!r}: unknown category {category!r}")

        direction = str(cfg.get("direction") or default_direction_for(name)).lower()
        if direction not in DIRECTIONS:
            raise ValueError(f"Ratio {key!r}: unknown direction {direction!r}")

        # Formulas must at least parse; names are checked on evaluation.
        try:
            ast.parse(formula, mode="eval")
        except SyntaxError as exc:
            raise ValueError(f"Ratio {key!r}: invalid formula {formula!r}") from exc

        definitions.append(
            RatioDefinition(
                key=str(key),
                name=name,
                category=category,
                formula=formula,
                formula_description=str(cfg.get("formula_description") or formula),
                direction=direction,
                unit=str(cfg.get("unit") or "ratio"),
                target_value=_optional_float(
                    cfg.get("target_value"), "target_value", key
                ),
                benchmark_value=_optional_float(
                    cfg.get("benchmark_value"), "benchmark_value", key
                ),
                industry_average=_optional_float(
                    cfg.get("industry_average"), "industry_average", key
                ),
                display_order=int(cfg.get("display_order", 0)),
                is_active=bool(cfg.get("is_active", True)),
            )
        )

    definitions.sort(key=lambda d: (d.display_order, d.key))
    return definitions


def seed_ratio_definitions(store: Store, definitions: Iterable[RatioDefinition]) -> int:
    """Insert or refresh ratio definitions (keyed on ratio_key)."""
    rows = [
        {
            "ratio_key": d.key,
            "ratio_name": d.name,
            "ratio_category": d.category,
            "formula": d.formula,
            "formula_description": d.formula_description,
            "direction": d.direction,
            "unit": d.unit,
            "target_value": d.target_value,
            "benchmark_value": d.benchmark_value,
            "industry_average": d.industry_average,
            "display_order": d.display_order,
            "is_active": int(d.is_active),
        }
        for d in definitions
    ]
    if not rows:
        return 0
    with store.transaction():
        written = store.upsert("ratio_definitions", rows, conflict_keys=["ratio_key"])
    logger.info("Seeded %d ratio definitions", written)
    return written


def _row_to_definition(row: Mapping[str, Any]) -> RatioDefinition:
    return RatioDefinition(
        key=row["ratio_key"],
        name=row["ratio_name"],
        category=row["ratio_category"],
        formula=row["formula"],
        formula_description=row["formula_description"],
        direction=row["direction"] or default_direction_for(row["ratio_name"]),
        unit=row["unit"],
        target_value=row["target_value"],
        benchmark_value=row["benchmark_value"],
        industry_average=row["industry_average"],
        display_order=int(row["display_order"]),
        is_active=bool(row["is_active"]),
        id=int(row["id"]),
    )


def stored_definitions(
    store: Store, *, category: Optional[str] = None, active_only: bool = True
) -> list[RatioDefinition]:
    """Ratio definitions from the database, in display order."""
    filters: dict[str, Any] = {}
    if active_only:
        filters["is_active"] = 1
    if category:
        filters["ratio_category"] = category.upper()
    rows = store.select("ratio_definitions", filters, order_by=["display_order", "id"])
    return [_row_to_definition(r) for r in rows]


# ---------------------------------------------------------------------------
# Grading
# ---------------------------------------------------------------------------


_CUTOFF_DIGITS = 9


def performance_status(
    value: float,
    direction: str,
    target: Optional[float],
    benchmark: Optional[float] = None,
) -> str:
    """
    Grade a ratio value against its target (or benchmark).

    Higher-is-better ratios: value >= 1.10 x compare is excellent,
    >= 0.90 x good, >= 0.70 x warning, otherwise poor. Lower-is-better
    ratios use <= 0.80 / 1.00 / 1.30. A ratio with neither a target nor a
    benchmark is compared against 0. Cutoffs are rounded so that a value
    sitting exactly on one (1.98 against 1.8 x 1.10) gets the higher tier.
    """
    compare = target if target is not None else benchmark
    if compare is None:
        compare = 0.0

    def cutoff(factor: float) -> float:
        return round(compare * factor, _CUTOFF_DIGITS)

    if direction == LOWER_IS_BETTER:
        if value <= cutoff(0.80):
            return "excellent"
        if value <= cutoff(1.00):
            return "good"
        if value <= cutoff(1.30):
            return "warning"
        return "poor"

    if value >= cutoff(1.10):
        return "excellent"
    if value >= cutoff(0.90):
        return "good"
    if value >= cutoff(0.70):
        return "warning"
    return "poor"


def trend_direction(value: float, direction: str, benchmark: Optional[float]) -> str:
    """'up', 'down' or 'stable' relative to the benchmark."""
    if benchmark is None:
        return "stable"
    threshold = 0.10 if direction == HIGHER_IS_BETTER else 0.05
    difference = value - benchmark
    if abs(difference) < threshold:
        return "stable"
    return "up" if difference > 0 else "down"


def health_score(results: Iterable[Union[RatioResult, str]]) -> int:
    """
    Overall health score in [0, 100].

    Accepts RatioResult objects or bare tier names. Returns 0 when there is
    nothing to score.
    """
    points = []
    for r in results:
        status = r if isinstance(r, str) else r.performance_status
        points.append(TIER_POINTS[status])
    if not points:
        return 0
    mean = sum(points) / len(points)
    return max(0, min(100, math.floor(mean + 0.5)))


# ---------------------------------------------------------------------------
# Computation
# ---------------------------------------------------------------------------


def _active_benchmarks(
    store: Store, user_id: Optional[str]
) -> dict[int, dict[str, Any]]:
    if not user_id:
        return {}
    rows = store.select("user_benchmarks", {"user_id": user_id, "is_active": 1})
    return {int(r["ratio_definition_id"]): r for r in rows}


def compute_ratios(
    store: Store,
    period_id: int,
    user_id: Optional[str] = None,
    comparison_period_id: Optional[int] = None,
    category: Optional[str] = None,
    decimals: int = 2,
) -> list[RatioResult]:
    """
    Compute the active ratios of a period.

    Args:
        store: Open database store.
        period_id: Period to analyse.
        user_id: Whose custom benchmarks apply (None for defaults only).
        comparison_period_id: Optional previous period, used for averages
            such as average_total_assets.
        category: Restrict to one ratio category.
        decimals: Rounding of the calculated values.

    Returns:
        RatioResults in display order, or [] when the period has no
        mappings or no definitions are seeded.
    """
    if store.count("mappings", {"period_id": period_id}) == 0:
        logger.info("Period #%s has no mappings, no ratios computed", period_id)
        return []

    definitions = stored_definitions(store, category=category)
    if not definitions:
        logger.warning("No ratio definitions seeded")
        return []

    totals = aggregate(store, period_id, comparison_period_id)
    previous = None
    if comparison_period_id is not None:
        previous = aggregate(store, comparison_period_id)
    measures = build_measures(totals, item_measure_tags(store), previous)
    overrides = _active_benchmarks(store, user_id)

    results: list[RatioResult] = []
    for d in definitions:
        value = round(evaluate_formula(d.formula, measures), decimals)
        custom = overrides.get(int(d.id))

        target = d.target_value
        benchmark = d.benchmark_value
        industry = d.industry_average
        source = None
        if custom is not None:
            if custom["custom_target_value"] is not None:
                target = float(custom["custom_target_value"])
            if custom["custom_industry_average"] is not None:
                benchmark = float(custom["custom_industry_average"])
                industry = benchmark
            source = custom["benchmark_source"]

        results.append(
            RatioResult(
                ratio_key=d.key,
                ratio_name=d.name,
                ratio_category=d.category,
                calculated_value=value,
                target_value=target,
                benchmark_value=benchmark,
                industry_average=industry,
                direction=d.direction,
                unit=d.unit,
                performance_status=performance_status(
                    value, d.direction, target, benchmark
                ),
                trend_direction=trend_direction(value, d.direction, benchmark),
                has_custom_benchmark=custom is not None,
                benchmark_source=source,
                display_order=d.display_order,
            )
        )

    calculation_date = _now_utc_iso()
    by_key = {d.key: d.id for d in definitions}
    with store.transaction():
        store.upsert(
            "calculated_ratios",
            [
                {
                    "ratio_definition_id": by_key[r.ratio_key],
                    "period_id": period_id,
                    "calculated_value": r.calculated_value,
                    "calculation_date": calculation_date,
                }
                for r in results
            ],
            conflict_keys=["ratio_definition_id", "period_id"],
        )

    logger.info("Computed %d ratios for period #%s", len(results), period_id)
    return results


def ratio_trends(store: Store, category: Optional[str] = None) -> pd.DataFrame:
    """
    Stored ratio values as a period x ratio table.

    Rows are period names in chronological order, columns are ratio names
    in display order. Missing combinations are NaN.
    """
    values = pd.DataFrame(store.select("calculated_ratios"))
    if values.empty:
        return pd.DataFrame()

    definitions = pd.DataFrame(
        [
            {
                "ratio_definition_id": d.id,
                "ratio_name": d.name,
                "display_order": d.display_order,
            }
            for d in stored_definitions(store, category=category, active_only=False)
        ]
    )
    if definitions.empty:
        return pd.DataFrame()

    periods = pd.DataFrame(
        store.select(
            "financial_periods", columns=["id", "year", "quarter", "period_name"]
        )
    ).rename(columns={"id": "period_id"})

    df = values.merge(definitions, on="ratio_definition_id")
    df = df.merge(periods, on="period_id")
    if df.empty:
        return pd.DataFrame()

    table = df.pivot_table(
        index=["year", "quarter", "period_name"],
        columns="ratio_name",
        values="calculated_value",
        aggfunc="first",
    )
    table = table.sort_index()
    table.index = table.index.get_level_values("period_name")

    order = (
        df.drop_duplicates("ratio_name")
        .sort_values(["display_order", "ratio_name"])["ratio_name"]
        .tolist()
    )
    table = table[order]
    table.columns.name = None
    return table

