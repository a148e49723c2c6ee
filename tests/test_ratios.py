import pytest

from tb_finsight.benchmarks import find_definition_id, save_benchmark
from tb_finsight.mapping_service import apply_mapping
from tb_finsight.ratios import (
    HIGHER_IS_BETTER,
    LOWER_IS_BETTER,
    _safe_eval_expr,
    compute_ratios,
    default_direction_for,
    evaluate_formula,
    health_score,
    load_ratio_definitions,
    performance_status,
    ratio_trends,
    stored_definitions,
    trend_direction,
)

from conftest import RATIOS_TOML

# ledger name -> (closing balance, line item id)
BOOKS = {
    "Cash": (400.0, 6),
    "Building": (1000.0, 1),
    "Stock": (100.0, 8),
    "Creditors": (-250.0, 16),
    "Term Loan": (-300.0, 12),
    "Capital": (-700.0, 10),
    "Sales": (-2000.0, 19),
    "Materials": (1200.0, 21),
    "Salaries": (300.0, 24),
}


@pytest.fixture
def booked_period(seeded_store, add_entries):
    period = add_entries(
        "2025-03-31",
        [
            {"ledger_name": name, "closing_balance": balance}
            for name, (balance, _) in BOOKS.items()
        ],
    )
    for name, (_, item_id) in BOOKS.items():
        apply_mapping(seeded_store, name, item_id, period.id)
    return period


def by_name(results):
    return {r.ratio_name: r for r in results}


@pytest.mark.parametrize(
    "multiplier, expected",
    [
        (1.10, "excellent"),
        (1.09, "good"),
        (0.90, "good"),
        (0.89, "warning"),
        (0.70, "warning"),
        (0.69, "poor"),
    ],
)
def test_higher_is_better_tiers(multiplier, expected):
    assert performance_status(2.0 * multiplier, HIGHER_IS_BETTER, 2.0) == expected


@pytest.mark.parametrize(
    "multiplier, expected",
    [
        (0.80, "excellent"),
        (0.81, "good"),
        (1.00, "good"),
        (1.01, "warning"),
        (1.30, "warning"),
        (1.31, "poor"),
    ],
)
def test_lower_is_better_tiers(multiplier, expected):
    assert performance_status(0.5 * multiplier, LOWER_IS_BETTER, 0.5) == expected


def test_status_falls_back_to_benchmark_then_zero():
    assert performance_status(1.0, HIGHER_IS_BETTER, None, 2.0) == "poor"
    # neither target nor benchmark: compared against 0
    assert performance_status(5.0, HIGHER_IS_BETTER, None, None) == "excellent"
    assert performance_status(0.0, HIGHER_IS_BETTER, None, None) == "excellent"
    assert performance_status(-0.5, HIGHER_IS_BETTER, None, None) == "poor"
    assert performance_status(0.0, LOWER_IS_BETTER, None, None) == "excellent"
    assert performance_status(0.4, LOWER_IS_BETTER, None, None) == "poor"


@pytest.mark.parametrize(
    "value, direction, target, benchmark, expected",
    [
        (1.98, HIGHER_IS_BETTER, None, 1.8, "excellent"),
        (1.62, HIGHER_IS_BETTER, None, 1.8, "good"),
        (1.26, HIGHER_IS_BETTER, None, 1.8, "warning"),
        (0.99, HIGHER_IS_BETTER, 0.9, None, "excellent"),
        (0.81, HIGHER_IS_BETTER, 0.9, None, "good"),
        (0.63, HIGHER_IS_BETTER, 0.9, None, "warning"),
        (0.48, LOWER_IS_BETTER, 0.6, None, "excellent"),
        (0.78, LOWER_IS_BETTER, 0.6, None, "warning"),
        (0.79, LOWER_IS_BETTER, 0.6, None, "poor"),
    ],
)
def test_values_on_rounded_cutoffs(value, direction, target, benchmark, expected):
    assert performance_status(value, direction, target, benchmark) == expected


@pytest.mark.parametrize(
    "value, direction, benchmark, expected",
    [
        (2.0, HIGHER_IS_BETTER, 1.8, "up"),
        (1.85, HIGHER_IS_BETTER, 1.8, "stable"),
        (1.6, HIGHER_IS_BETTER, 1.8, "down"),
        (0.64, LOWER_IS_BETTER, 0.6, "stable"),
        (0.66, LOWER_IS_BETTER, 0.6, "up"),
        (1.0, HIGHER_IS_BETTER, None, "stable"),
    ],
)
def test_trend_direction(value, direction, benchmark, expected):
    assert trend_direction(value, direction, benchmark) == expected


def test_health_score():
    assert health_score([]) == 0
    assert health_score(["excellent", "excellent"]) == 100
    assert health_score(["poor"]) == 25
    # mean 62.5 rounds half up
    assert health_score(["good", "warning"]) == 63
    assert health_score(["excellent", "good", "poor"]) == 67


def test_safe_eval_expr():
    variables = {"a": 6.0, "b": 3.0}
    assert _safe_eval_expr("(a - b) / b * 100", variables) == pytest.approx(100.0)
    assert _safe_eval_expr("-a + +b", variables) == -3.0

    for expr in ("a ** b", "__import__('os')", "a if b else 1", "True + a", "a +"):
        with pytest.raises(ValueError):
            _safe_eval_expr(expr, variables)
    with pytest.raises(ValueError, match="Unknown measure"):
        _safe_eval_expr("a / c", variables)


def test_division_by_zero_yields_zero():
    assert evaluate_formula("a / b", {"a": 1.0, "b": 0.0}) == 0.0


def test_default_direction_from_name():
    assert default_direction_for("Debt to Equity") == LOWER_IS_BETTER
    assert default_direction_for("Debt Ratio") == LOWER_IS_BETTER
    assert default_direction_for("Current Ratio") == HIGHER_IS_BETTER


def test_load_ratio_definitions():
    defs = load_ratio_definitions(RATIOS_TOML)

    assert [d.key for d in defs][:2] == ["current_ratio", "quick_ratio"]
    assert {d.category for d in defs} == {
        "LIQUIDITY",
        "PROFITABILITY",
        "EFFICIENCY",
        "LEVERAGE",
    }
    debt_ratio = next(d for d in defs if d.key == "debt_ratio")
    assert debt_ratio.direction == LOWER_IS_BETTER
    assert debt_ratio.target_value is None


@pytest.mark.parametrize(
    "body, message",
    [
        ('[ratios.x]\nname = "X"\ncategory = "LIQUIDITY"\n', "name and a formula"),
        ('[ratios.x]\nname = "X"\ncategory = "OTHER"\nformula = "a"\n', "category"),
        (
            '[ratios.x]\nname = "X"\ncategory = "LIQUIDITY"\nformula = "a"\n'
            'direction = "sideways"\n',
            "direction",
        ),
        (
            '[ratios.x]\nname = "X"\ncategory = "LIQUIDITY"\nformula = "a +"\n',
            "formula",
        ),
        (
            '[ratios.x]\nname = "X"\ncategory = "LIQUIDITY"\nformula = "a"\n'
            '[ratios.y]\nname = "X"\ncategory = "LIQUIDITY"\nformula = "b"\n',
            "Duplicate",
        ),
        ("[ratios\n", "parse"),
    ],
)
def test_invalid_definitions(tmp_path, body, message):
    path = tmp_path / "ratios.toml"
    path.write_text(body, encoding="utf-8")
    with pytest.raises(ValueError, match=message):
        load_ratio_definitions(path)


def test_missing_definitions_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_ratio_definitions(tmp_path / "missing.toml")


def test_seeded_definitions_by_category(seeded_store):
    names = [d.name for d in stored_definitions(seeded_store, category="leverage")]
    assert names == ["Debt to Equity", "Debt Ratio"]


def test_unmapped_period_has_no_ratios(seeded_store, add_entries):
    period = add_entries("2025-03-31", [{"ledger_name": "Cash", "closing_balance": 1}])
    assert compute_ratios(seeded_store, period.id) == []
    assert seeded_store.count("calculated_ratios") == 0


def test_compute_ratios(seeded_store, booked_period):
    results = by_name(compute_ratios(seeded_store, booked_period.id))

    current = results["Current Ratio"]
    assert current.calculated_value == 2.0
    assert current.performance_status == "good"
    assert current.trend_direction == "up"
    assert current.has_custom_benchmark is False

    assert results["Quick Ratio"].calculated_value == 1.6
    assert results["Quick Ratio"].performance_status == "excellent"
    assert results["Gross Profit Margin"].calculated_value == 40.0
    assert results["Net Profit Margin"].calculated_value == 25.0
    assert results["Debt to Equity"].calculated_value == pytest.approx(0.79)
    assert results["Debt to Equity"].performance_status == "poor"
    # no target and no benchmark: graded against 0
    assert results["Debt Ratio"].calculated_value == pytest.approx(0.37)
    assert results["Debt Ratio"].performance_status == "poor"
    assert results["Return on Assets"].performance_status == "excellent"
    assert results["Return on Equity"].performance_status == "excellent"

    stored = seeded_store.count("calculated_ratios", {"period_id": booked_period.id})
    assert stored == len(results)


def test_asset_turnover_averages_full_comparison_assets(seeded_store, add_entries):
    q1 = add_entries(
        "2025-03-31",
        [
            {"ledger_name": "Cash", "closing_balance": 400.0},
            {"ledger_name": "Building", "closing_balance": 1000.0},
        ],
    )
    q2 = add_entries(
        "2025-06-30",
        [
            {"ledger_name": "Cash", "closing_balance": 600.0},
            {"ledger_name": "Sales", "closing_balance": -2000.0},
        ],
    )
    for period, names in ((q1, ("Cash", "Building")), (q2, ("Cash", "Sales"))):
        for name in names:
            apply_mapping(seeded_store, name, BOOKS[name][1], period.id)

    results = by_name(compute_ratios(seeded_store, q2.id, comparison_period_id=q1.id))

    # (600 + 1400) / 2 average assets
    assert results["Asset Turnover"].calculated_value == 2.0


def test_recomputing_overwrites_stored_values(seeded_store, booked_period):
    compute_ratios(seeded_store, booked_period.id)
    compute_ratios(seeded_store, booked_period.id)
    assert seeded_store.count("calculated_ratios") == 9


def test_custom_benchmark_overrides_defaults(seeded_store, booked_period):
    ratio_id = find_definition_id(seeded_store, "current_ratio")
    save_benchmark(
        seeded_store,
        "alice",
        ratio_id,
        custom_target_value=2.5,
        custom_industry_average=2.4,
        benchmark_source="Industry Association",
    )

    mine = by_name(compute_ratios(seeded_store, booked_period.id, user_id="alice"))
    theirs = by_name(compute_ratios(seeded_store, booked_period.id, user_id="bob"))

    current = mine["Current Ratio"]
    assert current.target_value == 2.5
    assert current.benchmark_value == 2.4
    assert current.industry_average == 2.4
    assert current.performance_status == "warning"
    assert current.trend_direction == "down"
    assert current.has_custom_benchmark is True
    assert current.benchmark_source == "Industry Association"

    assert theirs["Current Ratio"].target_value == 2.0
    assert theirs["Current Ratio"].performance_status == "good"


def test_inactive_benchmark_is_ignored(seeded_store, booked_period):
    ratio_id = find_definition_id(seeded_store, "Current Ratio")
    save_benchmark(
        seeded_store, "alice", ratio_id, custom_target_value=2.5, is_active=False
    )

    results = by_name(compute_ratios(seeded_store, booked_period.id, user_id="alice"))
    assert results["Current Ratio"].target_value == 2.0


def test_category_filter(seeded_store, booked_period):
    results = compute_ratios(seeded_store, booked_period.id, category="LIQUIDITY")
    assert [r.ratio_name for r in results] == ["Current Ratio", "Quick Ratio"]


def test_ratio_trends(seeded_store, booked_period, add_entries):
    q2 = add_entries(
        "2025-06-30",
        [
            {"ledger_name": "Cash", "closing_balance": 500},
            {"ledger_name": "Creditors", "closing_balance": -250},
        ],
    )
    apply_mapping(seeded_store, "Cash", 6, q2.id)
    apply_mapping(seeded_store, "Creditors", 16, q2.id)

    compute_ratios(seeded_store, q2.id, category="LIQUIDITY")
    compute_ratios(seeded_store, booked_period.id, category="LIQUIDITY")

    trends = ratio_trends(seeded_store, category="LIQUIDITY")

    assert list(trends.index) == ["Q1 2025", "Q2 2025"]
    assert list(trends.columns) == ["Current Ratio", "Quick Ratio"]
    assert trends.loc["Q2 2025", "Current Ratio"] == 2.0


def test_ratio_trends_empty(seeded_store):
    assert ratio_trends(seeded_store).empty
