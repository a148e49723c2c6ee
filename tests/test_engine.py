import pytest

from tb_finsight.engine import (
    LineItemTotal,
    aggregate,
    build_measures,
    cash_flow,
    cash_flow_totals,
    category_totals,
    filter_material,
    item_measure_tags,
    section_kind,
    variance_percentage,
)
from tb_finsight.mapping_service import apply_mapping


def total(
    item_id, category, amount, report_type="BALANCE_SHEET", previous=0.0, order=None
):
    return LineItemTotal(
        item_id=item_id,
        item_code=f"X{item_id}",
        item_name=f"Item {item_id}",
        category=category,
        sub_category=None,
        report_type=report_type,
        display_order=order if order is not None else item_id,
        current_amount=amount,
        previous_amount=previous,
        variance=amount - previous,
        variance_percentage=variance_percentage(amount, previous),
    )


def map_all(store, period_id, mapping):
    for name, item_id in mapping.items():
        apply_mapping(store, name, item_id, period_id)


def test_cash_and_sales_are_aggregated_with_signs(seeded_store, add_entries):
    period = add_entries(
        "2025-03-31",
        [
            {"ledger_name": "Cash", "closing_balance": 25000},
            {"ledger_name": "Sales", "closing_balance": -150000},
        ],
    )
    map_all(seeded_store, period.id, {"Cash": 6, "Sales": 19})

    totals = aggregate(seeded_store, period.id)

    amounts = [(t.item_id, t.current_amount) for t in totals]
    assert amounts == [(6, 25000.0), (19, -150000.0)]
    assert all(t.variance == 0 and t.variance_percentage == 0 for t in totals)
    assert all(t.previous_amount == 0 for t in totals)
    assert [c.variance for c in category_totals(totals)] == [0.0, 0.0]
    assert totals[0].category == "Current Assets"
    assert totals[1].report_type == "PROFIT_LOSS"


def test_aggregation_sums_entries_and_is_idempotent(seeded_store, add_entries):
    period = add_entries(
        "2025-03-31",
        [
            {"ledger_name": "Cash in Hand", "closing_balance": 85000},
            {"ledger_name": "Petty Cash", "closing_balance": 15000},
            {"ledger_name": "Unmapped", "closing_balance": 999},
        ],
    )
    map_all(seeded_store, period.id, {"Cash in Hand": 6, "Petty Cash": 6})

    first = aggregate(seeded_store, period.id)
    second = aggregate(seeded_store, period.id)

    assert first == second
    assert len(first) == 1
    assert first[0].current_amount == pytest.approx(100000.0)


def test_nothing_mapped_gives_no_totals(seeded_store, add_entries):
    period = add_entries("2025-03-31", [{"ledger_name": "Cash", "closing_balance": 1}])
    assert aggregate(seeded_store, period.id) == []


def test_comparison_period_variance(seeded_store, add_entries):
    q1 = add_entries("2025-03-31", [{"ledger_name": "Cash", "closing_balance": 20000}])
    q2 = add_entries(
        "2025-06-30",
        [
            {"ledger_name": "Cash", "closing_balance": 25000},
            {"ledger_name": "Sales", "closing_balance": -1000},
        ],
    )
    map_all(seeded_store, q1.id, {"Cash": 6})
    map_all(seeded_store, q2.id, {"Cash": 6, "Sales": 19})

    by_id = {t.item_id: t for t in aggregate(seeded_store, q2.id, q1.id)}

    assert by_id[6].previous_amount == 20000.0
    assert by_id[6].variance == 5000.0
    assert by_id[6].variance_percentage == pytest.approx(25.0)
    # no prior value: 0, not infinity
    assert by_id[19].previous_amount == 0.0
    assert by_id[19].variance_percentage == 0.0


@pytest.mark.parametrize(
    "current, previous, expected",
    [
        (110.0, 100.0, 10.0),
        (-90.0, -100.0, 10.0),
        (50.0, 0.0, 0.0),
        (0.0, 200.0, -100.0),
    ],
)
def test_variance_percentage(current, previous, expected):
    assert variance_percentage(current, previous) == pytest.approx(expected)


def test_category_totals():
    totals = [
        total(5, "Current Assets", 100.0, previous=50.0),
        total(6, "Current Assets", 300.0, previous=50.0),
        total(19, "Revenue", -500.0, report_type="PROFIT_LOSS"),
    ]
    cats = category_totals(totals)

    assert [c.category for c in cats] == ["Current Assets", "Revenue"]
    assert cats[0].current_amount == 400.0
    assert cats[0].variance == 300.0
    assert cats[0].variance_percentage == pytest.approx(300.0)


def test_materiality_filter():
    totals = [
        total(1, "Non-Current Assets", 1_500_000.0),
        total(6, "Current Assets", 85_000.0),
        total(16, "Current Liabilities", -1_000_000.0),
    ]

    assert [t.item_id for t in filter_material(totals)] == [1, 16]
    assert len(filter_material(totals, show_immaterial=True)) == 3
    assert [t.item_id for t in filter_material(totals, threshold=50_000)] == [1, 6, 16]


@pytest.mark.parametrize(
    "category, report_type, expected",
    [
        ("Current Assets", "BALANCE_SHEET", "current_assets"),
        ("Non-Current Assets", "BALANCE_SHEET", "non_current_assets"),
        ("Fixed Assets", "BALANCE_SHEET", "non_current_assets"),
        ("Current Liabilities", "BALANCE_SHEET", "current_liabilities"),
        ("Long-term Liabilities", "BALANCE_SHEET", "non_current_liabilities"),
        ("Equity", "BALANCE_SHEET", "equity"),
        ("Revenue", "PROFIT_LOSS", "revenue"),
        ("Other Income", "PROFIT_LOSS", "revenue"),
        ("Expenses", "PROFIT_LOSS", "expenses"),
        ("Suspense", "BALANCE_SHEET", "other"),
    ],
)
def test_section_kind(category, report_type, expected):
    assert section_kind(category, report_type) == expected


def test_build_measures_flips_credit_normal_sections():
    totals = [
        total(1, "Non-Current Assets", 1000.0, previous=600.0),
        total(6, "Current Assets", 400.0, previous=200.0),
        total(8, "Current Assets", 100.0),
        total(10, "Equity", -700.0),
        total(12, "Non-Current Liabilities", -300.0),
        total(16, "Current Liabilities", -500.0),
        total(19, "Revenue", -2000.0, report_type="PROFIT_LOSS"),
        total(21, "Expenses", 1200.0, report_type="PROFIT_LOSS"),
        total(24, "Expenses", 300.0, report_type="PROFIT_LOSS"),
    ]
    m = build_measures(totals, {6: "cash", 8: "inventory", 21: "cost_of_goods_sold"})

    assert m["current_assets"] == 500.0
    assert m["total_assets"] == 1500.0
    assert m["average_total_assets"] == pytest.approx((1500.0 + 800.0) / 2)
    assert m["current_liabilities"] == 500.0
    assert m["total_liabilities"] == 800.0
    assert m["total_equity"] == 700.0
    assert m["revenue"] == 2000.0
    assert m["total_expenses"] == 1500.0
    assert m["inventory"] == 100.0
    assert m["cash"] == 400.0
    assert m["gross_profit"] == 800.0
    assert m["net_profit"] == 500.0


def test_average_assets_without_comparison_equals_total():
    m = build_measures([total(6, "Current Assets", 400.0)])
    assert m["average_total_assets"] == m["total_assets"] == 400.0


def test_item_measure_tags_come_from_taxonomy(seeded_store):
    tags = item_measure_tags(seeded_store)
    assert tags[6] == "cash"
    assert tags[8] == "inventory"
    assert {k for k, v in tags.items() if v == "cost_of_goods_sold"} == {21, 22, 23}


def test_cash_flow_grouping():
    totals = [
        total(1, "Non-Current Assets", 1000.0),
        total(5, "Current Assets", 200.0),
        total(10, "Equity", -700.0),
        total(12, "Non-Current Liabilities", -300.0),
        total(16, "Current Liabilities", -50.0),
        total(19, "Revenue", -2000.0, report_type="PROFIT_LOSS"),
    ]
    lines = cash_flow(totals)

    assert [(line.activity, line.total.item_id) for line in lines] == [
        ("OPERATING", 5),
        ("OPERATING", 16),
        ("INVESTING", 1),
        ("FINANCING", 10),
        ("FINANCING", 12),
    ]
    assert cash_flow_totals(lines) == {
        "OPERATING": 150.0,
        "INVESTING": 1000.0,
        "FINANCING": -1000.0,
    }
    assert set(cash_flow_totals([]).values()) == {0.0}


def test_average_assets_include_lines_only_in_comparison_period():
    current = [total(6, "Current Assets", 600.0, previous=400.0)]
    previous = [
        total(1, "Non-Current Assets", 1000.0),
        total(6, "Current Assets", 400.0),
        total(16, "Current Liabilities", -250.0),
    ]

    m = build_measures(current, previous_totals=previous)

    assert m["total_assets"] == 600.0
    assert m["average_total_assets"] == pytest.approx((600.0 + 1400.0) / 2)
    assert build_measures(current, previous_totals=[])["average_total_assets"] == 600.0
