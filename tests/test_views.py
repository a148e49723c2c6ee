import math

import pandas as pd
import pytest

from tb_finsight.classifier import Suggestion
from tb_finsight.engine import LineItemTotal, cash_flow
from tb_finsight.ratios import RatioResult
from tb_finsight.views import (
    STATEMENT_COLUMNS,
    cash_flow_view,
    export_csv,
    format_inr,
    format_percentage,
    ratios_to_dataframe,
    statement_view,
    suggestions_to_dataframe,
)


def total(item_id, name, category, amount, report_type="BALANCE_SHEET", previous=0.0):
    return LineItemTotal(
        item_id=item_id,
        item_code=f"C{item_id}",
        item_name=name,
        category=category,
        sub_category=None,
        report_type=report_type,
        display_order=item_id,
        current_amount=amount,
        previous_amount=previous,
        variance=amount - previous,
        variance_percentage=0.0,
    )


TOTALS = [
    total(1, "Property, Plant and Equipment", "Non-Current Assets", 15_000_000.0),
    total(5, "Trade Receivables", "Current Assets", 2_400_000.0),
    total(6, "Cash and Cash Equivalents", "Current Assets", 85_000.0),
    total(10, "Equity Share Capital", "Equity", -10_000_000.0),
    total(19, "Revenue from Operations", "Revenue", -26_700_000.0, "PROFIT_LOSS"),
]


@pytest.mark.parametrize(
    "amount, decimals, expected",
    [
        (123456789, 0, "₹12,34,56,789"),
        (-1500.5, 2, "-₹1,500.50"),
        (100000, 0, "₹1,00,000"),
        (999, 0, "₹999"),
        (-0.4, 0, "₹0"),
        (None, 0, ""),
        (math.nan, 0, ""),
    ],
)
def test_format_inr(amount, decimals, expected):
    assert format_inr(amount, decimals) == expected


def test_format_percentage():
    assert format_percentage(11.111) == "+11.1%"
    assert format_percentage(-5) == "-5.0%"
    assert format_percentage(0.0) == "+0.0%"
    assert format_percentage(math.nan) == ""


def test_balance_sheet_view_hides_immaterial_items_but_keeps_totals():
    df = statement_view(TOTALS, "BALANCE_SHEET", materiality_threshold=1_000_000)

    assert list(df.columns) == STATEMENT_COLUMNS
    assert list(df["name"]) == [
        "Non-Current Assets",
        "Property, Plant and Equipment",
        "Total Non-Current Assets",
        "Current Assets",
        "Trade Receivables",
        "Total Current Assets",
        "Equity",
        "Equity Share Capital",
        "Total Equity",
    ]
    assert list(df["display_order"]) == [10, 20, 30, 40, 50, 60, 70, 80, 90]
    current_total = df.loc[df["name"] == "Total Current Assets"].iloc[0]
    assert current_total["row_type"] == "total"
    assert current_total["current_amount"] == 2_485_000.0


def test_show_immaterial_and_report_type_filter():
    df = statement_view(
        TOTALS, "BALANCE_SHEET", materiality_threshold=1_000_000, show_immaterial=True
    )
    assert "Cash and Cash Equivalents" in set(df["name"])

    pl = statement_view(TOTALS, "PROFIT_LOSS")
    assert list(pl["row_type"]) == ["category", "item", "total"]

    assert statement_view([], "PROFIT_LOSS").empty


def test_cash_flow_view():
    df = cash_flow_view(cash_flow(TOTALS))

    assert list(df["name"]) == [
        "Operating Activities",
        "Trade Receivables",
        "Cash and Cash Equivalents",
        "Net Operating Activities",
        "Investing Activities",
        "Property, Plant and Equipment",
        "Net Investing Activities",
        "Financing Activities",
        "Equity Share Capital",
        "Net Financing Activities",
    ]
    net_operating = df.loc[df["name"] == "Net Operating Activities"].iloc[0]
    assert net_operating["activity"] == "OPERATING"
    assert net_operating["current_amount"] == 2_485_000.0
    assert cash_flow_view([]).empty


def ratio(name, order, value, status="good"):
    return RatioResult(
        ratio_key=name.lower().replace(" ", "_"),
        ratio_name=name,
        ratio_category="LIQUIDITY",
        calculated_value=value,
        target_value=2.0,
        benchmark_value=1.8,
        industry_average=1.8,
        direction="higher_is_better",
        unit="ratio",
        performance_status=status,
        trend_direction="up",
        has_custom_benchmark=False,
        benchmark_source=None,
        display_order=order,
    )


def test_ratios_to_dataframe():
    df = ratios_to_dataframe(
        [ratio("Quick Ratio", 2, 1.6666), ratio("Current Ratio", 1, 2.0)]
    )
    assert list(df["ratio_name"]) == ["Current Ratio", "Quick Ratio"]
    assert df.loc[1, "value"] == 1.67
    assert list(df.columns)[:4] == ["ratio_name", "category", "value", "unit"]
    assert ratios_to_dataframe([]).empty


def test_suggestions_to_dataframe(taxonomy):
    df = suggestions_to_dataframe(
        [Suggestion("Cash in Hand", 6, 0.6, "Inferred")], taxonomy
    )
    assert df.loc[0, "code"] == "CA-CASH"
    assert df.loc[0, "display_name"] == "Cash and Cash Equivalents"

    without = suggestions_to_dataframe([Suggestion("Cash", 6, 0.6, "")])
    assert without.loc[0, "code"] == ""


def test_export_csv_quotes_every_field(tmp_path):
    df = pd.DataFrame([{"name": "Cash", "amount": 85000.0}])
    path = export_csv(df, tmp_path / "out" / "nested" / "bs.csv", title="Balance Sheet")

    lines = path.read_text(encoding="utf-8").splitlines()
    assert lines == ['"Balance Sheet"', '"name","amount"', '"Cash","85000.0"']
