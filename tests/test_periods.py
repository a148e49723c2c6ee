from datetime import date

import pytest

from tb_finsight.errors import NoPeriodError, NotReadyError
from tb_finsight.periods import (
    latest_period,
    list_periods,
    period_name,
    previous_period,
    quarter_for,
    require_period,
    resolve_period,
)


@pytest.mark.parametrize(
    "d, expected",
    [
        (date(2025, 1, 1), (2025, 1)),
        (date(2025, 3, 31), (2025, 1)),
        (date(2025, 4, 1), (2025, 2)),
        (date(2025, 6, 30), (2025, 2)),
        (date(2025, 9, 30), (2025, 3)),
        (date(2025, 12, 31), (2025, 4)),
        ("2024-11-15", (2024, 4)),
    ],
)
def test_quarter_for(d, expected):
    assert quarter_for(d) == expected


def test_period_name():
    assert period_name(2025, 1) == "Q1 2025"


def test_invalid_date_string():
    with pytest.raises(ValueError, match="YYYY-MM-DD"):
        quarter_for("30/06/2025")


def test_resolve_period_creates_once(store):
    first = resolve_period(store, date(2025, 6, 30))
    again = resolve_period(store, "2025-05-15")

    assert first == again
    assert first.period_name == "Q2 2025"
    assert first.quarter_end_date == date(2025, 6, 30)
    assert store.count("financial_periods") == 1


def test_resolve_period_without_create(store):
    with pytest.raises(NoPeriodError):
        resolve_period(store, date(2025, 6, 30), create=False)
    assert store.count("financial_periods") == 0


def test_listing_latest_and_previous(store):
    q4 = resolve_period(store, date(2024, 12, 31))
    q2 = resolve_period(store, date(2025, 6, 30))
    q1 = resolve_period(store, date(2025, 3, 31))

    names = [p.period_name for p in list_periods(store)]
    assert names == ["Q2 2025", "Q1 2025", "Q4 2024"]
    assert latest_period(store) == q2
    assert previous_period(store, q2) == q1
    assert previous_period(store, q1) == q4
    assert previous_period(store, q4) is None


def test_require_period(store):
    with pytest.raises(NoPeriodError) as excinfo:
        require_period(store)
    assert isinstance(excinfo.value, NotReadyError)
    assert excinfo.value.guidance == "upload data first"

    period = resolve_period(store, date(2025, 3, 31))
    assert require_period(store) == period
    assert require_period(store, period.id) == period
    with pytest.raises(NoPeriodError, match="#999"):
        require_period(store, 999)
