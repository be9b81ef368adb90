from dataclasses import dataclass
from datetime import date
from typing import Optional

import pytest

from budget_engine import (
    budget_overview,
    evaluate_budget,
    project_month_end,
    weekly_limit,
)
from rollups import SpendRecord


@dataclass
class _Budget:
    normalized_category: str
    amount_cents: int
    max_visits: Optional[int] = None


def _shared(id: int, amount_cents: int, day: date, category: str = "GROCERY") -> SpendRecord:
    return SpendRecord(
        id=id,
        account_id=1,
        date=day,
        amount_cents=amount_cents,
        category=category,
        is_shared=True,
    )


def test_over_budget_month_to_date() -> None:
    today = date(2025, 3, 15)
    records = [
        _shared(1, 10_000, date(2025, 3, 2)),
        _shared(2, 12_000, date(2025, 3, 6)),
        _shared(3, 8_000, date(2025, 3, 11)),
        _shared(4, 4_500, date(2025, 3, 15)),
    ]
    status = evaluate_budget(_Budget("GROCERY", 30_000, max_visits=6), records, today)

    assert status.month_to_date_cents == 34_500
    assert status.remaining_cents == -4_500
    assert status.is_over_budget
    assert status.visit_count == 4
    assert status.remaining_visits == 2
    # 345.00 / 15 days * 31 days
    assert status.projected_cents == 71_300
    assert status.weekly_limit_cents == 6_928


def test_only_shared_month_to_date_spend_counts() -> None:
    today = date(2025, 3, 15)
    records = [
        _shared(1, 1_000, date(2025, 3, 14)),
        _shared(2, 2_000, date(2025, 3, 16)),  # after today
        _shared(3, 4_000, date(2025, 2, 28)),  # last month
        _shared(4, 8_000, date(2025, 3, 10), category="TRAVEL"),
        SpendRecord(id=5, account_id=2, date=date(2025, 3, 3), amount_cents=500, category="GROCERY"),
    ]
    status = evaluate_budget(_Budget("GROCERY", 5_000), records, today)
    assert status.month_to_date_cents == 1_000
    assert status.remaining_visits is None


@pytest.mark.parametrize(
    "amount, spend",
    [(1, 0), (30_000, 29_999), (30_000, 30_001), (12_345, 99_999), (5_000, 5_000)],
)
def test_remaining_is_amount_minus_spend(amount: int, spend: int) -> None:
    today = date(2025, 3, 20)
    records = [_shared(1, spend, date(2025, 3, 20))] if spend else []
    status = evaluate_budget(_Budget("GROCERY", amount), records, today)
    assert status.remaining_cents == amount - spend


def test_non_positive_budget_is_rejected() -> None:
    with pytest.raises(ValueError):
        evaluate_budget(_Budget("GROCERY", 0), [], date(2025, 3, 1))


def test_projection_is_zero_without_spend() -> None:
    assert project_month_end(0, date(2025, 2, 10)) == 0
    assert project_month_end(1_000, date(2025, 2, 28)) == 1_000


def test_weekly_limit_rounds_half_up() -> None:
    assert weekly_limit(20_000) == 4_619
    assert weekly_limit(433) == 100


def test_overview_merges_month_week_and_budget_categories() -> None:
    # Saturday: the week started Monday 2025-02-24, in the previous month.
    today = date(2025, 3, 1)
    records = [
        SpendRecord(id=1, account_id=1, date=date(2025, 2, 26), amount_cents=1_000, category="GROCERY"),
        SpendRecord(id=2, account_id=1, date=date(2025, 3, 1), amount_cents=500, category="GROCERY"),
        SpendRecord(id=3, account_id=1, date=date(2025, 2, 10), amount_cents=9_999, category="SHOPPING"),
    ]
    overview = budget_overview(records, [_Budget("TRAVEL", 20_000)], today)

    assert overview.week.start == date(2025, 2, 24)
    lines = {line.category: line for line in overview.categories}
    assert list(lines) == ["GROCERY", "TRAVEL"]

    grocery = lines["GROCERY"]
    assert grocery.spend_month_cents == 500
    assert grocery.spend_week_cents == 1_500
    assert not grocery.has_budget
    assert grocery.weekly_limit_cents is None

    travel = lines["TRAVEL"]
    assert travel.spend_month_cents == 0
    assert travel.budget_limit_cents == 20_000
    assert travel.weekly_limit_cents == 4_619
