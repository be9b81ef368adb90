from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Iterable, Optional, Protocol

from money import round_cents
from periods import Period, current_month, current_week, days_in_month, month_to_date
from rollups import SpendRecord, aggregate, category_label

# Average weeks per month; presentation uses it for a weekly-equivalent limit.
WEEKS_PER_MONTH = Decimal("4.33")


class BudgetLike(Protocol):
    normalized_category: str
    amount_cents: int
    max_visits: Optional[int]


@dataclass(frozen=True)
class BudgetStatus:
    period: Period
    month_to_date_cents: int
    visit_count: int
    remaining_cents: int
    remaining_visits: Optional[int]
    projected_cents: int
    weekly_limit_cents: int

    @property
    def is_over_budget(self) -> bool:
        return self.remaining_cents < 0


@dataclass(frozen=True)
class CategoryBudgetLine:
    category: str
    spend_month_cents: int
    spend_week_cents: int
    budget_limit_cents: Optional[int]
    weekly_limit_cents: Optional[int]

    @property
    def has_budget(self) -> bool:
        return self.budget_limit_cents is not None


@dataclass(frozen=True)
class BudgetOverview:
    month: Period
    week: Period
    categories: list[CategoryBudgetLine]


def weekly_limit(amount_cents: int) -> int:
    return round_cents(Decimal(amount_cents) / WEEKS_PER_MONTH)


def project_month_end(spend_cents: int, today: date) -> int:
    """Linear run-rate: month-to-date spend per elapsed day, times days in month.

    This is deliberately not a forecast; zero spend projects to zero.
    """
    day_of_month = today.day
    if day_of_month <= 0 or spend_cents <= 0:
        return 0
    total_days = days_in_month(today.year, today.month)
    return round_cents(Decimal(spend_cents) / day_of_month * total_days)


def evaluate_budget(
    budget: BudgetLike,
    records: Iterable[SpendRecord],
    today: date,
) -> BudgetStatus:
    """Month-to-date status of one budget against shared spend in its category."""
    if budget.amount_cents <= 0:
        raise ValueError("Budget amount must be greater than zero")

    period = month_to_date(today)
    mtd = aggregate(
        records, period, shared_only=True, category=budget.normalized_category
    )
    remaining_visits = (
        budget.max_visits - mtd.transaction_count
        if budget.max_visits is not None
        else None
    )
    return BudgetStatus(
        period=period,
        month_to_date_cents=mtd.total_cents,
        visit_count=mtd.transaction_count,
        remaining_cents=budget.amount_cents - mtd.total_cents,
        remaining_visits=remaining_visits,
        projected_cents=project_month_end(mtd.total_cents, today),
        weekly_limit_cents=weekly_limit(budget.amount_cents),
    )


def budget_overview(
    records: Iterable[SpendRecord],
    budgets: Iterable[BudgetLike],
    today: date,
) -> BudgetOverview:
    """Month and week spend per category, overlaid with monthly limits.

    Categories that carry a budget but have no spend still get a line.
    """
    rows = list(records)
    month = current_month(today)
    week = current_week(today)
    month_spend = {r.category: r.total_cents for r in aggregate(rows, month).categories}
    week_spend = {r.category: r.total_cents for r in aggregate(rows, week).categories}
    limits = {category_label(b.normalized_category): b.amount_cents for b in budgets}

    lines: list[CategoryBudgetLine] = []
    for category in sorted(set(month_spend) | set(week_spend) | set(limits)):
        limit = limits.get(category)
        lines.append(
            CategoryBudgetLine(
                category=category,
                spend_month_cents=month_spend.get(category, 0),
                spend_week_cents=week_spend.get(category, 0),
                budget_limit_cents=limit,
                weekly_limit_cents=weekly_limit(limit) if limit is not None else None,
            )
        )
    return BudgetOverview(month=month, week=week, categories=lines)
