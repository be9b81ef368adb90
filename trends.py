from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Iterable

from periods import MONTH_LABELS, month_window
from rollups import SpendRecord, filter_records


@dataclass(frozen=True)
class TrendPoint:
    label: str
    month_index: int
    year: int
    amount_cents: int
    is_current_month: bool


def category_trend(
    records: Iterable[SpendRecord],
    category: str,
    today: date,
    *,
    months: int = 3,
) -> list[TrendPoint]:
    """Per-month spend for one category, oldest month first, ending this month."""
    window = month_window(today, months)
    matching = filter_records(records, category=category)

    points: list[TrendPoint] = []
    for period in window:
        total = sum(r.amount_cents for r in matching if period.contains(r.date))
        points.append(
            TrendPoint(
                label=MONTH_LABELS[period.start.month - 1],
                month_index=period.start.month - 1,
                year=period.start.year,
                amount_cents=total,
                is_current_month=(
                    period.start.year == today.year
                    and period.start.month == today.month
                ),
            )
        )
    return points
