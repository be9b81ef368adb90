from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field, replace
from datetime import date
from typing import Iterable, Optional

from periods import Period

UNCATEGORIZED = "Uncategorized"


@dataclass(frozen=True)
class SpendRecord:
    """A transaction joined with the account fields the rollups need."""

    id: int
    account_id: int
    date: date
    amount_cents: int
    category: Optional[str] = None
    is_shared: bool = False
    merchant_name: Optional[str] = None
    account_name: str = ""
    account_type: Optional[str] = None
    account_subtype: Optional[str] = None
    account_is_shared_source: bool = False

    @property
    def category_label(self) -> str:
        return category_label(self.category)


@dataclass(frozen=True)
class CategoryRollup:
    category: str
    total_cents: int
    transaction_count: int


@dataclass(frozen=True)
class AccountSummary:
    account_id: int
    account_name: str
    type: Optional[str]
    subtype: Optional[str]
    is_shared_source: bool
    total_cents: int
    transaction_count: int
    transactions: list[SpendRecord] = field(default_factory=list)


@dataclass(frozen=True)
class SpendAggregate:
    total_cents: int = 0
    transaction_count: int = 0
    accounts: list[AccountSummary] = field(default_factory=list)
    categories: list[CategoryRollup] = field(default_factory=list)
    category_labels: list[str] = field(default_factory=list)
    shared_only: bool = False

    def category_total(self, category: Optional[str]) -> int:
        label = category_label(category)
        for rollup in self.categories:
            if rollup.category == label:
                return rollup.total_cents
        return 0


@dataclass(frozen=True)
class TransactionChange:
    """What a single-row edit changed, enough to patch in-memory rollups or
    roll them back if the write fails."""

    transaction_id: int
    account_id: int
    amount_cents: int
    previous_category: Optional[str]
    category: Optional[str]
    previous_is_shared: bool
    is_shared: bool

    def reversed(self) -> TransactionChange:
        return replace(
            self,
            previous_category=self.category,
            category=self.previous_category,
            previous_is_shared=self.is_shared,
            is_shared=self.previous_is_shared,
        )


def category_label(category: Optional[str]) -> str:
    if category is None or not category.strip():
        return UNCATEGORIZED
    return category


def is_shared_spend(record: SpendRecord) -> bool:
    return record.account_is_shared_source or record.is_shared


def filter_records(
    records: Iterable[SpendRecord],
    period: Optional[Period] = None,
    *,
    shared_only: bool = False,
    category: Optional[str] = None,
) -> list[SpendRecord]:
    label = category_label(category) if category is not None else None
    out: list[SpendRecord] = []
    for record in records:
        if period is not None and not period.contains(record.date):
            continue
        if label is not None and record.category_label != label:
            continue
        if shared_only and not is_shared_spend(record):
            continue
        out.append(record)
    return out
def _sort_categories(rollups: Iterable[CategoryRollup]) -> list[CategoryRollup]:
    return sorted(rollups, key=lambda r: (-r.total_cents, r.category))


def _sort_accounts(accounts: Iterable[AccountSummary]) -> list[AccountSummary]:
    return sorted(accounts, key=lambda a: (-a.total_cents, a.account_name, a.account_id))


def aggregate(
    records: Iterable[SpendRecord],
    period: Optional[Period] = None,
    *,
    shared_only: bool = False,
    category: Optional[str] = None,
) -> SpendAggregate:
    """Group spend by account and by category.

    Amounts are integer cents, so the account view, the category view and the
    grand total always reconcile exactly.
    """
    kept = filter_records(records, period, shared_only=shared_only, category=category)
    if not kept:
        return SpendAggregate(shared_only=shared_only)

    by_account: dict[int, list[SpendRecord]] = defaultdict(list)
    by_category: dict[str, list[SpendRecord]] = defaultdict(list)
    for record in kept:
        by_account[record.account_id].append(record)
        by_category[record.category_label].append(record)

    accounts: list[AccountSummary] = []
    for account_id, rows in by_account.items():
        first = rows[0]
        accounts.append(
            AccountSummary(
                account_id=account_id,
                account_name=first.account_name,
                type=first.account_type,
                subtype=first.account_subtype,
                is_shared_source=first.account_is_shared_source,
                total_cents=sum(r.amount_cents for r in rows),
                transaction_count=len(rows),
                transactions=sorted(rows, key=lambda r: (r.date, r.id), reverse=True),
            )
        )

    categories = _sort_categories(
        CategoryRollup(
            category=label,
            total_cents=sum(r.amount_cents for r in rows),
            transaction_count=len(rows),
        )
        for label, rows in by_category.items()
    )

    return SpendAggregate(
        total_cents=sum(r.amount_cents for r in kept),
        transaction_count=len(kept),
        accounts=_sort_accounts(accounts),
        categories=categories,
        category_labels=sorted(by_category),
        shared_only=shared_only,
    )


def _find_record(aggregate_: SpendAggregate, change: TransactionChange) -> Optional[SpendRecord]:
    for summary in aggregate_.accounts:
        if summary.account_id != change.account_id:
            continue
        for record in summary.transactions:
            if record.id == change.transaction_id:
                return record
    return None


def apply_change(aggregate_: SpendAggregate, change: TransactionChange) -> SpendAggregate:
    """Fold a single-row edit into an aggregate without re-aggregating.

    A recategorization shifts the transaction's amount and count from its
    previous category rollup to the new one; rollups that drop to zero rows
    disappear. In a ``shared_only`` aggregate, a row that stops counting as
    shared spend is removed from every total. A row that starts counting
    cannot be added from the change alone, so that raises ``ValueError`` and
    the caller has to re-aggregate.
    """
    old_label = category_label(change.previous_category)
    new_label = category_label(change.category)

    drops = False
    if aggregate_.shared_only and change.previous_is_shared != change.is_shared:
        record = _find_record(aggregate_, change)
        if record is None:
            raise ValueError(
                f"Transaction {change.transaction_id} is not part of this aggregate"
            )
        drops = not is_shared_spend(replace(record, is_shared=change.is_shared))

    totals = {
        r.category: (r.total_cents, r.transaction_count) for r in aggregate_.categories
    }
    if drops or old_label != new_label:
        old_total, old_count = totals.get(old_label, (0, 0))
        if old_count <= 0:
            raise ValueError(f"Category {old_label!r} is not part of this aggregate")
        if old_count == 1:
            del totals[old_label]
        else:
            totals[old_label] = (old_total - change.amount_cents, old_count - 1)
    if not drops and old_label != new_label:
        new_total, new_count = totals.get(new_label, (0, 0))
        totals[new_label] = (new_total + change.amount_cents, new_count + 1)

    accounts: list[AccountSummary] = []
    for summary in aggregate_.accounts:
        if summary.account_id != change.account_id:
            accounts.append(summary)
            continue
        if drops:
            rows = [r for r in summary.transactions if r.id != change.transaction_id]
            if rows:
                accounts.append(
                    replace(
                        summary,
                        total_cents=summary.total_cents - change.amount_cents,
                        transaction_count=summary.transaction_count - 1,
                        transactions=rows,
                    )
                )
            continue
        rows = [
            replace(r, category=change.category, is_shared=change.is_shared)
            if r.id == change.transaction_id
            else r
            for r in summary.transactions
        ]
        accounts.append(replace(summary, transactions=rows))

    removed_cents = change.amount_cents if drops else 0
    return replace(
        aggregate_,
        total_cents=aggregate_.total_cents - removed_cents,
        transaction_count=aggregate_.transaction_count - (1 if drops else 0),
        accounts=_sort_accounts(accounts),
        categories=_sort_categories(
            CategoryRollup(category=label, total_cents=total, transaction_count=count)
            for label, (total, count) in totals.items()
        ),
        category_labels=sorted(totals),
    )
