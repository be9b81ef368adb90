from __future__ import annotations

import logging
from datetime import date
from typing import Optional

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.orm import Session, joinedload

from budget_engine import BudgetOverview, BudgetStatus, budget_overview, evaluate_budget
from models import Account, Budget, BudgetPeriodType, Transaction
from periods import Period, current_month, current_week, month_to_date, month_window
from rollups import (
    UNCATEGORIZED,
    SpendAggregate,
    SpendRecord,
    TransactionChange,
    aggregate,
    filter_records,
)
from schemas import BudgetIn
from trends import TrendPoint, category_trend

logger = logging.getLogger(__name__)


class NotFoundError(ValueError):
    pass


class InvalidInputError(ValueError):
    pass


def spend_record(txn: Transaction, account: Account) -> SpendRecord:
    return SpendRecord(
        id=txn.id,
        account_id=txn.account_id,
        date=txn.date,
        amount_cents=txn.amount_cents,
        category=txn.normalized_category,
        is_shared=txn.is_shared,
        merchant_name=txn.merchant_name,
        account_name=account.name,
        account_type=account.type,
        account_subtype=account.subtype,
        account_is_shared_source=account.is_shared_source,
    )


def _category_clause(category: str):
    if category == UNCATEGORIZED:
        return or_(
            Transaction.normalized_category.is_(None),
            func.trim(Transaction.normalized_category) == "",
            Transaction.normalized_category == UNCATEGORIZED,
        )
    return Transaction.normalized_category == category


class AccountService:
    def __init__(self, session: Session, user_id: str) -> None:
        self.session = session
        self.user_id = user_id

    def list_all(self) -> list[Account]:
        stmt = (
            select(Account)
            .where(Account.user_id == self.user_id)
            .order_by(Account.name, Account.id)
        )
        return self.session.scalars(stmt).all()

    def get(self, account_id: int) -> Account:
        account = self.session.get(Account, account_id)
        if not account or account.user_id != self.user_id:
            raise NotFoundError("Account not found")
        return account

    def set_shared_source(self, account_id: int, is_shared_source: bool) -> Account:
        account = self.get(account_id)
        account.is_shared_source = is_shared_source
        self.session.commit()
        self.session.refresh(account)
        return account


class TransactionService:
    def __init__(self, session: Session, user_id: str) -> None:
        self.session = session
        self.user_id = user_id

    def get(self, transaction_id: int) -> Transaction:
        txn = self.session.scalar(
            select(Transaction)
            .options(joinedload(Transaction.account))
            .where(
                Transaction.id == transaction_id,
                Transaction.user_id == self.user_id,
            )
        )
        if not txn:
            raise NotFoundError("Transaction not found")
        return txn

    def list_spend_records(
        self,
        period: Period,
        *,
        category: Optional[str] = None,
        account_id: Optional[int] = None,
    ) -> list[SpendRecord]:
        stmt = (
            select(Transaction, Account)
            .join(Account, Transaction.account_id == Account.id)
            .where(
                Transaction.user_id == self.user_id,
                Account.user_id == self.user_id,
                Transaction.date >= period.start,
                Transaction.date < period.end,
            )
            .order_by(Transaction.date.desc(), Transaction.id.desc())
        )
        if category is not None:
            stmt = stmt.where(_category_clause(category))
        if account_id is not None:
            stmt = stmt.where(Transaction.account_id == account_id)
        return [spend_record(txn, account) for txn, account in self.session.execute(stmt)]

    def available_categories(self) -> list[str]:
        stmt = (
            select(Transaction.normalized_category)
            .distinct()
            .where(
                Transaction.user_id == self.user_id,
                Transaction.normalized_category.is_not(None),
                func.trim(Transaction.normalized_category) != "",
            )
            .order_by(Transaction.normalized_category)
        )
        return list(self.session.scalars(stmt).all())

    def clean_category(self, raw: str) -> str:
        """Categories are free text; only surrounding whitespace is dropped."""
        clean = raw.strip()
        if not clean:
            raise InvalidInputError("Category cannot be empty")
        return clean

    def update(
        self,
        transaction_id: int,
        *,
        category: Optional[str] = None,
        is_shared: Optional[bool] = None,
    ) -> tuple[Transaction, TransactionChange]:
        if category is None and is_shared is None:
            raise InvalidInputError("No valid fields to update")
        resolved = self.clean_category(category) if category is not None else None

        txn = self.get(transaction_id)
        previous_category = txn.normalized_category
        previous_is_shared = txn.is_shared
        if resolved is not None:
            txn.normalized_category = resolved
        if is_shared is not None:
            txn.is_shared = is_shared
        self.session.commit()
        self.session.refresh(txn)

        change = TransactionChange(
            transaction_id=txn.id,
            account_id=txn.account_id,
            amount_cents=txn.amount_cents,
            previous_category=previous_category,
            category=txn.normalized_category,
            previous_is_shared=previous_is_shared,
            is_shared=txn.is_shared,
        )
        return txn, change

    def set_category(
        self, transaction_id: int, category: str
    ) -> tuple[Transaction, TransactionChange]:
        return self.update(transaction_id, category=category)

    def set_shared(
        self, transaction_id: int, is_shared: bool
    ) -> tuple[Transaction, TransactionChange]:
        return self.update(transaction_id, is_shared=is_shared)

    def bulk_mark_shared(self, account_ids: list[int]) -> int:
        if not account_ids:
            return 0
        result = self.session.execute(
            update(Transaction)
            .where(
                Transaction.user_id == self.user_id,
                Transaction.account_id.in_(account_ids),
                Transaction.is_shared.is_(False),
            )
            .values(is_shared=True)
            .execution_options(synchronize_session=False)
        )
        self.session.commit()
        return int(result.rowcount or 0)

    def resync_shared_sources(self) -> int:
        """Flag every transaction on a shared-source account as shared, in one UPDATE."""
        shared_accounts = select(Account.id).where(
            Account.user_id == self.user_id,
            Account.is_shared_source.is_(True),
        )
        result = self.session.execute(
            update(Transaction)
            .where(
                Transaction.user_id == self.user_id,
                Transaction.account_id.in_(shared_accounts.scalar_subquery()),
                Transaction.is_shared.is_(False),
            )
            .values(is_shared=True)
            .execution_options(synchronize_session=False)
        )
        self.session.commit()
        count = int(result.rowcount or 0)
        logger.info(f"shared_resync: user={self.user_id} transactions_synced={count}")
        return count


class BudgetService:
    def __init__(self, session: Session, user_id: str) -> None:
        self.session = session
        self.user_id = user_id

    def list_all(self) -> list[Budget]:
        stmt = (
            select(Budget)
            .where(Budget.user_id == self.user_id)
            .order_by(Budget.normalized_category)
        )
        return self.session.scalars(stmt).all()

    def get(self, budget_id: int) -> Budget:
        budget = self.session.get(Budget, budget_id)
        if not budget or budget.user_id != self.user_id:
            raise NotFoundError("Budget not found")
        return budget

    def get_by_category(self, category: str) -> Optional[Budget]:
        return self.session.scalar(
            select(Budget).where(
                Budget.user_id == self.user_id,
                Budget.normalized_category == category,
            )
        )

    def upsert(self, data: BudgetIn) -> Budget:
        category = data.category.strip()
        if not category:
            raise InvalidInputError("Invalid category")

        existing = self.get_by_category(category)
        if existing:
            existing.amount_cents = data.amount_cents
            if "max_visits" in data.model_fields_set:
                existing.max_visits = data.max_visits
            self.session.commit()
            self.session.refresh(existing)
            return existing

        budget = Budget(
            user_id=self.user_id,
            name=category,
            normalized_category=category,
            amount_cents=data.amount_cents,
            period_type=BudgetPeriodType.monthly.value,
            max_visits=data.max_visits,
        )
        self.session.add(budget)
        self.session.commit()
        self.session.refresh(budget)
        return budget

    def delete_by_category(self, category: str) -> bool:
        """Returns whether a row went away; deleting nothing is still success."""
        result = self.session.execute(
            delete(Budget).where(
                Budget.user_id == self.user_id,
                Budget.normalized_category == category,
            )
        )
        self.session.commit()
        return bool(result.rowcount)


class SpendService:
    def __init__(self, session: Session, user_id: str) -> None:
        self.session = session
        self.user_id = user_id
        self.transactions = TransactionService(session, user_id)
        self.budgets = BudgetService(session, user_id)

    def spend_summary(
        self,
        period: Period,
        *,
        shared_only: bool = False,
        account_id: Optional[int] = None,
    ) -> SpendAggregate:
        records = self.transactions.list_spend_records(period, account_id=account_id)
        return aggregate(records, period, shared_only=shared_only)

    def shared_transactions(
        self, period: Period, *, category: Optional[str] = None
    ) -> list[SpendRecord]:
        records = self.transactions.list_spend_records(period, category=category)
        return filter_records(records, period, shared_only=True)

    def category_transactions(self, category: str, period: Period) -> list[SpendRecord]:
        return self.transactions.list_spend_records(period, category=category)

    def category_trend(
        self, category: str, today: date, *, months: int = 3
    ) -> tuple[list[TrendPoint], Optional[int]]:
        window = month_window(today, months)
        span = Period("trend", window[0].start, window[-1].end)
        records = self.transactions.list_spend_records(span, category=category)
        budget = self.budgets.get_by_category(category)
        limit = budget.amount_cents if budget else None
        return category_trend(records, category, today, months=months), limit

    def budget_overview(self, today: date) -> BudgetOverview:
        month = current_month(today)
        week = current_week(today)
        span = Period(
            "overview", min(month.start, week.start), max(month.end, week.end)
        )
        records = self.transactions.list_spend_records(span)
        return budget_overview(records, self.budgets.list_all(), today)

    def budget_status(self, budget_id: int, today: date) -> tuple[Budget, BudgetStatus]:
        budget = self.budgets.get(budget_id)
        records = self.transactions.list_spend_records(
            month_to_date(today), category=budget.normalized_category
        )
        return budget, evaluate_budget(budget, records, today)
