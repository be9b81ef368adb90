from datetime import date

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session

from database import Base
from models import Account, Budget, Transaction
from schemas import BudgetIn
from services import BudgetService, NotFoundError, SpendService


def _shared_account(session: Session, user_id: str = "alice") -> Account:
    account = Account(
        user_id=user_id,
        provider_account_id=f"{user_id}-joint",
        name="Joint",
        is_shared_source=True,
    )
    session.add(account)
    session.flush()
    return account


def test_upsert_updates_existing_category_budget() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        budgets = BudgetService(session, "alice")
        first = budgets.upsert(
            BudgetIn(category="GROCERY", amount_cents=30_000, max_visits=8)
        )
        assert first.name == "GROCERY"
        assert first.period_type == "monthly"

        second = budgets.upsert(BudgetIn(category="GROCERY", amount_cents=35_000))
        assert second.id == first.id
        assert second.amount_cents == 35_000
        assert second.max_visits == 8

        cleared = budgets.upsert(
            BudgetIn(category="GROCERY", amount_cents=35_000, max_visits=None)
        )
        assert cleared.max_visits is None
        assert len(session.scalars(select(Budget)).all()) == 1


def test_budgets_are_scoped_per_user() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        BudgetService(session, "alice").upsert(
            BudgetIn(category="TRAVEL", amount_cents=50_000)
        )
        bobs = BudgetService(session, "bob").upsert(
            BudgetIn(category="TRAVEL", amount_cents=10_000)
        )
        assert [b.amount_cents for b in BudgetService(session, "alice").list_all()] == [
            50_000
        ]
        with pytest.raises(NotFoundError):
            BudgetService(session, "alice").get(bobs.id)


def test_delete_missing_budget_is_a_no_op() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        budgets = BudgetService(session, "alice")
        assert budgets.delete_by_category("ENTERTAINMENT") is False

        budgets.upsert(BudgetIn(category="ENTERTAINMENT", amount_cents=5_000))
        assert budgets.delete_by_category("ENTERTAINMENT") is True
        assert budgets.list_all() == []


def test_budget_status_over_limit() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        joint = _shared_account(session)
        for ref, day, cents in [
            ("g1", date(2025, 3, 1), 9_000),
            ("g2", date(2025, 3, 4), 9_000),
            ("g3", date(2025, 3, 8), 9_000),
            ("g4", date(2025, 3, 10), 7_500),
            ("g5", date(2025, 2, 27), 5_000),
        ]:
            session.add(
                Transaction(
                    user_id="alice",
                    account_id=joint.id,
                    provider_transaction_id=ref,
                    date=day,
                    amount_cents=cents,
                    normalized_category="GROCERY",
                )
            )
        budget = BudgetService(session, "alice").upsert(
            BudgetIn(category="GROCERY", amount_cents=30_000)
        )

        _, status = SpendService(session, "alice").budget_status(
            budget.id, date(2025, 3, 10)
        )
        assert status.month_to_date_cents == 34_500
        assert status.visit_count == 4
        assert status.remaining_cents == -4_500
        # 345.00 / 10 days * 31 days
        assert status.projected_cents == 106_950


def test_budget_status_for_unknown_id() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        with pytest.raises(NotFoundError):
            SpendService(session, "alice").budget_status(404, date(2025, 3, 10))


def test_overview_lists_budget_without_spend() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        joint = _shared_account(session)
        session.add(
            Transaction(
                user_id="alice",
                account_id=joint.id,
                provider_transaction_id="r1",
                date=date(2025, 2, 25),
                amount_cents=2_000,
                normalized_category="RESTAURANTS",
            )
        )
        BudgetService(session, "alice").upsert(
            BudgetIn(category="TRAVEL", amount_cents=40_000)
        )

        overview = SpendService(session, "alice").budget_overview(date(2025, 3, 1))
        lines = {line.category: line for line in overview.categories}
        assert lines["RESTAURANTS"].spend_week_cents == 2_000
        assert lines["RESTAURANTS"].spend_month_cents == 0
        assert lines["TRAVEL"].has_budget
        assert lines["TRAVEL"].spend_month_cents == 0
