from datetime import date, datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


class NormalizedCategory(str, Enum):
    restaurants = "RESTAURANTS"
    grocery = "GROCERY"
    travel = "TRAVEL"
    shopping = "SHOPPING"
    entertainment = "ENTERTAINMENT"
    utilities = "UTILITIES"
    healthcare = "HEALTHCARE"
    transportation = "TRANSPORTATION"
    other = "OTHER"


class BudgetPeriodType(str, Enum):
    monthly = "monthly"


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class PlaidItem(Base, TimestampMixin):
    __tablename__ = "plaid_items"
    __table_args__ = (UniqueConstraint("user_id", "item_id", name="uq_plaid_item_user"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    item_id: Mapped[str] = mapped_column(String(100), nullable=False)
    access_token: Mapped[str] = mapped_column(String(200), nullable=False)
    institution_name: Mapped[Optional[str]] = mapped_column(String(200))


class Account(Base, TimestampMixin):
    __tablename__ = "accounts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    provider: Mapped[str] = mapped_column(String(30), nullable=False, default="plaid")
    provider_account_id: Mapped[str] = mapped_column(String(100), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    type: Mapped[Optional[str]] = mapped_column(String(50))
    subtype: Mapped[Optional[str]] = mapped_column(String(50))
    is_shared_source: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )

    transactions: Mapped[list["Transaction"]] = relationship(
        "Transaction", back_populates="account"
    )

    __table_args__ = (
        UniqueConstraint(
            "user_id",
            "provider",
            "provider_account_id",
            name="uq_account_user_provider_account",
        ),
        Index("ix_accounts_user_shared", "user_id", "is_shared_source"),
    )


class Transaction(Base, TimestampMixin):
    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    account_id: Mapped[int] = mapped_column(ForeignKey("accounts.id"), nullable=False)
    provider_transaction_id: Mapped[str] = mapped_column(String(100), nullable=False)
    date: Mapped[date] = mapped_column(Date, nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    merchant_name: Mapped[Optional[str]] = mapped_column(String(200))
    raw_description: Mapped[Optional[str]] = mapped_column(Text)
    normalized_category: Mapped[Optional[str]] = mapped_column(String(100))
    is_shared: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    account: Mapped["Account"] = relationship("Account", back_populates="transactions")

    __table_args__ = (
        UniqueConstraint(
            "user_id",
            "provider_transaction_id",
            name="uq_txn_user_provider_txn",
        ),
        Index("ix_transactions_user_date", "user_id", "date"),
        Index(
            "ix_transactions_user_category_date",
            "user_id",
            "normalized_category",
            "date",
        ),
        Index("ix_transactions_user_account", "user_id", "account_id"),
        CheckConstraint("amount_cents >= 0", name="ck_transactions_amount_positive"),
    )


class Budget(Base, TimestampMixin):
    __tablename__ = "budgets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    normalized_category: Mapped[str] = mapped_column(String(100), nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    period_type: Mapped[str] = mapped_column(
        String(20), nullable=False, default=BudgetPeriodType.monthly.value
    )
    max_visits: Mapped[Optional[int]] = mapped_column(Integer)

    __table_args__ = (
        UniqueConstraint(
            "user_id", "normalized_category", name="uq_budget_user_category"
        ),
        CheckConstraint("amount_cents > 0", name="ck_budget_amount_positive"),
        CheckConstraint(
            "max_visits IS NULL OR max_visits >= 0", name="ck_budget_max_visits"
        ),
    )
