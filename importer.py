from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Optional, Protocol, Sequence

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from models import Account, NormalizedCategory, PlaidItem, Transaction
from money import to_cents
from plaid_client import ProviderAccount, ProviderError, ProviderTransaction

logger = logging.getLogger(__name__)

PROVIDER = "plaid"

_PRIMARY_CATEGORIES = {
    "TRAVEL": NormalizedCategory.travel,
    "TRANSPORTATION": NormalizedCategory.transportation,
    "GENERAL_MERCHANDISE": NormalizedCategory.shopping,
    "GENERAL_SERVICES": NormalizedCategory.shopping,
    "ENTERTAINMENT": NormalizedCategory.entertainment,
    "RECREATION": NormalizedCategory.entertainment,
    "RENT_AND_UTILITIES": NormalizedCategory.utilities,
    "HOME_IMPROVEMENT": NormalizedCategory.other,
    "MEDICAL": NormalizedCategory.healthcare,
    "PERSONAL_CARE": NormalizedCategory.healthcare,
    "INCOME": NormalizedCategory.other,
    "TRANSFER_IN": NormalizedCategory.other,
    "TRANSFER_OUT": NormalizedCategory.other,
}

# Checked in order; the first keyword hit wins.
_LEGACY_KEYWORDS: list[tuple[tuple[str, ...], NormalizedCategory]] = [
    (("restaurant", "food and drink"), NormalizedCategory.restaurants),
    (("groceries", "supermarket"), NormalizedCategory.grocery),
    (("travel", "airlines", "hotel"), NormalizedCategory.travel),
    (("shops", "shopping"), NormalizedCategory.shopping),
    (("entertainment", "recreation"), NormalizedCategory.entertainment),
    (("utilities", "service"), NormalizedCategory.utilities),
    (("healthcare", "medical"), NormalizedCategory.healthcare),
    (("taxi", "transportation", "uber", "lyft"), NormalizedCategory.transportation),
]


def map_provider_category(
    primary: Optional[str],
    detailed: Optional[str] = None,
    legacy: Sequence[str] = (),
) -> NormalizedCategory:
    primary_upper = (primary or "").strip().upper()
    detailed_upper = (detailed or "").strip().upper()
    if primary_upper == "FOOD_AND_DRINK":
        if "GROCERIES" in detailed_upper:
            return NormalizedCategory.grocery
        return NormalizedCategory.restaurants
    if primary_upper in _PRIMARY_CATEGORIES:
        return _PRIMARY_CATEGORIES[primary_upper]

    joined = " ".join(legacy).lower()
    for keywords, category in _LEGACY_KEYWORDS:
        if any(keyword in joined for keyword in keywords):
            return category
    return NormalizedCategory.other


class TransactionProvider(Protocol):
    def create_link_token(self, user_id: str) -> str: ...

    def exchange_public_token(self, public_token: str) -> tuple[str, str]: ...

    def fetch_accounts(self, access_token: str) -> list[ProviderAccount]: ...

    def fetch_transactions(
        self, access_token: str, start: date, end: date
    ) -> list[ProviderTransaction]: ...


@dataclass
class ImportResult:
    accounts_created: int = 0
    accounts_updated: int = 0
    transactions_created: int = 0
    transactions_skipped: int = 0
    errors: list[str] = field(default_factory=list)


class PlaidSyncService:
    def __init__(
        self,
        session: Session,
        provider: TransactionProvider,
        user_id: str,
        *,
        lookback_days: int = 90,
    ) -> None:
        self.session = session
        self.provider = provider
        self.user_id = user_id
        self.lookback_days = lookback_days

    def link_item(
        self, public_token: str, institution_name: Optional[str] = None
    ) -> PlaidItem:
        access_token, item_id = self.provider.exchange_public_token(public_token)
        item = self.session.scalar(
            select(PlaidItem).where(
                PlaidItem.user_id == self.user_id, PlaidItem.item_id == item_id
            )
        )
        if item:
            item.access_token = access_token
            item.institution_name = institution_name
        else:
            item = PlaidItem(
                user_id=self.user_id,
                item_id=item_id,
                access_token=access_token,
                institution_name=institution_name,
            )
            self.session.add(item)
        self.session.commit()
        self.session.refresh(item)
        logger.info(f"plaid_link: user={self.user_id} item={item_id}")
        return item

    def sync(self, today: date) -> ImportResult:
        result = ImportResult()
        items = self.session.scalars(
            select(PlaidItem)
            .where(PlaidItem.user_id == self.user_id)
            .order_by(PlaidItem.id)
        ).all()
        if not items:
            result.errors.append(
                "No Plaid items found. Please connect a bank account first."
            )
            return result

        start = today - timedelta(days=self.lookback_days)
        for item in items:
            try:
                accounts = self._sync_accounts(item, result)
                transactions = self.provider.fetch_transactions(
                    item.access_token, start, today
                )
                for provider_txn in transactions:
                    self._import_transaction(provider_txn, accounts, result)
                self.session.commit()
            except ProviderError as exc:
                self.session.rollback()
                logger.warning(
                    f"plaid_sync: user={self.user_id} item={item.item_id} error={exc}"
                )
                result.errors.append(f"Error processing Plaid item {item.item_id}: {exc}")

        logger.info(
            f"plaid_sync: user={self.user_id} items={len(items)} "
            f"created={result.transactions_created} "
            f"skipped={result.transactions_skipped} errors={len(result.errors)}"
        )
        return result

    def _sync_accounts(self, item: PlaidItem, result: ImportResult) -> dict[str, Account]:
        by_provider_id: dict[str, Account] = {}
        for provider_account in self.provider.fetch_accounts(item.access_token):
            account = self.session.scalar(
                select(Account).where(
                    Account.user_id == self.user_id,
                    Account.provider == PROVIDER,
                    Account.provider_account_id == provider_account.account_id,
                )
            )
            if account:
                account.name = provider_account.name
                account.type = provider_account.type
                account.subtype = provider_account.subtype
                result.accounts_updated += 1
            else:
                account = Account(
                    user_id=self.user_id,
                    provider=PROVIDER,
                    provider_account_id=provider_account.account_id,
                    name=provider_account.name,
                    type=provider_account.type,
                    subtype=provider_account.subtype,
                    is_shared_source=False,
                )
                self.session.add(account)
                result.accounts_created += 1
            self.session.flush()
            by_provider_id[provider_account.account_id] = account
        return by_provider_id

    def _import_transaction(
        self,
        provider_txn: ProviderTransaction,
        accounts: dict[str, Account],
        result: ImportResult,
    ) -> None:
        account = accounts.get(provider_txn.account_id)
        if account is None:
            result.errors.append(
                f"No account found for transaction {provider_txn.transaction_id}"
            )
            return

        existing = self.session.scalar(
            select(Transaction.id).where(
                Transaction.user_id == self.user_id,
                Transaction.provider_transaction_id == provider_txn.transaction_id,
            )
        )
        if existing:
            result.transactions_skipped += 1
            return

        try:
            amount_cents = abs(to_cents(provider_txn.amount, allow_negative=True))
        except ValueError:
            result.errors.append(
                f"Invalid amount for transaction {provider_txn.transaction_id}"
            )
            return

        txn = Transaction(
            user_id=self.user_id,
            account_id=account.id,
            provider_transaction_id=provider_txn.transaction_id,
            date=provider_txn.date,
            amount_cents=amount_cents,
            currency=(provider_txn.currency or "USD").upper(),
            merchant_name=provider_txn.merchant_name or provider_txn.name or "Unknown",
            raw_description=provider_txn.name or "",
            normalized_category=map_provider_category(
                provider_txn.category_primary,
                provider_txn.category_detailed,
                provider_txn.legacy_categories,
            ).value,
            is_shared=account.is_shared_source,
        )
        try:
            with self.session.begin_nested():
                self.session.add(txn)
        except IntegrityError:
            result.transactions_skipped += 1
            return
        result.transactions_created += 1
