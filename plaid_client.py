from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import date
from typing import Optional
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from config import PLAID_ENVIRONMENTS, Settings

CLIENT_NAME = "Shared Finance"
PAGE_SIZE = 500


class ProviderError(RuntimeError):
    pass


@dataclass(frozen=True)
class ProviderAccount:
    account_id: str
    name: str
    type: Optional[str] = None
    subtype: Optional[str] = None


@dataclass(frozen=True)
class ProviderTransaction:
    transaction_id: str
    account_id: str
    date: date
    amount: str  # decimal text as the provider sent it; debits are positive
    name: Optional[str] = None
    merchant_name: Optional[str] = None
    currency: Optional[str] = None
    category_primary: Optional[str] = None
    category_detailed: Optional[str] = None
    legacy_categories: list[str] = field(default_factory=list)


class PlaidClient:
    """Thin JSON-over-HTTP client for the account aggregator.

    Constructed explicitly and handed to whoever needs it; tests pass a fake
    with the same four methods.
    """

    def __init__(
        self,
        *,
        base_url: str,
        client_id: str,
        secret: str,
        timeout: float = 10.0,
        products: Optional[list[str]] = None,
        country_codes: Optional[list[str]] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.client_id = client_id
        self.secret = secret
        self.timeout = timeout
        self.products = products or ["transactions"]
        self.country_codes = [c.upper() for c in (country_codes or ["US"])]

    @classmethod
    def from_settings(cls, settings: Settings) -> PlaidClient:
        if not settings.plaid_client_id:
            raise ValueError("Missing PLAID_CLIENT_ID")
        base_url = PLAID_ENVIRONMENTS.get(settings.plaid_env)
        if not base_url:
            valid = ", ".join(PLAID_ENVIRONMENTS)
            raise ValueError(
                f"Invalid PLAID_ENV: {settings.plaid_env!r}. Must be one of: {valid}"
            )
        if not settings.plaid_secret:
            raise ValueError(
                f"Missing Plaid secret for environment {settings.plaid_env!r}; "
                "set PLAID_SECRET or the environment-specific secret"
            )
        return cls(
            base_url=base_url,
            client_id=settings.plaid_client_id,
            secret=settings.plaid_secret,
            timeout=settings.plaid_timeout_secs,
            products=settings.plaid_products,
            country_codes=settings.plaid_country_codes,
        )

    def _post(self, path: str, body: dict[str, object]) -> dict:
        payload = {"client_id": self.client_id, "secret": self.secret, **body}
        req = Request(
            f"{self.base_url}{path}",
            data=json.dumps(payload).encode("utf-8"),
            headers={"Content-Type": "application/json", "Accept": "application/json"},
            method="POST",
        )
        try:
            with urlopen(req, timeout=self.timeout) as resp:
                return json.loads(resp.read().decode("utf-8"))
        except HTTPError as exc:
            message = _error_message(exc) or f"HTTP {exc.code}"
            raise ProviderError(f"Plaid {path} failed: {message}") from exc
        except (URLError, TimeoutError, json.JSONDecodeError) as exc:
            raise ProviderError(f"Plaid {path} unreachable") from exc

    def create_link_token(self, user_id: str) -> str:
        data = self._post(
            "/link/token/create",
            {
                "user": {"client_user_id": user_id},
                "client_name": CLIENT_NAME,
                "products": self.products,
                "country_codes": self.country_codes,
                "language": "en",
            },
        )
        try:
            return str(data["link_token"])
        except KeyError as exc:
            raise ProviderError("Unexpected link token response") from exc

    def exchange_public_token(self, public_token: str) -> tuple[str, str]:
        data = self._post(
            "/item/public_token/exchange", {"public_token": public_token}
        )
        try:
            return str(data["access_token"]), str(data["item_id"])
        except KeyError as exc:
            raise ProviderError("Unexpected token exchange response") from exc

    def fetch_accounts(self, access_token: str) -> list[ProviderAccount]:
        data = self._post("/accounts/get", {"access_token": access_token})
        try:
            return [_parse_account(raw) for raw in data["accounts"]]
        except (KeyError, TypeError) as exc:
            raise ProviderError("Unexpected accounts response") from exc

    def fetch_transactions(
        self, access_token: str, start: date, end: date
    ) -> list[ProviderTransaction]:
        out: list[ProviderTransaction] = []
        total: Optional[int] = None
        while total is None or len(out) < total:
            data = self._post(
                "/transactions/get",
                {
                    "access_token": access_token,
                    "start_date": start.isoformat(),
                    "end_date": end.isoformat(),
                    "options": {"count": PAGE_SIZE, "offset": len(out)},
                },
            )
            try:
                page = [_parse_transaction(raw) for raw in data["transactions"]]
                total = int(data["total_transactions"])
            except (KeyError, TypeError, ValueError) as exc:
                raise ProviderError("Unexpected transactions response") from exc
            if not page:
                break
            out.extend(page)
        return out


def _error_message(exc: HTTPError) -> Optional[str]:
    try:
        payload = json.loads(exc.read().decode("utf-8"))
    except (ValueError, OSError):
        return None
    message = payload.get("error_message") if isinstance(payload, dict) else None
    return str(message) if message else None


def _parse_account(raw: dict) -> ProviderAccount:
    return ProviderAccount(
        account_id=str(raw["account_id"]),
        name=raw.get("name") or raw.get("official_name") or "Unknown Account",
        type=raw.get("type"),
        subtype=raw.get("subtype"),
    )


def _parse_transaction(raw: dict) -> ProviderTransaction:
    pfc = raw.get("personal_finance_category") or {}
    return ProviderTransaction(
        transaction_id=str(raw["transaction_id"]),
        account_id=str(raw["account_id"]),
        date=date.fromisoformat(raw["date"]),
        amount=str(raw["amount"]),
        name=raw.get("name"),
        merchant_name=raw.get("merchant_name"),
        currency=raw.get("iso_currency_code") or raw.get("unofficial_currency_code"),
        category_primary=pfc.get("primary"),
        category_detailed=pfc.get("detailed"),
        legacy_categories=list(raw.get("category") or []),
    )
