import logging
from datetime import date, datetime
from typing import Optional
from zoneinfo import ZoneInfo

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from auth import read_session_token
from budget_engine import BudgetStatus
from config import get_settings
from database import SessionLocal, ping
from importer import PlaidSyncService, TransactionProvider
from models import Account, Budget, Transaction
from money import cents_to_amount, to_cents
from periods import (
    CURRENT_MONTH,
    CURRENT_WEEK,
    LAST_30_DAYS,
    Period,
    month_window,
    resolve_period,
)
from plaid_client import PlaidClient, ProviderError
from rollups import SpendAggregate, SpendRecord, TransactionChange
from schemas import (
    AccountPatchIn,
    BudgetIn,
    BudgetPayload,
    ExchangeTokenIn,
    TransactionPatchIn,
)
from services import (
    AccountService,
    BudgetService,
    InvalidInputError,
    NotFoundError,
    SpendService,
    TransactionService,
)

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app = FastAPI(title="Shared Finance")


def local_today() -> date:
    settings = get_settings()
    return datetime.now(ZoneInfo(settings.timezone)).date()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_today() -> date:
    return local_today()


def get_provider() -> TransactionProvider:
    try:
        return PlaidClient.from_settings(get_settings())
    except ValueError as exc:
        logger.error(f"plaid_config: {exc}")
        raise HTTPException(status_code=500, detail="Plaid is not configured") from exc


def current_user_id(request: Request) -> str:
    token = None
    header = request.headers.get("Authorization", "")
    if header.lower().startswith("bearer "):
        token = header[7:].strip()
    if not token:
        token = request.cookies.get("session")
    user_id = read_session_token(token)
    if not user_id:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return user_id


@app.exception_handler(SQLAlchemyError)
async def store_error_handler(request: Request, exc: SQLAlchemyError):
    logger.exception(f"store_error: path={request.url.path}")
    detail = "Storage unavailable" if get_settings().is_production else str(exc)
    return JSONResponse(status_code=500, content={"detail": detail})


def period_out(period: Period) -> dict[str, str]:
    return {
        "period": period.slug,
        "start_date": period.start.isoformat(),
        "end_date": period.end.isoformat(),
    }


def record_out(record: SpendRecord) -> dict[str, object]:
    return {
        "id": record.id,
        "date": record.date.isoformat(),
        "description": record.merchant_name or "Unknown",
        "amount": cents_to_amount(record.amount_cents),
        "normalized_category": record.category,
        "is_shared": record.is_shared,
        "account_id": record.account_id,
        "account_name": record.account_name,
    }


def aggregate_out(agg: SpendAggregate, *, include_transactions: bool) -> dict[str, object]:
    accounts = []
    for summary in agg.accounts:
        row: dict[str, object] = {
            "account_id": summary.account_id,
            "account_name": summary.account_name,
            "type": summary.type,
            "subtype": summary.subtype,
            "is_shared_source": summary.is_shared_source,
            "total_amount": cents_to_amount(summary.total_cents),
            "transaction_count": summary.transaction_count,
        }
        if include_transactions:
            row["transactions"] = [record_out(r) for r in summary.transactions]
        accounts.append(row)
    return {
        "total_amount": cents_to_amount(agg.total_cents),
        "transaction_count": agg.transaction_count,
        "accounts": accounts,
        "categories": [
            {
                "category": rollup.category,
                "total_amount": cents_to_amount(rollup.total_cents),
                "transaction_count": rollup.transaction_count,
            }
            for rollup in agg.categories
        ],
        "category_labels": agg.category_labels,
    }


def transaction_out(txn: Transaction) -> dict[str, object]:
    return {
        "id": txn.id,
        "account_id": txn.account_id,
        "date": txn.date.isoformat(),
        "amount": cents_to_amount(txn.amount_cents),
        "merchant_name": txn.merchant_name,
        "normalized_category": txn.normalized_category,
        "is_shared": txn.is_shared,
    }


def change_out(change: TransactionChange) -> dict[str, object]:
    return {
        "transaction_id": change.transaction_id,
        "account_id": change.account_id,
        "amount": cents_to_amount(change.amount_cents),
        "previous_category": change.previous_category,
        "category": change.category,
        "previous_is_shared": change.previous_is_shared,
        "is_shared": change.is_shared,
    }


def account_out(account: Account) -> dict[str, object]:
    return {
        "id": account.id,
        "name": account.name,
        "type": account.type,
        "subtype": account.subtype,
        "is_shared_source": account.is_shared_source,
        "provider_account_id": account.provider_account_id,
        "created_at": account.created_at.isoformat() if account.created_at else None,
    }


def budget_out(budget: Budget) -> dict[str, object]:
    return {
        "id": budget.id,
        "name": budget.name,
        "normalized_category": budget.normalized_category,
        "period_type": budget.period_type,
        "amount": cents_to_amount(budget.amount_cents),
        "max_visits": budget.max_visits,
    }


def status_out(budget: Budget, status: BudgetStatus) -> dict[str, object]:
    out = budget_out(budget)
    out.update(
        {
            "month_to_date_spend": cents_to_amount(status.month_to_date_cents),
            "visit_count": status.visit_count,
            "remaining_amount": cents_to_amount(status.remaining_cents),
            "remaining_visits": status.remaining_visits,
            "projected_spend": cents_to_amount(status.projected_cents),
            "weekly_limit": cents_to_amount(status.weekly_limit_cents),
            "is_over_budget": status.is_over_budget,
            "start_date": status.period.start.isoformat(),
            "end_date": status.period.end.isoformat(),
        }
    )
    return out


def _resolve(
    period: Optional[str],
    today: date,
    *,
    allowed: tuple[str, ...],
    month: Optional[int] = None,
    year: Optional[int] = None,
) -> Period:
    if month is None and year is None and period and period not in allowed:
        raise HTTPException(status_code=400, detail=f"Unsupported period: {period}")
    try:
        return resolve_period(period, today=today, month=month, year=year)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.get("/api/health")
def health(db: Session = Depends(get_db)):
    database_reachable = False
    error_details = None
    try:
        ping(db)
        database_reachable = True
    except SQLAlchemyError as exc:
        logger.warning(f"health: database unreachable error={exc}")
        error_details = (
            "Storage unavailable" if get_settings().is_production else str(exc)
        )
    return {
        "status": "ok",
        "database_reachable": database_reachable,
        "error_details": error_details,
    }


@app.get("/api/spend-summary")
def spend_summary(
    period: Optional[str] = None,
    shared_only: bool = False,
    account_id: Optional[int] = None,
    user_id: str = Depends(current_user_id),
    today: date = Depends(get_today),
    db: Session = Depends(get_db),
):
    resolved = _resolve(
        period, today, allowed=(CURRENT_MONTH, LAST_30_DAYS, CURRENT_WEEK)
    )
    agg = SpendService(db, user_id).spend_summary(
        resolved, shared_only=shared_only, account_id=account_id
    )
    out: dict[str, object] = period_out(resolved)
    out.update({"shared_only": shared_only, "account_id": account_id})
    out.update(aggregate_out(agg, include_transactions=account_id is not None))
    return out


@app.get("/api/budget-overview")
def api_budget_overview(
    user_id: str = Depends(current_user_id),
    today: date = Depends(get_today),
    db: Session = Depends(get_db),
):
    overview = SpendService(db, user_id).budget_overview(today)
    return {
        "categories": [
            {
                "category": line.category,
                "spend_month": cents_to_amount(line.spend_month_cents),
                "spend_week": cents_to_amount(line.spend_week_cents),
                "budget_limit_month": cents_to_amount(line.budget_limit_cents)
                if line.budget_limit_cents is not None
                else None,
                "budget_limit_week": cents_to_amount(line.weekly_limit_cents)
                if line.weekly_limit_cents is not None
                else None,
                "has_budget": line.has_budget,
            }
            for line in overview.categories
        ],
        "current_month_start": overview.month.start.isoformat(),
        "current_month_end": overview.month.end.isoformat(),
        "current_week_start": overview.week.start.isoformat(),
        "current_week_end": overview.week.end.isoformat(),
    }


@app.get("/api/budgets")
def list_budgets(
    user_id: str = Depends(current_user_id), db: Session = Depends(get_db)
):
    return {"budgets": [budget_out(b) for b in BudgetService(db, user_id).list_all()]}


@app.post("/api/budgets")
def upsert_budget(
    payload: BudgetPayload,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        fields = {
            "category": payload.category,
            "amount_cents": to_cents(payload.amount),
        }
        if "max_visits" in payload.model_fields_set:
            fields["max_visits"] = payload.max_visits
        data = BudgetIn(**fields)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    try:
        budget = BudgetService(db, user_id).upsert(data)
    except InvalidInputError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"success": True, "budget": budget_out(budget)}


@app.delete("/api/budgets")
def delete_budget(
    category: str,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    if not category.strip():
        raise HTTPException(status_code=400, detail="Invalid category")
    deleted = BudgetService(db, user_id).delete_by_category(category.strip())
    return {"success": True, "deleted": deleted}


@app.get("/api/budgets/{budget_id}/status")
def budget_status(
    budget_id: int,
    user_id: str = Depends(current_user_id),
    today: date = Depends(get_today),
    db: Session = Depends(get_db),
):
    try:
        budget, status = SpendService(db, user_id).budget_status(budget_id, today)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return status_out(budget, status)


@app.get("/api/category-transactions")
def category_transactions(
    category: Optional[str] = None,
    view_mode: str = "monthly",
    month: Optional[int] = None,
    year: Optional[int] = None,
    user_id: str = Depends(current_user_id),
    today: date = Depends(get_today),
    db: Session = Depends(get_db),
):
    if not category:
        raise HTTPException(status_code=400, detail="Category is required")
    if view_mode not in ("monthly", "weekly"):
        raise HTTPException(status_code=400, detail="view_mode must be monthly or weekly")
    slug = CURRENT_WEEK if view_mode == "weekly" else CURRENT_MONTH
    resolved = _resolve(
        slug, today, allowed=(CURRENT_MONTH, CURRENT_WEEK), month=month, year=year
    )
    service = SpendService(db, user_id)
    records = service.category_transactions(category, resolved)
    out: dict[str, object] = period_out(resolved)
    out.update(
        {
            "transactions": [record_out(r) for r in records],
            "all_categories": service.transactions.available_categories(),
        }
    )
    return out


@app.get("/api/category-trend")
def api_category_trend(
    category: Optional[str] = None,
    user_id: str = Depends(current_user_id),
    today: date = Depends(get_today),
    db: Session = Depends(get_db),
):
    if not category:
        raise HTTPException(status_code=400, detail="Category is required")
    points, limit = SpendService(db, user_id).category_trend(category, today)
    window = month_window(today, len(points))
    return {
        "start_date": window[0].start.isoformat(),
        "end_date": window[-1].end.isoformat(),
        "monthly_spending": [
            {
                "month": point.label,
                "month_index": point.month_index,
                "year": point.year,
                "amount": cents_to_amount(point.amount_cents),
                "is_current_month": point.is_current_month,
            }
            for point in points
        ],
        "budget_limit": cents_to_amount(limit) if limit is not None else None,
    }


@app.get("/api/categories")
def api_categories(
    user_id: str = Depends(current_user_id), db: Session = Depends(get_db)
):
    return {"categories": TransactionService(db, user_id).available_categories()}


@app.patch("/api/transactions/{transaction_id}")
def patch_transaction(
    transaction_id: int,
    payload: TransactionPatchIn,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    if "normalized_category" in payload.model_fields_set and payload.normalized_category is None:
        raise HTTPException(
            status_code=400, detail="normalized_category must be a string"
        )
    try:
        txn, change = TransactionService(db, user_id).update(
            transaction_id,
            category=payload.normalized_category,
            is_shared=payload.is_shared,
        )
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except InvalidInputError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"transaction": transaction_out(txn), "delta": change_out(change)}


@app.get("/api/accounts")
def list_accounts(
    user_id: str = Depends(current_user_id), db: Session = Depends(get_db)
):
    return {"accounts": [account_out(a) for a in AccountService(db, user_id).list_all()]}


@app.patch("/api/accounts/{account_id}")
def patch_account(
    account_id: int,
    payload: AccountPatchIn,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        account = AccountService(db, user_id).set_shared_source(
            account_id, payload.is_shared_source
        )
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {"account": account_out(account)}


@app.get("/api/shared/transactions")
def shared_transactions(
    normalized_category: Optional[str] = None,
    period: str = CURRENT_MONTH,
    user_id: str = Depends(current_user_id),
    today: date = Depends(get_today),
    db: Session = Depends(get_db),
):
    if period != CURRENT_MONTH:
        raise HTTPException(
            status_code=400, detail="Only period=current_month is supported"
        )
    resolved = resolve_period(period, today=today)
    records = SpendService(db, user_id).shared_transactions(
        resolved, category=normalized_category or None
    )
    out: dict[str, object] = period_out(resolved)
    out["transactions"] = [record_out(r) for r in records]
    return out


@app.post("/api/shared/resync")
def resync_shared(
    user_id: str = Depends(current_user_id), db: Session = Depends(get_db)
):
    count = TransactionService(db, user_id).resync_shared_sources()
    return {"transactions_synced": count}


@app.post("/api/plaid/create-link-token")
def create_link_token(
    user_id: str = Depends(current_user_id),
    provider: TransactionProvider = Depends(get_provider),
):
    try:
        link_token = provider.create_link_token(user_id)
    except ProviderError as exc:
        logger.error(f"plaid_link_token: user={user_id} error={exc}")
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    return {"link_token": link_token}


@app.post("/api/plaid/exchange-public-token")
def exchange_public_token(
    payload: ExchangeTokenIn,
    user_id: str = Depends(current_user_id),
    provider: TransactionProvider = Depends(get_provider),
    db: Session = Depends(get_db),
):
    institution_name = payload.institution.name if payload.institution else None
    try:
        PlaidSyncService(db, provider, user_id).link_item(
            payload.public_token, institution_name
        )
    except ProviderError as exc:
        logger.error(f"plaid_exchange: user={user_id} error={exc}")
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    return {"success": True}


@app.post("/api/plaid/sync")
def plaid_sync(
    user_id: str = Depends(current_user_id),
    provider: TransactionProvider = Depends(get_provider),
    today: date = Depends(get_today),
    db: Session = Depends(get_db),
):
    settings = get_settings()
    result = PlaidSyncService(
        db, provider, user_id, lookback_days=settings.sync_lookback_days
    ).sync(today)
    if result.errors:
        logger.error(f"plaid_sync: user={user_id} errors={result.errors}")
    return {
        "accounts_created": result.accounts_created,
        "accounts_updated": result.accounts_updated,
        "transactions_created": result.transactions_created,
        "transactions_skipped": result.transactions_skipped,
        "errors": result.errors,
    }


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
