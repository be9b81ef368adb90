import os
from functools import lru_cache
from pathlib import Path
from typing import Optional

PLAID_ENVIRONMENTS = {
    "sandbox": "https://sandbox.plaid.com",
    "development": "https://development.plaid.com",
    "production": "https://production.plaid.com",
}


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        auth_secret: str,
        auth_max_age_hours: int,
        environment: str,
        plaid_client_id: Optional[str],
        plaid_secret: Optional[str],
        plaid_env: str,
        plaid_products: list[str],
        plaid_country_codes: list[str],
        plaid_timeout_secs: float,
        sync_lookback_days: int,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.auth_secret = auth_secret
        self.auth_max_age_hours = auth_max_age_hours
        self.environment = environment
        self.plaid_client_id = plaid_client_id
        self.plaid_secret = plaid_secret
        self.plaid_env = plaid_env
        self.plaid_products = plaid_products
        self.plaid_country_codes = plaid_country_codes
        self.plaid_timeout_secs = plaid_timeout_secs
        self.sync_lookback_days = sync_lookback_days

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("FINANCE_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def _split_csv(value: str) -> list[str]:
    return [part.strip() for part in value.split(",") if part.strip()]


def _plaid_secret(plaid_env: str) -> Optional[str]:
    env_specific = {
        "sandbox": "PLAID_SANDBOX_SECRET",
        "development": "PLAID_DEV_SECRET",
        "production": "PLAID_PROD_SECRET",
    }.get(plaid_env)
    if env_specific and os.getenv(env_specific):
        return os.getenv(env_specific)
    return os.getenv("PLAID_SECRET")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "finance.db"
    database_url = os.getenv("FINANCE_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("FINANCE_TIMEZONE", "America/New_York")
    auth_secret = os.getenv(
        "FINANCE_AUTH_SECRET",
        "3f1c8e2a9b7d4c6e0a5f2b8d1e7c9a4b6d0e3f5a8c2b7e9d1f4a6c0b3e8d2a5f",
    )
    auth_max_age_hours = int(os.getenv("FINANCE_AUTH_MAX_AGE_HOURS", "24"))
    environment = os.getenv("FINANCE_ENV", "local")
    plaid_env = os.getenv("PLAID_ENV", "sandbox").strip().lower()
    return Settings(
        database_url=database_url,
        timezone=timezone,
        auth_secret=auth_secret,
        auth_max_age_hours=auth_max_age_hours,
        environment=environment,
        plaid_client_id=os.getenv("PLAID_CLIENT_ID"),
        plaid_secret=_plaid_secret(plaid_env),
        plaid_env=plaid_env,
        plaid_products=_split_csv(os.getenv("PLAID_PRODUCTS", "transactions")),
        plaid_country_codes=_split_csv(os.getenv("PLAID_COUNTRY_CODES", "US")),
        plaid_timeout_secs=float(os.getenv("PLAID_TIMEOUT_SECS", "10")),
        sync_lookback_days=int(os.getenv("FINANCE_SYNC_LOOKBACK_DAYS", "90")),
    )
