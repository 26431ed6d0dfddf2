import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        default_user_id: int,
        currency_symbol: str,
        reconcile_interval_minutes: int,
        log_level: str,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.default_user_id = default_user_id
        self.currency_symbol = currency_symbol
        self.reconcile_interval_minutes = reconcile_interval_minutes
        self.log_level = log_level


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("BUDGET_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "budget.db"
    database_url = os.getenv("BUDGET_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("BUDGET_TIMEZONE", "UTC")
    default_user_id = int(os.getenv("BUDGET_DEFAULT_USER_ID", "1"))
    currency_symbol = os.getenv("BUDGET_CURRENCY_SYMBOL", "₹")
    # 0 keeps reconciliation on-demand only
    reconcile_interval_minutes = int(
        os.getenv("BUDGET_RECONCILE_INTERVAL_MINUTES", "0")
    )
    log_level = os.getenv("BUDGET_LOG_LEVEL", "INFO").upper()
    return Settings(
        database_url=database_url,
        timezone=timezone,
        default_user_id=default_user_id,
        currency_symbol=currency_symbol,
        reconcile_interval_minutes=reconcile_interval_minutes,
        log_level=log_level,
    )
