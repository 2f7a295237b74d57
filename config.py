import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        secret_key: str,
        token_max_age_hours: int,
        rate_limit_requests: int,
        rate_limit_window_secs: float,
        default_savings_percentage: float,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.secret_key = secret_key
        self.token_max_age_hours = token_max_age_hours
        self.rate_limit_requests = rate_limit_requests
        self.rate_limit_window_secs = rate_limit_window_secs
        self.default_savings_percentage = default_savings_percentage


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("LEDGER_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "ledger.db"
    database_url = os.getenv("LEDGER_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("LEDGER_TIMEZONE", "Europe/Madrid")
    secret_key = os.getenv(
        "LEDGER_SECRET_KEY",
        "5f0c8e1d9b7a4c2e8f6d3b1a0c9e7f5d2b4a6c8e0f1d3b5a7c9e2f4d6b8a0c1e",
    )
    token_max_age_hours = int(os.getenv("LEDGER_TOKEN_MAX_AGE_HOURS", "12"))
    rate_limit_requests = int(os.getenv("LEDGER_RATE_LIMIT_REQUESTS", "100"))
    rate_limit_window_secs = float(os.getenv("LEDGER_RATE_LIMIT_WINDOW_SECS", "60"))
    default_savings_percentage = float(
        os.getenv("LEDGER_DEFAULT_SAVINGS_PERCENTAGE", "20")
    )
    return Settings(
        database_url=database_url,
        timezone=timezone,
        secret_key=secret_key,
        token_max_age_hours=token_max_age_hours,
        rate_limit_requests=rate_limit_requests,
        rate_limit_window_secs=rate_limit_window_secs,
        default_savings_percentage=default_savings_percentage,
    )
