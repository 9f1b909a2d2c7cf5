import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        report_layout: str,
        token_secret: str,
        token_max_age_hours: int,
        log_level: str,
        log_retention_days: int,
        scheduler_enabled: bool,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.report_layout = report_layout
        self.token_secret = token_secret
        self.token_max_age_hours = token_max_age_hours
        self.log_level = log_level
        self.log_retention_days = log_retention_days
        self.scheduler_enabled = scheduler_enabled


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("COSTS_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "costs.db"
    database_url = os.getenv("COSTS_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("COSTS_TIMEZONE", "Asia/Jerusalem")
    report_layout = os.getenv("COSTS_REPORT_LAYOUT", "extended").strip().lower()
    token_secret = os.getenv(
        "COSTS_TOKEN_SECRET",
        "5d0c8f6b1e0a4c7f9b2e3a6d8c1f4b7e0a3d6c9f2b5e8a1d4c7f0b3e6a9d2c5f",
    )
    token_max_age_hours = int(os.getenv("COSTS_TOKEN_MAX_AGE_HOURS", "168"))
    log_level = os.getenv("COSTS_LOG_LEVEL", "INFO").strip().upper()
    log_retention_days = int(os.getenv("COSTS_LOG_RETENTION_DAYS", "30"))
    scheduler_enabled = _env_flag("COSTS_SCHEDULER_ENABLED", True)
    return Settings(
        database_url=database_url,
        timezone=timezone,
        report_layout=report_layout,
        token_secret=token_secret,
        token_max_age_hours=token_max_age_hours,
        log_level=log_level,
        log_retention_days=log_retention_days,
        scheduler_enabled=scheduler_enabled,
    )
