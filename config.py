import os
from functools import lru_cache
from pathlib import Path


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class Settings:
    def __init__(
        self,
        database_url: str,
        environment: str,
        timezone: str,
        log_level: str,
        strict_subscription_category: bool,
        scheduler_enabled: bool,
    ) -> None:
        self.database_url = database_url
        self.environment = environment
        self.timezone = timezone
        self.log_level = log_level
        self.strict_subscription_category = strict_subscription_category
        self.scheduler_enabled = scheduler_enabled

    @property
    def is_production(self) -> bool:
        return self.environment == "production"


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("KAKEIBO_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "kakeibo.db"
    database_url = os.getenv("KAKEIBO_DATABASE_URL", f"sqlite:///{default_db}")
    environment = os.getenv("KAKEIBO_ENV", "development").strip().lower()
    timezone = os.getenv("KAKEIBO_TIMEZONE", "Asia/Tokyo")
    log_level = os.getenv("KAKEIBO_LOG_LEVEL", "INFO").upper()
    strict_subscription_category = _env_flag(
        "KAKEIBO_STRICT_SUBSCRIPTION_CATEGORY", True
    )
    scheduler_enabled = _env_flag("KAKEIBO_SCHEDULER_ENABLED", False)
    return Settings(
        database_url=database_url,
        environment=environment,
        timezone=timezone,
        log_level=log_level,
        strict_subscription_category=strict_subscription_category,
        scheduler_enabled=scheduler_enabled,
    )
