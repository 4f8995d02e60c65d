import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        default_user_id: int,
        bill_lookahead_days: int,
        scheduler_enabled: bool,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.default_user_id = default_user_id
        self.bill_lookahead_days = bill_lookahead_days
        self.scheduler_enabled = scheduler_enabled


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("WALLETBOOK_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "walletbook.db"
    database_url = os.getenv("WALLETBOOK_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("WALLETBOOK_TIMEZONE", "UTC")
    default_user_id = int(os.getenv("WALLETBOOK_DEFAULT_USER_ID", "1"))
    bill_lookahead_days = int(os.getenv("WALLETBOOK_BILL_LOOKAHEAD_DAYS", "7"))
    scheduler_enabled = _env_flag("WALLETBOOK_SCHEDULER_ENABLED", "1")
    return Settings(
        database_url=database_url,
        timezone=timezone,
        default_user_id=default_user_id,
        bill_lookahead_days=bill_lookahead_days,
        scheduler_enabled=scheduler_enabled,
    )
