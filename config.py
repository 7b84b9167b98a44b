import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        duplicate_time_threshold_minutes: int,
        duplicate_amount_similarity: float,
        duplicate_allow_force_add: bool,
        renewal_batch_limit: int,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.duplicate_time_threshold_minutes = duplicate_time_threshold_minutes
        self.duplicate_amount_similarity = duplicate_amount_similarity
        self.duplicate_allow_force_add = duplicate_allow_force_add
        self.renewal_batch_limit = renewal_batch_limit


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("SUBLEDGER_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "subledger.db"
    database_url = os.getenv("SUBLEDGER_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("SUBLEDGER_TIMEZONE", "Europe/Berlin")
    duplicate_time_threshold_minutes = int(
        os.getenv("SUBLEDGER_DUPLICATE_TIME_THRESHOLD_MINUTES", "30")
    )
    duplicate_amount_similarity = float(
        os.getenv("SUBLEDGER_DUPLICATE_AMOUNT_SIMILARITY", "0.95")
    )
    duplicate_allow_force_add = _env_flag(
        "SUBLEDGER_DUPLICATE_ALLOW_FORCE_ADD", "true"
    )
    renewal_batch_limit = int(os.getenv("SUBLEDGER_RENEWAL_BATCH_LIMIT", "500"))
    return Settings(
        database_url=database_url,
        timezone=timezone,
        duplicate_time_threshold_minutes=duplicate_time_threshold_minutes,
        duplicate_amount_similarity=duplicate_amount_similarity,
        duplicate_allow_force_add=duplicate_allow_force_add,
        renewal_batch_limit=renewal_batch_limit,
    )
