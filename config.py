import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        log_level: str,
        sweep_enabled: bool,
        sweep_hour: int,
        allocation_check: str,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.log_level = log_level
        self.sweep_enabled = sweep_enabled
        self.sweep_hour = sweep_hour
        self.allocation_check = allocation_check


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("LEDGER_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def _env_flag(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "ledger.db"
    database_url = os.getenv("LEDGER_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("LEDGER_TIMEZONE", "Europe/Berlin")
    log_level = os.getenv("LEDGER_LOG_LEVEL", "INFO").upper()
    sweep_enabled = _env_flag("LEDGER_SWEEP_ENABLED")
    sweep_hour = int(os.getenv("LEDGER_SWEEP_HOUR", "3"))
    allocation_check = os.getenv("LEDGER_ALLOCATION_CHECK", "cumulative").lower()
    if allocation_check not in {"cumulative", "per_call"}:
        raise ValueError(
            "LEDGER_ALLOCATION_CHECK must be 'cumulative' or 'per_call'"
        )
    return Settings(
        database_url=database_url,
        timezone=timezone,
        log_level=log_level,
        sweep_enabled=sweep_enabled,
        sweep_hour=sweep_hour,
        allocation_check=allocation_check,
    )
