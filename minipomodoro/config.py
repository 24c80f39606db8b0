import os
from dataclasses import dataclass, field
from pathlib import Path

# Load .env (MINIPOMODORO_* settings)
from dotenv import load_dotenv

from minipomodoro.countdown import DEFAULT_DURATION_MS, TICK_SIZE_MS
from minipomodoro.db import STORE_NAME

load_dotenv()


@dataclass(frozen=True)
class Settings:
    data_dir: Path = Path("data")
    store_name: str = STORE_NAME
    timer_id: str = "countdown"
    list_id: str = "distractions"
    duration_ms: int = DEFAULT_DURATION_MS
    tick_size_ms: int = TICK_SIZE_MS
    log_level: str = "INFO"
    allowed_origins: list[str] = field(default_factory=lambda: ["http://localhost:3000"])


def _int_env(name: str, default: int) -> int:
    value = (os.getenv(name) or "").strip()
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {value!r}") from None


def get_settings() -> Settings:
    """Read settings from the environment (and .env)."""
    origins = os.getenv("MINIPOMODORO_ALLOWED_ORIGINS") or "http://localhost:3000"
    return Settings(
        data_dir=Path(os.getenv("MINIPOMODORO_DATA_DIR") or "data"),
        store_name=os.getenv("MINIPOMODORO_STORE_NAME") or STORE_NAME,
        timer_id=os.getenv("MINIPOMODORO_TIMER_ID") or "countdown",
        list_id=os.getenv("MINIPOMODORO_LIST_ID") or "distractions",
        duration_ms=_int_env("MINIPOMODORO_DURATION_MS", DEFAULT_DURATION_MS),
        tick_size_ms=_int_env("MINIPOMODORO_TICK_MS", TICK_SIZE_MS),
        log_level=(os.getenv("MINIPOMODORO_LOG_LEVEL") or "INFO").upper(),
        allowed_origins=[o.strip() for o in origins.split(",") if o.strip()],
    )
