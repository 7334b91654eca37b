from __future__ import annotations

import os
import sys
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

from planboard.domain.entities import TimelineConfig


def _resolve_project_root() -> Path:
    if getattr(sys, "frozen", False):
        return Path(sys.executable).resolve().parent
    return Path(__file__).resolve().parents[1]


PROJECT_ROOT = _resolve_project_root()


def load_env() -> None:
    env_name = os.getenv("APP_ENV", "development")
    candidates = [Path.cwd(), PROJECT_ROOT]
    for base in candidates:
        env_path = base / ".env"
        if env_path.exists():
            load_dotenv(env_path)
            break

    for base in candidates:
        env_specific = base / f".env.{env_name}"
        if env_specific.exists():
            load_dotenv(env_specific, override=True)
            break


@dataclass(frozen=True)
class Settings:
    log_level: str = "INFO"
    log_dir: str = "logs"
    log_levels: tuple[tuple[str, str], ...] = ()
    vault_id: str | None = None
    day_start: str = "08:00"
    day_end: str = "22:00"
    min_slot_minutes: int = 15
    snap_minutes: int = 15
    reload_delay_ms: int = 100
    retry_delay_ms: int = 500
    ui_state_debounce_ms: int = 300
    reload_retry_limit: int = 3

    def timeline_config(self) -> TimelineConfig:
        return TimelineConfig(
            day_start=self.day_start,
            day_end=self.day_end,
            min_slot_minutes=self.min_slot_minutes,
            snap_minutes=self.snap_minutes,
        )


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise RuntimeError(f"{name} must be an integer, got {raw!r}") from exc


def _log_levels_env(name: str) -> tuple[tuple[str, str], ...]:
    """Parse `logger=LEVEL` pairs, for example `planboard.infra.remote=DEBUG,planboard.services=WARNING`."""
    levels = []
    for entry in os.getenv(name, "").split(","):
        entry = entry.strip()
        if not entry:
            continue
        logger_name, sep, level = entry.partition("=")
        if not sep or not logger_name.strip() or not level.strip():
            raise RuntimeError(f"{name} entries must look like logger=LEVEL, got {entry!r}")
        levels.append((logger_name.strip(), level.strip().upper()))
    return tuple(levels)


def settings_from_env() -> Settings:
    return Settings(
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        log_dir=os.getenv("LOG_DIR", "logs"),
        log_levels=_log_levels_env("PLANBOARD_LOG_LEVELS"),
        vault_id=os.getenv("PLANBOARD_VAULT_ID", "").strip() or None,
        day_start=os.getenv("PLANBOARD_DAY_START", "08:00"),
        day_end=os.getenv("PLANBOARD_DAY_END", "22:00"),
        min_slot_minutes=_int_env("PLANBOARD_MIN_SLOT_MINUTES", 15),
        snap_minutes=_int_env("PLANBOARD_SNAP_MINUTES", 15),
        reload_delay_ms=_int_env("PLANBOARD_RELOAD_DELAY_MS", 100),
        retry_delay_ms=_int_env("PLANBOARD_RETRY_DELAY_MS", 500),
        ui_state_debounce_ms=_int_env("PLANBOARD_UI_STATE_DEBOUNCE_MS", 300),
        reload_retry_limit=_int_env("PLANBOARD_RELOAD_RETRY_LIMIT", 3),
    )


load_env()

SETTINGS = settings_from_env()
