import os
import sqlite3
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path

from radarsync.config_store import get_opacity, get_period_hours, get_radar_visible, get_speed

PROJECT_ROOT = Path(__file__).resolve().parents[1]


def resolve_db_path() -> Path:
    raw_path = os.getenv("RADARSYNC_DB_PATH")
    if raw_path:
        path = Path(raw_path)
        return path if path.is_absolute() else PROJECT_ROOT / path
    return PROJECT_ROOT / "data" / "radarsync.db"


HTTP_TIMEOUT = float(os.getenv("RADARSYNC_HTTP_TIMEOUT", "8"))
TOLERANCE_MIN = float(os.getenv("RADARSYNC_TOLERANCE_MIN", "10"))
CACHE_MAX_ENTRIES = int(os.getenv("RADARSYNC_CACHE_MAX_ENTRIES", "400"))
PERIOD_HOURS = int(os.getenv("RADARSYNC_PERIOD_HOURS", "3"))
SPEED = float(os.getenv("RADARSYNC_SPEED", "4"))
OPACITY = float(os.getenv("RADARSYNC_OPACITY", "0.7"))
LATEST_LOOKBACK_HOURS = int(os.getenv("RADARSYNC_LATEST_LOOKBACK_HOURS", "24"))
POLL_SEC = int(os.getenv("RADARSYNC_POLL_SEC", "120"))
RETRY_SEC = int(os.getenv("RADARSYNC_RETRY_SEC", "30"))
MIN_ANIMATION_FRAMES = 2


@dataclass
class Settings:
    tolerance: timedelta = field(default_factory=lambda: timedelta(minutes=TOLERANCE_MIN))
    cache_max_entries: int = CACHE_MAX_ENTRIES
    period_hours: int = PERIOD_HOURS
    speed: float = SPEED
    opacity: float = OPACITY
    http_timeout: float = HTTP_TIMEOUT
    latest_lookback_hours: int = LATEST_LOOKBACK_HOURS
    hidden_radars: set[str] = field(default_factory=set)

    def frame_interval_sec(self) -> float:
        return 1.0 / self.speed


def load_settings(conn: sqlite3.Connection | None = None, radar_ids: list[str] | None = None) -> Settings:
    """
    Environment defaults, overridden by whatever the viewer persisted in app_config.
    """
    settings = Settings()
    if conn is None:
        return settings
    period = get_period_hours(conn)
    if period is not None:
        settings.period_hours = period
    speed = get_speed(conn)
    if speed is not None:
        settings.speed = speed
    opacity = get_opacity(conn)
    if opacity is not None:
        settings.opacity = opacity
    for radar_id in radar_ids or []:
        if get_radar_visible(conn, radar_id) is False:
            settings.hidden_radars.add(radar_id)
    return settings
