import sqlite3
from pathlib import Path
from typing import Any

APP_CONFIG_TABLE = "app_config"
MEMORY_DB = ":memory:"

PERIOD_HOURS_KEY = "animation_period_hours"
SPEED_KEY = "animation_speed"
OPACITY_KEY = "overlay_opacity"


def connect(db_path: str | Path) -> sqlite3.Connection:
    """
    Open the viewer database (preferences + durable image cache) with the usual lock hardening.
    """
    if str(db_path) == MEMORY_DB:
        return sqlite3.connect(MEMORY_DB, check_same_thread=False)
    db_file = Path(db_path)
    if not db_file.is_absolute():
        db_file = Path.cwd() / db_file
    db_file.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(db_file, check_same_thread=False)
    conn.execute("PRAGMA journal_mode=WAL;")
    conn.execute("PRAGMA synchronous=NORMAL;")
    conn.execute("PRAGMA busy_timeout=5000;")
    return conn


def _ensure_table(conn: sqlite3.Connection) -> None:
    conn.execute(
        f"""
        CREATE TABLE IF NOT EXISTS {APP_CONFIG_TABLE} (
            key TEXT PRIMARY KEY,
            value TEXT NOT NULL
        )
        """
    )


def _get(conn: sqlite3.Connection, key: str) -> str | None:
    _ensure_table(conn)
    row = conn.execute(
        f"SELECT value FROM {APP_CONFIG_TABLE} WHERE key = ?",
        (key,),
    ).fetchone()
    return row[0] if row else None


def _set(conn: sqlite3.Connection, key: str, value: Any) -> None:
    _ensure_table(conn)
    conn.execute(
        f"""
        INSERT INTO {APP_CONFIG_TABLE} (key, value)
        VALUES (?, ?)
        ON CONFLICT(key) DO UPDATE SET
          value=excluded.value
        """,
        (key, str(value)),
    )
    conn.commit()


def _get_positive_float(conn: sqlite3.Connection, key: str) -> float | None:
    value = _get(conn, key)
    if value is None:
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if number > 0 else None


def get_period_hours(conn: sqlite3.Connection) -> int | None:
    hours = _get_positive_float(conn, PERIOD_HOURS_KEY)
    return int(hours) if hours is not None and hours >= 1 else None


def set_period_hours(conn: sqlite3.Connection, hours: int) -> None:
    _set(conn, PERIOD_HOURS_KEY, int(hours))


def get_speed(conn: sqlite3.Connection) -> float | None:
    return _get_positive_float(conn, SPEED_KEY)


def set_speed(conn: sqlite3.Connection, speed: float) -> None:
    _set(conn, SPEED_KEY, float(speed))


def get_opacity(conn: sqlite3.Connection) -> float | None:
    value = _get(conn, OPACITY_KEY)
    if value is None:
        return None
    try:
        opacity = float(value)
    except (TypeError, ValueError):
        return None
    if 0.0 <= opacity <= 1.0:
        return opacity
    return None


def set_opacity(conn: sqlite3.Connection, opacity: float) -> None:
    _set(conn, OPACITY_KEY, float(opacity))


def _visible_key(radar_id: str) -> str:
    return f"radar_visible:{radar_id}"


def get_radar_visible(conn: sqlite3.Connection, radar_id: str) -> bool | None:
    value = _get(conn, _visible_key(radar_id))
    if value is None:
        return None
    return str(value) == "1"


def set_radar_visible(conn: sqlite3.Connection, radar_id: str, visible: bool) -> None:
    _set(conn, _visible_key(radar_id), "1" if visible else "0")
