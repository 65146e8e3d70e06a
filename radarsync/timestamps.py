import re
from dataclasses import dataclass
from datetime import datetime

DUAL_TIME_RE = re.compile(r"^(.+?)\s+UTC\s+\((.+?)\s+LT\)$")
LOCAL_PART_RE = re.compile(r"\((.+?)\s+LT\)")
DATETIME_RE = re.compile(r"(\d{4})-(\d{2})-(\d{2})[\sT]+(\d{2}):(\d{2})(?::(\d{2}))?")
SECONDS_RE = re.compile(r"(\d{2}):(\d{2}):\d{2}")

FRESH_MAX_MIN = 10
AGING_MAX_MIN = 15


@dataclass(frozen=True)
class CaptureTime:
    local: datetime
    utc: datetime | None
    local_text: str
    utc_text: str | None


@dataclass(frozen=True)
class CaptureAge:
    minutes: int
    text: str
    level: str


def _parse_naive(text: str) -> datetime | None:
    match = DATETIME_RE.search(text)
    if match:
        year, month, day, hour, minute = (int(part) for part in match.groups()[:5])
        second = int(match.group(6)) if match.group(6) else 0
        try:
            return datetime(year, month, day, hour, minute, second)
        except ValueError:
            return None
    try:
        parsed = datetime.fromisoformat(text.strip())
    except ValueError:
        return None
    return parsed.replace(tzinfo=None)


def parse_capture_time(text: str | None) -> CaptureTime | None:
    """
    Parse "YYYY-MM-DD HH:MM[:SS] UTC (YYYY-MM-DD HH:MM[:SS] LT)".

    A bare local time string is accepted as a fallback. Returns None when no
    local instant can be recovered.
    """
    if not text or not isinstance(text, str):
        return None
    cleaned = " ".join(text.split())
    match = DUAL_TIME_RE.match(cleaned)
    if match:
        utc_text, local_text = match.group(1), match.group(2)
        local = _parse_naive(local_text)
        if local is None:
            return None
        return CaptureTime(local=local, utc=_parse_naive(utc_text), local_text=local_text, utc_text=utc_text)

    partial = LOCAL_PART_RE.search(cleaned)
    local_text = partial.group(1) if partial else cleaned
    local = _parse_naive(local_text)
    if local is None:
        return None
    return CaptureTime(local=local, utc=None, local_text=local_text, utc_text=None)


def strip_seconds(text: str) -> str:
    return SECONDS_RE.sub(r"\1:\2", text)


def format_age(minutes: int) -> str:
    if minutes < 60:
        return f"{minutes} min ago"
    return f"{minutes // 60}h {minutes % 60:02d}min ago"


def staleness_level(minutes: int) -> str:
    if minutes > AGING_MAX_MIN:
        return "stale"
    if minutes > FRESH_MAX_MIN:
        return "aging"
    return "fresh"


def describe_capture(captured: CaptureTime, now: datetime | None = None) -> CaptureAge:
    now = now or datetime.now()
    minutes = int((now - captured.local).total_seconds() // 60)
    return CaptureAge(minutes=minutes, text=format_age(minutes), level=staleness_level(minutes))


def display_label(captured: CaptureTime) -> str:
    local = strip_seconds(captured.local_text)
    if captured.utc_text:
        return f"{local} LT ({strip_seconds(captured.utc_text)} UTC)"
    return f"{local} LT"
