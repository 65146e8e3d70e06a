import json
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime

import requests

from radarsync.log import log
from radarsync.settings import HTTP_TIMEOUT
from radarsync.sources import RadarSource
from radarsync.timestamps import CaptureTime, parse_capture_time
from radarsync.transport import fetch_bytes

INDEX_FILENAME = "index.json"

Corner = tuple[float, float]


@dataclass(frozen=True)
class CatalogDay:
    year: int
    day_of_year: int

    @property
    def token(self) -> str:
        return f"{self.day_of_year:03d}"


@dataclass(frozen=True)
class CaptureRecord:
    radar_id: str
    year: int
    day_of_year: int
    filename: str
    captured: CaptureTime
    raw_bounds: tuple[Corner, Corner] | None = None
    display_text: str = ""

    @property
    def local_time(self) -> datetime:
        return self.captured.local

    @property
    def day(self) -> CatalogDay:
        return CatalogDay(self.year, self.day_of_year)


@dataclass
class DayOutcome:
    day: CatalogDay
    records: list[CaptureRecord] = field(default_factory=list)
    error: str | None = None


def catalog_address(source: RadarSource, year: int, day_of_year: int) -> str:
    return f"{source.catalog_base_path}/{year}/{day_of_year:03d}/{INDEX_FILENAME}"


def asset_address(source: RadarSource, record: CaptureRecord) -> str:
    return f"{source.catalog_base_path}/{record.year}/{record.day_of_year:03d}/{record.filename}"


def _parse_bounds(value) -> tuple[Corner, Corner] | None:
    if not isinstance(value, (list, tuple)) or len(value) != 2:
        return None
    corners = []
    for corner in value:
        if not isinstance(corner, (list, tuple)) or len(corner) != 2:
            return None
        try:
            corners.append((float(corner[0]), float(corner[1])))
        except (TypeError, ValueError):
            return None
    return corners[0], corners[1]


def parse_entry(source: RadarSource, day: CatalogDay, entry: dict) -> CaptureRecord | None:
    if not isinstance(entry, dict):
        return None
    filename = entry.get("filename")
    if not filename:
        return None
    display_text = entry.get("formatted_time") or entry.get("datetime_local") or ""
    captured = parse_capture_time(display_text)
    if captured is None:
        return None
    return CaptureRecord(
        radar_id=source.id,
        year=day.year,
        day_of_year=day.day_of_year,
        filename=str(filename),
        captured=captured,
        raw_bounds=_parse_bounds(entry.get("bounds")),
        display_text=display_text,
    )


def parse_catalog(source: RadarSource, day: CatalogDay, payload: bytes) -> list[CaptureRecord]:
    data = json.loads(payload)
    files = data.get("files") if isinstance(data, dict) else None
    if not isinstance(files, list):
        return []
    records = []
    skipped = 0
    for entry in files:
        record = parse_entry(source, day, entry)
        if record is None:
            skipped += 1
            continue
        records.append(record)
    if skipped:
        log(f"WARNING: {source.id} {day.year}/{day.token}: skipped {skipped} malformed catalog entries")
    return records


def load_day_catalog(
    source: RadarSource,
    year: int,
    day_of_year: int,
    session: requests.Session | None = None,
    timeout: float = HTTP_TIMEOUT,
) -> list[CaptureRecord]:
    """
    Load one radar's catalog for one calendar day.

    A missing catalog means no captures that day and yields []. Transport and
    parse failures are logged and also yield [].
    """
    return _load_day(source, CatalogDay(year, day_of_year), session, timeout).records


def _load_day(
    source: RadarSource,
    day: CatalogDay,
    session: requests.Session | None,
    timeout: float,
) -> DayOutcome:
    address = catalog_address(source, day.year, day.day_of_year)
    try:
        payload = fetch_bytes(address, session=session, timeout=timeout)
        if payload is None:
            return DayOutcome(day)
        return DayOutcome(day, parse_catalog(source, day, payload))
    except (requests.RequestException, OSError, ValueError) as e:
        log(f"ERROR: catalog {address} failed: {repr(e)}")
        return DayOutcome(day, error=repr(e))


def load_window_outcomes(
    source: RadarSource,
    days: list[CatalogDay],
    session: requests.Session | None = None,
    timeout: float = HTTP_TIMEOUT,
) -> list[DayOutcome]:
    if not days:
        return []
    outcomes: dict[CatalogDay, DayOutcome] = {}
    with ThreadPoolExecutor(max_workers=len(days)) as ex:
        futs = {ex.submit(_load_day, source, day, session, timeout): day for day in days}
        for f in as_completed(futs):
            day = futs[f]
            try:
                outcomes[day] = f.result()
            except Exception as e:
                log(f"ERROR: {source.id} {day.year}/{day.token}: {repr(e)}")
                outcomes[day] = DayOutcome(day, error=repr(e))
    return [outcomes[day] for day in days]


def load_source_window(
    source: RadarSource,
    days: list[CatalogDay],
    session: requests.Session | None = None,
    timeout: float = HTTP_TIMEOUT,
) -> list[CaptureRecord]:
    """Fetch every day's catalog concurrently and flatten, in day order."""
    records = []
    for outcome in load_window_outcomes(source, days, session=session, timeout=timeout):
        records.extend(outcome.records)
    return records
