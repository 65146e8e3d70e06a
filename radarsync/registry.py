from dataclasses import dataclass
from datetime import date, datetime, timedelta

import pandas as pd

from radarsync.catalog import CaptureRecord, CatalogDay
from radarsync.sources import RadarSource

SUMMARY_COLUMNS = ["radar_id", "name", "count", "oldest", "newest"]


@dataclass(frozen=True)
class TimestampRegistry:
    source: RadarSource
    records: tuple[CaptureRecord, ...] = ()

    @property
    def count(self) -> int:
        return len(self.records)

    @property
    def oldest(self) -> datetime | None:
        return self.records[0].local_time if self.records else None

    @property
    def newest(self) -> datetime | None:
        return self.records[-1].local_time if self.records else None


def build_registry(source: RadarSource, records: list[CaptureRecord]) -> TimestampRegistry:
    # sorted() is stable: equal instants keep catalog order
    ordered = sorted(records, key=lambda record: record.local_time)
    return TimestampRegistry(source=source, records=tuple(ordered))


def latest_of(registry: TimestampRegistry) -> CaptureRecord | None:
    return registry.records[-1] if registry.records else None


def day_of(value: date) -> CatalogDay:
    return CatalogDay(year=value.year, day_of_year=value.timetuple().tm_yday)


def days_covering_window(hours: float, now: datetime | None = None) -> list[CatalogDay]:
    """
    Every local calendar day from (now - hours) through now, oldest first.
    """
    now = now or datetime.now()
    cutoff = now - timedelta(hours=hours)
    days = []
    current = cutoff.date()
    while current <= now.date():
        days.append(day_of(current))
        current += timedelta(days=1)
    return days


def registry_summary(registries: list[TimestampRegistry]) -> pd.DataFrame:
    rows = []
    for registry in registries:
        rows.append(
            {
                "radar_id": registry.source.id,
                "name": registry.source.display_name,
                "count": registry.count,
                "oldest": registry.oldest,
                "newest": registry.newest,
            }
        )
    return pd.DataFrame(rows, columns=SUMMARY_COLUMNS)
