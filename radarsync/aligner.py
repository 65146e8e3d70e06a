from bisect import bisect_left
from dataclasses import dataclass
from datetime import datetime, timedelta

from radarsync.catalog import CaptureRecord
from radarsync.registry import TimestampRegistry, latest_of

MAX_TIMELINE_TICKS = 6


@dataclass(frozen=True)
class AlignedFrame:
    """One animation step: the backbone capture and the best match per radar."""

    backbone: CaptureRecord
    matches: dict[str, CaptureRecord | None]

    @property
    def target_time(self) -> datetime:
        return self.backbone.local_time

    def present(self) -> list[CaptureRecord]:
        return [record for record in self.matches.values() if record is not None]


@dataclass(frozen=True)
class TimelineTick:
    index: int
    label: str
    position_pct: float


def select_latest_across_sources(registries: list[TimestampRegistry]) -> CaptureRecord | None:
    candidates = [latest_of(registry) for registry in registries]
    candidates = [record for record in candidates if record is not None]
    if not candidates:
        return None
    # stable ascending sort; on equal instants the later-listed radar wins
    return sorted(candidates, key=lambda record: record.local_time)[-1]


def closest_record(records: tuple[CaptureRecord, ...], reference: datetime) -> CaptureRecord | None:
    """
    Closest capture to reference in a registry-ordered sequence. Under equal
    distance the earliest occurrence wins.
    """
    if not records:
        return None
    idx = bisect_left(records, reference, key=lambda record: record.local_time)
    after = records[idx] if idx < len(records) else None
    before = None
    if idx > 0:
        before_time = records[idx - 1].local_time
        before = records[bisect_left(records, before_time, key=lambda record: record.local_time)]
    if before is None:
        return after
    if after is None:
        return before
    if reference - before.local_time <= after.local_time - reference:
        return before
    return after


def align_to_reference(
    reference: datetime,
    registries: list[TimestampRegistry],
    tolerance: timedelta,
) -> dict[str, CaptureRecord | None]:
    aligned: dict[str, CaptureRecord | None] = {}
    for registry in registries:
        match = closest_record(registry.records, reference)
        if match is not None and abs(match.local_time - reference) > tolerance:
            match = None
        aligned[registry.source.id] = match
    return aligned


def backbone_records(registries: list[TimestampRegistry], hours: float) -> list[CaptureRecord]:
    pooled = [record for registry in registries for record in registry.records]
    if not pooled:
        return []
    newest = max(record.local_time for record in pooled)
    cutoff = newest - timedelta(hours=hours)
    window = [record for record in pooled if cutoff <= record.local_time <= newest]
    return sorted(window, key=lambda record: record.local_time)


def build_frame_sequence(
    registries: list[TimestampRegistry],
    hours: float,
    tolerance: timedelta,
) -> list[AlignedFrame]:
    """
    One frame per window-qualifying capture instant across every radar, oldest
    first, each aligned against the full registry of every radar.
    """
    frames = []
    for record in backbone_records(registries, hours):
        frames.append(AlignedFrame(backbone=record, matches=align_to_reference(record.local_time, registries, tolerance)))
    return frames


def timeline_ticks(frames: list[AlignedFrame], max_ticks: int = MAX_TIMELINE_TICKS) -> list[TimelineTick]:
    total = len(frames)
    if total == 0:
        return []
    if total <= max_ticks:
        indices = list(range(total))
    else:
        step = (total - 1) / (max_ticks - 1)
        picked = {0, total - 1}
        for i in range(1, max_ticks - 1):
            picked.add(int(i * step + 0.5))
        indices = sorted(picked)
    ticks = []
    for index in indices:
        position = (index / (total - 1)) * 100 if total > 1 else 0.0
        ticks.append(TimelineTick(index=index, label=frames[index].target_time.strftime("%H:%M"), position_pct=position))
    return ticks
