import sqlite3
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Callable

import pandas as pd
import requests
from PIL import Image

from radarsync import config_store
from radarsync.aligner import AlignedFrame, align_to_reference, build_frame_sequence, select_latest_across_sources
from radarsync.bounds import BoundsRect, resolve_bounds
from radarsync.cache import DurableCache, Fetcher, PreloadManager, PreloadReport
from radarsync.catalog import CaptureRecord, asset_address, load_source_window
from radarsync.log import log
from radarsync.registry import TimestampRegistry, build_registry, days_covering_window, registry_summary
from radarsync.settings import Settings, load_settings, resolve_db_path
from radarsync.sink import RecordingSink, RenderInstruction, RenderSink
from radarsync.sources import RadarSource, default_sources, source_by_id
from radarsync.timestamps import strip_seconds
from radarsync.transport import new_session


class Severity(Enum):
    INFO = "info"
    ERROR = "error"


@dataclass(frozen=True)
class Notice:
    code: str
    message: str
    severity: Severity = Severity.INFO

    @property
    def is_error(self) -> bool:
        return self.severity is Severity.ERROR


@dataclass
class LatestSnapshot:
    reference: CaptureRecord | None
    matches: dict[str, CaptureRecord | None] = field(default_factory=dict)


class EngineContext:
    """
    Process-wide state of the viewer: current registries, the active frame
    sequence, the image caches and the notice channel.
    """

    def __init__(
        self,
        sources: list[RadarSource],
        settings: Settings,
        conn: sqlite3.Connection,
        session: requests.Session | None = None,
        sink: RenderSink | None = None,
        clock: Callable[[], datetime] | None = None,
        fetcher: Fetcher | None = None,
    ):
        if not sources:
            raise ValueError("at least one radar source is required")
        self.sources = list(sources)
        self.settings = settings
        self.conn = conn
        self.session = session
        self.sink = sink if sink is not None else RecordingSink()
        self.clock = clock or datetime.now
        # preference writes and the image cache share one connection
        self.db_lock = threading.RLock()
        self.cache = DurableCache(conn, max_entries=settings.cache_max_entries, lock=self.db_lock)
        self.preloader = PreloadManager(
            self.cache,
            self.sources,
            session=session,
            timeout=settings.http_timeout,
            fetcher=fetcher,
        )
        self.registries: list[TimestampRegistry] = [build_registry(source, []) for source in self.sources]
        self.frames: list[AlignedFrame] = []
        self.notices: list[Notice] = []
        self.listeners: list[Callable[[Notice], None]] = []

    @classmethod
    def create(
        cls,
        sources: list[RadarSource] | None = None,
        db_path: str | Path | None = None,
        session: requests.Session | None = None,
        sink: RenderSink | None = None,
        settings: Settings | None = None,
        clock: Callable[[], datetime] | None = None,
        fetcher: Fetcher | None = None,
    ) -> "EngineContext":
        sources = sources if sources is not None else default_sources()
        conn = config_store.connect(db_path if db_path is not None else resolve_db_path())
        if settings is None:
            settings = load_settings(conn, [source.id for source in sources])
        return cls(
            sources,
            settings,
            conn,
            session=session if session is not None else new_session(),
            sink=sink,
            clock=clock,
            fetcher=fetcher,
        )

    # ------------------------
    # Notices
    # ------------------------
    def subscribe(self, listener: Callable[[Notice], None]) -> None:
        self.listeners.append(listener)

    def notify(self, code: str, message: str, severity: Severity = Severity.INFO) -> Notice:
        notice = Notice(code=code, message=message, severity=severity)
        prefix = "ERROR: " if notice.is_error else ""
        log(f"{prefix}{message}")
        self.notices.append(notice)
        for listener in self.listeners:
            listener(notice)
        return notice

    # ------------------------
    # Loading
    # ------------------------
    def now(self) -> datetime:
        return self.clock()

    def fetch_registries(self, hours: float) -> list[TimestampRegistry]:
        """Load every radar's catalogs for the window; does not touch engine state."""
        days = days_covering_window(hours, now=self.now())
        log(f"Loading {len(days)} day(s) of catalogs for the last {hours}h")
        with ThreadPoolExecutor(max_workers=len(self.sources)) as ex:
            futs = [
                ex.submit(load_source_window, source, days, self.session, self.settings.http_timeout)
                for source in self.sources
            ]
            loaded = [f.result() for f in futs]
        return [build_registry(source, records) for source, records in zip(self.sources, loaded)]

    def install(self, registries: list[TimestampRegistry], frames: list[AlignedFrame] | None = None) -> None:
        self.registries = registries
        self.frames = frames if frames is not None else []

    def load_registries(self, hours: float) -> list[TimestampRegistry]:
        registries = self.fetch_registries(hours)
        self.install(registries, self.frames)
        return registries

    def total_captures(self, registries: list[TimestampRegistry] | None = None) -> int:
        return sum(registry.count for registry in (registries if registries is not None else self.registries))

    # ------------------------
    # Queries
    # ------------------------
    def get_latest_across_sources(self) -> CaptureRecord | None:
        return select_latest_across_sources(self.registries)

    def get_registry_summary(self) -> pd.DataFrame:
        return registry_summary(self.registries)

    def frames_for(self, registries: list[TimestampRegistry], hours: float) -> list[AlignedFrame]:
        return build_frame_sequence(registries, hours, self.settings.tolerance)

    def build_frame_sequence(self, hours: float) -> list[AlignedFrame]:
        self.frames = self.frames_for(self.registries, hours)
        return self.frames

    def preload(self, frames: list[AlignedFrame], into: dict[str, Image.Image] | None = None) -> PreloadReport:
        report = self.preloader.preload(frames, into=into)
        if into is None:
            self.report_preload(report)
        return report

    def report_preload(self, report: PreloadReport) -> None:
        if not report.ok:
            self.notify(
                "preload_failed",
                f"Could not prepare any of {report.requested} radar images; playing without preload",
                Severity.ERROR,
            )

    def resolve_bounds(self, source: RadarSource | str, record: CaptureRecord) -> BoundsRect:
        if isinstance(source, str):
            source = source_by_id(self.sources, source)
        return resolve_bounds(source, record)

    # ------------------------
    # Rendering
    # ------------------------
    def is_visible(self, radar_id: str) -> bool:
        return radar_id not in self.settings.hidden_radars

    def instructions_for(self, matches: dict[str, CaptureRecord | None]) -> list[RenderInstruction]:
        instructions = []
        for source in self.sources:
            record = matches.get(source.id)
            if record is None:
                instructions.append(RenderInstruction(radar_id=source.id))
                continue
            address = asset_address(source, record)
            instructions.append(
                RenderInstruction(
                    radar_id=source.id,
                    record=record,
                    address=address,
                    bounds=resolve_bounds(source, record),
                    z_order=source.z_order,
                    opacity=self.settings.opacity if self.is_visible(source.id) else 0.0,
                    handle=self.preloader.handle_for(address),
                )
            )
        return instructions

    def render_matches(self, matches: dict[str, CaptureRecord | None]) -> list[RenderInstruction]:
        instructions = self.instructions_for(matches)
        self.sink.render(instructions)
        return instructions

    def render_frame(self, frame: AlignedFrame) -> list[RenderInstruction]:
        return self.render_matches(frame.matches)

    def clear_overlays(self) -> None:
        self.sink.clear()

    def refresh_latest(self, hours: float | None = None) -> LatestSnapshot:
        """
        Static mode: newest capture across radars, with every radar shown only
        when its capture lies within tolerance of that instant.
        """
        registries = self.load_registries(hours if hours is not None else self.settings.latest_lookback_hours)
        latest = select_latest_across_sources(registries)
        if latest is None:
            self.clear_overlays()
            self.notify("no_data", "No recent radar captures available", Severity.ERROR)
            return LatestSnapshot(reference=None)
        matches = align_to_reference(latest.local_time, registries, self.settings.tolerance)
        self.render_matches(matches)
        self.notify("loaded", f"Latest capture loaded: {strip_seconds(latest.captured.local_text)} LT")
        return LatestSnapshot(reference=latest, matches=matches)

    # ------------------------
    # Preferences
    # ------------------------
    def set_radar_visible(self, radar_id: str, visible: bool) -> None:
        source_by_id(self.sources, radar_id)
        if visible:
            self.settings.hidden_radars.discard(radar_id)
        else:
            self.settings.hidden_radars.add(radar_id)
        with self.db_lock:
            config_store.set_radar_visible(self.conn, radar_id, visible)

    def set_opacity(self, opacity: float) -> None:
        if not 0.0 <= opacity <= 1.0:
            raise ValueError("opacity must be between 0 and 1")
        self.settings.opacity = opacity
        with self.db_lock:
            config_store.set_opacity(self.conn, opacity)

    def remember_period(self, hours: int) -> None:
        self.settings.period_hours = hours
        with self.db_lock:
            config_store.set_period_hours(self.conn, hours)

    def remember_speed(self, speed: float) -> None:
        self.settings.speed = speed
        with self.db_lock:
            config_store.set_speed(self.conn, speed)

    # ------------------------
    # Lifecycle
    # ------------------------
    def reset(self) -> None:
        self.preloader.release()
        self.install([build_registry(source, []) for source in self.sources], [])
        self.notices.clear()

    def dispose(self) -> None:
        self.reset()
        self.listeners.clear()
        if self.session is not None:
            self.session.close()
        with self.db_lock:
            self.conn.close()
