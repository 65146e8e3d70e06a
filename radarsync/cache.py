import io
import sqlite3
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Callable

import requests
from PIL import Image

from radarsync.aligner import AlignedFrame
from radarsync.catalog import asset_address
from radarsync.log import log
from radarsync.settings import CACHE_MAX_ENTRIES, HTTP_TIMEOUT
from radarsync.sources import RadarSource, source_by_id
from radarsync.transport import fetch_bytes

IMAGE_CACHE_TABLE = "image_cache"


class AssetMissing(Exception):
    pass


class DurableCache:
    """
    address -> raw image bytes, kept in SQLite across restarts.

    Eviction is strict FIFO on insertion order; reads never refresh an entry.
    """

    def __init__(
        self,
        conn: sqlite3.Connection,
        max_entries: int = CACHE_MAX_ENTRIES,
        lock=None,
    ):
        if max_entries < 1:
            raise ValueError("max_entries must be >= 1")
        self.conn = conn
        self.max_entries = max_entries
        # shared with every other writer on the same connection
        self._lock = lock if lock is not None else threading.RLock()
        self._ensure_table()

    def _ensure_table(self) -> None:
        self.conn.execute(
            f"""
            CREATE TABLE IF NOT EXISTS {IMAGE_CACHE_TABLE} (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                address TEXT NOT NULL UNIQUE,
                payload BLOB NOT NULL,
                inserted_at INTEGER NOT NULL
            )
            """
        )
        self.conn.commit()

    def get(self, address: str) -> bytes | None:
        with self._lock:
            row = self.conn.execute(
                f"SELECT payload FROM {IMAGE_CACHE_TABLE} WHERE address = ?",
                (address,),
            ).fetchone()
        return bytes(row[0]) if row else None

    def put(self, address: str, payload: bytes) -> int:
        """Insert and evict down to max_entries. Returns the number evicted."""
        with self._lock:
            try:
                self.conn.execute(
                    f"""
                    INSERT INTO {IMAGE_CACHE_TABLE} (address, payload, inserted_at)
                    VALUES (?, ?, ?)
                    ON CONFLICT(address) DO UPDATE SET
                      payload=excluded.payload
                    """,
                    (address, sqlite3.Binary(payload), int(time.time())),
                )
                evicted = self._evict()
                self.conn.commit()
            except sqlite3.Error:
                self.conn.rollback()
                raise
        return evicted

    def _evict(self) -> int:
        row = self.conn.execute(f"SELECT COUNT(1) FROM {IMAGE_CACHE_TABLE}").fetchone()
        excess = int(row[0]) - self.max_entries
        if excess <= 0:
            return 0
        self.conn.execute(
            f"""
            DELETE FROM {IMAGE_CACHE_TABLE}
            WHERE seq IN (
              SELECT seq FROM {IMAGE_CACHE_TABLE} ORDER BY seq ASC LIMIT ?
            )
            """,
            (excess,),
        )
        return excess

    def count(self) -> int:
        with self._lock:
            row = self.conn.execute(f"SELECT COUNT(1) FROM {IMAGE_CACHE_TABLE}").fetchone()
        return int(row[0]) if row else 0

    def addresses(self) -> list[str]:
        with self._lock:
            rows = self.conn.execute(f"SELECT address FROM {IMAGE_CACHE_TABLE} ORDER BY seq ASC").fetchall()
        return [row[0] for row in rows]

    def clear(self) -> None:
        with self._lock:
            self.conn.execute(f"DELETE FROM {IMAGE_CACHE_TABLE}")
            self.conn.commit()


@dataclass
class PreloadReport:
    requested: int = 0
    prepared: int = 0
    failed: int = 0
    from_network: int = 0

    @property
    def ok(self) -> bool:
        return self.prepared > 0


@dataclass
class _Prepared:
    address: str
    payload: bytes
    image: Image.Image
    fetched: bool


def decode_image(payload: bytes) -> Image.Image:
    image = Image.open(io.BytesIO(payload))
    image.load()
    return image


Fetcher = Callable[[str], bytes | None]


class PreloadManager:
    def __init__(
        self,
        cache: DurableCache,
        sources: list[RadarSource],
        session: requests.Session | None = None,
        timeout: float = HTTP_TIMEOUT,
        fetcher: Fetcher | None = None,
    ):
        self.cache = cache
        self.sources = sources
        self.session = session
        self.timeout = timeout
        self.fetcher = fetcher or self._fetch
        # decoded handles for the current animation session only
        self.handles: dict[str, Image.Image] = {}

    def _fetch(self, address: str) -> bytes | None:
        return fetch_bytes(address, session=self.session, timeout=self.timeout)

    def addresses_for(self, frames: list[AlignedFrame]) -> list[str]:
        seen = set()
        addresses = []
        for frame in frames:
            for record in frame.present():
                address = asset_address(source_by_id(self.sources, record.radar_id), record)
                if address in seen:
                    continue
                seen.add(address)
                addresses.append(address)
        return addresses

    def _materialize(self, address: str, cached: bytes | None) -> _Prepared:
        payload = cached
        if payload is None:
            payload = self.fetcher(address)
            if payload is None:
                raise AssetMissing(address)
        return _Prepared(address=address, payload=payload, image=decode_image(payload), fetched=cached is None)

    def _cached_payload(self, address: str) -> bytes | None:
        try:
            return self.cache.get(address)
        except sqlite3.Error as e:
            log(f"WARNING: cache read {address} failed: {repr(e)}")
            return None

    def _remember(self, address: str, payload: bytes) -> None:
        try:
            self.cache.put(address, payload)
        except sqlite3.Error as e:
            # the decoded image is still usable for this session
            log(f"WARNING: cache write {address} failed: {repr(e)}")

    def preload(self, frames: list[AlignedFrame], into: dict[str, Image.Image] | None = None) -> PreloadReport:
        """
        Prepare every distinct asset the frames reference. Decoded images go to
        `into` when given (to be adopted or discarded later), else straight to
        the live handle map.
        """
        handles = self.handles if into is None else into
        addresses = self.addresses_for(frames)
        report = PreloadReport(requested=len(addresses))
        pending = []
        for address in addresses:
            existing = self.handles.get(address)
            if existing is not None:
                handles[address] = existing
                report.prepared += 1
                continue
            pending.append((address, self._cached_payload(address)))
        if not pending:
            return report

        with ThreadPoolExecutor(max_workers=len(pending)) as ex:
            futs = {ex.submit(self._materialize, address, cached): address for address, cached in pending}
            for f in as_completed(futs):
                address = futs[f]
                try:
                    prepared = f.result()
                except Exception as e:
                    report.failed += 1
                    log(f"WARNING: preload {address} failed: {repr(e)}")
                    continue
                if prepared.fetched:
                    self._remember(address, prepared.payload)
                    report.from_network += 1
                handles[address] = prepared.image
                report.prepared += 1

        log(
            f"Preload: {report.prepared}/{report.requested} ready "
            f"({report.from_network} fetched, {report.failed} failed)"
        )
        return report

    def handle_for(self, address: str) -> Image.Image | None:
        return self.handles.get(address)

    def adopt(self, staged: dict[str, Image.Image]) -> None:
        """Make a staged handle map the live one, closing what it no longer holds."""
        for address, image in self.handles.items():
            if staged.get(address) is not image:
                image.close()
        self.handles = staged

    def discard(self, staged: dict[str, Image.Image]) -> None:
        for address, image in staged.items():
            if self.handles.get(address) is not image:
                image.close()
        staged.clear()

    def release(self) -> None:
        for image in self.handles.values():
            image.close()
        self.handles = {}
