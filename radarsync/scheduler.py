import itertools
import threading
from enum import Enum
from typing import Callable, Protocol

from radarsync.aligner import AlignedFrame, TimelineTick, timeline_ticks
from radarsync.engine import EngineContext, Severity
from radarsync.log import log
from radarsync.settings import MIN_ANIMATION_FRAMES
from radarsync.timestamps import strip_seconds


class Phase(Enum):
    IDLE = "idle"
    LOADING = "loading"
    READY = "ready"
    PLAYING = "playing"
    PAUSED = "paused"


STOPPED_ON_FRAME = (Phase.READY, Phase.PAUSED)


class FrameTimer(Protocol):
    def start(self, interval_sec: float, callback: Callable[[], None]) -> None: ...

    def cancel(self) -> None: ...


class ThreadingFrameTimer:
    """Repeating timer built on threading.Timer; each start() supersedes the previous one."""

    def __init__(self):
        self._lock = threading.Lock()
        self._timer: threading.Timer | None = None
        self._generation = 0

    def start(self, interval_sec: float, callback: Callable[[], None]) -> None:
        with self._lock:
            self._stop_locked()
            self._generation += 1
            self._arm_locked(self._generation, interval_sec, callback)

    def _arm_locked(self, generation: int, interval_sec: float, callback: Callable[[], None]) -> None:
        timer = threading.Timer(interval_sec, self._fire, args=(generation, interval_sec, callback))
        timer.daemon = True
        self._timer = timer
        timer.start()

    def _fire(self, generation: int, interval_sec: float, callback: Callable[[], None]) -> None:
        with self._lock:
            if generation != self._generation:
                return
        callback()
        with self._lock:
            if generation == self._generation:
                self._arm_locked(generation, interval_sec, callback)

    def _stop_locked(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def cancel(self) -> None:
        with self._lock:
            self._generation += 1
            self._stop_locked()


class AnimationScheduler:
    """
    Idle -> Loading -> Ready <-> Playing <-> Paused -> Idle.

    advance() is the pure frame transition; the timer only decides when it runs.
    Reloads are latest-request-wins: a reload whose token has been superseded
    drops its results.
    """

    def __init__(
        self,
        engine: EngineContext,
        timer: FrameTimer | None = None,
        period_hours: int | None = None,
        speed: float | None = None,
    ):
        self.engine = engine
        self.timer = timer if timer is not None else ThreadingFrameTimer()
        self.period_hours = period_hours if period_hours is not None else engine.settings.period_hours
        self.speed = speed if speed is not None else engine.settings.speed
        self.phase = Phase.IDLE
        self.frames: list[AlignedFrame] = []
        self.current_index = 0
        self._lock = threading.RLock()
        self._generation = 0
        self._reload_tokens = itertools.count(1)
        self._latest_token = 0
        # play/pause intent carried across a reload, inherited by superseding ones
        self._resume_playing = False

    # ------------------------
    # Views
    # ------------------------
    @property
    def frame_count(self) -> int:
        return len(self.frames)

    @property
    def current_frame(self) -> AlignedFrame | None:
        if not self.frames:
            return None
        return self.frames[self.current_index]

    @property
    def progress_pct(self) -> float:
        if len(self.frames) <= 1:
            return 100.0
        return self.current_index / (len(self.frames) - 1) * 100

    def frame_interval_sec(self) -> float:
        return 1.0 / self.speed

    def timeline(self) -> list[TimelineTick]:
        return timeline_ticks(self.frames)

    # ------------------------
    # Timer plumbing
    # ------------------------
    def _cancel_timer(self) -> None:
        self._generation += 1
        self.timer.cancel()

    def _arm_timer(self) -> None:
        self._generation += 1
        generation = self._generation
        self.timer.start(self.frame_interval_sec(), lambda: self._on_tick(generation))

    def _on_tick(self, generation: int) -> None:
        with self._lock:
            if generation != self._generation or self.phase is not Phase.PLAYING:
                return
            self._step(1)

    # ------------------------
    # Frame transitions
    # ------------------------
    def _show_current(self) -> None:
        frame = self.current_frame
        if frame is not None:
            self.engine.render_frame(frame)

    def _step(self, delta: int) -> int:
        self.current_index = (self.current_index + delta) % len(self.frames)
        self._show_current()
        return self.current_index

    def advance(self) -> int:
        """Next frame, wrapping from the last frame back to 0."""
        with self._lock:
            if not self.frames or self.phase is Phase.LOADING:
                return self.current_index
            return self._step(1)

    def _manual_step(self, delta: int) -> int:
        with self._lock:
            if not self.frames or self.phase is Phase.LOADING:
                return self.current_index
            self._cancel_timer()
            self.phase = Phase.PAUSED
            return self._step(delta)

    def step_forward(self) -> int:
        return self._manual_step(1)

    def step_back(self) -> int:
        return self._manual_step(-1)

    def seek(self, index: int) -> bool:
        with self._lock:
            if not self.frames or self.phase is Phase.LOADING:
                return False
            if not 0 <= index < len(self.frames):
                return False
            self._cancel_timer()
            self.current_index = index
            self.phase = Phase.PAUSED
            self._show_current()
            return True

    def first(self) -> bool:
        return self.seek(0)

    def last(self) -> bool:
        return self.seek(len(self.frames) - 1)

    def seek_fraction(self, progress: float) -> bool:
        if len(self.frames) < MIN_ANIMATION_FRAMES:
            return False
        progress = min(max(progress, 0.0), 1.0)
        return self.seek(int(progress * (len(self.frames) - 1) + 0.5))

    # ------------------------
    # Play / pause
    # ------------------------
    def _play_locked(self) -> bool:
        if len(self.frames) < MIN_ANIMATION_FRAMES:
            self._report_insufficient()
            return False
        if self.current_index == len(self.frames) - 1:
            self.current_index = 0
            self._show_current()
        self.phase = Phase.PLAYING
        self._arm_timer()
        return True

    def toggle_play(self) -> Phase:
        with self._lock:
            if self.phase is Phase.PLAYING:
                self._cancel_timer()
                self.phase = Phase.PAUSED
            elif self.phase in STOPPED_ON_FRAME:
                self._play_locked()
            return self.phase

    def change_speed(self, speed: float) -> None:
        if speed <= 0:
            raise ValueError("speed must be > 0")
        self.engine.remember_speed(speed)
        with self._lock:
            self.speed = speed
            if self.phase is Phase.PLAYING:
                self._cancel_timer()
                self._arm_timer()

    # ------------------------
    # Loading
    # ------------------------
    def _report_insufficient(self) -> None:
        self.engine.notify(
            "insufficient_frames",
            f"At least {MIN_ANIMATION_FRAMES} captures are needed to animate the last {self.period_hours}h",
            Severity.ERROR,
        )

    def _go_idle_locked(self) -> None:
        self._cancel_timer()
        self.phase = Phase.IDLE
        self.frames = []
        self.current_index = 0
        self.engine.frames = []
        self.engine.preloader.release()

    def _reload(self) -> bool:
        with self._lock:
            self._cancel_timer()
            token = next(self._reload_tokens)
            self._latest_token = token
            self.phase = Phase.LOADING
            hours = self.period_hours

        staged = {}
        try:
            return self._load_into(token, hours, staged)
        except Exception as e:
            self.engine.preloader.discard(staged)
            log(f"ERROR: reload for the last {hours}h failed: {repr(e)}")
            with self._lock:
                if token != self._latest_token:
                    return False
                self._go_idle_locked()
            self.engine.notify("load_failed", f"Could not load radar captures: {e}", Severity.ERROR)
            return False

    def _load_into(self, token: int, hours: int, staged: dict) -> bool:
        registries = self.engine.fetch_registries(hours)
        frames = self.engine.frames_for(registries, hours)

        with self._lock:
            if token != self._latest_token:
                return False
            if len(frames) < MIN_ANIMATION_FRAMES:
                self.engine.install(registries, [])
                self._go_idle_locked()
                if self.engine.total_captures(registries) == 0:
                    self.engine.clear_overlays()
                    self.engine.notify("no_data", "No radar captures found for the selected period", Severity.ERROR)
                else:
                    self._report_insufficient()
                return False

        report = self.engine.preload(frames, into=staged)

        with self._lock:
            if token != self._latest_token:
                self.engine.preloader.discard(staged)
                return False
            self.engine.preloader.adopt(staged)
            self.engine.report_preload(report)
            self.engine.install(registries, frames)
            self.frames = frames
            self.current_index = len(frames) - 1
            self.phase = Phase.READY
            self._show_current()
        return True

    def start(self, hours: int | None = None, autoplay: bool = True) -> bool:
        with self._lock:
            if self.phase is Phase.LOADING:
                return False
            if self.phase is Phase.PLAYING and hours is None:
                return True
            self._resume_playing = autoplay
        if hours is not None:
            self._set_period(hours)
        if not self._reload():
            return False
        self.engine.notify("loaded", f"{len(self.frames)} frames available for the last {self.period_hours}h")
        if autoplay:
            with self._lock:
                return self._play_locked()
        return True

    def stop(self) -> None:
        with self._lock:
            # in-flight reloads are dropped when they return
            self._latest_token = next(self._reload_tokens)
            self._go_idle_locked()

    def _set_period(self, hours: int) -> None:
        if hours < 1:
            raise ValueError("period must be at least 1 hour")
        self.period_hours = int(hours)
        self.engine.remember_period(self.period_hours)

    def change_period(self, hours: int) -> bool:
        """Returns True when a new sequence was loaded for the period."""
        self._set_period(hours)
        with self._lock:
            if self.phase is Phase.IDLE:
                return False
            # a request during loading supersedes the one in flight and keeps its intent
            if self.phase is not Phase.LOADING:
                self._resume_playing = self.phase is Phase.PLAYING
        if not self._reload():
            return False
        with self._lock:
            if self._resume_playing:
                self._play_locked()
        return True

    def refresh(self) -> bool:
        """
        Reload the current period keeping play/pause intent. Outside an
        animation session this refreshes the static latest view instead.
        """
        with self._lock:
            if self.phase is Phase.LOADING:
                return False
            animating = self.phase in (Phase.PLAYING, Phase.PAUSED, Phase.READY)
            frames_before = len(self.frames)
            if animating:
                self._resume_playing = self.phase is Phase.PLAYING
        if not animating:
            return self.engine.refresh_latest().reference is not None

        if not self._reload():
            return False
        with self._lock:
            if not self.frames:
                return False
            if self._resume_playing and len(self.frames) > frames_before:
                self.current_index = 0
                self._show_current()
                self._play_locked()
            elif self._resume_playing:
                self._play_locked()
            else:
                self.phase = Phase.PAUSED
            newest = self.frames[-1].backbone.captured.local_text
        self.engine.notify("refreshed", f"Refresh complete: {strip_seconds(newest)} LT")
        return True
