import io
import json
import tempfile
import threading
import unittest
from datetime import datetime, timedelta
from pathlib import Path

from PIL import Image

from radarsync import config_store
from radarsync.engine import EngineContext, Severity
from radarsync.settings import Settings, load_settings
from radarsync.sink import RecordingSink
from radarsync.sources import RadarSource

NOW = datetime(2025, 10, 29, 8, 25)
DAY = 302


def write_radar(base: Path, radar_id: str, times: list[str], bounds=None) -> None:
    folder = base / radar_id / "2025" / f"{DAY:03d}"
    folder.mkdir(parents=True, exist_ok=True)
    files = []
    for hhmm in times:
        filename = f"{radar_id}_{hhmm.replace(':', '')}.png"
        Image.new("RGBA", (4, 4), (0, 128, 255, 200)).save(folder / filename, format="PNG")
        item = {
            "filename": filename,
            "formatted_time": f"2025-10-29 {hhmm}:00 UTC (2025-10-29 {hhmm}:00 LT)",
        }
        if bounds is not None:
            item["bounds"] = bounds
        files.append(item)
    (folder / "index.json").write_text(json.dumps({"files": files}), encoding="utf-8")


def sources_under(base: Path) -> list[RadarSource]:
    return [
        RadarSource(
            id="guaxx",
            display_name="Radar GUAXX",
            center=(-4.035698, -79.871928),
            coverage_radius_km=100,
            catalog_base_path=str(base / "guaxx"),
            bounds_scale_factor=0.95,
            z_order=201,
        ),
        RadarSource(
            id="loxx",
            display_name="Radar LOXX",
            center=(-3.98687, -79.14434),
            coverage_radius_km=70,
            catalog_base_path=str(base / "loxx"),
            bounds_scale_factor=1.345,
            z_order=200,
        ),
    ]


class EngineTestCase(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.base = Path(self._tmp.name)
        self.sink = RecordingSink()
        self.received = []

    def tearDown(self):
        self._tmp.cleanup()

    def make_engine(self, **settings_overrides) -> EngineContext:
        engine = EngineContext.create(
            sources=sources_under(self.base),
            db_path=":memory:",
            sink=self.sink,
            settings=Settings(**settings_overrides),
            clock=lambda: NOW,
        )
        engine.subscribe(self.received.append)
        self.addCleanup(engine.dispose)
        return engine


class RefreshLatestTest(EngineTestCase):
    def test_shows_every_radar_within_tolerance(self):
        write_radar(self.base, "guaxx", ["08:00", "08:10", "08:20"], bounds=[[-3.1, -79.0], [-4.9, -80.7]])
        write_radar(self.base, "loxx", ["08:02", "08:22"])
        engine = self.make_engine()

        snapshot = engine.refresh_latest()
        self.assertEqual(snapshot.reference.radar_id, "loxx")
        self.assertEqual(snapshot.reference.local_time, datetime(2025, 10, 29, 8, 22))
        self.assertEqual(snapshot.matches["guaxx"].local_time, datetime(2025, 10, 29, 8, 20))
        self.assertEqual(engine.get_latest_across_sources(), snapshot.reference)

        self.assertEqual(set(self.sink.layers), {"guaxx", "loxx"})
        guaxx = self.sink.layers["guaxx"]
        self.assertTrue(guaxx.address.endswith("guaxx/2025/302/guaxx_0820.png"))
        self.assertEqual(guaxx.z_order, 201)
        self.assertAlmostEqual(guaxx.opacity, 0.7)
        self.assertTrue(guaxx.bounds.is_valid())
        self.assertAlmostEqual(guaxx.bounds.center[0], -4.035698)
        self.assertEqual(self.received[-1].code, "loaded")
        self.assertIn("08:22 LT", self.received[-1].message)

    def test_stale_radar_is_hidden(self):
        write_radar(self.base, "guaxx", ["08:00"])
        write_radar(self.base, "loxx", ["08:22"])
        engine = self.make_engine()

        snapshot = engine.refresh_latest()
        self.assertIsNone(snapshot.matches["guaxx"])
        self.assertEqual(set(self.sink.layers), {"loxx"})
        hidden = [i for i in self.sink.batches[-1] if i.radar_id == "guaxx"][0]
        self.assertFalse(hidden.visible)

    def test_one_radar_missing_entirely(self):
        write_radar(self.base, "loxx", ["08:02", "08:22"])
        engine = self.make_engine()
        snapshot = engine.refresh_latest()
        self.assertEqual(snapshot.reference.radar_id, "loxx")
        self.assertEqual(set(self.sink.layers), {"loxx"})

    def test_no_data_anywhere(self):
        engine = self.make_engine()
        snapshot = engine.refresh_latest()
        self.assertIsNone(snapshot.reference)
        self.assertIsNone(engine.get_latest_across_sources())
        self.assertEqual(self.sink.clears, 1)
        self.assertEqual(self.received[-1].code, "no_data")
        self.assertIs(self.received[-1].severity, Severity.ERROR)

    def test_hidden_radar_renders_transparent(self):
        write_radar(self.base, "guaxx", ["08:20"])
        write_radar(self.base, "loxx", ["08:22"])
        engine = self.make_engine()
        engine.set_radar_visible("guaxx", False)
        engine.refresh_latest()
        self.assertEqual(self.sink.layers["guaxx"].opacity, 0.0)
        self.assertAlmostEqual(self.sink.layers["loxx"].opacity, 0.7)


class EngineQueriesTest(EngineTestCase):
    def test_registry_summary(self):
        write_radar(self.base, "guaxx", ["08:00", "08:10", "08:20"])
        engine = self.make_engine()
        engine.load_registries(3)
        summary = engine.get_registry_summary()
        self.assertEqual(summary["radar_id"].tolist(), ["guaxx", "loxx"])
        self.assertEqual(summary["count"].tolist(), [3, 0])

    def test_build_frame_sequence_uses_loaded_registries(self):
        write_radar(self.base, "guaxx", ["08:00", "08:10", "08:20"])
        write_radar(self.base, "loxx", ["08:02", "08:22"])
        engine = self.make_engine(tolerance=timedelta(minutes=1))
        engine.load_registries(3)
        frames = engine.build_frame_sequence(3)
        self.assertEqual(len(frames), 5)
        self.assertIs(engine.frames, frames)
        self.assertIsNone(frames[2].matches["loxx"])

        report = engine.preload(frames)
        self.assertTrue(report.ok)
        self.assertEqual(report.prepared, 5)

    def test_preload_failure_is_reported(self):
        write_radar(self.base, "guaxx", ["08:00", "08:10"])
        engine = self.make_engine()
        engine.load_registries(3)
        frames = engine.build_frame_sequence(3)
        for png in (self.base / "guaxx").rglob("*.png"):
            png.unlink()
        report = engine.preload(frames)
        self.assertFalse(report.ok)
        self.assertEqual(self.received[-1].code, "preload_failed")
        self.assertTrue(self.received[-1].is_error)

    def test_resolve_bounds_by_id(self):
        write_radar(self.base, "loxx", ["08:22"])
        engine = self.make_engine()
        engine.load_registries(3)
        record = engine.get_latest_across_sources()
        self.assertEqual(engine.resolve_bounds("loxx", record), engine.resolve_bounds(engine.sources[1], record))
        with self.assertRaises(ValueError):
            engine.resolve_bounds("nope", record)

    def test_reset_forgets_loaded_state(self):
        write_radar(self.base, "guaxx", ["08:00", "08:10"])
        engine = self.make_engine()
        engine.load_registries(3)
        engine.build_frame_sequence(3)
        engine.reset()
        self.assertIsNone(engine.get_latest_across_sources())
        self.assertEqual(engine.frames, [])
        self.assertEqual(engine.preloader.handles, {})


class PreferencesTest(EngineTestCase):
    def test_preferences_persist_in_app_config(self):
        engine = self.make_engine()
        engine.set_opacity(0.4)
        engine.set_radar_visible("loxx", False)
        engine.remember_period(6)
        engine.remember_speed(2.0)

        restored = load_settings(engine.conn, ["guaxx", "loxx"])
        self.assertAlmostEqual(restored.opacity, 0.4)
        self.assertEqual(restored.hidden_radars, {"loxx"})
        self.assertEqual(restored.period_hours, 6)
        self.assertAlmostEqual(restored.speed, 2.0)

    def test_invalid_preferences(self):
        engine = self.make_engine()
        with self.assertRaises(ValueError):
            engine.set_opacity(1.5)
        with self.assertRaises(ValueError):
            engine.set_radar_visible("nope", True)

    def test_garbage_values_fall_back_to_defaults(self):
        engine = self.make_engine()
        config_store.set_speed(engine.conn, 2.0)
        engine.conn.execute("UPDATE app_config SET value = 'fast' WHERE key = ?", (config_store.SPEED_KEY,))
        config_store.set_opacity(engine.conn, 3.0)
        restored = load_settings(engine.conn, ["guaxx", "loxx"])
        self.assertEqual(restored.speed, Settings().speed)
        self.assertEqual(restored.opacity, Settings().opacity)

    def test_preference_writes_share_the_cache_lock(self):
        engine = self.make_engine()
        self.assertIs(engine.cache._lock, engine.db_lock)
        writer = threading.Thread(target=engine.set_opacity, args=(0.3,))
        with engine.db_lock:
            writer.start()
            writer.join(timeout=0.2)
            # blocked while a cache transaction holds the connection
            self.assertTrue(writer.is_alive())
            self.assertIsNone(config_store.get_opacity(engine.conn))
        writer.join(timeout=5)
        self.assertFalse(writer.is_alive())
        self.assertAlmostEqual(config_store.get_opacity(engine.conn), 0.3)


if __name__ == "__main__":
    unittest.main()
