import json
import tempfile
import unittest
from datetime import datetime
from pathlib import Path

from radarsync.engine import EngineContext
from radarsync.latest_worker import poll_once
from radarsync.sink import RecordingSink
from radarsync.sources import RadarSource

NOW = datetime(2025, 10, 29, 8, 40)


class PollOnceTest(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmp.cleanup)
        self.base = Path(self._tmp.name)

    def write_catalog(self, radar_id: str, *times: str) -> None:
        folder = self.base / radar_id / "2025" / "302"
        folder.mkdir(parents=True, exist_ok=True)
        files = [
            {"filename": f"{radar_id}_{t.replace(':', '')}.png", "formatted_time": f"2025-10-29 {t}:00 UTC (2025-10-29 {t}:00 LT)"}
            for t in times
        ]
        (folder / "index.json").write_text(json.dumps({"files": files}), encoding="utf-8")

    def make_engine(self) -> EngineContext:
        sources = [
            RadarSource(id=radar_id, display_name=radar_id.upper(), center=(-4.0, -79.5), coverage_radius_km=80, catalog_base_path=str(self.base / radar_id))
            for radar_id in ("a", "b")
        ]
        engine = EngineContext.create(sources=sources, db_path=":memory:", sink=RecordingSink(), clock=lambda: NOW)
        self.addCleanup(engine.dispose)
        return engine

    def test_summary_reports_age_and_missing_radars(self):
        self.write_catalog("a", "08:10", "08:20")
        self.write_catalog("b", "07:40")
        summary = poll_once(self.make_engine())
        self.assertIn("latest=2025-10-29 08:20 LT (2025-10-29 08:20 UTC)", summary)
        self.assertIn("age=20 min ago", summary)
        self.assertIn("level=stale", summary)
        self.assertIn("shown=a", summary)
        self.assertIn("missing=b", summary)

    def test_no_data(self):
        self.assertEqual(poll_once(self.make_engine()), "no data")


if __name__ == "__main__":
    unittest.main()
