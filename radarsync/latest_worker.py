import time
import traceback

from radarsync.engine import EngineContext
from radarsync.log import log
from radarsync.settings import POLL_SEC, RETRY_SEC
from radarsync.sink import LogSink
from radarsync.timestamps import describe_capture, display_label


def poll_once(engine: EngineContext) -> str:
    snapshot = engine.refresh_latest()
    if snapshot.reference is None:
        return "no data"
    age = describe_capture(snapshot.reference.captured, now=engine.now())
    shown = [radar_id for radar_id, record in snapshot.matches.items() if record is not None]
    missing = [radar_id for radar_id, record in snapshot.matches.items() if record is None]
    summary = (
        f"latest={display_label(snapshot.reference.captured)} age={age.text} "
        f"level={age.level} shown={','.join(shown) or '--'}"
    )
    if missing:
        summary += f" missing={','.join(missing)}"
    return summary


def run():
    engine = EngineContext.create(sink=LogSink())
    log(f"Polling {len(engine.sources)} radar catalogs every {POLL_SEC}s")
    for source in engine.sources:
        log(f"  {source.id}: {source.catalog_base_path}")

    try:
        while True:
            try:
                log(f"Poll ok: {poll_once(engine)}")
                time.sleep(POLL_SEC)
            except Exception as e:
                log(f"ERROR: {repr(e)}")
                traceback.print_exc()
                time.sleep(RETRY_SEC)
    except KeyboardInterrupt:
        log("Shutdown requested (KeyboardInterrupt).")
    finally:
        engine.dispose()


if __name__ == "__main__":
    run()
