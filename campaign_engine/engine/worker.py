"""
Polling Worker - runs the orchestrator on a fixed interval until told to stop.

Runs as a background thread (started by the API when ENABLE_WORKER=true) or as a
standalone process. The only suspension point is the wait between polls, so
stop() lets an in-flight cycle finish and then exits.

Usage:
    # As standalone process
    python -m campaign_engine.engine.worker
    python -m campaign_engine.engine.worker --once

    # As background thread
    worker = PollingWorker(engine.orchestrator, interval=30)
    worker.start()
    # ... later ...
    worker.stop()
"""

import threading
import time

from campaign_engine import config
from campaign_engine.logging_config import get_engine_logger

logger = get_engine_logger("worker")


class PollingWorker:

    def __init__(self, orchestrator, interval: float = None, batch_size: int = None):
        self.orchestrator = orchestrator
        self.interval = interval or config.POLL_INTERVAL_SECONDS
        self.batch_size = batch_size
        self.stop_event = threading.Event()
        self.cycles = 0
        self._thread = None

    def run_cycle(self) -> dict:
        """One poll. A crash is logged and swallowed so the loop keeps going."""
        started = time.monotonic()
        try:
            result = self.orchestrator.run_once(batch_size=self.batch_size)
        except Exception as e:
            logger.error("Poll cycle failed: %s", e, exc_info=True, extra={"phase": "poll"})
            result = {"error": str(e)}
        self.cycles += 1
        duration_ms = int((time.monotonic() - started) * 1000)
        logger.debug("Cycle %d took %dms", self.cycles, duration_ms, extra={"duration_ms": duration_ms})
        return result

    def run_forever(self):
        """Poll until stop_event is set. The first poll runs immediately."""
        logger.info("Worker %s polling every %ss", self.orchestrator.worker_id, self.interval)
        while not self.stop_event.is_set():
            self.run_cycle()
            self.stop_event.wait(self.interval)
        logger.info("Worker stopped after %d cycle(s)", self.cycles)

    def start(self) -> threading.Event:
        """Start polling in a daemon thread. Returns the stop event."""
        if self._thread and self._thread.is_alive():
            return self.stop_event
        self.stop_event.clear()
        self._thread = threading.Thread(target=self.run_forever, daemon=True,
                                        name="campaign-worker")
        self._thread.start()
        return self.stop_event

    def stop(self, timeout: float = 30) -> bool:
        """Signal the loop to exit and wait for the current cycle. True if it stopped."""
        self.stop_event.set()
        if self._thread:
            self._thread.join(timeout)
            return not self._thread.is_alive()
        return True

    @property
    def running(self) -> bool:
        return bool(self._thread and self._thread.is_alive())


# ─── CLI ─────────────────────────────────────────────────────

def main():
    import argparse
    import json

    from campaign_engine.engine.factory import build_engine
    from campaign_engine.logging_config import setup_logging

    parser = argparse.ArgumentParser(description="Run the campaign execution worker.")
    parser.add_argument("--interval", type=float, default=config.POLL_INTERVAL_SECONDS,
                        help=f"Poll interval in seconds (default: {config.POLL_INTERVAL_SECONDS})")
    parser.add_argument("--once", action="store_true", help="Run a single poll cycle and exit")
    parser.add_argument("--db", type=str, help="Database path override")
    args = parser.parse_args()

    setup_logging()
    config.validate(strict=True)
    engine = build_engine(db_path=args.db)
    worker = PollingWorker(engine.orchestrator, interval=args.interval)

    if args.once:
        result = worker.run_cycle()
        print(json.dumps({k: v for k, v in result.items() if k != "runs"}, indent=2, default=str))
        return

    print(f"Polling every {args.interval}s (Ctrl+C to stop)")
    try:
        worker.run_forever()
    except KeyboardInterrupt:
        worker.stop_event.set()
        print("\nStopped.")


if __name__ == "__main__":
    main()
