"""
Unit tests for the polling worker loop.
"""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "../.."))

import time

from campaign_engine.engine.worker import PollingWorker


class StubOrchestrator:
    worker_id = "stub-worker"

    def __init__(self, fail=False):
        self.calls = 0
        self.batch_sizes = []
        self.fail = fail

    def run_once(self, batch_size=None):
        self.calls += 1
        self.batch_sizes.append(batch_size)
        if self.fail:
            raise RuntimeError("database is locked")
        return {"campaigns": 0, "outcomes": {}, "runs": []}


def _wait_for(predicate, timeout=5.0):
    deadline = time.time() + timeout
    while time.time() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return False


def test_run_cycle_passes_batch_size():
    orchestrator = StubOrchestrator()
    worker = PollingWorker(orchestrator, interval=1, batch_size=7)
    assert worker.run_cycle() == {"campaigns": 0, "outcomes": {}, "runs": []}
    assert orchestrator.batch_sizes == [7]
    assert worker.cycles == 1


def test_crashing_cycle_is_contained():
    worker = PollingWorker(StubOrchestrator(fail=True), interval=1)
    result = worker.run_cycle()
    assert result == {"error": "database is locked"}
    assert worker.cycles == 1


def test_start_polls_until_stopped():
    orchestrator = StubOrchestrator()
    worker = PollingWorker(orchestrator, interval=0.01)
    worker.start()
    try:
        assert _wait_for(lambda: orchestrator.calls >= 3)
        assert worker.running is True
    finally:
        assert worker.stop(timeout=5) is True
    assert worker.running is False

    calls = orchestrator.calls
    time.sleep(0.05)
    assert orchestrator.calls == calls


def test_loop_survives_crashes():
    orchestrator = StubOrchestrator(fail=True)
    worker = PollingWorker(orchestrator, interval=0.01)
    worker.start()
    try:
        assert _wait_for(lambda: orchestrator.calls >= 2)
    finally:
        worker.stop(timeout=5)
    assert worker.cycles >= 2


def test_first_poll_is_immediate():
    orchestrator = StubOrchestrator()
    worker = PollingWorker(orchestrator, interval=60)
    worker.start()
    try:
        assert _wait_for(lambda: orchestrator.calls == 1, timeout=2)
    finally:
        assert worker.stop(timeout=5) is True
    assert orchestrator.calls == 1


def test_start_twice_keeps_one_thread():
    worker = PollingWorker(StubOrchestrator(), interval=60)
    worker.start()
    try:
        first = worker._thread
        worker.start()
        assert worker._thread is first
    finally:
        worker.stop(timeout=5)


def test_stop_without_start():
    assert PollingWorker(StubOrchestrator(), interval=1).stop() is True
