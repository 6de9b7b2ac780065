"""
Tests for the rebuild coalescer and the site builder command.
"""

import subprocess
import threading
import time

import pytest

from gallery.core.rebuild import RebuildCoalescer, SiteBuilder


class FakeBuilder:
    def __init__(self, delay: float = 0.0, fail_first: bool = False):
        self.delay = delay
        self.fail_first = fail_first
        self.calls = 0
        self.started = threading.Event()
        self.release = threading.Event()
        self.release.set()
        self._lock = threading.Lock()

    def __call__(self):
        with self._lock:
            self.calls += 1
            calls = self.calls
        self.started.set()
        self.release.wait(5)
        if self.delay:
            time.sleep(self.delay)
        if self.fail_first and calls == 1:
            raise RuntimeError("builder crashed")
        return 0


class TestRebuildCoalescer:
    def test_burst_of_triggers_runs_once(self):
        builder = FakeBuilder(delay=0.05)
        coalescer = RebuildCoalescer(builder, settle_seconds=0.2, max_wait_seconds=5)
        barrier = threading.Barrier(10)
        leaders = []

        def worker():
            barrier.wait()
            leaders.append(coalescer.trigger())

        threads = [threading.Thread(target=worker) for _ in range(10)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=10)

        assert builder.calls == 1
        assert leaders.count(True) == 1
        assert coalescer.status()["builds"] == 1

    def test_trigger_during_build_runs_exactly_once_more(self):
        builder = FakeBuilder()
        builder.release.clear()
        coalescer = RebuildCoalescer(builder, settle_seconds=0.01, max_wait_seconds=1)

        leader = threading.Thread(target=coalescer.trigger)
        leader.start()
        assert builder.started.wait(5)
        assert coalescer.status()["building"] is True

        for _ in range(3):
            assert coalescer.trigger() is False
        builder.release.set()
        leader.join(timeout=10)

        assert builder.calls == 2
        assert coalescer.status()["pending"] is False

    def test_failed_build_does_not_block_later_builds(self):
        builder = FakeBuilder(fail_first=True)
        coalescer = RebuildCoalescer(builder, settle_seconds=0.01, max_wait_seconds=1)

        assert coalescer.trigger() is True
        status = coalescer.status()
        assert status["failures"] == 1
        assert "builder crashed" in status["last_error"]

        assert coalescer.trigger() is True
        status = coalescer.status()
        assert builder.calls == 2
        assert status["last_error"] is None

    def test_nonzero_exit_counts_as_failure(self):
        results = iter([2, 0])
        coalescer = RebuildCoalescer(lambda: next(results), settle_seconds=0.01, max_wait_seconds=1)

        coalescer.trigger()
        status = coalescer.status()
        assert status["failures"] == 1
        assert "status 2" in status["last_error"]

        coalescer.trigger()
        status = coalescer.status()
        assert status["failures"] == 1
        assert status["last_error"] is None
        assert status["builds"] == 2

    def test_waiting_follower_returns_after_build(self):
        builder = FakeBuilder()
        builder.release.clear()
        coalescer = RebuildCoalescer(builder, settle_seconds=0.01, max_wait_seconds=1)

        leader = threading.Thread(target=coalescer.trigger)
        leader.start()
        assert builder.started.wait(5)

        done = threading.Event()

        def follower():
            coalescer.trigger(wait=True)
            done.set()

        threading.Thread(target=follower).start()
        time.sleep(0.05)
        assert not done.is_set()

        builder.release.set()
        assert done.wait(5)
        # The follower's request arrived during the first build.
        assert builder.calls == 2
        leader.join(timeout=5)

    def test_max_wait_caps_settling(self):
        builder = FakeBuilder()
        coalescer = RebuildCoalescer(builder, settle_seconds=10, max_wait_seconds=0.1)
        start = time.monotonic()
        coalescer.trigger()
        assert time.monotonic() - start < 5
        assert builder.calls == 1


class TestSiteBuilder:
    def test_command(self):
        builder = SiteBuilder("hugo", "site", "public")
        assert builder.command() == ["hugo", "--source", "site", "--destination", "public"]

    def test_runs_builder_process(self, monkeypatch):
        seen = {}

        def fake_run(cmd, **kwargs):
            seen["cmd"] = cmd
            seen.update(kwargs)
            return subprocess.CompletedProcess(cmd, 0, stdout="", stderr="")

        monkeypatch.setattr(subprocess, "run", fake_run)
        assert SiteBuilder("hugo", "src", "out", timeout_seconds=30)() == 0
        assert seen["cmd"][0] == "hugo"
        assert seen["timeout"] == 30

    def test_nonzero_exit_is_returned(self, monkeypatch):
        monkeypatch.setattr(
            subprocess,
            "run",
            lambda cmd, **kwargs: subprocess.CompletedProcess(cmd, 1, stdout="", stderr="boom"),
        )
        assert SiteBuilder("hugo", "src", "out")() == 1

    def test_missing_binary_raises(self):
        with pytest.raises(OSError):
            SiteBuilder("/nonexistent/site-builder", "src", "out")()
