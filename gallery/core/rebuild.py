"""
Coalesced site rebuilds.

Watcher events, the initial scan and deletions all ask for a rebuild. Only
one builder process runs at a time; requests that arrive while a leader is
settling are folded into its run, requests that arrive during a build cause
exactly one more run afterwards.
"""
from __future__ import annotations

import logging
import subprocess
import threading
import time
from typing import Callable, List, Optional

logger = logging.getLogger(__name__)


class SiteBuilder:
    """Runs the external static-site builder with fixed arguments."""

    def __init__(self, binary: str, source_dir: str, dest_dir: str, timeout_seconds: Optional[float] = 600):
        self.binary = binary
        self.source_dir = source_dir
        self.dest_dir = dest_dir
        self.timeout_seconds = timeout_seconds

    def command(self) -> List[str]:
        return [self.binary, "--source", self.source_dir, "--destination", self.dest_dir]

    def __call__(self) -> int:
        start = time.monotonic()
        logger.info("[rebuild] running %s", " ".join(self.command()))
        result = subprocess.run(
            self.command(),
            capture_output=True,
            text=True,
            timeout=self.timeout_seconds,
        )
        elapsed = time.monotonic() - start
        if result.returncode != 0:
            logger.error(
                "[rebuild] builder exited with %s after %.1fs: %s",
                result.returncode,
                elapsed,
                (result.stderr or result.stdout or "").strip()[-2000:],
            )
        else:
            logger.info("[rebuild] site built in %.1fs", elapsed)
        return result.returncode


class RebuildCoalescer:
    def __init__(
        self,
        builder: Callable[[], object],
        settle_seconds: float = 5.0,
        max_wait_seconds: float = 120.0,
    ):
        self._builder = builder
        self.settle_seconds = settle_seconds
        self.max_wait_seconds = max_wait_seconds
        self._cond = threading.Condition()
        self._requested = 0
        self._built = 0
        self._leader_active = False
        self._building = False
        self._last_request = 0.0
        self.builds = 0
        self.failures = 0
        self.last_error: Optional[str] = None
        self.last_finished: Optional[float] = None

    def trigger(self, wait: bool = False) -> bool:
        """
        Ask for a rebuild. Returns True if this caller ran the builder.

        With ``wait`` a non-leading caller blocks until a build that started
        after its request has finished.
        """
        with self._cond:
            self._requested += 1
            self._last_request = time.monotonic()
            ticket = self._requested
            if self._leader_active:
                if wait:
                    self._cond.wait_for(lambda: self._built >= ticket or not self._leader_active)
                return False
            self._leader_active = True

        self._lead()
        return True

    def _lead(self) -> None:
        try:
            while True:
                with self._cond:
                    self._settle_locked()
                    target = self._requested
                    self._building = True
                try:
                    self._run_builder()
                finally:
                    with self._cond:
                        self._building = False
                        self._built = target
                        self._cond.notify_all()
                with self._cond:
                    if self._requested == target:
                        self._leader_active = False
                        return
                logger.info("[rebuild] changes arrived during build, rebuilding again")
        except BaseException:
            with self._cond:
                self._leader_active = False
                self._cond.notify_all()
            raise

    def _settle_locked(self) -> None:
        # Wait until no caller has registered for a full settle period.
        deadline = time.monotonic() + self.max_wait_seconds
        while True:
            now = time.monotonic()
            quiet_for = now - self._last_request
            if quiet_for >= self.settle_seconds or now >= deadline:
                return
            self._cond.wait(timeout=min(self.settle_seconds - quiet_for, deadline - now))

    def _run_builder(self) -> None:
        try:
            result = self._builder()
            if isinstance(result, int) and not isinstance(result, bool) and result != 0:
                self.failures += 1
                self.last_error = f"builder exited with status {result}"
            else:
                self.last_error = None
        except Exception as exc:
            self.failures += 1
            self.last_error = str(exc)
            logger.error("[rebuild] builder failed: %s", exc)
        finally:
            self.builds += 1
            self.last_finished = time.time()

    def status(self) -> dict:
        with self._cond:
            return {
                "pending": self._leader_active and not self._building,
                "building": self._building,
                "builds": self.builds,
                "failures": self.failures,
                "last_error": self.last_error,
                "last_finished": self.last_finished,
            }
