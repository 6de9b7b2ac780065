"""
On-demand image derivative cache.

Maps (original file, width) to a resized copy on disk. Lookups are served
from an in-memory index reconciled against the cache directory; misses are
resized under a bounded number of slots. When every slot is taken the
caller gets the original back with a ``CacheBusy`` error while a background
job produces the derivative, so a retry shortly after hits the cache.
"""
from __future__ import annotations

import json
import logging
import os
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, NamedTuple, Optional, Union

from .cache_keys import derive_key, derive_path
from .errors import CacheBusy, DecodeError, WriteError
from .locks import ReadWriteLock
from .resize import probe_width, resize_image

logger = logging.getLogger(__name__)

SNAPSHOT_NAME = "cache.json"
DEFAULT_MAX_CONCURRENT = 10

PathLike = Union[str, Path]
Resizer = Callable[[Path, Path, int], Optional[Path]]
Prober = Callable[[Path], int]


@dataclass
class CacheEntry:
    original_path: str
    cached_path: str
    created_at: float


class DerivativeResult(NamedTuple):
    path: str
    ready: bool
    error: Optional[Exception] = None


class ResizeJob:
    """A single pending resize; completion can be polled or awaited."""

    def __init__(self, key: str, source: Path, target: Path, width: int, background: bool):
        self.key = key
        self.source = source
        self.target = target
        self.width = width
        self.background = background
        self.path: Optional[str] = None
        self.error: Optional[Exception] = None
        self.finished_at: Optional[float] = None
        self._done = threading.Event()

    def done(self) -> bool:
        return self._done.is_set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        return self._done.wait(timeout)

    def finish(self, finished_at: float, path: Optional[str] = None, error: Optional[Exception] = None) -> None:
        self.path = path
        self.error = error
        self.finished_at = finished_at
        self._done.set()


@dataclass
class SweepReport:
    expired_entries: int = 0
    orphan_files: int = 0
    pruned_jobs: int = 0
    errors: List[str] = field(default_factory=list)


class DerivativeCache:
    """Owns the derivative index, the in-flight job table and the resize slots."""

    def __init__(
        self,
        cache_dir: PathLike,
        expiration_seconds: float,
        max_concurrent: int = DEFAULT_MAX_CONCURRENT,
        source_root: Optional[PathLike] = None,
        job_grace_seconds: float = 2.0,
        join_timeout_seconds: float = 0.0,
        save_interval_seconds: float = 600.0,
        resizer: Resizer = resize_image,
        prober: Prober = probe_width,
        clock: Callable[[], float] = time.time,
    ):
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        self.cache_dir = Path(cache_dir)
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        self.expiration = float(expiration_seconds)
        self.max_concurrent = max_concurrent
        self.source_root = Path(source_root).resolve() if source_root else None
        self.job_grace = float(job_grace_seconds)
        self.join_timeout = float(join_timeout_seconds)
        self.save_interval = float(save_interval_seconds)
        self.snapshot_path = self.cache_dir / SNAPSHOT_NAME

        self._resizer = resizer
        self._prober = prober
        self._clock = clock

        self._index: Dict[str, CacheEntry] = {}
        self._index_lock = ReadWriteLock()
        self._jobs: Dict[str, ResizeJob] = {}
        self._jobs_lock = ReadWriteLock()
        self._slots = threading.BoundedSemaphore(max_concurrent)
        self._executor = ThreadPoolExecutor(max_workers=max_concurrent, thread_name_prefix="resize")

        self._stats_lock = threading.Lock()
        self._counters = {"hits": 0, "misses": 0, "resizes": 0, "busy": 0, "failures": 0}
        self._last_saved = self._clock()
        self._closed = False

        try:
            loaded = self.load_index()
            if loaded:
                logger.info("[image_cache] restored %d entries from %s", loaded, self.snapshot_path)
        except (OSError, ValueError) as exc:
            logger.warning("[image_cache] could not load cache index: %s", exc)

    # ------------------------------------------------------------------ lookup

    def get_derivative(self, original_path: PathLike, width: Optional[int]) -> DerivativeResult:
        """Return the path to serve for ``original_path`` at ``width``."""
        original = Path(original_path)
        if width is None or width <= 0:
            return DerivativeResult(str(original), True)

        target = derive_path(self.cache_dir, derive_key(self._key_source(original), width), original.suffix)
        key = target.name

        hit = self._lookup(key, original)
        if hit is not None:
            return hit
        adopted = self._adopt(key, original, target)
        if adopted is not None:
            return adopted
        self._count("misses")

        try:
            source_width = self._prober(original)
        except DecodeError as exc:
            logger.warning("[image_cache] %s", exc)
            return DerivativeResult(str(original), False, exc)
        if width >= source_width:
            return DerivativeResult(str(original), True)

        return self._schedule(key, original, target, width)

    def _key_source(self, original: Path) -> str:
        if self.source_root is not None:
            try:
                return original.resolve().relative_to(self.source_root).as_posix()
            except ValueError:
                pass
        return original.as_posix()

    def _source_modified_after(self, original: Path, timestamp: float) -> bool:
        try:
            return original.stat().st_mtime > timestamp
        except OSError:
            return False

    def _lookup(self, key: str, original: Path) -> Optional[DerivativeResult]:
        with self._index_lock.read():
            entry = self._index.get(key)
        if entry is None:
            return None

        if not os.path.exists(entry.cached_path):
            logger.info("[image_cache] dropping entry with missing file %s", entry.cached_path)
            self._evict(key, entry, remove_file=False)
            return None
        expired = self._clock() - entry.created_at > self.expiration
        if expired or self._source_modified_after(original, entry.created_at):
            self._evict(key, entry, remove_file=True)
            return None

        self._count("hits")
        return DerivativeResult(entry.cached_path, True)

    def _adopt(self, key: str, original: Path, target: Path) -> Optional[DerivativeResult]:
        try:
            cached_mtime = target.stat().st_mtime
        except OSError:
            return None
        if self._source_modified_after(original, cached_mtime):
            return None

        self._store(key, original, target)
        logger.debug("[image_cache] adopted existing derivative %s", target)
        self._count("hits")
        return DerivativeResult(str(target), True)

    def _store(self, key: str, original: Path, target: Path) -> None:
        entry = CacheEntry(str(original), str(target), self._clock())
        with self._index_lock.write():
            self._index[key] = entry

    def _evict(self, key: str, entry: CacheEntry, remove_file: bool) -> bool:
        with self._index_lock.write():
            if self._index.get(key) is not entry:
                return False
            del self._index[key]
            if remove_file:
                try:
                    os.remove(entry.cached_path)
                except FileNotFoundError:
                    pass
                except OSError as exc:
                    logger.warning("[image_cache] failed to remove %s: %s", entry.cached_path, exc)
        return True

    # ------------------------------------------------------------- resizing

    def _schedule(self, key: str, original: Path, target: Path, width: int) -> DerivativeResult:
        with self._jobs_lock.write():
            self._prune_jobs_locked(self._clock())
            job = self._jobs.get(key)
            if job is not None and not self._reusable_locked(job):
                del self._jobs[key]
                job = None
            if job is None:
                with self._index_lock.read():
                    entry = self._index.get(key)
                if entry is not None and os.path.exists(entry.cached_path):
                    # Finished by another caller since our lookup.
                    return DerivativeResult(entry.cached_path, True)
                background = not self._slots.acquire(blocking=False)
                job = ResizeJob(key, original, target, width, background=background)
                self._jobs[key] = job
                owner = True
            else:
                owner = False

        if not owner:
            return self._join(job, original)

        if job.background:
            self._count("busy")
            logger.info("[image_cache] no free slot, resizing %s in background", target.name)
            try:
                self._executor.submit(self._run_background, job)
            except RuntimeError as exc:
                # Executor already shut down.
                self._finish(job, error=exc)
                return DerivativeResult(str(original), False, exc)
            return DerivativeResult(str(original), False, CacheBusy(key))

        try:
            self._run(job)
        finally:
            self._slots.release()
        return self._job_result(job, original)

    def _reusable_locked(self, job: ResizeJob) -> bool:
        # A finished job in its grace window may point at a file that was
        # since evicted or deleted; only live results are handed out again.
        if not job.done() or job.error is not None:
            return True
        if not job.path or not os.path.exists(job.path):
            return False
        if job.path != str(job.target):
            return True
        with self._index_lock.read():
            entry = self._index.get(job.key)
        return entry is not None and entry.cached_path == job.path

    def _join(self, job: ResizeJob, original: Path) -> DerivativeResult:
        if self.join_timeout > 0:
            job.wait(self.join_timeout)
        if not job.done():
            self._count("busy")
            return DerivativeResult(str(original), False, CacheBusy(job.key, "resize already in progress"))
        return self._job_result(job, original)

    def _job_result(self, job: ResizeJob, original: Path) -> DerivativeResult:
        if job.error is not None:
            return DerivativeResult(str(original), False, job.error)
        return DerivativeResult(job.path or str(original), True)

    def _run_background(self, job: ResizeJob) -> None:
        with self._slots:
            self._run(job)

    def _run(self, job: ResizeJob) -> None:
        try:
            produced = self._resizer(job.source, job.target, job.width)
        except (DecodeError, WriteError) as exc:
            self._count("failures")
            logger.warning("[image_cache] resize failed for %s: %s", job.source, exc)
            self._finish(job, error=exc)
            return
        except OSError as exc:
            self._count("failures")
            error = WriteError(f"failed to write {job.target}: {exc}")
            logger.warning("[image_cache] %s", error)
            self._finish(job, error=error)
            return
        except Exception as exc:
            self._count("failures")
            logger.exception("[image_cache] unexpected error resizing %s", job.source)
            self._finish(job, error=exc)
            return

        if produced is None:
            # Source not wider than requested: serve the original.
            self._finish(job, path=str(job.source))
            return
        self._store(job.key, job.source, job.target)
        self._count("resizes")
        self._finish(job, path=str(job.target))

    def _finish(self, job: ResizeJob, path: Optional[str] = None, error: Optional[Exception] = None) -> None:
        job.finish(self._clock(), path=path, error=error)
        if self.job_grace <= 0:
            with self._jobs_lock.write():
                if self._jobs.get(job.key) is job:
                    del self._jobs[job.key]

    def _prune_jobs_locked(self, now: float) -> int:
        stale = [
            key for key, job in self._jobs.items()
            if job.done() and job.finished_at is not None and now - job.finished_at >= self.job_grace
        ]
        for key in stale:
            del self._jobs[key]
        return len(stale)

    # --------------------------------------------------------------- expiry

    def sweep(self) -> SweepReport:
        """Remove expired entries, orphaned files and retired jobs."""
        report = SweepReport()
        now = self._clock()

        with self._jobs_lock.write():
            report.pruned_jobs = self._prune_jobs_locked(now)
            busy_targets = {str(job.target) for job in self._jobs.values()}

        with self._index_lock.read():
            expired = [
                (key, entry) for key, entry in self._index.items()
                if now - entry.created_at > self.expiration
            ]
        for key, entry in expired:
            if entry.cached_path in busy_targets:
                continue
            if self._evict(key, entry, remove_file=True):
                report.expired_entries += 1

        with self._index_lock.read():
            referenced = {entry.cached_path for entry in self._index.values()}
        try:
            candidates = list(os.scandir(self.cache_dir))
        except OSError as exc:
            logger.error("[image_cache] failed to read cache directory: %s", exc)
            report.errors.append(str(exc))
            return report

        for item in candidates:
            if item.name.startswith(SNAPSHOT_NAME) or not item.is_file(follow_symlinks=False):
                continue
            path = str(self.cache_dir / item.name)
            if path in referenced or path in busy_targets:
                continue
            try:
                if now - item.stat().st_mtime <= self.expiration:
                    continue
                os.remove(path)
                report.orphan_files += 1
            except FileNotFoundError:
                continue
            except OSError as exc:
                logger.warning("[image_cache] failed to remove old cache file %s: %s", path, exc)
                report.errors.append(f"{item.name}: {exc}")

        if now - self._last_saved >= self.save_interval:
            try:
                self.save_index()
            except (OSError, ValueError) as exc:
                logger.error("[image_cache] failed to save cache index: %s", exc)
                report.errors.append(str(exc))

        if report.expired_entries or report.orphan_files:
            logger.info(
                "[image_cache] sweep removed %d expired entries, %d orphaned files",
                report.expired_entries,
                report.orphan_files,
            )
        return report

    # ---------------------------------------------------------- persistence

    def save_index(self) -> int:
        with self._index_lock.read():
            payload = {key: asdict(entry) for key, entry in self._index.items()}
        tmp_path = self.snapshot_path.with_name(f"{SNAPSHOT_NAME}.tmp")
        tmp_path.write_text(json.dumps(payload), encoding="utf-8")
        os.replace(tmp_path, self.snapshot_path)
        self._last_saved = self._clock()
        return len(payload)

    def load_index(self) -> int:
        if not self.snapshot_path.exists():
            return 0
        try:
            raw = json.loads(self.snapshot_path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            logger.warning("[image_cache] invalid cache index %s: %s", self.snapshot_path, exc)
            return 0
        if not isinstance(raw, dict):
            return 0

        restored: Dict[str, CacheEntry] = {}
        for key, item in raw.items():
            try:
                entry = CacheEntry(
                    original_path=str(item["original_path"]),
                    cached_path=str(item["cached_path"]),
                    created_at=float(item["created_at"]),
                )
            except (KeyError, TypeError, ValueError):
                continue
            if os.path.exists(entry.cached_path):
                restored[key] = entry
        with self._index_lock.write():
            self._index.update(restored)
        return len(restored)

    # ------------------------------------------------------------ lifecycle

    def _count(self, name: str) -> None:
        with self._stats_lock:
            self._counters[name] += 1

    def stats(self) -> dict:
        with self._index_lock.read():
            entries = len(self._index)
        with self._jobs_lock.read():
            pending = sum(1 for job in self._jobs.values() if not job.done())
        with self._stats_lock:
            counters = dict(self._counters)
        return {
            "entries": entries,
            "jobs_in_flight": pending,
            "max_concurrent": self.max_concurrent,
            "expiration_seconds": self.expiration,
            **counters,
        }

    def pending_jobs(self) -> List[ResizeJob]:
        with self._jobs_lock.read():
            return [job for job in self._jobs.values() if not job.done()]

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until every in-flight job has finished."""
        deadline = None if timeout is None else time.monotonic() + timeout
        for job in self.pending_jobs():
            remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
            if not job.wait(remaining):
                return False
        return True

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._executor.shutdown(wait=True)
        try:
            saved = self.save_index()
            logger.info("[image_cache] saved %d entries on shutdown", saved)
        except (OSError, ValueError) as exc:
            logger.error("[image_cache] failed to save cache index: %s", exc)


__all__ = [
    "CacheEntry",
    "DerivativeCache",
    "DerivativeResult",
    "ResizeJob",
    "SweepReport",
]
