# Copyright (c) 2025 Dave Tofflemire, SigilDERG Project
# Licensed under the GNU Affero General Public License v3.0 (AGPLv3).
# Commercial licenses are available. Contact: davetmire85@gmail.com

"""
Workspace indexing for ctxindex.

Scans configured roots, decomposes every supported file into chunks and keeps
the chunk store current as files change. At most one full scan runs at a
time; per-file re-indexing is serialized against it with per-file locks.
"""

import fnmatch
import logging
import os
import threading
import time
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor, as_completed
from enum import Enum
from pathlib import Path
from time import perf_counter
from typing import Any

from .analysis import extract_chunks, language_for_path
from .config import DEFAULT_EXCLUDE_DIRS, DEFAULT_EXTENSIONS, Config
from .errors import IndexingCancelled, IndexIOError
from .models import IndexingSession, ScanResult
from .storage import ChunkStore

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]

DEFAULT_MAX_FILE_CHARS = 100_000


class IndexState(str, Enum):
    IDLE = "idle"
    INDEXING = "indexing"
    CANCELLED = "cancelled"


class Indexer:
    """Keeps a ``ChunkStore`` in sync with the files under ``roots``."""

    def __init__(
        self,
        store: ChunkStore,
        roots: Sequence[Path],
        *,
        extensions: Sequence[str] | None = None,
        exclude_dirs: Sequence[str] | None = None,
        exclude_patterns: Sequence[str] | None = None,
        max_files: int = 1000,
        batch_size: int = 10,
        batch_delay: float = 0.01,
        workers: int = 4,
        max_file_chars: int = DEFAULT_MAX_FILE_CHARS,
    ):
        if not roots:
            raise ValueError("Indexer needs at least one workspace root")
        self.store = store
        self.roots = [Path(r).expanduser().resolve() for r in roots]
        self.extensions = {e.lower() for e in (extensions or DEFAULT_EXTENSIONS)}
        self.exclude_dirs = set(exclude_dirs if exclude_dirs is not None else DEFAULT_EXCLUDE_DIRS)
        self.exclude_patterns = list(exclude_patterns or [])
        self.max_files = max_files
        self.batch_size = max(1, batch_size)
        self.batch_delay = max(0.0, batch_delay)
        self.workers = max(1, workers)
        self.max_file_chars = max_file_chars

        self._state = IndexState.IDLE
        self._state_lock = threading.Lock()
        self._session: IndexingSession | None = None
        self._thread: threading.Thread | None = None
        self.last_result: ScanResult | None = None

        self._file_locks: dict[str, threading.Lock] = {}
        self._file_locks_guard = threading.Lock()

    @classmethod
    def from_config(cls, store: ChunkStore, cfg: Config) -> "Indexer":
        return cls(
            store,
            cfg.workspace_roots,
            extensions=cfg.index_extensions,
            exclude_dirs=cfg.index_exclude_dirs,
            exclude_patterns=cfg.index_exclude_patterns,
            max_files=cfg.index_max_files,
            batch_size=cfg.index_batch_size,
            batch_delay=cfg.index_batch_delay_seconds,
            workers=cfg.index_workers,
            max_file_chars=cfg.index_max_file_chars,
        )

    # --- state ---

    @property
    def state(self) -> IndexState:
        return self._state

    @property
    def is_indexing(self) -> bool:
        return self._state is not IndexState.IDLE

    @property
    def session(self) -> IndexingSession | None:
        return self._session

    @property
    def progress(self) -> tuple[int, int] | None:
        """``(processed, total)`` of the active scan, or None when idle."""
        session = self._session
        if session is None:
            return None
        return session.processed, session.total

    def _begin(self) -> IndexingSession | None:
        with self._state_lock:
            if self._state is not IndexState.IDLE:
                return None
            self._session = IndexingSession()
            self._state = IndexState.INDEXING
            return self._session

    def _finish(self, result: ScanResult) -> None:
        with self._state_lock:
            self.last_result = result
            self._session = None
            self._state = IndexState.IDLE

    def cancel(self) -> bool:
        """Signal the running full scan to stop at its next batch boundary."""
        with self._state_lock:
            if self._session is None:
                return False
            self._session.cancel()
            self._state = IndexState.CANCELLED
        logger.info("Cancellation requested for running full scan")
        return True

    def wait(self, timeout: float | None = None) -> bool:
        """Wait for a background scan; True when none is running afterwards."""
        thread = self._thread
        if thread is not None:
            thread.join(timeout)
            return not thread.is_alive()
        return True

    # --- full scan ---

    def start_full_scan(
        self,
        max_files: int | None = None,
        exclude_patterns: Sequence[str] | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> ScanResult:
        """Run a full scan in the calling thread.

        A request while another scan is active is a no-op and returns a
        result with ``skipped=True``.
        """
        session = self._begin()
        if session is None:
            logger.info("Full scan already in progress; ignoring request")
            return ScanResult(skipped=True)
        return self._run_and_finish(session, max_files, exclude_patterns, on_progress)

    def start_background_scan(
        self,
        max_files: int | None = None,
        exclude_patterns: Sequence[str] | None = None,
        on_progress: ProgressCallback | None = None,
        delay: float = 0.0,
    ) -> bool:
        """Start a full scan on a daemon thread. False if one is already active."""
        session = self._begin()
        if session is None:
            logger.info("Full scan already in progress; not starting another")
            return False

        def _run() -> None:
            if delay > 0 and session.wait_cancelled(delay):
                logger.info("Background scan cancelled before it started")
                self._finish(ScanResult(cancelled=True))
                return
            self._run_and_finish(session, max_files, exclude_patterns, on_progress)

        self._thread = threading.Thread(target=_run, name="ctxindex-full-scan", daemon=True)
        self._thread.start()
        return True

    def _run_and_finish(self, session, max_files, exclude_patterns, on_progress) -> ScanResult:
        result = ScanResult()
        try:
            result = self._run_scan(session, max_files, exclude_patterns, on_progress)
        except Exception:
            # A failed scan still reports whatever count was reached
            logger.exception("Full scan failed after %s files", session.processed)
            result = ScanResult(
                total=session.total,
                processed=session.processed,
                indexed=session.indexed,
                failed=session.failed,
                chunks=self.store.count(),
            )
        finally:
            self._finish(result)
        return result

    def _run_scan(
        self,
        session: IndexingSession,
        max_files: int | None,
        exclude_patterns: Sequence[str] | None,
        on_progress: ProgressCallback | None,
    ) -> ScanResult:
        started = perf_counter()
        files = self.discover_files(max_files, exclude_patterns)
        session.total = len(files)
        logger.info("Indexing %s files with %s workers", len(files), self.workers)

        result = ScanResult(total=len(files))
        try:
            # Snapshot is written once, when the scan ends
            with self.store.deferred_flush(), ThreadPoolExecutor(
                max_workers=self.workers
            ) as executor:
                for offset in range(0, len(files), self.batch_size):
                    if session.cancelled:
                        raise IndexingCancelled(
                            "Full scan cancelled",
                            component="indexer",
                            details={"processed": session.processed, "total": session.total},
                        )
                    batch = files[offset:offset + self.batch_size]
                    self._index_batch(executor, batch, session)
                    session.processed += len(batch)
                    logger.info(
                        "Indexed %s/%s files (%s%%)",
                        session.processed,
                        session.total,
                        session.percent,
                    )
                    if on_progress is not None:
                        try:
                            on_progress(session.processed, session.total)
                        except Exception:
                            logger.exception("Progress callback raised")
                    if offset + self.batch_size < len(files) and self.batch_delay:
                        time.sleep(self.batch_delay)
        except IndexingCancelled as exc:
            logger.info(
                "%s after %s/%s files",
                exc.message,
                session.processed,
                session.total,
            )
            result.cancelled = True

        result.processed = session.processed
        result.indexed = session.indexed
        result.failed = session.failed
        result.chunks = self.store.count()
        result.duration_seconds = perf_counter() - started
        logger.info(
            "Full scan finished: indexed=%s failed=%s chunks=%s cancelled=%s in %.1fs",
            result.indexed,
            result.failed,
            result.chunks,
            result.cancelled,
            result.duration_seconds,
        )
        return result

    def _index_batch(
        self, executor: ThreadPoolExecutor, batch: list[Path], session: IndexingSession
    ) -> None:
        if self.workers == 1 or len(batch) <= 1:
            for path in batch:
                if self.index_file(path):
                    session.indexed += 1
                else:
                    session.failed += 1
            return

        futures = [executor.submit(self.index_file, path) for path in batch]
        for fut in as_completed(futures):
            try:
                count = fut.result()
            except Exception:
                logger.exception("Failed indexing file in parallel executor")
                count = 0
            if count:
                session.indexed += 1
            else:
                session.failed += 1

    def discover_files(
        self,
        max_files: int | None = None,
        exclude_patterns: Sequence[str] | None = None,
    ) -> list[Path]:
        """Supported files under every root in discovery order, capped."""
        cap = self.max_files if max_files is None else max_files
        patterns = list(self.exclude_patterns) + list(exclude_patterns or [])
        found: list[Path] = []
        scanned = 0
        skipped = 0
        for root in self.roots:
            if not root.is_dir():
                logger.warning("Workspace root %s is not a directory", root)
                continue
            for dirpath, dirnames, filenames in os.walk(root):
                dirnames[:] = sorted(d for d in dirnames if d not in self.exclude_dirs)
                for name in sorted(filenames):
                    scanned += 1
                    path = Path(dirpath) / name
                    if not self.is_indexable(path, patterns):
                        skipped += 1
                        continue
                    found.append(path)
                    if len(found) >= cap:
                        break
                if len(found) >= cap:
                    break
            if len(found) >= cap:
                break
        logger.info(
            "Index scan summary: scanned=%s skipped=%s included=%s cap=%s",
            scanned,
            skipped,
            len(found),
            cap,
        )
        return found

    # --- single files ---

    def relative_path(self, path: str | Path) -> str | None:
        """Workspace-relative posix path, or None for files outside every root."""
        candidate = Path(path).expanduser()
        if not candidate.is_absolute():
            candidate = self.roots[0] / candidate
        candidate = candidate.resolve()
        for root in self.roots:
            try:
                rel = candidate.relative_to(root).as_posix()
            except ValueError:
                continue
            if len(self.roots) > 1:
                return f"{root.name}/{rel}"
            return rel
        return None

    def absolute_path(self, path: str | Path) -> Path:
        candidate = Path(path).expanduser()
        if candidate.is_absolute():
            return candidate.resolve()
        if len(self.roots) > 1:
            head, _, rest = candidate.as_posix().partition("/")
            for root in self.roots:
                if root.name == head and rest:
                    return (root / rest).resolve()
        return (self.roots[0] / candidate).resolve()

    def is_indexable(self, path: str | Path, patterns: Sequence[str] | None = None) -> bool:
        abs_path = self.absolute_path(path)
        if abs_path.suffix.lower() not in self.extensions:
            return False
        rel = self.relative_path(abs_path)
        if rel is None:
            return False
        if any(part in self.exclude_dirs for part in Path(rel).parts[:-1]):
            return False
        for pattern in patterns if patterns is not None else self.exclude_patterns:
            if fnmatch.fnmatch(rel, pattern):
                return False
        return True

    def _file_lock(self, rel: str) -> threading.Lock:
        with self._file_locks_guard:
            lock = self._file_locks.get(rel)
            if lock is None:
                lock = self._file_locks[rel] = threading.Lock()
            return lock

    def _read_text(self, path: Path, max_chars: int | None = None) -> str:
        try:
            text = path.read_bytes().decode("utf-8", errors="replace")
        except OSError as exc:
            raise IndexIOError(
                f"Cannot read {path}: {exc}", component="indexer", details={"path": str(path)}
            ) from exc
        if max_chars is not None and len(text) > max_chars:
            raise IndexIOError(
                f"{path} has {len(text)} characters (limit {max_chars})",
                component="indexer",
                details={"path": str(path), "chars": len(text)},
            )
        return text

    def _index_path(self, abs_path: Path, rel: str, max_chars: int | None) -> int:
        with self._file_lock(rel):
            text = self._read_text(abs_path, max_chars)
            language = language_for_path(abs_path, text[:2048])
            chunks = extract_chunks(text, language, rel)
            return self.store.replace_file(rel, chunks)

    def index_file(self, path: str | Path) -> int:
        """Re-index one file; returns the number of chunks stored (0 if skipped)."""
        rel = self.relative_path(path)
        if rel is None:
            logger.debug("Not indexing %s: outside workspace roots", path)
            return 0
        try:
            return self._index_path(self.absolute_path(path), rel, None)
        except IndexIOError as exc:
            logger.warning("Skipping %s: %s", rel, exc.message)
        except Exception:
            logger.exception("Failed to index %s", rel)
        return 0

    def on_file_changed(self, path: str | Path) -> None:
        """Incremental entry point for file-change events. Never raises."""
        try:
            rel = self.relative_path(path)
            if rel is None or not self.is_indexable(path):
                logger.debug("Ignoring change to non-indexable file %s", path)
                return
            abs_path = self.absolute_path(path)
            if not abs_path.is_file():
                logger.debug("Ignoring change to missing file %s", abs_path)
                return
            count = self._index_path(abs_path, rel, self.max_file_chars)
            logger.debug("Re-indexed %s (%s chunks)", rel, count)
        except IndexIOError as exc:
            logger.info("Skipping change to %s: %s", path, exc.message)
        except Exception:
            logger.exception("Failed to re-index changed file %s", path)

    def remove_file(self, path: str | Path) -> int:
        """Drop every chunk of a deleted file."""
        rel = self.relative_path(path)
        if rel is None:
            return 0
        with self._file_lock(rel):
            removed = self.store.delete_by_file(rel)
        if removed:
            logger.info("Removed %s chunks for deleted file %s", removed, rel)
        return removed

    def clear(self) -> None:
        self.store.clear()
        logger.info("Chunk index cleared")

    def stats(self) -> dict[str, Any]:
        session = self._session
        return {
            "state": self._state.value,
            "roots": [str(r) for r in self.roots],
            "session": session.to_dict() if session is not None else None,
            "last_result": self.last_result.to_dict() if self.last_result else None,
            "store": self.store.stats(),
        }
