# Copyright (c) 2025 Dave Tofflemire, SigilDERG Project
# Licensed under the GNU Affero General Public License v3.0 (AGPLv3).
# Commercial licenses are available. Contact: davetmire85@gmail.com

"""
File watching for incremental re-indexing.

Create/modify events are debounced per path and handed to
``Indexer.on_file_changed``; deletions go to ``Indexer.remove_file``.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path, PurePosixPath
from typing import TYPE_CHECKING, Iterable

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

if TYPE_CHECKING:
    from .indexer import Indexer

logger = logging.getLogger(__name__)


class IndexingEventHandler(FileSystemEventHandler):
    """Routes watchdog events for indexable files to the indexer."""

    def __init__(
        self,
        indexer: "Indexer",
        debounce_seconds: float = 1.0,
        ignore_dirs: Iterable[str] | None = None,
    ):
        super().__init__()
        self.indexer = indexer
        self.debounce_seconds = debounce_seconds
        self.ignore_dirs = frozenset(ignore_dirs or ())
        self._timers: dict[str, threading.Timer] = {}
        self._last_mtime: dict[str, float] = {}
        self._lock = threading.Lock()

    def _wanted(self, path: str) -> bool:
        if self.ignore_dirs:
            rel = self.indexer.relative_path(path)
            if rel is None:
                return False
            dirs = PurePosixPath(rel).parts[:-1]
            if len(self.indexer.roots) > 1:
                dirs = dirs[1:]
            if any(part in self.ignore_dirs for part in dirs):
                return False
        return self.indexer.is_indexable(path)

    def _schedule(self, path: str) -> None:
        if self.debounce_seconds <= 0:
            self.indexer.on_file_changed(path)
            return
        with self._lock:
            timer = self._timers.pop(path, None)
            if timer is not None:
                timer.cancel()
            timer = threading.Timer(self.debounce_seconds, self._fire, args=(path,))
            timer.daemon = True
            self._timers[path] = timer
            timer.start()

    def _fire(self, path: str) -> None:
        with self._lock:
            self._timers.pop(path, None)
        self.indexer.on_file_changed(path)

    def _cancel_pending(self, path: str) -> None:
        with self._lock:
            timer = self._timers.pop(path, None)
        if timer is not None:
            timer.cancel()

    def _changed(self, path: str, check_mtime: bool = False) -> None:
        if not self._wanted(path):
            return
        if check_mtime:
            # Reads and scanners can emit modified events without a content change
            try:
                mtime = Path(path).stat().st_mtime
            except OSError:
                mtime = None
            if mtime is not None:
                if self._last_mtime.get(path) == mtime:
                    return
                self._last_mtime[path] = mtime
        logger.debug("Change detected: %s", path)
        self._schedule(path)

    def _deleted(self, path: str) -> None:
        # Deletions ignore ignore_dirs so stale chunks never outlive their file
        if not self.indexer.is_indexable(path):
            return
        self._cancel_pending(path)
        self._last_mtime.pop(path, None)
        self.indexer.remove_file(path)

    def on_created(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._changed(str(event.src_path))

    def on_modified(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._changed(str(event.src_path), check_mtime=True)

    def on_deleted(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._deleted(str(event.src_path))

    def on_moved(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        self._deleted(str(event.src_path))
        dest = getattr(event, "dest_path", None)
        if dest:
            self._changed(str(dest))

    def flush(self) -> None:
        """Run every pending debounced change immediately."""
        with self._lock:
            pending = list(self._timers.items())
            self._timers.clear()
        for path, timer in pending:
            timer.cancel()
            self.indexer.on_file_changed(path)

    def cancel_all(self) -> None:
        with self._lock:
            pending = list(self._timers.values())
            self._timers.clear()
        for timer in pending:
            timer.cancel()


class FileWatcher:
    """Watches every indexer root recursively."""

    def __init__(
        self,
        indexer: "Indexer",
        debounce_seconds: float = 1.0,
        ignore_dirs: Iterable[str] | None = None,
    ):
        self.indexer = indexer
        self.handler = IndexingEventHandler(indexer, debounce_seconds, ignore_dirs)
        self._observer: Observer | None = None

    @property
    def running(self) -> bool:
        return self._observer is not None

    def start(self) -> None:
        if self._observer is not None:
            return
        observer = Observer()
        for root in self.indexer.roots:
            if not root.is_dir():
                logger.warning("Not watching %s: not a directory", root)
                continue
            observer.schedule(self.handler, str(root), recursive=True)
            logger.info("Watching %s for changes", root)
        observer.daemon = True
        observer.start()
        self._observer = observer

    def stop(self) -> None:
        observer = self._observer
        if observer is None:
            return
        self._observer = None
        self.handler.cancel_all()
        try:
            observer.stop()
            observer.join(timeout=2.0)
        except RuntimeError:
            logger.debug("Error stopping file watcher", exc_info=True)
        logger.info("File watcher stopped")
