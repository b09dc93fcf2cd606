"""In-memory chunk store keyed by id with a per-file secondary index.

All access goes through one re-entrant lock. ``replace_file`` performs the
delete-then-insert for a file under that lock, so readers observe either the
old or the new chunk set of a file, never a mix. Snapshot writes copy the
records under the lock and compress and write them outside it.
"""
from __future__ import annotations

import logging
import threading
import time
from collections import Counter
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterable, Iterator

from ctxindex.errors import StoreError
from ctxindex.models import CodeChunk

from .snapshot import SnapshotFile

logger = logging.getLogger(__name__)


class ChunkStore:
    def __init__(self, snapshot_dir: Path | None = None, flush_every: int = 10):
        self._lock = threading.RLock()
        # Orders snapshot writes; always taken before _lock, never inside it
        self._write_lock = threading.Lock()
        self._chunks: dict[str, CodeChunk] = {}
        # file_path -> ordered set of chunk ids
        self._by_file: dict[str, dict[str, None]] = {}
        self._snapshot = SnapshotFile(snapshot_dir) if snapshot_dir is not None else None
        self.flush_every = max(1, flush_every)
        self._puts_since_flush = 0
        self._defer_depth = 0
        self.flush_count = 0

    # --- writes ---

    def put(self, chunk: CodeChunk) -> str:
        """Upsert ``chunk`` by id, assigning the id if it is blank."""
        chunk_id = chunk.ensure_id()
        with self._lock:
            self._insert(chunk)
            self._puts_since_flush += 1
        self._maybe_flush()
        return chunk_id

    def _insert(self, chunk: CodeChunk) -> None:
        chunk.ensure_id()
        chunk.last_updated = time.time()
        previous = self._chunks.get(chunk.id)
        if previous is not None and previous.file_path != chunk.file_path:
            self._unlink(previous)
        self._chunks[chunk.id] = chunk
        self._by_file.setdefault(chunk.file_path, {})[chunk.id] = None

    def _unlink(self, chunk: CodeChunk) -> None:
        ids = self._by_file.get(chunk.file_path)
        if ids is None:
            return
        ids.pop(chunk.id, None)
        if not ids:
            del self._by_file[chunk.file_path]

    def delete(self, chunk_id: str) -> bool:
        with self._lock:
            chunk = self._chunks.pop(chunk_id, None)
            if chunk is None:
                return False
            self._unlink(chunk)
            self._puts_since_flush += 1
        self._maybe_flush(force=True)
        return True

    def update(self, chunk_id: str, **changes: Any) -> CodeChunk | None:
        """Apply field changes to a stored chunk; ``None`` if it is missing."""
        with self._lock:
            chunk = self._chunks.get(chunk_id)
            if chunk is None:
                return None
            old_path = chunk.file_path
            for key, value in changes.items():
                if key == "id" or not hasattr(chunk, key):
                    raise AttributeError(f"CodeChunk has no updatable field {key!r}")
                setattr(chunk, key, value)
            if chunk.file_path != old_path:
                ids = self._by_file.get(old_path, {})
                ids.pop(chunk_id, None)
                if not ids:
                    self._by_file.pop(old_path, None)
                self._by_file.setdefault(chunk.file_path, {})[chunk_id] = None
            chunk.last_updated = time.time()
            self._puts_since_flush += 1
        self._maybe_flush()
        return chunk

    def delete_by_file(self, file_path: str) -> int:
        with self._lock:
            removed = self._delete_by_file(file_path)
            if removed:
                self._puts_since_flush += removed
        if removed:
            self._maybe_flush(force=True)
        return removed

    def _delete_by_file(self, file_path: str) -> int:
        ids = self._by_file.pop(file_path, None)
        if not ids:
            return 0
        for chunk_id in ids:
            self._chunks.pop(chunk_id, None)
        return len(ids)

    def replace_file(self, file_path: str, chunks: Iterable[CodeChunk]) -> int:
        """Delete every chunk of ``file_path``, then insert ``chunks``."""
        chunks = list(chunks)
        for chunk in chunks:
            if chunk.file_path != file_path:
                raise ValueError(
                    f"chunk for {chunk.file_path!r} passed to replace_file({file_path!r})"
                )
        with self._lock:
            removed = self._delete_by_file(file_path)
            for chunk in chunks:
                self._insert(chunk)
            logger.debug(
                "Replaced chunks for %s: removed=%s inserted=%s",
                file_path,
                removed,
                len(chunks),
            )
            self._puts_since_flush += len(chunks)
        self._maybe_flush()
        return len(chunks)

    def clear(self) -> None:
        with self._write_lock, self._lock:
            self._chunks.clear()
            self._by_file.clear()
            self._puts_since_flush = 0
            if self._snapshot is not None:
                self._snapshot.delete()

    # --- reads ---

    def get(self, chunk_id: str) -> CodeChunk | None:
        with self._lock:
            return self._chunks.get(chunk_id)

    def list_by_file(self, file_path: str) -> list[CodeChunk]:
        with self._lock:
            return [self._chunks[cid] for cid in self._by_file.get(file_path, ())]

    def all_chunks(self) -> list[CodeChunk]:
        """Point-in-time copy of every stored chunk."""
        with self._lock:
            return list(self._chunks.values())

    def files(self) -> list[str]:
        with self._lock:
            return list(self._by_file)

    def count(self) -> int:
        with self._lock:
            return len(self._chunks)

    def __len__(self) -> int:
        return self.count()

    def __contains__(self, chunk_id: object) -> bool:
        with self._lock:
            return chunk_id in self._chunks

    def stats(self) -> dict[str, Any]:
        with self._lock:
            by_type = Counter(c.chunk_type.value for c in self._chunks.values())
            by_language = Counter(c.language for c in self._chunks.values())
            return {
                "chunks": len(self._chunks),
                "files": len(self._by_file),
                "by_type": dict(by_type),
                "by_language": dict(by_language),
                "snapshot": str(self._snapshot.path) if self._snapshot else None,
            }

    # --- persistence ---

    @contextmanager
    def deferred_flush(self) -> Iterator[None]:
        """Suspend threshold flushes; pending writes are flushed once on exit."""
        with self._lock:
            self._defer_depth += 1
        try:
            yield
        finally:
            with self._lock:
                self._defer_depth -= 1
                pending = self._defer_depth == 0 and self._puts_since_flush > 0
            if pending:
                self.flush()

    def _maybe_flush(self, force: bool = False) -> None:
        with self._lock:
            if self._snapshot is None or self._defer_depth:
                return
            due = self._puts_since_flush >= (1 if force else self.flush_every)
        if due:
            self.flush()

    def flush(self) -> bool:
        """Write the snapshot. Failures are logged; memory stays authoritative."""
        if self._snapshot is None:
            return False
        with self._write_lock:
            with self._lock:
                records = [chunk.to_dict() for chunk in self._chunks.values()]
                flushed = self._puts_since_flush
                self._puts_since_flush = 0
            try:
                self._snapshot.write(records)
            except StoreError as exc:
                logger.warning("Chunk snapshot flush failed: %s", exc.message)
                with self._lock:
                    self._puts_since_flush += flushed
                return False
            self.flush_count += 1
        logger.debug("Flushed %s chunks to %s", len(records), self._snapshot.path)
        return True

    def load(self) -> int:
        """Replace the in-memory state with the snapshot contents."""
        if self._snapshot is None:
            return 0
        try:
            records = self._snapshot.read()
        except StoreError as exc:
            logger.warning("Ignoring unreadable chunk snapshot: %s", exc.message)
            return 0
        with self._lock:
            self._chunks.clear()
            self._by_file.clear()
            for record in records:
                try:
                    chunk = CodeChunk.from_dict(record)
                except (KeyError, TypeError, ValueError):
                    logger.debug("Skipping malformed snapshot record", exc_info=True)
                    continue
                chunk.ensure_id()
                self._chunks[chunk.id] = chunk
                self._by_file.setdefault(chunk.file_path, {})[chunk.id] = None
            self._puts_since_flush = 0
            loaded = len(self._chunks)
        logger.info("Loaded %s chunks from snapshot", loaded)
        return loaded

    def close(self) -> None:
        if self._puts_since_flush:
            self.flush()
