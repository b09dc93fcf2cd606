"""Compressed on-disk snapshot of the chunk store.

The snapshot is a single zlib-compressed JSON document. Writes go to a
temporary sibling and are moved into place, so a crash mid-write leaves the
previous snapshot intact.
"""
from __future__ import annotations

import json
import logging
import os
import zlib
from pathlib import Path
from typing import Any

from ctxindex.errors import StoreError

logger = logging.getLogger(__name__)

SNAPSHOT_VERSION = 1
SNAPSHOT_NAME = "index.json.z"


class SnapshotFile:
    def __init__(self, base_path: Path):
        self.base_path = base_path
        self.path = base_path / SNAPSHOT_NAME

    @staticmethod
    def serialize(records: list[dict[str, Any]]) -> bytes:
        payload = {"version": SNAPSHOT_VERSION, "chunks": records}
        return zlib.compress(json.dumps(payload, ensure_ascii=False).encode("utf-8"))

    @staticmethod
    def deserialize(blob: bytes) -> list[dict[str, Any]]:
        payload = json.loads(zlib.decompress(blob).decode("utf-8"))
        if not isinstance(payload, dict) or payload.get("version") != SNAPSHOT_VERSION:
            raise ValueError("unsupported snapshot format")
        return list(payload.get("chunks") or [])

    def write(self, records: list[dict[str, Any]]) -> None:
        tmp = self.path.with_suffix(".tmp")
        try:
            self.base_path.mkdir(parents=True, exist_ok=True)
            tmp.write_bytes(self.serialize(records))
            os.replace(tmp, self.path)
        except OSError as exc:
            raise StoreError(
                f"Failed to write snapshot {self.path}: {exc}",
                component="snapshot",
            ) from exc

    def read(self) -> list[dict[str, Any]]:
        """Snapshot records, or an empty list when no snapshot exists yet."""
        if not self.path.exists():
            return []
        try:
            return self.deserialize(self.path.read_bytes())
        except (OSError, ValueError, zlib.error) as exc:
            raise StoreError(
                f"Failed to read snapshot {self.path}: {exc}",
                component="snapshot",
            ) from exc

    def delete(self) -> None:
        try:
            if self.path.exists():
                self.path.unlink()
        except OSError:
            logger.debug("Failed to delete snapshot %s", self.path, exc_info=True)
