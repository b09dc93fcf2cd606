"""Chunk persistence."""

from .chunks import ChunkStore
from .snapshot import SnapshotFile

__all__ = ["ChunkStore", "SnapshotFile"]
