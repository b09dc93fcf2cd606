# Copyright (c) 2025 Dave Tofflemire, SigilDERG Project
# Licensed under the GNU Affero General Public License v3.0 (AGPLv3).
# Commercial licenses are available. Contact: davetmire85@gmail.com

"""Data types shared by the store, extractors, indexer and retrieval layers."""

from __future__ import annotations

import hashlib
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable


class ChunkType(str, Enum):
    FUNCTION = "function"
    CLASS = "class"
    METHOD = "method"
    IMPORT = "import"
    OTHER = "other"


def chunk_id(file_path: str, content: str) -> str:
    """Deterministic 16 hex char id for a chunk of ``file_path``."""
    digest = hashlib.sha256((file_path + content).encode("utf-8", errors="replace"))
    return digest.hexdigest()[:16]


@dataclass
class CodeChunk:
    """A contiguous, independently retrievable unit of source text."""

    content: str
    file_path: str
    language: str
    chunk_type: ChunkType
    metadata: dict[str, Any] = field(default_factory=dict)
    id: str = ""
    last_updated: float = 0.0

    def ensure_id(self) -> str:
        if not self.id:
            self.id = chunk_id(self.file_path, self.content)
        return self.id

    @property
    def name(self) -> str | None:
        return self.metadata.get("name")

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "content": self.content,
            "file_path": self.file_path,
            "language": self.language,
            "chunk_type": self.chunk_type.value,
            "metadata": dict(self.metadata),
            "last_updated": self.last_updated,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CodeChunk":
        return cls(
            id=str(data.get("id") or ""),
            content=data["content"],
            file_path=data["file_path"],
            language=data.get("language") or "unknown",
            chunk_type=ChunkType(data.get("chunk_type", ChunkType.OTHER.value)),
            metadata=dict(data.get("metadata") or {}),
            last_updated=float(data.get("last_updated") or 0.0),
        )


@dataclass
class SearchResult:
    chunk: CodeChunk
    score: float

    def to_dict(self) -> dict[str, Any]:
        return {"score": self.score, "chunk": self.chunk.to_dict()}


ChunkFilter = Callable[[CodeChunk], bool]


@dataclass
class SearchOptions:
    """Options for ``RetrievalService.search``."""

    limit: int = 5
    threshold: float = 0.5
    filter: ChunkFilter | None = None


@dataclass
class ContextItem:
    """A candidate piece of context for the assembler.

    ``line_start``/``line_end`` are 1-based and inclusive; an item carrying
    them is treated as a user selection and placed first.
    """

    content: str
    file_path: str
    language: str | None = None
    line_start: int | None = None
    line_end: int | None = None
    size: int | None = None

    @property
    def has_selection(self) -> bool:
        return self.line_start is not None and self.line_end is not None

    @property
    def effective_size(self) -> int:
        return self.size if self.size is not None else len(self.content)

    @classmethod
    def from_search_result(cls, result: SearchResult) -> "ContextItem":
        chunk = result.chunk
        return cls(
            content=chunk.content,
            file_path=chunk.file_path,
            language=chunk.language,
        )


class IndexingSession:
    """Ephemeral state of one full-scan run."""

    def __init__(self, total: int = 0):
        self.total = total
        self.processed = 0
        self.indexed = 0
        self.failed = 0
        self.started_at = time.time()
        self._cancel = threading.Event()

    def cancel(self) -> None:
        self._cancel.set()

    def wait_cancelled(self, timeout: float) -> bool:
        """Block up to ``timeout`` seconds; True as soon as the session is cancelled."""
        return self._cancel.wait(timeout)

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    @property
    def percent(self) -> int:
        if not self.total:
            return 100
        return round(self.processed / self.total * 100)

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "processed": self.processed,
            "indexed": self.indexed,
            "failed": self.failed,
            "percent": self.percent,
            "cancelled": self.cancelled,
        }


@dataclass
class ScanResult:
    """Final outcome of a full scan."""

    total: int = 0
    processed: int = 0
    indexed: int = 0
    failed: int = 0
    chunks: int = 0
    cancelled: bool = False
    skipped: bool = False
    duration_seconds: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "processed": self.processed,
            "indexed": self.indexed,
            "failed": self.failed,
            "chunks": self.chunks,
            "cancelled": self.cancelled,
            "skipped": self.skipped,
            "duration_seconds": round(self.duration_seconds, 3),
        }
