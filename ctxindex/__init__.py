# Copyright (c) 2025 Dave Tofflemire, SigilDERG Project
# Licensed under the GNU Affero General Public License v3.0 (AGPLv3).
# Commercial licenses are available. Contact: davetmire85@gmail.com

"""ctxindex: code chunk indexing, retrieval and prompt context assembly."""

from .context import ContextAssembler, estimate_tokens
from .errors import (CtxIndexError, ExtractionError, IndexingCancelled,
                     IndexIOError, StoreError)
from .indexer import Indexer, IndexState
from .models import (ChunkType, CodeChunk, ContextItem, IndexingSession,
                     ScanResult, SearchOptions, SearchResult)
from .retrieval import (EmbeddingScorer, KeywordScorer, RetrievalService,
                        Scorer)
from .storage import ChunkStore
from .workspace import WorkspaceSession

__version__ = "0.1.0"

__all__ = [
    "ChunkStore",
    "ChunkType",
    "CodeChunk",
    "ContextAssembler",
    "ContextItem",
    "CtxIndexError",
    "EmbeddingScorer",
    "ExtractionError",
    "IndexIOError",
    "IndexState",
    "Indexer",
    "IndexingCancelled",
    "IndexingSession",
    "KeywordScorer",
    "RetrievalService",
    "ScanResult",
    "Scorer",
    "SearchOptions",
    "SearchResult",
    "StoreError",
    "WorkspaceSession",
    "estimate_tokens",
]
