# Copyright (c) 2025 Dave Tofflemire, SigilDERG Project
# Licensed under the GNU Affero General Public License v3.0 (AGPLv3).
# Commercial licenses are available. Contact: davetmire85@gmail.com

"""
Relevance search over the chunk store and prompt augmentation.

The default scorer is lexical: keyword occurrence counts weighted by keyword
length and normalized by chunk size. ``EmbeddingScorer`` swaps in cosine
similarity for callers that have an embedding function.
"""

from __future__ import annotations

import logging
import threading
from collections import OrderedDict
from collections.abc import Callable, Sequence
from typing import Any, Protocol

import numpy as np

from .models import CodeChunk, SearchOptions, SearchResult
from .storage import ChunkStore

logger = logging.getLogger(__name__)

# Type alias for embedding function: takes sequence of texts, returns (N, dim) array
EmbeddingFn = Callable[[Sequence[str]], np.ndarray]

MIN_KEYWORD_LENGTH = 3
SNIPPETS_HEADER = "Here are some relevant code snippets from the codebase:"


class Scorer(Protocol):
    def score(self, query: str, chunk: CodeChunk) -> float:
        ...


def query_keywords(query: str) -> list[str]:
    """Lowercased whitespace tokens longer than two characters."""
    return [w for w in query.lower().split() if len(w) >= MIN_KEYWORD_LENGTH]


class KeywordScorer:
    """Length-weighted keyword counts, normalized per 100 characters, capped at 1."""

    def score(self, query: str, chunk: CodeChunk) -> float:
        keywords = query_keywords(query)
        content = chunk.content
        if not keywords or not content:
            return 0.0
        lowered = content.lower()
        raw = sum(lowered.count(k) * (len(k) / 10) for k in keywords)
        if raw <= 0:
            return 0.0
        return min(raw / (len(content) / 100), 1.0)


class EmbeddingScorer:
    """Cosine similarity between query and chunk embeddings, clipped to [0, 1].

    Chunk embeddings are cached by chunk id in least-recently-used order.
    Edited files produce new ids, so stale entries age out once the cache
    holds ``max_cached`` vectors.
    """

    def __init__(self, embed_fn: EmbeddingFn, max_cached: int = 10_000):
        self.embed_fn = embed_fn
        self.max_cached = max(1, max_cached)
        self._cache: OrderedDict[str, np.ndarray] = OrderedDict()
        self._query_cache: tuple[str, np.ndarray] | None = None
        self._lock = threading.Lock()

    def _embed_one(self, text: str) -> np.ndarray:
        vecs = np.asarray(self.embed_fn([text]), dtype="float32")
        vec = vecs.reshape(-1) if vecs.ndim == 1 else vecs[0]
        norm = float(np.linalg.norm(vec))
        return vec / norm if norm > 0 else vec

    def _query_vector(self, query: str) -> np.ndarray:
        with self._lock:
            cached = self._query_cache
        if cached is not None and cached[0] == query:
            return cached[1]
        vec = self._embed_one(query)
        with self._lock:
            self._query_cache = (query, vec)
        return vec

    def _chunk_vector(self, chunk: CodeChunk) -> np.ndarray:
        key = chunk.ensure_id()
        with self._lock:
            vec = self._cache.get(key)
            if vec is not None:
                self._cache.move_to_end(key)
        if vec is None:
            vec = self._embed_one(chunk.content)
            with self._lock:
                self._cache[key] = vec
                while len(self._cache) > self.max_cached:
                    self._cache.popitem(last=False)
        return vec

    def score(self, query: str, chunk: CodeChunk) -> float:
        if not query.strip() or not chunk.content:
            return 0.0
        similarity = float(np.dot(self._query_vector(query), self._chunk_vector(chunk)))
        return float(np.clip(similarity, 0.0, 1.0))

    def forget(self, chunk_ids: Sequence[str] | None = None) -> None:
        """Drop cached chunk embeddings (all of them when ``chunk_ids`` is None)."""
        with self._lock:
            if chunk_ids is None:
                self._cache.clear()
            else:
                for cid in chunk_ids:
                    self._cache.pop(cid, None)


class RetrievalService:
    def __init__(
        self,
        store: ChunkStore,
        scorer: Scorer | None = None,
        *,
        snippet_threshold: float = 0.2,
        augment_limit: int = 3,
    ):
        self.store = store
        self.scorer: Scorer = scorer or KeywordScorer()
        self.snippet_threshold = snippet_threshold
        self.augment_limit = augment_limit

    def search(self, query: str, options: SearchOptions | None = None) -> list[SearchResult]:
        """Chunks scoring at or above the threshold, best first, at most ``limit``.

        Zero-score chunks never match.
        """
        opts = options or SearchOptions()
        if not query.strip() or opts.limit <= 0:
            return []

        results: list[SearchResult] = []
        for chunk in self.store.all_chunks():
            if opts.filter is not None and not opts.filter(chunk):
                continue
            score = self.scorer.score(query, chunk)
            if score > 0 and score >= opts.threshold:
                results.append(SearchResult(chunk=chunk, score=score))

        results.sort(key=lambda r: r.score, reverse=True)
        logger.debug(
            "Search %r matched %s chunks (limit=%s threshold=%s)",
            query,
            len(results),
            opts.limit,
            opts.threshold,
        )
        return results[: opts.limit]

    def relevant_snippets(
        self, query: str, language: str | None = None, limit: int = 5
    ) -> list[SearchResult]:
        chunk_filter = None
        if language:
            chunk_filter = lambda chunk: chunk.language == language  # noqa: E731
        return self.search(
            query,
            SearchOptions(limit=limit, threshold=self.snippet_threshold, filter=chunk_filter),
        )

    def augment_prompt(
        self,
        prompt: str,
        query: str,
        language: str | None = None,
        limit: int | None = None,
    ) -> str:
        """Append the top snippets for ``query`` to ``prompt``; unchanged if none."""
        try:
            results = self.relevant_snippets(
                query, language, self.augment_limit if limit is None else limit
            )
        except Exception:
            logger.exception("Snippet search failed; returning prompt unchanged")
            return prompt
        if not results:
            return prompt
        return f"{prompt}\n{format_snippets(results)}"

    def stats(self) -> dict[str, Any]:
        return {
            "total_chunks": self.store.count(),
            "scorer": type(self.scorer).__name__,
        }


def format_snippets(results: Sequence[SearchResult]) -> str:
    parts = [f"\n\n{SNIPPETS_HEADER}\n\n"]
    for i, result in enumerate(results, start=1):
        chunk = result.chunk
        parts.append(
            f"Snippet {i} (relevance: {round(result.score * 100)}%):\n"
            f"File: {chunk.file_path}\n"
            f"```{chunk.language}\n{chunk.content}\n```\n\n"
        )
    return "".join(parts)
