# Copyright (c) 2025 Dave Tofflemire, SigilDERG Project
# Licensed under the GNU Affero General Public License v3.0 (AGPLv3).
# Commercial licenses are available. Contact: davetmire85@gmail.com

"""
Workspace session: the explicit owner of the store, indexer, retrieval
service, context assembler and file watcher for one workspace.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Sequence

from .config import Config
from .context import ContextAssembler
from .indexer import Indexer
from .models import ContextItem, SearchOptions, SearchResult
from .retrieval import RetrievalService, Scorer
from .storage import ChunkStore
from .watcher import FileWatcher

logger = logging.getLogger(__name__)


class WorkspaceSession:
    def __init__(self, cfg: Config, scorer: Scorer | None = None):
        self.config = cfg
        snapshot_dir = cfg.index_path if cfg.index_persist else None
        self.store = ChunkStore(snapshot_dir, flush_every=cfg.index_flush_every)
        self.indexer = Indexer.from_config(self.store, cfg)
        self.retrieval = RetrievalService(
            self.store,
            scorer,
            snippet_threshold=cfg.retrieval_snippet_threshold,
            augment_limit=cfg.retrieval_augment_limit,
        )
        self.assembler = ContextAssembler(cfg.context_max_tokens, cfg.workspace_name)
        self.watcher: FileWatcher | None = None
        self._started = False

    @property
    def roots(self) -> list[Path]:
        return self.indexer.roots

    def start(self, *, watch: bool | None = None, index: bool = True) -> None:
        """Load the snapshot, start watching and kick off background indexing once."""
        if self._started:
            return
        self._started = True
        self.store.load()
        if watch if watch is not None else self.config.watch_enabled:
            self.watcher = FileWatcher(
                self.indexer,
                self.config.watch_debounce_seconds,
                self.config.watch_ignore_dirs,
            )
            self.watcher.start()
        if index:
            self.start_background_indexing(delay=self.config.index_initial_delay_seconds)

    def start_background_indexing(self, delay: float = 0.0, max_files: int | None = None) -> bool:
        return self.indexer.start_background_scan(max_files=max_files, delay=delay)

    def search(
        self,
        query: str,
        limit: int | None = None,
        threshold: float | None = None,
        language: str | None = None,
    ) -> list[SearchResult]:
        opts = SearchOptions(
            limit=self.config.retrieval_limit if limit is None else limit,
            threshold=self.config.retrieval_threshold if threshold is None else threshold,
        )
        if language:
            opts.filter = lambda chunk: chunk.language == language  # noqa: E731
        return self.retrieval.search(query, opts)

    def augment_prompt(self, prompt: str, query: str, language: str | None = None,
                       limit: int | None = None) -> str:
        return self.retrieval.augment_prompt(prompt, query, language, limit)

    def build_context(
        self,
        query: str | None = None,
        items: Sequence[ContextItem] = (),
        max_tokens: int | None = None,
        language: str | None = None,
    ) -> str:
        """Assemble caller items plus retrieval hits for ``query``."""
        candidates = list(items)
        if query:
            seen = {(it.file_path, it.content) for it in candidates}
            for result in self.retrieval.relevant_snippets(
                query, language, self.config.retrieval_limit
            ):
                item = ContextItem.from_search_result(result)
                if (item.file_path, item.content) not in seen:
                    seen.add((item.file_path, item.content))
                    candidates.append(item)
        return self.assembler.build(candidates, max_tokens)

    def status(self) -> dict[str, Any]:
        return {
            "workspace": self.config.workspace_name,
            "roots": [str(r) for r in self.roots],
            "indexer": self.indexer.stats(),
            "watcher": {"enabled": self.watcher is not None and self.watcher.running},
            "retrieval": self.retrieval.stats(),
        }

    def close(self) -> None:
        if self.watcher is not None:
            self.watcher.stop()
            self.watcher = None
        self.indexer.cancel()
        self.indexer.wait(timeout=5.0)
        self.store.close()
        logger.info("Workspace session closed")
