"""Token-budgeted assembly of prompt context.

Token counts here are estimates (``ceil(words * 1.3)``), not tokenizer-exact;
callers needing hard limits should leave headroom. A budget too small for
even the first item's header yields only the omission marker.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Sequence

from .models import ContextItem

logger = logging.getLogger(__name__)

TOKENS_PER_WORD = 1.3
TRUNCATION_MARKER = "\n[...content truncated...]"
OMISSION_MARKER = "[Additional context omitted due to token limit]\n"
STOP_RATIO = 0.95

MODE_BUDGETS = {
    "completion": 2000,
    "chat": 6000,
    "agent": 4000,
}


def estimate_tokens(text: str) -> int:
    words = len(text.split())
    return math.ceil(words * TOKENS_PER_WORD) if words else 0


def budget_for_mode(mode: str, default: int = 4000) -> int:
    return MODE_BUDGETS.get(mode, default)


class ContextAssembler:
    def __init__(self, max_tokens: int = 4000, workspace_name: str | None = None):
        self.max_tokens = max_tokens
        self.workspace_name = workspace_name

    @staticmethod
    def order(items: Sequence[ContextItem]) -> list[ContextItem]:
        """Selections first, then everything by ascending size."""
        return sorted(items, key=lambda it: (not it.has_selection, it.effective_size))

    def build(self, items: Sequence[ContextItem], max_tokens: int | None = None) -> str:
        budget = self.max_tokens if max_tokens is None else max_tokens
        if not items or budget <= 0:
            return ""

        # Even split decided up front; budget left by short items is not reused
        share = budget // len(items)
        limit = budget * STOP_RATIO

        parts: list[str] = []
        used = 0
        if self.workspace_name:
            preamble = f"Workspace: {self.workspace_name}\n\n"
            parts.append(preamble)
            used += estimate_tokens(preamble)

        placed = 0
        for item in self.order(items):
            section = self._render(item, share)
            cost = estimate_tokens(section)
            # The first item is kept past the stop ratio, but never past the whole budget
            if used + cost > limit and (placed or cost > budget):
                parts.append(OMISSION_MARKER)
                logger.debug(
                    "Context budget reached after %s/%s items (%s/%s tokens)",
                    placed,
                    len(items),
                    used,
                    budget,
                )
                break
            parts.append(section)
            used += cost
            placed += 1
        return "".join(parts)

    def _header(self, item: ContextItem) -> str:
        lines = [f"File: {item.file_path}"]
        if item.language:
            lines.append(f"Language: {item.language}")
        if item.has_selection:
            lines.append(f"Lines: {item.line_start}-{item.line_end}")
        return "\n".join(lines) + "\n"

    def _render(self, item: ContextItem, share: int) -> str:
        header = self._header(item)
        fence = item.language or ""
        section = _fenced(header, fence, item.content)
        if estimate_tokens(section) <= share:
            return section

        content = item.content
        content_tokens = estimate_tokens(content)
        available = share - estimate_tokens(_fenced(header, fence, TRUNCATION_MARKER))
        if available <= 0 or content_tokens == 0:
            return _fenced(header, fence, TRUNCATION_MARKER.lstrip("\n"))

        ratio = available / content_tokens
        truncated = content[: math.floor(len(content) * ratio)]
        # Words are not spread evenly over characters; shrink until it fits
        section = _fenced(header, fence, truncated + TRUNCATION_MARKER)
        while truncated and estimate_tokens(section) > share:
            truncated = truncated[: math.floor(len(truncated) * 0.9)]
            section = _fenced(header, fence, truncated + TRUNCATION_MARKER)
        return section


def _fenced(header: str, fence: str, content: str) -> str:
    return f"{header}```{fence}\n{content}\n```\n\n"
