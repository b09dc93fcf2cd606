# Copyright (c) 2025 Dave Tofflemire, SigilDERG Project
# Licensed under the GNU Affero General Public License v3.0 (AGPLv3).
# Commercial licenses are available. Contact: davetmire85@gmail.com

"""Exception types raised inside the indexing and retrieval engine."""

from __future__ import annotations

from typing import Any


class CtxIndexError(Exception):
    """Base exception for ctxindex errors."""

    def __init__(
        self,
        message: str,
        component: str = "unknown",
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.component = component
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to a JSON-friendly dictionary."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "component": self.component,
            "details": self.details,
        }


class IndexIOError(CtxIndexError):
    """A file could not be read, or is above the size ceiling."""


class ExtractionError(CtxIndexError):
    """A language extractor failed on malformed source."""


class IndexingCancelled(CtxIndexError):
    """A full scan was cancelled. This is a clean stop, not a failure."""


class StoreError(CtxIndexError):
    """The chunk snapshot could not be read or written."""
