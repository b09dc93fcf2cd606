"""Pure analysis helpers: language resolution and chunk extraction."""

from .chunking import ChunkExtractor, LineIndex, match_brace_block
from .extractors import (BraceExtractor, PythonExtractor, extract_chunks,
                         get_extractor, register_extractor)
from .languages import language_for_path

__all__ = [
    "BraceExtractor",
    "ChunkExtractor",
    "LineIndex",
    "PythonExtractor",
    "extract_chunks",
    "get_extractor",
    "language_for_path",
    "match_brace_block",
    "register_extractor",
]
