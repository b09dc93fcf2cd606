"""Language resolution for workspace files."""

from __future__ import annotations

import re
from pathlib import Path

EXT_LANGUAGE_MAP = {
    ".py": "python",
    ".pyw": "python",
    ".pyi": "python",
    ".js": "javascript",
    ".jsx": "javascript",
    ".mjs": "javascript",
    ".cjs": "javascript",
    ".ts": "typescript",
    ".tsx": "typescript",
    ".java": "java",
    ".cs": "csharp",
    ".c": "c",
    ".h": "c",
    ".cpp": "cpp",
    ".cc": "cpp",
    ".cxx": "cpp",
    ".hpp": "cpp",
    ".go": "go",
    ".rs": "rust",
    ".kt": "kotlin",
    ".swift": "swift",
    ".rb": "ruby",
    ".php": "php",
    ".sh": "shell",
}


def language_for_path(path: str | Path, sample_text: str | None = None) -> str:
    """Best-effort language id for ``path``; ``"unknown"`` when unmapped."""
    ext = Path(path).suffix.lower()
    language = EXT_LANGUAGE_MAP.get(ext)
    if ext == ".h" and sample_text:
        # C++ headers share the .h extension with C
        if re.search(r"\bnamespace\b|\bstd::|\btemplate\s*<|\bclass\s+\w+", sample_text):
            language = "cpp"
    return language or "unknown"

