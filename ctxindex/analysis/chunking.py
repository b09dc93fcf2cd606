"""Stateless helpers shared by the language extractors."""

from __future__ import annotations

from bisect import bisect_right
from pathlib import PurePosixPath
from typing import Any

from ctxindex.models import ChunkType, CodeChunk


class LineIndex:
    """Offset <-> line conversion for one text (lines are 1-based)."""

    def __init__(self, text: str):
        self.text = text
        self.lines = text.split("\n")
        self.starts = [0]
        for line in self.lines[:-1]:
            self.starts.append(self.starts[-1] + len(line) + 1)

    def line_of(self, offset: int) -> int:
        return bisect_right(self.starts, max(0, offset))

    def line_span(self, first: int, last: int) -> str:
        """Exact text of lines ``first``..``last`` (1-based, inclusive)."""
        start = self.starts[first - 1]
        if last < len(self.lines):
            end = self.starts[last] - 1
        else:
            end = len(self.text)
        return self.text[start:end].rstrip("\r")

    def __len__(self) -> int:
        return len(self.lines)


def match_brace_block(text: str, open_pos: int) -> int:
    """Return the offset just past the brace closing the one at ``open_pos``.

    Braces inside string literals, comments and JavaScript regex literals are
    ignored. A slash counts as a regex literal only where an operand is
    expected (after an operator, an opening bracket or a keyword such as
    ``return``) and only when it closes on the same line. An unbalanced block
    is truncated at end of text.
    """
    depth = 0
    i = open_pos
    n = len(text)
    while i < n:
        ch = text[i]
        if ch == "/" and i + 1 < n:
            nxt = text[i + 1]
            if nxt == "/":
                newline = text.find("\n", i)
                i = n if newline == -1 else newline
                continue
            if nxt == "*":
                close = text.find("*/", i + 2)
                i = n if close == -1 else close + 2
                continue
            if _regex_allowed(text, i):
                end = _skip_regex(text, i)
                if end is not None:
                    i = end
                    continue
        if ch in "\"'`":
            i = _skip_string(text, i)
            continue
        if ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return i + 1
        i += 1
    return n


_REGEX_PRECEDERS = set("(,=:[!&|?{};+-*%~^")
_REGEX_KEYWORDS = ("return", "typeof", "case", "in", "of", "yield", "void", "delete")


def _regex_allowed(text: str, pos: int) -> bool:
    j = pos - 1
    while j >= 0 and text[j] in " \t":
        j -= 1
    if j < 0 or text[j] == "\n" or text[j] in _REGEX_PRECEDERS:
        return True
    word_end = j + 1
    while j >= 0 and (text[j].isalnum() or text[j] in "_$"):
        j -= 1
    return text[j + 1:word_end] in _REGEX_KEYWORDS


def _skip_regex(text: str, pos: int) -> int | None:
    """Offset past the regex literal starting at ``pos``; None if it does not close."""
    in_class = False
    i = pos + 1
    n = len(text)
    while i < n:
        ch = text[i]
        if ch == "\\":
            i += 2
            continue
        if ch == "\n":
            return None
        if ch == "[":
            in_class = True
        elif ch == "]":
            in_class = False
        elif ch == "/" and not in_class:
            return i + 1
        i += 1
    return None


def _skip_string(text: str, pos: int) -> int:
    quote = text[pos]
    i = pos + 1
    n = len(text)
    while i < n:
        ch = text[i]
        if ch == "\\":
            i += 2
            continue
        if ch == quote:
            return i + 1
        # Only template literals may span lines
        if ch == "\n" and quote != "`":
            return i
        i += 1
    return n


def indent_width(line: str) -> int:
    expanded = line.expandtabs(8)
    return len(expanded) - len(expanded.lstrip())


def indent_block_end(lines: list[str], header_last: int, header_indent: int) -> int:
    """Last line (0-based) of an indentation-delimited block.

    The block continues while lines are blank or indented deeper than the
    header; trailing blank lines are not part of the block.
    """
    last = header_last
    for idx in range(header_last + 1, len(lines)):
        line = lines[idx]
        if not line.strip():
            continue
        if indent_width(line) <= header_indent:
            break
        last = idx
    return last


def make_chunk(
    content: str,
    file_path: str,
    language: str,
    chunk_type: ChunkType,
    **metadata: Any,
) -> CodeChunk:
    return CodeChunk(
        content=content,
        file_path=file_path,
        language=language,
        chunk_type=chunk_type,
        metadata={k: v for k, v in metadata.items() if v is not None},
    )


def whole_file_chunk(text: str, file_path: str, language: str) -> CodeChunk:
    """The ``other`` chunk that every file yields."""
    return make_chunk(
        text,
        file_path,
        language,
        ChunkType.OTHER,
        name=PurePosixPath(file_path).name,
        start_line=1,
        end_line=max(1, text.count("\n") + 1),
    )


class ChunkExtractor:
    """Language-specific decomposition of a file into sub-chunks.

    Implementations return only the sub-chunks (imports, functions, classes,
    methods); the whole-file chunk is added by ``extract_chunks``. Ids are
    left blank and assigned by the store.
    """

    languages: tuple[str, ...] = ()

    def extract(self, text: str, file_path: str, language: str) -> list[CodeChunk]:
        raise NotImplementedError
