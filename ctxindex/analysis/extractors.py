"""Heuristic per-language chunk extractors and the extractor registry.

Brace-delimited languages are scanned for declarations anchored on keywords;
each block is then bounded by brace-depth counting. Python blocks are
bounded by indentation. Every language family also yields one ``import``
chunk per import/using statement.
"""

from __future__ import annotations

import logging
import re
from typing import Iterable

from ctxindex.errors import ExtractionError
from ctxindex.models import ChunkType, CodeChunk

from .chunking import (ChunkExtractor, LineIndex, indent_block_end,
                       indent_width, make_chunk, match_brace_block,
                       whole_file_chunk)

logger = logging.getLogger(__name__)

# Generic argument list with one level of nesting, e.g. <String, List<Integer>>
GENERIC_ARGS = r"<(?:[^<>()]|<[^<>()]*>)*>"

CONTROL_KEYWORDS = frozenset(
    {"if", "for", "while", "switch", "catch", "return", "else", "do", "try",
     "with", "function", "new", "typeof", "using", "lock", "foreach", "fixed"}
)

_TYPE_ORDER = {
    ChunkType.IMPORT: 0,
    ChunkType.CLASS: 1,
    ChunkType.FUNCTION: 2,
    ChunkType.METHOD: 3,
}


class BraceExtractor(ChunkExtractor):
    """Extractor for C-family languages with ``{ ... }`` blocks."""

    import_patterns: tuple[re.Pattern[str], ...] = ()
    function_patterns: tuple[re.Pattern[str], ...] = ()
    class_pattern: re.Pattern[str] | None = None
    method_pattern: re.Pattern[str] | None = None
    skip_methods: frozenset[str] = frozenset()
    skip_constructors = False

    def extract(self, text: str, file_path: str, language: str) -> list[CodeChunk]:
        index = LineIndex(text)
        found: list[tuple[int, CodeChunk]] = []
        found.extend(self._imports(text, index, file_path, language))
        found.extend(self._functions(text, index, file_path, language))
        found.extend(self._classes(text, index, file_path, language))
        found.sort(key=lambda item: (item[0], _TYPE_ORDER[item[1].chunk_type]))
        return [chunk for _, chunk in found]

    def _import_path(self, match: re.Match[str]) -> str | None:
        return match.group(1) if match.re.groups else None

    def _imports(self, text, index, file_path, language):
        for pattern in self.import_patterns:
            for m in pattern.finditer(text):
                statement = m.group(0).strip()
                start = m.start() + (len(m.group(0)) - len(m.group(0).lstrip()))
                import_path = self._import_path(m)
                yield start, make_chunk(
                    statement,
                    file_path,
                    language,
                    ChunkType.IMPORT,
                    name=import_path or statement,
                    import_path=import_path,
                    start_line=index.line_of(start),
                    end_line=index.line_of(m.end() - 1),
                )

    def _block(self, text: str, start: int, open_pos: int) -> tuple[str, int]:
        end = match_brace_block(text, open_pos)
        return text[start:end], end

    def _functions(self, text, index, file_path, language):
        for pattern in self.function_patterns:
            for m in pattern.finditer(text):
                start = _first_non_space(text, m.start())
                content, end = self._block(text, start, m.end() - 1)
                yield start, make_chunk(
                    content,
                    file_path,
                    language,
                    ChunkType.FUNCTION,
                    name=m.group(1),
                    start_line=index.line_of(start),
                    end_line=index.line_of(end - 1),
                )

    def _classes(self, text, index, file_path, language):
        if self.class_pattern is None:
            return
        for m in self.class_pattern.finditer(text):
            start = _first_non_space(text, m.start())
            open_pos = m.end() - 1
            content, end = self._block(text, start, open_pos)
            class_name = m.group(1)
            yield start, make_chunk(
                content,
                file_path,
                language,
                ChunkType.CLASS,
                name=class_name,
                start_line=index.line_of(start),
                end_line=index.line_of(end - 1),
            )
            yield from self._methods(
                text, index, file_path, language, class_name, open_pos + 1, end - 1
            )

    def _methods(self, text, index, file_path, language, class_name, body_start, body_end):
        if self.method_pattern is None:
            return
        # Nested type declarations own their members
        nested: list[tuple[int, int]] = []
        if self.class_pattern is not None:
            for nm in self.class_pattern.finditer(text, body_start, body_end):
                nested.append((nm.start(), match_brace_block(text, nm.end() - 1)))

        consumed = body_start
        for m in self.method_pattern.finditer(text, body_start, body_end):
            if m.start() < consumed:
                continue
            if any(lo <= m.start() < hi for lo, hi in nested):
                continue
            name = m.group(1)
            if name in CONTROL_KEYWORDS:
                continue
            start = _first_non_space(text, m.start())
            content, end = self._block(text, start, m.end() - 1)
            consumed = end
            if name in self.skip_methods:
                continue
            if self.skip_constructors and name == class_name:
                continue
            yield start, make_chunk(
                content,
                file_path,
                language,
                ChunkType.METHOD,
                name=name,
                class_name=class_name,
                start_line=index.line_of(start),
                end_line=index.line_of(end - 1),
            )


class ScriptExtractor(BraceExtractor):
    """JavaScript and TypeScript."""

    languages = ("javascript", "typescript")
    import_patterns = (
        re.compile(
            r"""^[ \t]*import\s+(?:type\s+)?(?:(?:[\w$]+\s*,\s*)?(?:\{[^}]*\}|\*\s+as\s+[\w$]+)\s+from\s+|[\w$]+\s+from\s+)?['"]([^'"\n]+)['"]\s*;?""",
            re.MULTILINE,
        ),
        re.compile(
            r"""^[ \t]*(?:const|let|var)\s+(?:\{[^}]*\}|[\w$]+)\s*=\s*require\(\s*['"]([^'"\n]+)['"]\s*\)\s*;?""",
            re.MULTILINE,
        ),
    )
    function_patterns = (
        re.compile(
            r"(?:\bexport\s+(?:default\s+)?)?(?:\basync\s+)?\bfunction\s*\*?\s*([\w$]+)\s*"
            r"(?:<[^>{]*>)?\s*\([^)]*\)\s*(?::\s*[^{;=\n]+?)?\s*\{"
        ),
        re.compile(
            r"(?:\bexport\s+)?\b(?:const|let|var)\s+([\w$]+)\s*(?::\s*[^=;\n]+?)?=\s*(?:async\s+)?"
            r"(?:\([^)]*\)|[\w$]+)\s*(?::\s*[^=;{\n]+?)?=>\s*\{"
        ),
    )
    class_pattern = re.compile(
        r"(?:\bexport\s+(?:default\s+)?)?(?:\babstract\s+)?\bclass\s+([\w$]+)"
        r"(?:\s*<[^>{]*>)?(?:\s+extends\s+[\w$.]+(?:<[^>{]*>)?)?"
        r"(?:\s+implements\s+[^{]+?)?\s*\{"
    )
    method_pattern = re.compile(
        r"^[ \t]*(?:(?:public|private|protected|static|readonly|async|override|get|set)\s+)*"
        r"\*?([\w$]+)\s*(?:<[^>{]*>)?\s*\([^)]*\)\s*(?::\s*[^{;=\n]+?)?\s*\{",
        re.MULTILINE,
    )
    skip_methods = frozenset(
        {"constructor", "render", "componentDidMount", "componentWillUnmount"}
    )


class JavaExtractor(BraceExtractor):
    languages = ("java",)
    import_patterns = (
        re.compile(r"^[ \t]*import\s+(?:static\s+)?([\w.]+(?:\.\*)?)\s*;", re.MULTILINE),
    )
    class_pattern = re.compile(
        r"^[ \t]*(?:@\w+(?:\([^)]*\))?\s+)*"
        r"(?:(?:public|private|protected|static|final|abstract|sealed|strictfp)\s+)*"
        r"(?:class|interface|enum|record)\s+(\w+)[^{;]*\{",
        re.MULTILINE,
    )
    method_pattern = re.compile(
        r"^[ \t]*(?:(?:public|private|protected|static|final|abstract|synchronized|native|default)\s+)*"
        rf"(?:{GENERIC_ARGS}\s+)?(?:[\w.]+(?:{GENERIC_ARGS})?(?:\[\])*)\s+(\w+)\s*\([^)]*\)\s*"
        r"(?:throws\s+[\w.,\s]+)?\{",
        re.MULTILINE,
    )
    skip_constructors = True


class CSharpExtractor(BraceExtractor):
    languages = ("csharp",)
    import_patterns = (
        re.compile(
            r"^[ \t]*using\s+(?:static\s+)?(?:\w+\s*=\s*)?([\w.]+)\s*;", re.MULTILINE
        ),
    )
    class_pattern = re.compile(
        r"^[ \t]*(?:\[[^\]]*\]\s*)*"
        r"(?:(?:public|private|protected|internal|static|sealed|abstract|partial)\s+)*"
        r"(?:class|interface|struct|record|enum)\s+(\w+)[^{;]*\{",
        re.MULTILINE,
    )
    method_pattern = re.compile(
        r"^[ \t]*(?:(?:public|private|protected|internal|static|virtual|override|abstract|"
        r"async|sealed|new|extern|unsafe)\s+)*"
        rf"(?:[\w.]+(?:{GENERIC_ARGS})?(?:\[\])*\??)\s+(\w+)\s*(?:{GENERIC_ARGS})?\s*\([^)]*\)\s*"
        r"(?:where\s+[^{]+)?\{",
        re.MULTILINE,
    )
    skip_constructors = True


class PythonExtractor(ChunkExtractor):
    """Indentation-delimited extractor for Python."""

    languages = ("python",)
    import_pattern = re.compile(
        r"^[ \t]*(?:from[ \t]+([\w.]+)[ \t]+import[ \t]+(?:\([^)]*\)|[^\n]+)"
        r"|import[ \t]+([\w.]+)[^\n]*)",
        re.MULTILINE,
    )
    header_pattern = re.compile(
        r"^([ \t]*)(?:async[ \t]+)?(def|class)[ \t]+(\w+)", re.MULTILINE
    )

    def extract(self, text: str, file_path: str, language: str) -> list[CodeChunk]:
        index = LineIndex(text)
        found: list[tuple[int, CodeChunk]] = []

        for m in self.import_pattern.finditer(text):
            statement = m.group(0).strip()
            start = m.start() + (len(m.group(0)) - len(m.group(0).lstrip()))
            module = m.group(1) or m.group(2)
            found.append((start, make_chunk(
                statement,
                file_path,
                language,
                ChunkType.IMPORT,
                name=module,
                import_path=module,
                start_line=index.line_of(start),
                end_line=index.line_of(m.end() - 1),
            )))

        blocks = list(self._blocks(text, index))
        for start, kind, name, indent, first, last in blocks:
            chunk_type = ChunkType.CLASS if kind == "class" else ChunkType.FUNCTION
            class_name = None
            if kind == "def":
                owner = _enclosing_block(blocks, first, indent)
                if owner is not None and owner[1] == "class":
                    chunk_type = ChunkType.METHOD
                    class_name = owner[2]
            found.append((start, make_chunk(
                index.line_span(first, last),
                file_path,
                language,
                chunk_type,
                name=name,
                class_name=class_name,
                start_line=first,
                end_line=last,
            )))

        found.sort(key=lambda item: (item[0], _TYPE_ORDER[item[1].chunk_type]))
        return [chunk for _, chunk in found]

    def _blocks(self, text: str, index: LineIndex):
        lines = index.lines
        for m in self.header_pattern.finditer(text):
            indent = indent_width(m.group(1))
            header_line = index.line_of(m.start())
            colon = _header_colon(text, m.end())
            header_last = index.line_of(colon) if colon is not None else header_line
            last = indent_block_end(lines, header_last - 1, indent) + 1
            first = header_line
            # Decorators at the same indentation belong to the block
            while first > 1:
                prev = lines[first - 2]
                if prev.strip().startswith("@") and indent_width(prev) == indent:
                    first -= 1
                else:
                    break
            yield index.starts[first - 1], m.group(2), m.group(3), indent, first, last


def _first_non_space(text: str, pos: int) -> int:
    while pos < len(text) and text[pos].isspace():
        pos += 1
    return pos


def _header_colon(text: str, pos: int, limit: int = 4000) -> int | None:
    """Offset of the colon ending a def/class header, skipping bracketed parts."""
    depth = 0
    end = min(len(text), pos + limit)
    i = pos
    while i < end:
        ch = text[i]
        if ch in "([{":
            depth += 1
        elif ch in ")]}":
            depth = max(0, depth - 1)
        elif ch == ":" and depth == 0:
            return i
        elif ch == "\n" and depth == 0 and text[i - 1] != "\\":
            return None
        i += 1
    return None


def _enclosing_block(blocks, line: int, indent: int):
    """Innermost block strictly containing ``line`` at a smaller indent."""
    best = None
    for block in blocks:
        _, _, _, b_indent, b_first, b_last = block
        if b_first < line <= b_last and b_indent < indent:
            if best is None or b_indent > best[3]:
                best = block
    return best


_REGISTRY: dict[str, ChunkExtractor] = {}


def register_extractor(
    extractor: ChunkExtractor, languages: Iterable[str] | None = None
) -> None:
    """Register ``extractor`` for its languages, replacing earlier ones."""
    for language in languages or extractor.languages:
        _REGISTRY[language] = extractor


def get_extractor(language: str) -> ChunkExtractor | None:
    return _REGISTRY.get(language)


for _extractor in (ScriptExtractor(), JavaExtractor(), CSharpExtractor(), PythonExtractor()):
    register_extractor(_extractor)


def extract_chunks(text: str, language: str, file_path: str) -> list[CodeChunk]:
    """Decompose one file into chunks; the whole-file chunk is always first.

    Never raises: a failing language extractor leaves only the whole-file
    chunk.
    """
    chunks = [whole_file_chunk(text, file_path, language)]
    extractor = get_extractor(language)
    if extractor is None:
        return chunks
    try:
        chunks.extend(extractor.extract(text, file_path, language))
    except Exception as exc:
        err = ExtractionError(
            f"{type(extractor).__name__} failed on {file_path}: {exc}",
            component="extractor",
            details={"file_path": file_path, "language": language},
        )
        logger.warning("%s; keeping whole-file chunk only", err.message)
        logger.debug("Extraction traceback for %s", file_path, exc_info=True)
    return chunks
