"""Regex-based symbol, import and export extraction.

Each language gets a ``SymbolTokenizer`` that yields ``(name, kind, line)``
tuples.  Languages without dedicated rules (TypeScript, JavaScript, Java,
C#, PHP, Vue, Svelte, Astro, unknown) fall back to the C-family rules.

This is a line-oriented heuristic, not a parser: it misses multi-line
declarations and can match keywords inside strings.
"""

from __future__ import annotations

import re
from collections.abc import Iterator
from dataclasses import dataclass
from typing import Protocol

from codelab.workspace_engine.codeintel.languages import content_hash, detect_language
from codelab.workspace_engine.models.enums import SymbolKind
from codelab.workspace_engine.models.index import IndexedFile, Symbol

_MAX_SIGNATURE = 200


class SymbolTokenizer(Protocol):
    def tokenize(self, content: str) -> Iterator[tuple[str, SymbolKind, int]]: ...


@dataclass(frozen=True)
class RegexTokenizer:
    """Applies each ``(pattern, kind)`` rule to every line; group 1 is the name."""

    rules: tuple[tuple[re.Pattern[str], SymbolKind], ...]

    def tokenize(self, content: str) -> Iterator[tuple[str, SymbolKind, int]]:
        for lineno, line in enumerate(content.splitlines(), start=1):
            for pattern, kind in self.rules:
                for match in pattern.finditer(line):
                    yield match.group(1), kind, lineno


def _rules(*pairs: tuple[str, SymbolKind]) -> tuple[tuple[re.Pattern[str], SymbolKind], ...]:
    return tuple((re.compile(pattern), kind) for pattern, kind in pairs)


C_FAMILY = RegexTokenizer(
    _rules(
        (r"^\s*(?:export\s+)?(?:default\s+)?(?:async\s+)?function\s*\*?\s*(\w+)", SymbolKind.FUNCTION),
        (r"^\s*(?:export\s+)?(?:default\s+)?(?:abstract\s+)?class\s+(\w+)", SymbolKind.CLASS),
        (r"^\s*(?:export\s+)?interface\s+(\w+)", SymbolKind.INTERFACE),
        (r"^\s*(?:export\s+)?(?:declare\s+)?type\s+(\w+)", SymbolKind.TYPE),
        (r"^\s*(?:export\s+)?const\s+(\w+)\s*(?::[^=]+)?=", SymbolKind.VARIABLE),
        (r"^\s*(?:export\s+)?(?:const\s+)?enum\s+(\w+)", SymbolKind.ENUM),
    )
)

PYTHON = RegexTokenizer(
    _rules(
        (r"^\s*(?:async\s+)?def\s+(\w+)\s*\(", SymbolKind.FUNCTION),
        (r"^\s*class\s+(\w+)", SymbolKind.CLASS),
        (r"^\s*(\w+)\s*=\s*lambda\b", SymbolKind.VARIABLE),
    )
)

GO = RegexTokenizer(
    _rules(
        (r"^\s*func\s+(?:\([^)]*\)\s*)?(\w+)", SymbolKind.FUNCTION),
        (r"^\s*type\s+(\w+)\s+struct\b", SymbolKind.TYPE),
        (r"^\s*type\s+(\w+)\s+interface\b", SymbolKind.INTERFACE),
    )
)

RUST = RegexTokenizer(
    _rules(
        (r"^\s*(?:pub(?:\([^)]*\))?\s+)?(?:const\s+)?(?:async\s+)?(?:unsafe\s+)?fn\s+(\w+)", SymbolKind.FUNCTION),
        (r"^\s*(?:pub(?:\([^)]*\))?\s+)?struct\s+(\w+)", SymbolKind.TYPE),
        (r"^\s*(?:pub(?:\([^)]*\))?\s+)?enum\s+(\w+)", SymbolKind.ENUM),
        (r"^\s*(?:pub(?:\([^)]*\))?\s+)?(?:unsafe\s+)?trait\s+(\w+)", SymbolKind.INTERFACE),
        (r"^\s*(?:pub(?:\([^)]*\))?\s+)?type\s+(\w+)", SymbolKind.TYPE),
    )
)

TOKENIZERS: dict[str, SymbolTokenizer] = {
    "python": PYTHON,
    "go": GO,
    "rust": RUST,
}


def tokenizer_for(language: str) -> SymbolTokenizer:
    return TOKENIZERS.get(language, C_FAMILY)


# -- Imports / exports ---------------------------------------------------------

_JS_IMPORT = re.compile(r"""(?:import\s+(?:[^'";]*?\s+from\s+)?['"]([^'"]+)['"]|require\(\s*['"]([^'"]+)['"]\s*\))""")
_PY_IMPORT = re.compile(r"^\s*(?:from\s+([\w.]+)\s+import\b|import\s+([\w.]+))", re.MULTILINE)
_GO_IMPORT_SINGLE = re.compile(r'^\s*import\s+(?:\w+\s+)?"([^"]+)"', re.MULTILINE)
_GO_IMPORT_BLOCK = re.compile(r"^\s*import\s*\(([^)]*)\)", re.MULTILINE)
_GO_IMPORT_LINE = re.compile(r'"([^"]+)"')
_RUST_USE = re.compile(r"^\s*(?:pub\s+)?use\s+([\w:]+)", re.MULTILINE)

_JS_EXPORT = re.compile(
    r"export\s+(?:default\s+)?(?:async\s+)?(?:const|let|var|function|class|interface|type|enum)\s+(\w+)"
)
_PY_TOP_LEVEL = re.compile(r"^(?:async\s+)?(?:def|class)\s+([A-Za-z]\w*)", re.MULTILINE)


def extract_imports(content: str, language: str) -> list[str]:
    if language == "python":
        return [m.group(1) or m.group(2) for m in _PY_IMPORT.finditer(content)]
    if language == "go":
        found = [m.group(1) for m in _GO_IMPORT_SINGLE.finditer(content)]
        for block in _GO_IMPORT_BLOCK.finditer(content):
            found.extend(m.group(1) for m in _GO_IMPORT_LINE.finditer(block.group(1)))
        return found
    if language == "rust":
        return [m.group(1) for m in _RUST_USE.finditer(content)]
    return [m.group(1) or m.group(2) for m in _JS_IMPORT.finditer(content)]


def extract_exports(content: str, language: str) -> list[str]:
    if language in ("typescript", "javascript", "vue", "svelte", "astro"):
        return [m.group(1) for m in _JS_EXPORT.finditer(content)]
    if language == "python":
        return [m.group(1) for m in _PY_TOP_LEVEL.finditer(content)]
    return []


# -- Per-file analysis -----------------------------------------------------------


def extract_symbols(path: str, content: str, language: str | None = None) -> list[Symbol]:
    language = language or detect_language(path)
    lines = content.splitlines()
    return [
        Symbol(
            name=name,
            kind=kind,
            file=path,
            line=lineno,
            signature=lines[lineno - 1].strip()[:_MAX_SIGNATURE],
        )
        for name, kind, lineno in tokenizer_for(language).tokenize(content)
    ]


def analyze_file(path: str, content: str) -> tuple[IndexedFile, list[Symbol]]:
    """Build the index entry and symbol list for one file."""
    language = detect_language(path)
    symbols = extract_symbols(path, content, language)
    indexed = IndexedFile(
        path=path,
        language=language,
        size=len(content),
        hash=content_hash(content),
        imports=extract_imports(content, language),
        exports=extract_exports(content, language),
        symbol_count=len(symbols),
    )
    return indexed, symbols
