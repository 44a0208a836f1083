"""Language-aware helpers for the codebase indexer and embedding store."""

from codelab.workspace_engine.codeintel.chunking import chunk_text
from codelab.workspace_engine.codeintel.languages import FILE_PATTERNS, content_hash, detect_language
from codelab.workspace_engine.codeintel.manifests import MANIFEST_PARSERS
from codelab.workspace_engine.codeintel.symbols import SymbolTokenizer, analyze_file, extract_symbols

__all__ = [
    "FILE_PATTERNS",
    "MANIFEST_PARSERS",
    "SymbolTokenizer",
    "analyze_file",
    "chunk_text",
    "content_hash",
    "detect_language",
    "extract_symbols",
]
