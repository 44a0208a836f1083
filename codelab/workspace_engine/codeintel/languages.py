"""Source file patterns and language detection."""

from __future__ import annotations

import hashlib
from pathlib import PurePosixPath

FILE_PATTERNS: tuple[str, ...] = (
    "*.ts",
    "*.tsx",
    "*.js",
    "*.jsx",
    "*.py",
    "*.go",
    "*.rs",
    "*.java",
    "*.cs",
    "*.rb",
    "*.php",
    "*.vue",
    "*.svelte",
    "*.astro",
)
"""Name patterns enumerated by the indexer, in order."""

_EXTENSIONS: dict[str, str] = {
    ".ts": "typescript",
    ".tsx": "typescript",
    ".js": "javascript",
    ".jsx": "javascript",
    ".py": "python",
    ".go": "go",
    ".rs": "rust",
    ".java": "java",
    ".cs": "csharp",
    ".rb": "ruby",
    ".php": "php",
    ".vue": "vue",
    ".svelte": "svelte",
    ".astro": "astro",
}

UNKNOWN = "unknown"


def detect_language(path: str) -> str:
    return _EXTENSIONS.get(PurePosixPath(path).suffix.lower(), UNKNOWN)


def content_hash(content: str) -> str:
    """Hex SHA-256 of the UTF-8 encoded content."""
    return hashlib.sha256(content.encode("utf-8")).hexdigest()
