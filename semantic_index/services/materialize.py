"""Turn ranked hits into displayable excerpts read from the current files."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable

from semantic_index.middleware import ConversionError, FileFormat, ToolUnavailableError

from .chunking import slice_lines
from .indexing import decode_native_text
from .search import SearchHit

logger = logging.getLogger(__name__)

__all__ = [
    "BINARY_CONTENT",
    "MaterializedResult",
    "ResultMaterializer",
    "TOOL_UNAVAILABLE",
    "UNREADABLE",
    "ensure_displayable",
]

BINARY_CONTENT = "binary_content"
TOOL_UNAVAILABLE = "tool_unavailable"
UNREADABLE = "unreadable"

_PLACEHOLDERS = {
    BINARY_CONTENT: (
        "[{name} was indexed, but its content cannot currently be displayed: "
        "the file holds binary content that could not be converted to text.]"
    ),
    TOOL_UNAVAILABLE: (
        "[{name} was indexed, but its content cannot currently be displayed: "
        "the document conversion tool is unavailable.]"
    ),
    UNREADABLE: (
        "[{name} was indexed, but its content cannot currently be displayed: "
        "the file could not be read.]"
    ),
}

_CONTROL_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")


def placeholder(kind: str, path: str) -> str:
    return _PLACEHOLDERS[kind].format(name=Path(path).name)


def ensure_displayable(text: str) -> str | None:
    """Return ``text`` stripped of control characters, or ``None`` if it looks binary."""
    if "\x00" in text:
        return None
    return _CONTROL_RE.sub("", text)


@dataclass(slots=True)
class MaterializedResult:
    hit: SearchHit
    excerpt: str
    error: str | None = None

    @property
    def path(self) -> str:
        return self.hit.path

    @property
    def start_line(self) -> int:
        return self.hit.start_line

    @property
    def end_line(self) -> int:
        return self.hit.end_line

    @property
    def score(self) -> float:
        return self.hit.score


class ResultMaterializer:
    """Loads excerpt text for hits, re-converting binary documents on demand.

    Native files are re-read so edits since indexing show up; if the read
    fails the chunk text stored at index time stands in. Converted documents
    are never shown from stored text when conversion fails: a placeholder
    explains why instead.
    """

    def __init__(self, converter: Any | None = None, *, max_excerpt_chars: int = 4_000) -> None:
        self.converter = converter
        self.max_excerpt_chars = max_excerpt_chars

    def materialize(self, hit: SearchHit) -> MaterializedResult:
        return self.materialize_all([hit])[0]

    def materialize_all(self, hits: Iterable[SearchHit]) -> list[MaterializedResult]:
        """Materialize ``hits`` in order; each source file is loaded at most once."""

        loaded: dict[str, tuple[str | None, str | None]] = {}
        results: list[MaterializedResult] = []
        for hit in hits:
            if hit.path not in loaded:
                loaded[hit.path] = self._load(hit)
            text, error = loaded[hit.path]
            results.append(self._excerpt(hit, text, error))
        return results

    def _load(self, hit: SearchHit) -> tuple[str | None, str | None]:
        path = Path(hit.path)
        try:
            data = path.read_bytes()
        except OSError as exc:
            logger.warning("Cannot read %s for display: %s", path, exc)
            return None, UNREADABLE

        if hit.file_format is FileFormat.NATIVE_TEXT:
            try:
                return decode_native_text(data), None
            except UnicodeDecodeError:
                return None, BINARY_CONTENT

        if self.converter is None:
            return None, TOOL_UNAVAILABLE
        try:
            text = self.converter.convert(path, data)
        except ToolUnavailableError as exc:
            logger.info("Cannot re-convert %s for display: %s", path, exc)
            return None, TOOL_UNAVAILABLE
        except ConversionError as exc:
            logger.info("Cannot re-convert %s for display: %s", path, exc)
            return None, BINARY_CONTENT
        except Exception as exc:
            logger.warning("Converter failed on %s: %s: %s", path, type(exc).__name__, exc)
            return None, BINARY_CONTENT
        if not isinstance(text, str):
            return None, BINARY_CONTENT
        return text, None

    def _excerpt(
        self, hit: SearchHit, text: str | None, error: str | None
    ) -> MaterializedResult:
        excerpt: str | None = None
        if text is not None:
            excerpt = slice_lines(text, hit.start_line, hit.end_line)
            if excerpt is None:
                logger.debug("Line range of %s drifted; using indexed text", hit.path)
                excerpt = hit.text or None
                if excerpt is None:
                    error = BINARY_CONTENT
        elif error == UNREADABLE and hit.file_format is FileFormat.NATIVE_TEXT and hit.text:
            excerpt, error = hit.text, None

        if excerpt is not None:
            displayable = ensure_displayable(excerpt)
            if displayable is None:
                return MaterializedResult(hit, placeholder(BINARY_CONTENT, hit.path), BINARY_CONTENT)
            if len(displayable) > self.max_excerpt_chars:
                displayable = displayable[: self.max_excerpt_chars].rstrip() + "\n[...]"
            return MaterializedResult(hit, displayable, None)
        return MaterializedResult(hit, placeholder(error or BINARY_CONTENT, hit.path), error)
