"""Low-level helpers for running MarkItDown and Docling conversions."""

from __future__ import annotations

import io
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Sequence

try:  # pragma: no cover - exercised via dependency injection in tests.
    from markitdown import MarkItDown as _MarkItDownClass
except ImportError:  # pragma: no cover - dependency is optional.
    _MarkItDownClass = None

try:  # pragma: no cover - exercised via dependency injection in tests.
    from docling.document_converter import DocumentConverter as _DoclingConverterClass
except ImportError:  # pragma: no cover - dependency is optional.
    _DoclingConverterClass = None

KNOWN_BACKENDS: tuple[str, ...] = ("markitdown", "docling", "markitdown-cli")


@dataclass(slots=True)
class ConversionPlan:
    """Defines the ordered converter backends to attempt for a file."""

    ordered_converters: Sequence[str]


def build_conversion_plan(
    preferred: Sequence[str] | None = None,
    *,
    allowed: Sequence[str] = KNOWN_BACKENDS,
) -> ConversionPlan:
    """Return a plan listing each allowed backend once, preferred ones first."""

    plan: list[str] = []
    for name in preferred or []:
        if name in allowed and name not in plan:
            plan.append(name)
    for fallback in allowed:
        if fallback not in plan:
            plan.append(fallback)
    return ConversionPlan(tuple(plan))


def markitdown_library_available() -> bool:
    return _MarkItDownClass is not None


def docling_library_available() -> bool:
    return _DoclingConverterClass is not None


def markitdown_cli_available(binary: str = "markitdown") -> bool:
    return shutil.which(binary) is not None


def create_markitdown_converter() -> Any | None:
    return _MarkItDownClass() if _MarkItDownClass is not None else None


def create_docling_converter() -> Any | None:
    return _DoclingConverterClass() if _DoclingConverterClass is not None else None


def extract_markdown_from_markitdown(result: Any) -> str | None:
    """Pull markdown or text content from MarkItDown outputs."""
    for attr in ("text_content", "markdown", "text"):
        value = getattr(result, attr, None)
        if isinstance(value, str) and value.strip():
            return value
    if isinstance(result, str) and result.strip():
        return result
    return None


def extract_markdown_from_docling(result: Any) -> str | None:
    """Pull markdown or document exports from Docling."""
    document = getattr(result, "document", None)
    if document and hasattr(document, "export_to_markdown"):
        markdown = document.export_to_markdown()
        if isinstance(markdown, str) and markdown.strip():
            return markdown
    if hasattr(result, "export_to_markdown"):
        markdown = result.export_to_markdown()
        if isinstance(markdown, str) and markdown.strip():
            return markdown
    return None


def convert_with_markitdown(
    source_path: Path,
    *,
    converter: Any,
    data: bytes | None = None,
) -> str | None:
    """Invoke MarkItDown for ``source_path`` and return markdown text.

    When ``data`` is supplied and the converter accepts streams, the bytes are
    converted directly so the output matches the content that was hashed.
    """
    if data is not None and hasattr(converter, "convert_stream"):
        result = converter.convert_stream(
            io.BytesIO(data), file_extension=source_path.suffix.lower()
        )
    else:
        result = converter.convert(str(source_path))
    return extract_markdown_from_markitdown(result)


def convert_with_docling(source_path: Path, *, converter: Any) -> str | None:
    """Invoke Docling for ``source_path`` and return markdown text."""
    result = converter.convert(str(source_path))
    return extract_markdown_from_docling(result)


def convert_with_markitdown_cli(
    source_path: Path,
    *,
    binary: str = "markitdown",
    timeout: float = 60.0,
) -> str:
    """Run the ``markitdown`` executable on ``source_path`` and return stdout.

    Raises ``FileNotFoundError`` when the executable is missing,
    ``subprocess.TimeoutExpired`` on timeout, ``UnicodeDecodeError`` when the
    output is not UTF-8 and ``RuntimeError`` on a non-zero exit status.
    """

    process = subprocess.run(
        [binary, str(source_path)],
        capture_output=True,
        check=False,
        timeout=timeout,
    )
    if process.returncode != 0:
        stderr = process.stderr.decode("utf-8", errors="ignore").strip()
        raise RuntimeError(
            f"markitdown exited with status {process.returncode}: {stderr or 'no stderr'}"
        )
    return process.stdout.decode("utf-8")
