"""File format classification and converter routing heuristics."""
from __future__ import annotations

from dataclasses import dataclass, field
import enum
import mimetypes
from pathlib import Path, PurePath
from typing import Any

try:  # pragma: no cover - optional dependency at runtime.
    import magic as _magic
except ImportError:  # pragma: no cover - fallback to mimetypes.
    _magic = None

__all__ = [
    "CONVERTIBLE_SUFFIXES",
    "ConversionRouter",
    "FileFormat",
    "FileSignals",
    "NATIVE_TEXT_SUFFIXES",
    "classify",
    "gather_file_signals",
]


class FileFormat(str, enum.Enum):
    """How a file's content reaches the chunker."""

    NATIVE_TEXT = "native_text"
    CONVERTIBLE_BINARY = "convertible_binary"
    UNSUPPORTED = "unsupported"


CONVERTIBLE_SUFFIXES: frozenset[str] = frozenset(
    {
        # documents
        ".pdf", ".doc", ".docx", ".odt", ".rtf",
        # spreadsheets
        ".xls", ".xlsx", ".xlsm", ".xlsb", ".xla", ".xlam", ".ods",
        # presentations
        ".ppt", ".pptx", ".odp",
        # images (OCR)
        ".jpg", ".jpeg", ".png", ".gif", ".bmp", ".tiff", ".tif", ".webp", ".ico", ".svg",
        # audio (transcription)
        ".wav", ".mp3", ".m4a", ".aac", ".ogg", ".flac",
        # web
        ".html", ".htm", ".xml",
        # e-books, archives, email
        ".epub", ".zip", ".msg", ".eml",
    }
)

NATIVE_TEXT_SUFFIXES: frozenset[str] = frozenset(
    {
        ".txt", ".md", ".markdown", ".rst", ".adoc", ".org", ".tex", ".log",
        ".csv", ".tsv", ".json", ".jsonl", ".yaml", ".yml", ".toml", ".ini", ".cfg",
        ".conf", ".env", ".properties",
        ".py", ".pyi", ".js", ".jsx", ".ts", ".tsx", ".mjs", ".cjs",
        ".rs", ".go", ".java", ".kt", ".kts", ".scala", ".swift",
        ".c", ".h", ".cc", ".cpp", ".hpp", ".cs", ".m", ".mm",
        ".rb", ".php", ".pl", ".lua", ".r", ".jl", ".dart", ".ex", ".exs", ".erl",
        ".hs", ".ml", ".clj", ".sh", ".bash", ".zsh", ".fish", ".ps1", ".bat",
        ".sql", ".graphql", ".proto", ".css", ".scss", ".sass", ".less",
        ".vue", ".svelte", ".gradle", ".cmake",
    }
)


def classify(
    path: PurePath | str,
    *,
    extra_native: frozenset[str] = frozenset(),
    extra_convertible: frozenset[str] = frozenset(),
) -> FileFormat:
    """Map ``path`` to a ``FileFormat`` using its (case-insensitive) suffix only."""

    suffix = PurePath(path).suffix.lower()
    if not suffix:
        return FileFormat.UNSUPPORTED
    if suffix in CONVERTIBLE_SUFFIXES or suffix in extra_convertible:
        return FileFormat.CONVERTIBLE_BINARY
    if suffix in NATIVE_TEXT_SUFFIXES or suffix in extra_native:
        return FileFormat.NATIVE_TEXT
    return FileFormat.UNSUPPORTED


_DOCLING_FORWARD_SUFFIXES: set[str] = {
    ".pdf",
    ".ppt",
    ".pptx",
    ".xls",
    ".xlsx",
    ".doc",
    ".docx",
    ".odt",
    ".rtf",
    ".jpeg",
    ".jpg",
    ".png",
}


def _detect_mime_type(path: Path) -> str | None:
    if _magic is not None:
        try:
            return str(_magic.from_file(str(path), mime=True))
        except OSError:  # pragma: no cover - best effort only.
            pass
    guessed, _ = mimetypes.guess_type(str(path))
    return guessed


@dataclass(slots=True)
class FileSignals:
    """Metadata collected from the source artifact to guide routing."""

    path: Path
    suffix: str
    size_bytes: int
    mime_type: str | None = None
    historical_success: dict[str, float] = field(default_factory=dict)

    @property
    def size_megabytes(self) -> float:
        return self.size_bytes / 1_000_000 if self.size_bytes else 0.0


def gather_file_signals(
    path: Path,
    *,
    historical_success: dict[str, float] | None = None,
) -> FileSignals:
    """Collects statistics that influence converter selection."""

    try:
        size = path.stat().st_size
    except OSError:
        size = 0
    return FileSignals(
        path=path,
        suffix=path.suffix.lower(),
        size_bytes=size,
        mime_type=_detect_mime_type(path),
        historical_success=dict(historical_success or {}),
    )


class ConversionRouter:
    """Orders the available converter backends for a file.

    MarkItDown goes first unless the file is a large or layout-heavy document
    that Docling handles better, or telemetry shows Docling doing better for
    that suffix.
    """

    def __init__(
        self,
        *,
        large_file_threshold_mb: float = 8.0,
        history_weight: float = 0.5,
    ) -> None:
        self.large_file_threshold_mb = large_file_threshold_mb
        self.history_weight = history_weight
        self._historical_stats: dict[str, dict[str, float]] = {}
        self.telemetry: list[dict[str, Any]] = []

    def historical_success_for(self, suffix: str) -> dict[str, float]:
        return dict(self._historical_stats.get(suffix, {}))

    def plan_order(self, signals: FileSignals) -> list[str]:
        """Return converter names ordered from most to least promising."""

        mark_score = 1.0
        doc_score = 0.0

        if signals.suffix in _DOCLING_FORWARD_SUFFIXES:
            doc_score += 0.5
        if signals.size_megabytes >= self.large_file_threshold_mb:
            doc_score += 1.0

        mime = signals.mime_type or ""
        if mime.startswith("application/pdf"):
            doc_score += 0.25
        elif mime.startswith("text/"):
            mark_score += 1.0

        history = signals.historical_success
        if history:
            doc_score += history.get("docling", 0.0) * self.history_weight
            mark_score += history.get("markitdown", 0.0) * self.history_weight

        if doc_score > mark_score:
            return ["docling", "markitdown", "markitdown-cli"]
        return ["markitdown", "markitdown-cli", "docling"]

    def record_outcome(
        self,
        signals: FileSignals,
        converter_name: str,
        *,
        success: bool,
        error: str | None = None,
    ) -> None:
        """Track routing telemetry for future ordering decisions."""

        self.telemetry.append(
            {
                "path": str(signals.path),
                "suffix": signals.suffix,
                "converter": converter_name,
                "success": success,
                "error": error,
            }
        )

        suffix_stats = self._historical_stats.setdefault(signals.suffix, {})
        observed = 1.0 if success and error is None else 0.0
        previous = suffix_stats.get(converter_name, 0.5)
        suffix_stats[converter_name] = round((previous * 0.7) + (observed * 0.3), 3)
