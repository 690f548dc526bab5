"""Adapter that turns binary and rich documents into normalized markdown text."""
from __future__ import annotations

import logging
from pathlib import Path
import subprocess
import threading
from typing import Any, Callable

from semantic_index.foundation.conversion import (
    KNOWN_BACKENDS,
    build_conversion_plan,
    convert_with_docling,
    convert_with_markitdown,
    convert_with_markitdown_cli,
    create_docling_converter,
    create_markitdown_converter,
    docling_library_available,
    markitdown_cli_available,
    markitdown_library_available,
)
from semantic_index.foundation.deadline import FutureTimeout, call_with_deadline

from .routing import ConversionRouter, gather_file_signals

logger = logging.getLogger(__name__)

__all__ = [
    "ConversionError",
    "ConversionTimeoutError",
    "CorruptInputError",
    "DocumentConverter",
    "ToolUnavailableError",
    "UnsupportedSubFormatError",
    "normalize_text",
]


class ConversionError(RuntimeError):
    """Raised when a document cannot be converted to text."""

    reason = "conversion_failed"


class ToolUnavailableError(ConversionError):
    """No conversion backend is installed or reachable."""

    reason = "tool_unavailable"


class UnsupportedSubFormatError(ConversionError):
    """The container format is known but this variant of it is not."""

    reason = "unsupported_sub_format"


class CorruptInputError(ConversionError):
    """The converter ran but produced no usable text."""

    reason = "corrupt_input"


class ConversionTimeoutError(ConversionError):
    """The converter did not finish within its time budget."""

    reason = "timeout"


def normalize_text(text: str) -> str:
    """Return ``text`` with a stripped BOM and ``\\n`` line endings."""
    return text.lstrip("\ufeff").replace("\r\n", "\n").replace("\r", "\n")


_Backend = Callable[[Path, "bytes | None"], "str | None"]


class DocumentConverter:
    """Converts ConvertibleBinary files using MarkItDown, Docling or the markitdown CLI.

    Injected ``markitdown_converter``/``docling_converter`` objects replace the
    library defaults and disable auto-detection of other backends. Once no
    backend is usable the converter fails fast for the rest of its lifetime.
    """

    def __init__(
        self,
        *,
        backend: str = "auto",
        markitdown_converter: Any | None = None,
        docling_converter: Any | None = None,
        cli_binary: str = "markitdown",
        timeout: float = 60.0,
        router: ConversionRouter | None = None,
    ) -> None:
        if backend != "auto" and backend not in KNOWN_BACKENDS:
            raise ValueError(f"Unknown converter backend '{backend}'")
        self.backend = backend
        self.cli_binary = cli_binary
        self.timeout = timeout
        self.router = router or ConversionRouter()
        self._markitdown_instance = markitdown_converter
        self._docling_instance = docling_converter
        self._injected = markitdown_converter is not None or docling_converter is not None
        self._missing: set[str] = set()
        self._unavailable_reason: str | None = None
        self._lock = threading.Lock()

    @property
    def available(self) -> bool:
        return self._unavailable_reason is None and bool(self._backends())

    @property
    def unavailable_reason(self) -> str | None:
        return self._unavailable_reason

    def convert(self, path: Path | str, data: bytes | None = None) -> str:
        """Return normalized text for ``path`` or raise a ``ConversionError``."""

        source = Path(path)
        if self._unavailable_reason is not None:
            raise ToolUnavailableError(self._unavailable_reason)
        backends = self._backends()
        if not backends:
            self._mark_unavailable(
                "No document converter is installed "
                "(install 'markitdown[all]' or 'docling')."
            )
            raise ToolUnavailableError(self._unavailable_reason)

        suffix = source.suffix.lower()
        signals = gather_file_signals(
            source, historical_success=self.router.historical_success_for(suffix)
        )
        plan = build_conversion_plan(self.router.plan_order(signals))
        failures: list[ConversionError] = []
        for name in plan.ordered_converters:
            runner = backends.get(name)
            if runner is None or name in self._missing:
                continue
            try:
                text = self._run_bounded(name, runner, source, data)
            except ConversionTimeoutError as exc:
                self.router.record_outcome(signals, name, success=False, error=str(exc))
                raise
            except ConversionError as exc:
                self.router.record_outcome(signals, name, success=False, error=str(exc))
                failures.append(exc)
                continue

            if not text or not text.strip():
                failures.append(CorruptInputError(f"{name} returned no text for {source.name}"))
                self.router.record_outcome(signals, name, success=False, error="empty")
                continue
            normalized = normalize_text(text)
            if "\x00" in normalized:
                failures.append(CorruptInputError(f"{name} returned binary output for {source.name}"))
                self.router.record_outcome(signals, name, success=False, error="binary")
                continue
            self.router.record_outcome(signals, name, success=True)
            logger.debug("Converted %s with %s (%d chars)", source, name, len(normalized))
            return normalized

        if failures and all(isinstance(exc, ToolUnavailableError) for exc in failures):
            if all(name in self._missing for name in backends):
                self._mark_unavailable(str(failures[-1]))
            raise failures[-1]
        for preferred in (UnsupportedSubFormatError, CorruptInputError):
            for exc in failures:
                if isinstance(exc, preferred):
                    raise exc
        if failures:
            raise failures[-1]
        raise ToolUnavailableError(self._unavailable_reason or "No usable converter backend.")

    def _mark_unavailable(self, reason: str | None) -> None:
        with self._lock:
            if self._unavailable_reason is None:
                self._unavailable_reason = reason or "Document converter unavailable."
                logger.warning(
                    "Document conversion disabled for this run: %s", self._unavailable_reason
                )

    def _backends(self) -> dict[str, _Backend]:
        backends: dict[str, _Backend] = {}
        if self._injected:
            if self._markitdown_instance is not None:
                backends["markitdown"] = self._run_markitdown
            if self._docling_instance is not None:
                backends["docling"] = self._run_docling
            return backends

        wanted = KNOWN_BACKENDS if self.backend == "auto" else (self.backend,)
        if "markitdown" in wanted and markitdown_library_available():
            backends["markitdown"] = self._run_markitdown
        if "docling" in wanted and docling_library_available():
            backends["docling"] = self._run_docling
        if "markitdown-cli" in wanted and markitdown_cli_available(self.cli_binary):
            backends["markitdown-cli"] = self._run_cli
        return backends

    def _run_bounded(
        self, name: str, runner: _Backend, source: Path, data: bytes | None
    ) -> str | None:
        if name == "markitdown-cli":
            # subprocess enforces its own timeout and kills the child.
            return self._guarded(name, runner, source, data)
        try:
            return call_with_deadline(
                self._guarded,
                name,
                runner,
                source,
                data,
                timeout=self.timeout,
                name=f"converter-{name}",
            )
        except FutureTimeout as exc:
            raise ConversionTimeoutError(
                f"{name} timed out after {self.timeout:.0f}s on {source.name}"
            ) from exc

    def _guarded(
        self, name: str, runner: _Backend, source: Path, data: bytes | None
    ) -> str | None:
        try:
            return runner(source, data)
        except ConversionError:
            raise
        except FileNotFoundError as exc:
            if name == "markitdown-cli":
                self._missing.add(name)
                raise ToolUnavailableError(f"{self.cli_binary} executable not found") from exc
            raise CorruptInputError(f"{name}: {exc}") from exc
        except subprocess.TimeoutExpired as exc:
            raise ConversionTimeoutError(
                f"{name} timed out after {self.timeout:.0f}s on {source.name}"
            ) from exc
        except UnicodeDecodeError as exc:
            raise CorruptInputError(f"{name} produced non UTF-8 output: {exc}") from exc
        except Exception as exc:
            raise _classify_failure(name, exc) from exc

    def _run_markitdown(self, source: Path, data: bytes | None) -> str | None:
        with self._lock:
            if self._markitdown_instance is None:
                self._markitdown_instance = create_markitdown_converter()
            converter = self._markitdown_instance
        if converter is None:
            self._missing.add("markitdown")
            raise ToolUnavailableError("markitdown is not installed")
        return convert_with_markitdown(source, converter=converter, data=data)

    def _run_docling(self, source: Path, data: bytes | None) -> str | None:
        with self._lock:
            if self._docling_instance is None:
                self._docling_instance = create_docling_converter()
            converter = self._docling_instance
        if converter is None:
            self._missing.add("docling")
            raise ToolUnavailableError("docling is not installed")
        return convert_with_docling(source, converter=converter)

    def _run_cli(self, source: Path, _: bytes | None) -> str:
        return convert_with_markitdown_cli(
            source, binary=self.cli_binary, timeout=self.timeout
        )


def _classify_failure(name: str, exc: Exception) -> ConversionError:
    kind = type(exc).__name__
    if "Unsupported" in kind or "MissingDependency" in kind:
        return UnsupportedSubFormatError(f"{name}: {exc}")
    return CorruptInputError(f"{name}: {kind}: {exc}")
