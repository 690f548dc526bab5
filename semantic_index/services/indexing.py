"""Business logic for the incremental indexing pipeline."""

from __future__ import annotations

import enum
import hashlib
import logging
import os
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from glob import glob
from pathlib import Path
from typing import Any, Callable, Iterable, Protocol, Sequence

from tqdm import tqdm

from semantic_index.config import DEFAULT_INDEX_ROOT, IndexSettings
from semantic_index.data import (
    Chunk,
    ConversionStatus,
    FileRecord,
    LanceIndexStore,
    StoreInconsistencyError,
)
from semantic_index.foundation.deadline import FutureTimeout, call_with_deadline
from semantic_index.middleware import (
    ConversionError,
    DocumentConverter,
    EmbeddingError,
    FileFormat,
    OllamaEmbeddingClient,
    classify,
)

from .chunking import TextChunker

logger = logging.getLogger(__name__)

__all__ = [
    "BackgroundIndexer",
    "DEFAULT_INDEX_ROOT",
    "FileState",
    "IndexingCoordinator",
    "IndexingFailure",
    "IndexingPipeline",
    "IndexingReport",
    "IndexingStatus",
    "IndexingTask",
    "build_semantic_index",
    "list_files",
    "resolve_index_folder",
]


class FileState(str, enum.Enum):
    UNSEEN = "unseen"
    HASHING = "hashing"
    UNCHANGED = "unchanged"
    NEEDS_INDEX = "needs_index"
    CLASSIFYING = "classifying"
    CONVERTING = "converting"
    CHUNKING = "chunking"
    EMBEDDING = "embedding"
    UPSERTED = "upserted"
    FAILED = "failed"


class IndexingFailure(RuntimeError):
    """Raised by a pipeline stage to move a file into ``FileState.FAILED``."""

    def __init__(self, reason: str, message: str) -> None:
        super().__init__(message)
        self.reason = reason


def _normalized_extensions(extensions: Iterable[str] | None) -> set[str]:
    if not extensions:
        return set()
    return {
        ext.lower() if ext.startswith(".") else f".{ext.lower()}" for ext in extensions
    }


def list_files(
    folder: Path | str, *, allowed_extensions: Iterable[str] | None = None
) -> list[Path]:
    """Return indexable files contained within ``folder``.

    Without ``allowed_extensions`` every file the classifier does not mark
    ``UNSUPPORTED`` is returned. Hidden files and folders are skipped.
    """
    base_path = Path(folder).expanduser().resolve()
    if not base_path.exists():
        raise ValueError(f"Folder {base_path} does not exist.")
    if not base_path.is_dir():
        raise ValueError(f"Path {base_path} is not a directory.")

    allowed = _normalized_extensions(allowed_extensions)

    pattern = str(base_path / "**" / "*")
    files = []
    for entry in glob(pattern, recursive=True):
        path = Path(entry)
        if not path.is_file():
            continue
        if allowed:
            if path.suffix.lower() in allowed:
                files.append(path)
        elif classify(path) is not FileFormat.UNSUPPORTED:
            files.append(path)

    files.sort()
    return files


def resolve_index_folder(
    folder: Path | str,
    index_root: Path | str | None = None,
    *,
    relative_root: str = DEFAULT_INDEX_ROOT,
) -> Path:
    """Return the Lance folder used for ``folder`` (``<parent>/.semantic_index/lance/<name>``).

    ``relative_root`` is joined to the folder's parent, so an absolute value
    replaces it outright.
    """
    base = Path(folder).expanduser().resolve()
    root = (
        Path(index_root).expanduser().resolve()
        if index_root is not None
        else base.parent / Path(relative_root).expanduser()
    )
    return root / base.name


def hash_bytes(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


@dataclass(slots=True)
class IndexingTask:
    """One file moving through the pipeline."""

    source_path: Path
    data: bytes = b""
    content_hash: str = ""
    size_bytes: int = 0
    file_format: FileFormat = FileFormat.UNSUPPORTED
    status: ConversionStatus = ConversionStatus.NOT_NEEDED
    text: str = ""
    chunks: list[Chunk] = field(default_factory=list)
    vectors: list[list[float]] = field(default_factory=list)
    failure_reason: str | None = None
    state: FileState = FileState.UNSEEN
    history: list[FileState] = field(default_factory=list)

    def advance(self, state: FileState) -> None:
        self.state = state
        self.history.append(state)

    def record(self) -> FileRecord:
        return FileRecord(
            path=str(self.source_path),
            content_hash=self.content_hash,
            file_format=self.file_format,
            status=self.status,
            indexed_at=time.time(),
            size_bytes=self.size_bytes,
            failure_reason=self.failure_reason,
        )


@dataclass(slots=True)
class IndexingContext:
    """Shared objects that pipeline stages rely on."""

    store: LanceIndexStore
    converter: Any | None
    chunker: TextChunker
    embedding_client: Any
    call: Callable[..., Any]
    conversion_timeout: float
    embedding_timeout: float


class PipelineStage(Protocol):
    """Minimal interface implemented by each indexing stage."""

    state: FileState

    def run(self, task: IndexingTask, context: IndexingContext) -> None: ...


class IndexingPipeline:
    """Runs a file through its stages in order; a failure stops the file."""

    def __init__(self, stages: Sequence[PipelineStage]) -> None:
        self.stages = list(stages)

    def run(self, task: IndexingTask, context: IndexingContext) -> IndexingTask:
        for stage in self.stages:
            task.advance(stage.state)
            try:
                stage.run(task, context)
            except IndexingFailure as exc:
                task.status = ConversionStatus.FAILED
                task.failure_reason = exc.reason
                task.chunks = []
                task.vectors = []
                task.advance(FileState.FAILED)
                logger.warning("Indexing %s failed (%s): %s", task.source_path, exc.reason, exc)
                context.store.upsert_file(task.record(), [], [])
                return task
        return task


class ClassificationStage:
    state = FileState.CLASSIFYING

    def run(self, task: IndexingTask, _: IndexingContext) -> None:
        task.file_format = classify(task.source_path)
        if task.file_format is FileFormat.NATIVE_TEXT:
            task.status = ConversionStatus.NOT_NEEDED


class ConversionStage:
    """Produce normalized text, converting binary formats when needed."""

    state = FileState.CONVERTING

    def run(self, task: IndexingTask, context: IndexingContext) -> None:
        if task.file_format is FileFormat.NATIVE_TEXT:
            try:
                task.text = decode_native_text(task.data)
            except UnicodeDecodeError as exc:
                raise IndexingFailure("decode_error", f"not valid UTF-8 text: {exc}") from exc
            return

        if context.converter is None:
            raise IndexingFailure("tool_unavailable", "no document converter configured")
        try:
            text = context.call(
                context.converter.convert,
                task.source_path,
                task.data,
                timeout=context.conversion_timeout,
            )
        except FutureTimeout as exc:
            raise IndexingFailure(
                "timeout", f"conversion exceeded {context.conversion_timeout:.0f}s"
            ) from exc
        except ConversionError as exc:
            raise IndexingFailure(exc.reason, str(exc)) from exc
        except Exception as exc:
            raise IndexingFailure("corrupt_input", f"{type(exc).__name__}: {exc}") from exc
        if not isinstance(text, str) or "\x00" in text:
            raise IndexingFailure("corrupt_input", "converter returned non-text output")
        task.text = text
        task.status = ConversionStatus.CONVERTED


class ChunkingStage:
    state = FileState.CHUNKING

    def run(self, task: IndexingTask, context: IndexingContext) -> None:
        task.chunks = context.chunker.chunk(task.text)


class EmbeddingStage:
    """Embed chunk texts batch by batch, retrying a failed batch once at half size."""

    state = FileState.EMBEDDING

    def run(self, task: IndexingTask, context: IndexingContext) -> None:
        texts = [chunk.text for chunk in task.chunks]
        if not texts:
            task.vectors = []
            return
        batch_size = max(1, int(getattr(context.embedding_client, "batch_size", 32)))
        vectors: list[list[float]] = []
        for offset in range(0, len(texts), batch_size):
            batch = texts[offset : offset + batch_size]
            vectors.extend(self._embed_with_retry(batch, task, context))
        task.vectors = vectors

    def _embed_with_retry(
        self, batch: list[str], task: IndexingTask, context: IndexingContext
    ) -> list[list[float]]:
        try:
            return self._embed(batch, context)
        except IndexingFailure as exc:
            if len(batch) < 2:
                raise
            logger.info(
                "Retrying %d chunk(s) of %s in smaller batches after: %s",
                len(batch),
                task.source_path.name,
                exc,
            )
        half = (len(batch) + 1) // 2
        return self._embed(batch[:half], context) + self._embed(batch[half:], context)

    @staticmethod
    def _embed(batch: list[str], context: IndexingContext) -> list[list[float]]:
        try:
            vectors = context.call(
                context.embedding_client.embed_batch,
                batch,
                timeout=context.embedding_timeout,
            )
        except FutureTimeout as exc:
            raise IndexingFailure(
                "timeout", f"embedding exceeded {context.embedding_timeout:.0f}s"
            ) from exc
        except (EmbeddingError, ValueError) as exc:
            raise IndexingFailure("embedding_failed", str(exc)) from exc
        except Exception as exc:
            raise IndexingFailure("embedding_failed", f"{type(exc).__name__}: {exc}") from exc
        if len(vectors) != len(batch):
            raise IndexingFailure(
                "embedding_failed",
                f"provider returned {len(vectors)} vectors for {len(batch)} texts",
            )
        return [list(vector) for vector in vectors]


class PersistenceStage:
    state = FileState.UPSERTED

    def run(self, task: IndexingTask, context: IndexingContext) -> None:
        context.store.upsert_file(task.record(), task.chunks, task.vectors)


def decode_native_text(data: bytes) -> str:
    """Decode a native text file strictly; NUL bytes count as binary content."""
    text = data.decode("utf-8-sig")
    if "\x00" in text:
        raise UnicodeDecodeError("utf-8", data, 0, 1, "NUL byte in text file")
    return text.replace("\r\n", "\n").replace("\r", "\n")


@dataclass(slots=True)
class IndexingReport:
    """Outcome of one pass over the file set."""

    indexed: list[str] = field(default_factory=list)
    unchanged: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)
    removed: list[str] = field(default_factory=list)
    unreadable: list[str] = field(default_factory=list)
    duration: float = 0.0

    @property
    def mutations(self) -> int:
        return len(self.indexed) + len(self.failed) + len(self.removed)


@dataclass(frozen=True, slots=True)
class IndexingStatus:
    state: str
    remaining: int = 0

    @property
    def scanning(self) -> bool:
        return self.state == "scanning"


class IndexingCoordinator:
    """Walks a file set and keeps the index store in sync with it."""

    def __init__(
        self,
        store: LanceIndexStore,
        *,
        converter: Any | None = None,
        embedding_client: Any | None = None,
        chunker: TextChunker | None = None,
        settings: IndexSettings | None = None,
        allowed_extensions: Iterable[str] | None = None,
    ) -> None:
        self.settings = settings or IndexSettings()
        self.store = store
        self.converter = converter if converter is not None else DocumentConverter(
            backend=self.settings.converter_backend,
            timeout=self.settings.conversion_timeout,
        )
        self.embedding_client = embedding_client or OllamaEmbeddingClient(
            model=self.settings.embedding_model,
            endpoint=self.settings.embedding_endpoint,
            timeout=self.settings.embedding_timeout,
            batch_size=self.settings.embedding_batch_size,
            dimensions=self.settings.embedding_dimensions,
        )
        self.chunker = chunker or TextChunker(
            max_chars=self.settings.chunk_max_chars,
            overlap_chars=self.settings.chunk_overlap_chars,
        )
        self.allowed_extensions = (
            tuple(allowed_extensions) if allowed_extensions is not None else None
        )
        self.pipeline = IndexingPipeline(
            [
                ClassificationStage(),
                ConversionStage(),
                ChunkingStage(),
                EmbeddingStage(),
                PersistenceStage(),
            ]
        )
        self._pass_lock = threading.Lock()
        self._status_lock = threading.Lock()
        self._status = IndexingStatus("idle")

    @property
    def status(self) -> IndexingStatus:
        return self._status

    def run_pass(
        self,
        files: Path | str | Iterable[Path | str],
        *,
        show_progress: bool = False,
        retry_failed: bool = False,
    ) -> IndexingReport:
        """Bring the store in line with ``files`` (a folder or explicit paths)."""

        started = time.monotonic()
        scope: str | None = None
        if isinstance(files, (str, Path)):
            base_path = Path(files).expanduser().resolve()
            paths = list_files(base_path, allowed_extensions=self.allowed_extensions)
            scope = str(base_path)
        else:
            paths = sorted(
                Path(item).expanduser().resolve()
                for item in files
                if classify(item) is not FileFormat.UNSUPPORTED
            )

        report = IndexingReport()
        with self._pass_lock:
            self._set_status("scanning", len(paths))
            try:
                self._remove_missing(paths, scope, report)
                self._index_paths(paths, report, show_progress, retry_failed)
                self.store.mark_pass_complete()
            finally:
                self._set_status("idle", 0)
        report.duration = time.monotonic() - started
        logger.info(
            "Indexing pass finished: %d indexed, %d unchanged, %d failed, %d removed (%.2fs)",
            len(report.indexed),
            len(report.unchanged),
            len(report.failed),
            len(report.removed),
            report.duration,
        )
        return report

    def index_file(self, source_path: Path | str, *, retry_failed: bool = False) -> IndexingTask:
        """Run one file through hashing and, when it changed, the full pipeline."""

        task = IndexingTask(source_path=Path(source_path).expanduser().resolve())
        task.advance(FileState.HASHING)
        try:
            task.data = task.source_path.read_bytes()
        except OSError as exc:
            raise IndexingFailure("read_error", f"cannot read {task.source_path}: {exc}") from exc
        task.size_bytes = len(task.data)
        task.content_hash = hash_bytes(task.data)

        existing = self.store.get_file(task.source_path)
        if (
            existing is not None
            and existing.content_hash == task.content_hash
            and not (retry_failed and existing.failed)
        ):
            task.advance(FileState.UNCHANGED)
            task.file_format = existing.file_format
            task.status = existing.status
            task.failure_reason = existing.failure_reason
            return task

        task.advance(FileState.NEEDS_INDEX)
        return self.pipeline.run(task, self._context())

    def close(self) -> None:
        close = getattr(self.converter, "close", None)
        if callable(close):
            close()

    def _context(self) -> IndexingContext:
        return IndexingContext(
            store=self.store,
            converter=self.converter,
            chunker=self.chunker,
            embedding_client=self.embedding_client,
            call=call_with_deadline,
            conversion_timeout=self.settings.conversion_timeout,
            embedding_timeout=self.settings.embedding_timeout,
        )

    def _remove_missing(
        self, paths: list[Path], scope: str | None, report: IndexingReport
    ) -> None:
        current = {str(path) for path in paths}
        prefix = scope.rstrip(os.sep) + os.sep if scope is not None else None
        for known in self.store.paths():
            if prefix is not None and not known.startswith(prefix):
                continue
            if known not in current and self.store.remove_file(known):
                report.removed.append(known)
                logger.info("Removed %s from index (no longer present)", known)

    def _index_paths(
        self,
        paths: list[Path],
        report: IndexingReport,
        show_progress: bool,
        retry_failed: bool,
    ) -> None:
        if not paths:
            return
        with ThreadPoolExecutor(
            max_workers=self.settings.max_workers, thread_name_prefix="indexer"
        ) as executor:
            futures = {
                executor.submit(self._index_one, path, retry_failed): path for path in paths
            }
            completed: Iterable[Any] = as_completed(futures)
            if show_progress:
                completed = tqdm(
                    completed, total=len(futures), desc="Indexing", unit="file", leave=False
                )
            for future in completed:
                path = futures[future]
                self._decrement_remaining()
                try:
                    task = future.result()
                except StoreInconsistencyError:
                    raise
                except IndexingFailure as exc:
                    logger.warning("Skipping %s: %s", path, exc)
                    report.unreadable.append(str(path))
                    continue
                if task.state is FileState.UNCHANGED:
                    report.unchanged.append(str(path))
                elif task.state is FileState.FAILED:
                    report.failed[str(path)] = task.failure_reason or "unknown"
                else:
                    report.indexed.append(str(path))
        report.indexed.sort()
        report.unchanged.sort()
        report.unreadable.sort()

    def _index_one(self, path: Path, retry_failed: bool) -> IndexingTask:
        return self.index_file(path, retry_failed=retry_failed)

    def _set_status(self, state: str, remaining: int) -> None:
        with self._status_lock:
            self._status = IndexingStatus(state, remaining)

    def _decrement_remaining(self) -> None:
        with self._status_lock:
            self._status = IndexingStatus(
                self._status.state, max(0, self._status.remaining - 1)
            )


class BackgroundIndexer:
    """Runs ``IndexingCoordinator.run_pass`` on a daemon thread.

    Passes run every ``interval`` seconds and whenever ``trigger`` is called.
    """

    def __init__(
        self,
        coordinator: IndexingCoordinator,
        folder: Path | str,
        *,
        interval: float = 30.0,
    ) -> None:
        self.coordinator = coordinator
        self.folder = Path(folder).expanduser().resolve()
        self.interval = interval
        self.last_report: IndexingReport | None = None
        self.pass_count = 0
        self._wake = threading.Event()
        self._stop = threading.Event()
        self._done = threading.Condition()
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def status(self) -> IndexingStatus:
        if not self.running:
            return IndexingStatus("stopped")
        return self.coordinator.status

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._wake.set()
        self._thread = threading.Thread(
            target=self._loop, name="semantic-index-background", daemon=True
        )
        self._thread.start()

    def trigger(self) -> None:
        self._wake.set()

    def stop(self, timeout: float | None = 10.0) -> None:
        self._stop.set()
        self._wake.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None

    def wait_for_pass(self, count: int = 1, timeout: float | None = None) -> bool:
        """Block until at least ``count`` passes have finished."""
        with self._done:
            return self._done.wait_for(lambda: self.pass_count >= count, timeout=timeout)

    def _loop(self) -> None:
        while not self._stop.is_set():
            self._wake.wait(timeout=self.interval)
            if self._stop.is_set():
                break
            self._wake.clear()
            try:
                report = self.coordinator.run_pass(self.folder)
            except Exception:
                logger.exception("Background indexing pass over %s failed", self.folder)
                report = None
            with self._done:
                if report is not None:
                    self.last_report = report
                self.pass_count += 1
                self._done.notify_all()


def build_semantic_index(
    folder: Path | str,
    *,
    index_root: Path | str | None = None,
    converter: Any | None = None,
    embedding_client: Any | None = None,
    settings: IndexSettings | None = None,
    allowed_extensions: Iterable[str] | None = None,
    show_progress: bool = True,
) -> IndexingReport:
    """Convenience wrapper that opens the store and runs one indexing pass."""

    settings = settings or IndexSettings()
    base_path = Path(folder).expanduser().resolve()
    if not base_path.exists():
        raise ValueError(f"Folder {base_path} does not exist.")
    if not base_path.is_dir():
        raise ValueError(f"Path {base_path} is not a directory.")
    store = LanceIndexStore(
        resolve_index_folder(base_path, index_root, relative_root=settings.index_root),
        dimensions=settings.embedding_dimensions,
    )
    coordinator = IndexingCoordinator(
        store,
        converter=converter,
        embedding_client=embedding_client,
        settings=settings,
        allowed_extensions=allowed_extensions,
    )
    try:
        return coordinator.run_pass(base_path, show_progress=show_progress)
    finally:
        coordinator.close()
