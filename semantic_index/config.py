"""Runtime settings shared by the indexing and search services.

Defaults live on ``IndexSettings``; ``IndexSettings.from_env`` overlays any
``SEMANTIC_INDEX_*`` environment variables, e.g. ``SEMANTIC_INDEX_MAX_WORKERS=2``.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, fields, replace
from typing import Mapping

ENV_PREFIX = "SEMANTIC_INDEX_"

DEFAULT_INDEX_ROOT = ".semantic_index/lance"


@dataclass(frozen=True, slots=True)
class IndexSettings:
    """Tunable knobs for the indexing pipeline and query path."""

    index_root: str = DEFAULT_INDEX_ROOT
    chunk_max_chars: int = 1_500
    chunk_overlap_chars: int = 200
    max_workers: int = 4
    conversion_timeout: float = 60.0
    embedding_timeout: float = 120.0
    query_timeout: float = 15.0
    embedding_model: str = "embeddinggemma:latest"
    embedding_endpoint: str = "http://127.0.0.1:11434/api/embed"
    embedding_batch_size: int = 32
    embedding_dimensions: int = 0
    converter_backend: str = "auto"
    default_limit: int = 5
    max_limit: int = 50
    min_score: float = 0.1
    oversample_factor: int = 3
    refresh_interval: float = 30.0

    def __post_init__(self) -> None:
        if self.chunk_max_chars < 1:
            raise ValueError("chunk_max_chars must be >= 1")
        if not 0 <= self.chunk_overlap_chars < self.chunk_max_chars:
            raise ValueError("chunk_overlap_chars must be in [0, chunk_max_chars)")
        if self.max_workers < 1:
            raise ValueError("max_workers must be >= 1")
        if self.default_limit < 1 or self.max_limit < self.default_limit:
            raise ValueError("limits must satisfy 1 <= default_limit <= max_limit")
        if self.converter_backend not in {"auto", "markitdown", "docling", "markitdown-cli"}:
            raise ValueError(f"Unknown converter backend '{self.converter_backend}'")

    @classmethod
    def from_env(
        cls, environ: Mapping[str, str] | None = None, **overrides
    ) -> "IndexSettings":
        """Build settings from defaults, ``SEMANTIC_INDEX_*`` variables and overrides."""

        env = os.environ if environ is None else environ
        values: dict[str, object] = {}
        for field in fields(cls):
            raw = env.get(ENV_PREFIX + field.name.upper())
            if raw is None or raw == "":
                continue
            values[field.name] = _coerce(field.name, field.type, raw)
        values.update(overrides)
        return cls(**values)

    def with_overrides(self, **overrides) -> "IndexSettings":
        return replace(self, **overrides)


def _coerce(name: str, annotation: object, raw: str) -> object:
    kind = annotation if isinstance(annotation, str) else getattr(annotation, "__name__", "")
    try:
        if kind == "int":
            return int(raw)
        if kind == "float":
            return float(raw)
    except ValueError as exc:
        raise ValueError(f"Invalid value for {ENV_PREFIX}{name.upper()}: {raw!r}") from exc
    return raw
