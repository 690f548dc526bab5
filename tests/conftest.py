"""Shared fakes for the semantic-index test-suite."""

from __future__ import annotations

import re
import threading

import pytest

_TOKEN_RE = re.compile(r"[a-z0-9]+")


class BagOfWordsEmbedder:
    """Deterministic embedder: one dimension per distinct lower-cased token."""

    def __init__(self, dimensions: int = 512, batch_size: int = 32) -> None:
        self.dimensions = dimensions
        self.batch_size = batch_size
        self.calls: list[list[str]] = []
        self._vocabulary: dict[str, int] = {}
        self._lock = threading.Lock()

    def _index(self, token: str) -> int:
        with self._lock:
            if token not in self._vocabulary:
                self._vocabulary[token] = len(self._vocabulary) % self.dimensions
            return self._vocabulary[token]

    def embed(self, text: str) -> list[float]:
        return self.embed_batch([text])[0]

    def embed_batch(self, texts: list[str]) -> list[list[float]]:
        self.calls.append(list(texts))
        vectors = []
        for text in texts:
            vector = [0.0] * self.dimensions
            for token in _TOKEN_RE.findall(text.lower()):
                vector[self._index(token)] += 1.0
            vectors.append(vector)
        return vectors


class DummyMarkItDown:
    """Stands in for ``markitdown.MarkItDown``; returns canned text per file name."""

    def __init__(self, outputs: dict[str, str] | None = None, default: str = "# Title\n\nBody") -> None:
        self.outputs = dict(outputs or {})
        self.default = default
        self.calls: list[str] = []

    def convert(self, source: str) -> object:
        self.calls.append(source)
        name = source.rsplit("/", 1)[-1]
        text = self.outputs.get(name, self.default)

        class Result:
            text_content = text

        return Result()


@pytest.fixture
def embedder() -> BagOfWordsEmbedder:
    return BagOfWordsEmbedder()
