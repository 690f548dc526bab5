"""Embedding helpers backed by Ollama's local embedding models."""
from __future__ import annotations

import threading
from typing import Callable, Sequence

from semantic_index.foundation.remote_embeddings import request_embedding_vectors

__all__ = ["EmbeddingError", "OllamaEmbeddingClient"]


class EmbeddingError(RuntimeError):
    """Raised when a batch of embedding requests fails as a whole."""


class OllamaEmbeddingClient:
    """Calls Ollama's ``/api/embed`` endpoint to embed batches of text.

    ``dimensions`` pins the expected vector length; when left at ``0`` the
    length of the first response is adopted and enforced from then on.
    """

    def __init__(
        self,
        *,
        model: str = "embeddinggemma:latest",
        endpoint: str = "http://127.0.0.1:11434/api/embed",
        max_chars: int = 4_000,
        timeout: float = 120.0,
        batch_size: int = 32,
        dimensions: int = 0,
        transport: Callable[[bytes], bytes] | None = None,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self.model = model
        self.endpoint = endpoint
        self.max_chars = max_chars
        self.timeout = timeout
        self.batch_size = batch_size
        self.dimensions = dimensions
        self.transport = transport
        self._lock = threading.Lock()

    def embed(self, text: str) -> list[float]:
        """Return the embedding vector for ``text``."""
        return self.embed_batch([text])[0]

    def embed_batch(self, texts: Sequence[str]) -> list[list[float]]:
        """Return one vector per entry of ``texts``, in order."""
        if not texts:
            return []
        prompts: list[str] = []
        for text in texts:
            prompt = text.strip()
            if not prompt:
                raise ValueError("Cannot embed empty text.")
            prompts.append(prompt[: self.max_chars])

        payload = {"model": self.model, "input": prompts}
        try:
            vectors = request_embedding_vectors(
                payload,
                endpoint=self.endpoint,
                timeout=self.timeout,
                transport=self.transport,
            )
        except Exception as exc:  # pragma: no cover - best effort.
            raise EmbeddingError(str(exc)) from exc

        if len(vectors) != len(prompts):
            raise EmbeddingError(
                f"Embedding provider returned {len(vectors)} vectors for {len(prompts)} inputs."
            )
        self._check_dimensions(vectors)
        return vectors

    def _check_dimensions(self, vectors: list[list[float]]) -> None:
        with self._lock:
            if not self.dimensions and vectors:
                self.dimensions = len(vectors[0])
            expected = self.dimensions
        for vector in vectors:
            if len(vector) != expected:
                raise EmbeddingError(
                    f"Embedding has {len(vector)} dimensions, expected {expected}."
                )
