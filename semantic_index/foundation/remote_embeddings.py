"""HTTP helper for requesting embedding vectors from Ollama."""
from __future__ import annotations

import json
from typing import Any, Callable
from urllib import error, request

JsonBytes = bytes


def request_embedding_vectors(
    payload: dict[str, Any],
    *,
    endpoint: str = "http://127.0.0.1:11434/api/embed",
    timeout: float = 120.0,
    transport: Callable[[JsonBytes], JsonBytes] | None = None,
) -> list[list[float]]:
    """Send ``payload`` to Ollama's embedding endpoint and return the vectors.

    The ``/api/embed`` endpoint accepts a list under ``input`` and answers with
    one vector per item, in order.
    """

    body = json.dumps(payload).encode("utf-8")
    raw = _send_request(body, endpoint=endpoint, timeout=timeout, transport=transport)
    try:
        data = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise RuntimeError("Embedding response was not valid JSON.") from exc
    if not isinstance(data, dict):
        raise RuntimeError("Embedding response was not a JSON object.")
    vectors = _extract_embeddings(data)
    if vectors is None:
        raise RuntimeError("Embedding response did not include vectors.")
    return [[float(value) for value in vector] for vector in vectors]


def _send_request(
    body: JsonBytes,
    *,
    endpoint: str,
    timeout: float,
    transport: Callable[[JsonBytes], JsonBytes] | None,
) -> JsonBytes:
    if transport is not None:
        return transport(body)

    req = request.Request(
        endpoint,
        data=body,
        headers={"Content-Type": "application/json"},
    )
    try:
        with request.urlopen(req, timeout=timeout) as response:
            return response.read()
    except error.URLError as exc:  # pragma: no cover - network failures are rare.
        raise RuntimeError(f"Failed to contact Ollama embeddings API: {exc}") from exc


def _extract_embeddings(payload: dict[str, Any]) -> list[list[float]] | None:
    batch = payload.get("embeddings")
    if isinstance(batch, list) and all(isinstance(item, list) for item in batch):
        return batch  # type: ignore[return-value]
    single = payload.get("embedding")
    if isinstance(single, list):
        return [single]
    data = payload.get("data")
    if isinstance(data, list) and data:
        vectors: list[list[float]] = []
        for inner in data:
            if not isinstance(inner, dict) or not isinstance(inner.get("embedding"), list):
                return None
            vectors.append(inner["embedding"])
        return vectors
    return None
