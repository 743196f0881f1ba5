"""Embedding provider backed by a local Ollama server.

Any failure degrades to None for the affected texts; callers store
entities without an embedding rather than aborting.
"""

from __future__ import annotations

import logging
from typing import Optional

import numpy as np
import requests

logger = logging.getLogger(__name__)

DEFAULT_EMBED_MODEL = "nomic-embed-text"


class EmbeddingClient:
    """Calls Ollama's /api/embed endpoint."""

    def __init__(
        self,
        base_url: str = "http://localhost:11434",
        model: str = DEFAULT_EMBED_MODEL,
        batch_size: int = 50,
        timeout: float = 60,
    ):
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.batch_size = batch_size
        self.timeout = timeout

    def embed(self, texts: list[str]) -> list[Optional[np.ndarray]]:
        """Embed texts in batches. Returns a list parallel to the input."""
        results: list[Optional[np.ndarray]] = []

        for i in range(0, len(texts), self.batch_size):
            batch = texts[i:i + self.batch_size]
            vectors = self._embed_batch(batch)
            results.extend(vectors)

        return results

    def _embed_batch(self, batch: list[str]) -> list[Optional[np.ndarray]]:
        try:
            resp = requests.post(
                f"{self.base_url}/api/embed",
                json={"model": self.model, "input": batch},
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            logger.warning("Embedding request failed: %s", exc)
            return [None] * len(batch)

        if resp.status_code != 200:
            logger.warning("Embedding failed: %s %s", resp.status_code, resp.text[:200])
            return [None] * len(batch)

        embeddings = resp.json().get("embeddings", [])
        vectors: list[Optional[np.ndarray]] = [
            np.array(emb, dtype=np.float32) for emb in embeddings[:len(batch)]
        ]
        # Pad if fewer results than inputs
        while len(vectors) < len(batch):
            vectors.append(None)
        return vectors


def cosine_similarity(a: np.ndarray, b: np.ndarray) -> float:
    if a.shape != b.shape:
        return 0.0
    norm = float(np.linalg.norm(a) * np.linalg.norm(b))
    if norm == 0.0:
        return 0.0
    return float(np.dot(a, b) / norm)
