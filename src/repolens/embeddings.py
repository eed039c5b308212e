"""Chunk embeddings: the provider protocol the chunk store needs, and Gemini."""

from __future__ import annotations

import logging
from typing import Protocol

from google import genai
from google.genai import types

from repolens import config

logger = logging.getLogger(__name__)

# Gemini accepts at most 250 texts per embed_content call
EMBED_BATCH_SIZE = 100


class EmbeddingProvider(Protocol):
    def embed(self, texts: list[str]) -> list[list[float]]:
        """One vector per text, in input order, for any number of texts."""
        ...


class GeminiProvider:
    """Embeds chunk text with Gemini, splitting large inputs into API-sized batches."""

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        dims: int | None = None,
        batch_size: int = EMBED_BATCH_SIZE,
    ) -> None:
        self._client = genai.Client(api_key=api_key or config.GEMINI_API_KEY)
        self._model = model or config.EMBEDDING_MODEL
        self.dims = dims or config.EMBEDDING_DIMS
        self._batch_size = batch_size

    def _embed_batch(self, batch: list[str]) -> list[list[float]]:
        result = self._client.models.embed_content(
            model=self._model,
            contents=batch,
            config=types.EmbedContentConfig(
                task_type="RETRIEVAL_DOCUMENT",
                output_dimensionality=self.dims,
            ),
        )
        return [e.values for e in result.embeddings]

    def embed(self, texts: list[str]) -> list[list[float]]:
        vectors: list[list[float]] = []
        for start in range(0, len(texts), self._batch_size):
            vectors.extend(self._embed_batch(texts[start:start + self._batch_size]))
        logger.debug("Embedded %d chunk text(s) with %s", len(texts), self._model)
        return vectors
