"""Embedding backends and the provider that validates and normalizes them."""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
import random
from typing import Protocol

from narrative_market.errors import InvalidInput, ServiceUnavailable
from narrative_market.models import Embedding, utc_now
from narrative_market.similarity import normalize

logger = logging.getLogger(__name__)


class EmbeddingBackend(Protocol):
    """Protocol for embedding backends."""

    def embed(self, text: str) -> list[float]:
        """Embed a single text."""
        ...

    def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Embed multiple texts."""
        ...

    @property
    def dimensions(self) -> int:
        """Return the dimensionality of embeddings."""
        ...

    @property
    def model_name(self) -> str:
        """Identifier recorded on generated embeddings."""
        ...


class LocalEmbedding:
    """Local embedding using sentence-transformers."""

    def __init__(self, model_name: str = "all-mpnet-base-v2"):
        from sentence_transformers import SentenceTransformer

        logger.info(f"Loading embedding model: {model_name}")
        self.model = SentenceTransformer(model_name)
        self._model_name = model_name
        self._dimensions = self.model.get_sentence_embedding_dimension()

    def embed(self, text: str) -> list[float]:
        """Embed a single text."""
        return self.model.encode(text, normalize_embeddings=True).tolist()

    def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Embed multiple texts."""
        return self.model.encode(texts, normalize_embeddings=True).tolist()

    @property
    def dimensions(self) -> int:
        """Return the dimensionality of embeddings."""
        return self._dimensions

    @property
    def model_name(self) -> str:
        return self._model_name


class OpenAIEmbedding:
    """OpenAI API embedding backend.

    The v3 embedding models accept a ``dimensions`` argument, so the vector
    length is requested explicitly rather than inferred from the model.
    """

    def __init__(
        self,
        model: str = "text-embedding-3-small",
        dimensions: int = 768,
        timeout: float | None = None,
    ):
        from openai import OpenAI

        self.model = model
        self.client = OpenAI(timeout=timeout)
        self._dimensions = dimensions

    def _create(self, inputs: str | list[str]):
        import openai

        try:
            return self.client.embeddings.create(
                input=inputs, model=self.model, dimensions=self._dimensions
            )
        except (
            openai.APIConnectionError,
            openai.RateLimitError,
            openai.InternalServerError,
        ) as e:
            raise ServiceUnavailable(f"OpenAI embeddings unavailable: {e}") from e

    def embed(self, text: str) -> list[float]:
        """Embed a single text."""
        response = self._create(text)
        return response.data[0].embedding

    def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Embed multiple texts."""
        response = self._create(texts)
        return [d.embedding for d in response.data]

    @property
    def dimensions(self) -> int:
        """Return the dimensionality of embeddings."""
        return self._dimensions

    @property
    def model_name(self) -> str:
        return self.model


def serialize_vector(vec: list[float]) -> str:
    """Serialize a vector to JSON for sqlite-vec."""
    return json.dumps(vec)


class HashEmbedding:
    """Deterministic, dependency-free embedding backend.

    Stands in for a real model in tests and development: the same text
    always maps to the same vector.
    """

    def __init__(self, dimensions: int = 768):
        self._dimensions = dimensions

    def _rng_for_text(self, text: str) -> random.Random:
        digest = hashlib.sha256(text.encode("utf-8")).digest()
        seed = int.from_bytes(digest[:8], "big", signed=False)
        return random.Random(seed)

    def embed(self, text: str) -> list[float]:
        rng = self._rng_for_text(text)
        return [rng.uniform(-1.0, 1.0) for _ in range(self._dimensions)]

    def embed_batch(self, texts: list[str]) -> list[list[float]]:
        return [self.embed(t) for t in texts]

    @property
    def dimensions(self) -> int:
        return self._dimensions

    @property
    def model_name(self) -> str:
        return f"hash-{self._dimensions}"


def create_backend(
    backend: str,
    dimensions: int,
    embedding_model: str = "all-mpnet-base-v2",
    openai_model: str = "text-embedding-3-small",
    timeout: float | None = None,
) -> EmbeddingBackend:
    """Build the backend named by `backend` ("hash", "local" or "openai")."""
    if backend == "hash":
        return HashEmbedding(dimensions=dimensions)
    if backend == "openai":
        return OpenAIEmbedding(
            model=openai_model, dimensions=dimensions, timeout=timeout
        )
    if backend == "local":
        return LocalEmbedding(model_name=embedding_model)
    raise InvalidInput(f"Unknown embedding backend: {backend}")


class EmbeddingProvider:
    """Text -> unit-length Embedding, whatever the backend.

    Validates input text, checks the backend returned the configured
    dimensionality, and normalizes to unit length.
    """

    def __init__(
        self,
        backend: EmbeddingBackend,
        dimensions: int = 768,
        max_text_length: int = 5000,
    ):
        self.backend = backend
        self.dimensions = dimensions
        self.max_text_length = max_text_length

    def _validate(self, text: str) -> None:
        if not isinstance(text, str) or not text.strip():
            raise InvalidInput("Text cannot be empty")
        if len(text) > self.max_text_length:
            raise InvalidInput(
                f"Text cannot exceed {self.max_text_length} characters"
            )

    def _finish(self, vector: list[float]) -> Embedding:
        if len(vector) != self.dimensions:
            raise ServiceUnavailable(
                f"Backend {self.backend.model_name} returned {len(vector)} "
                f"dimensions, expected {self.dimensions}"
            )
        if not any(vector):
            raise ServiceUnavailable(
                f"Backend {self.backend.model_name} returned a zero vector"
            )
        return Embedding(
            vector=normalize(vector),
            model=self.backend.model_name,
            generated_at=utc_now(),
        )

    def generate(self, text: str) -> Embedding:
        """Generate an embedding for `text`.

        Raises:
            InvalidInput: if text is blank or too long
            ServiceUnavailable: if the backend fails
        """
        self._validate(text)
        try:
            vector = self.backend.embed(text)
        except ServiceUnavailable:
            logger.warning(f"Embedding backend {self.backend.model_name} failed")
            raise
        return self._finish(list(vector))

    def generate_batch(self, texts: list[str]) -> list[Embedding]:
        """Generate embeddings for several texts in one backend call."""
        for text in texts:
            self._validate(text)
        if not texts:
            return []
        try:
            vectors = self.backend.embed_batch(texts)
        except ServiceUnavailable:
            logger.warning(f"Embedding backend {self.backend.model_name} failed")
            raise
        return [self._finish(list(v)) for v in vectors]

    async def agenerate(self, text: str, timeout: float | None = None) -> Embedding:
        """Generate off the event loop, giving up after `timeout` seconds."""
        self._validate(text)
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(self.generate, text), timeout=timeout
            )
        except asyncio.TimeoutError as e:
            logger.warning(
                f"Embedding backend {self.backend.model_name} timed out "
                f"after {timeout}s"
            )
            raise ServiceUnavailable(
                f"Embedding generation timed out after {timeout}s"
            ) from e
