"""Tests for embedding backends and the provider."""

import asyncio
import math
import time

import pytest
from narrative_market import (
    EmbeddingProvider,
    HashEmbedding,
    InvalidInput,
    ServiceUnavailable,
)
from narrative_market.embedding import create_backend


class BrokenBackend:
    """Backend whose model service is down."""

    dimensions = 768
    model_name = "broken"

    def embed(self, text: str) -> list[float]:
        raise ServiceUnavailable("model service unreachable")

    def embed_batch(self, texts: list[str]) -> list[list[float]]:
        raise ServiceUnavailable("model service unreachable")


class SlowBackend(HashEmbedding):
    def embed(self, text: str) -> list[float]:
        time.sleep(0.5)
        return super().embed(text)


class ZeroBackend(HashEmbedding):
    def embed(self, text: str) -> list[float]:
        return [0.0] * self.dimensions


class WrongSizeBackend(HashEmbedding):
    def __init__(self):
        super().__init__(dimensions=384)


@pytest.fixture
def provider():
    return EmbeddingProvider(HashEmbedding(dimensions=768))


def test_vector_has_configured_dimensions(provider):
    embedding = provider.generate("A narrative about corporate fraud")
    assert len(embedding.vector) == 768


def test_vector_is_unit_length(provider):
    embedding = provider.generate("A narrative about corporate fraud")
    norm = math.sqrt(sum(x * x for x in embedding.vector))
    assert norm == pytest.approx(1.0)


def test_identical_text_identical_vector(provider):
    first = provider.generate("same text")
    second = provider.generate("same text")
    assert first.vector == second.vector


def test_different_text_different_vector(provider):
    assert provider.generate("one").vector != provider.generate("two").vector


def test_embedding_metadata(provider):
    embedding = provider.generate("metadata")
    assert embedding.model == "hash-768"
    assert embedding.generated_at.tzinfo is not None


@pytest.mark.parametrize("text", ["", "   ", "\n\t"])
def test_blank_text_rejected(provider, text):
    with pytest.raises(InvalidInput, match="empty"):
        provider.generate(text)


def test_max_length(provider):
    provider.generate("x" * 5000)
    with pytest.raises(InvalidInput, match="5000"):
        provider.generate("x" * 5001)


def test_configured_max_length():
    provider = EmbeddingProvider(HashEmbedding(dimensions=8), dimensions=8, max_text_length=10)
    with pytest.raises(InvalidInput):
        provider.generate("eleven char")


def test_service_unavailable_propagates():
    provider = EmbeddingProvider(BrokenBackend())
    with pytest.raises(ServiceUnavailable):
        provider.generate("anything")


def test_wrong_dimensions_from_backend():
    provider = EmbeddingProvider(WrongSizeBackend(), dimensions=768)
    with pytest.raises(ServiceUnavailable, match="384"):
        provider.generate("anything")


def test_zero_vector_from_backend():
    provider = EmbeddingProvider(ZeroBackend(dimensions=768))
    with pytest.raises(ServiceUnavailable, match="zero vector"):
        provider.generate("anything")


def test_generate_batch(provider):
    embeddings = provider.generate_batch(["one", "two"])
    assert len(embeddings) == 2
    assert embeddings[0].vector == provider.generate("one").vector
    assert provider.generate_batch([]) == []


def test_generate_batch_validates_every_text(provider):
    with pytest.raises(InvalidInput):
        provider.generate_batch(["fine", ""])


def test_agenerate(provider):
    embedding = asyncio.run(provider.agenerate("async text", timeout=5))
    assert embedding.vector == provider.generate("async text").vector


def test_agenerate_timeout():
    provider = EmbeddingProvider(SlowBackend(dimensions=768))
    with pytest.raises(ServiceUnavailable, match="timed out"):
        asyncio.run(provider.agenerate("slow", timeout=0.05))


def test_agenerate_validates_before_dispatch(provider):
    with pytest.raises(InvalidInput):
        asyncio.run(provider.agenerate("", timeout=1))


def test_create_backend_hash():
    backend = create_backend("hash", dimensions=32)
    assert backend.dimensions == 32
    assert len(backend.embed("x")) == 32


def test_create_backend_unknown():
    with pytest.raises(InvalidInput, match="Unknown embedding backend"):
        create_backend("word2vec", dimensions=32)
