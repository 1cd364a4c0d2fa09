"""
Unit Tests for the embedding client

Hash fallback embeddings, cosine similarity, endpoint calls and caching.
"""

import json

import httpx
import numpy as np
import pytest

from websearch.embeddings import HASH_EMBEDDING_DIM, EmbeddingClient, cosine_similarity, hash_embedding
from websearch.http_fetcher import ProviderHttpClient
from websearch.retry_strategy import RetryConfig, RetryPolicy


def _client(handler) -> EmbeddingClient:
    http = ProviderHttpClient(
        "embeddings",
        retry_policy=RetryPolicy(RetryConfig(max_retries=0, base_delay=0.0)),
        transport=httpx.MockTransport(handler),
    )
    return EmbeddingClient(base_url="http://embed.local/", http=http)


# =============================================================================
# HASH EMBEDDING TESTS
# =============================================================================

class TestHashEmbedding:
    """Tests for the deterministic fallback."""

    def test_deterministic_and_normalized(self):
        """Same text, same unit vector."""
        a = hash_embedding("Python asyncio tutorial")
        assert a == hash_embedding("python ASYNCIO tutorial")
        assert len(a) == HASH_EMBEDDING_DIM
        assert np.linalg.norm(a) == pytest.approx(1.0)

    def test_empty_text_is_zero(self):
        """No words gives the zero vector."""
        assert not any(hash_embedding(""))

    def test_cosine(self):
        """Cosine handles identical, orthogonal and degenerate vectors."""
        assert cosine_similarity([1, 0], [1, 0]) == pytest.approx(1.0)
        assert cosine_similarity([1, 0], [0, 1]) == 0.0
        assert cosine_similarity([0, 0], [1, 0]) == 0.0
        assert cosine_similarity([1, 0], [1, 0, 0]) == 0.0
        assert cosine_similarity([], []) == 0.0


# =============================================================================
# CLIENT TESTS
# =============================================================================

class TestEmbeddingClient:
    """Tests for endpoint use, caching and fallback."""

    @pytest.mark.asyncio
    async def test_endpoint_vector_is_cached(self):
        """The endpoint is called once per distinct text."""
        requests = []

        def handler(request):
            requests.append(json.loads(request.read()))
            return httpx.Response(200, json={"embedding": [0.1, 0.2, 0.3]})

        client = _client(handler)
        assert await client.embed("hello") == [0.1, 0.2, 0.3]
        assert await client.embed("hello") == [0.1, 0.2, 0.3]
        assert requests == [{"model": "nomic-embed-text", "prompt": "hello"}]
        assert client.fallback_count == 0

    @pytest.mark.asyncio
    async def test_endpoint_failure_uses_hash(self):
        """A failing endpoint degrades to the hash embedding."""
        client = _client(lambda r: httpx.Response(500))
        vector = await client.embed("python asyncio")
        assert vector == hash_embedding("python asyncio")
        assert client.fallback_count == 1

    @pytest.mark.asyncio
    async def test_missing_embedding_field_uses_hash(self):
        """An answer without a vector is treated as a failure."""
        client = _client(lambda r: httpx.Response(200, json={"error": "model not found"}))
        await client.embed("x")
        assert client.fallback_count == 1

    @pytest.mark.asyncio
    async def test_similarity(self):
        """Similarity of a text with itself is 1."""
        client = _client(lambda r: httpx.Response(500))
        assert await client.similarity("same words", "same words") == pytest.approx(1.0)
