"""
Embedding client for semantic re-ranking.

Calls an Ollama-compatible endpoint (POST {base_url}/api/embeddings with
{model, prompt}, answer {embedding: [...]}) and caches vectors for 24 hours.
When the endpoint fails for any reason the client falls back to a
deterministic hash pseudo-embedding so ranking degrades instead of failing.
"""

import hashlib
import logging
import re
from datetime import timedelta
from typing import List, Optional, Sequence

import numpy as np

from .http_fetcher import ProviderHttpClient
from .retry_strategy import RetryConfig, RetryPolicy
from .smart_cache import CacheConfig, SmartCache

logger = logging.getLogger("websearch.embeddings")

HASH_EMBEDDING_DIM = 100
EMBEDDING_CACHE_TTL = timedelta(hours=24)
MAX_EMBED_CHARS = 2000

_WORD = re.compile(r"\w+")


def hash_embedding(text: str, dim: int = HASH_EMBEDDING_DIM) -> List[float]:
    """
    Deterministic bag-of-words pseudo-embedding.

    Each word lands in a bucket chosen by its blake2b digest (stable across
    processes, unlike hash()); the vector is L2-normalized.
    """
    vector = np.zeros(dim, dtype=np.float64)
    for word in _WORD.findall(text.lower()):
        digest = hashlib.blake2b(word.encode("utf-8"), digest_size=8).digest()
        value = int.from_bytes(digest, "big")
        bucket = value % dim
        sign = 1.0 if (value >> 63) == 0 else -1.0
        vector[bucket] += sign
    norm = np.linalg.norm(vector)
    if norm > 0:
        vector = vector / norm
    return vector.tolist()


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine of two vectors; 0.0 for empty, zero or mismatched vectors."""
    if len(a) == 0 or len(b) == 0 or len(a) != len(b):
        return 0.0
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    norm_a = np.linalg.norm(va)
    norm_b = np.linalg.norm(vb)
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return float(np.dot(va, vb) / (norm_a * norm_b))


class EmbeddingClient:
    """Embedding endpoint client with cache and hash fallback."""

    def __init__(
        self,
        base_url: str = "http://localhost:11434",
        model: str = "nomic-embed-text",
        timeout: float = 30.0,
        cache: Optional[SmartCache] = None,
        http: Optional[ProviderHttpClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.cache = cache or SmartCache(CacheConfig(max_size_mb=20, default_ttl_minutes=24 * 60), name="embeddings")
        self.http = http or ProviderHttpClient(
            "embeddings",
            timeout=timeout,
            retry_policy=RetryPolicy(RetryConfig(max_retries=0)),
        )
        self.fallback_count = 0

    async def close(self) -> None:
        await self.http.close()

    async def embed(self, text: str) -> List[float]:
        text = (text or "")[:MAX_EMBED_CHARS]
        cache_key = f"{self.model}:{text}"

        cached = await self.cache.get(cache_key)
        if cached is not None:
            return cached

        try:
            data = await self.http.post_json(
                f"{self.base_url}/api/embeddings",
                {"model": self.model, "prompt": text},
            )
            embedding = data.get("embedding") if isinstance(data, dict) else None
            if not embedding:
                raise ValueError("response carried no embedding")
            vector = [float(x) for x in embedding]
        except Exception as e:
            self.fallback_count += 1
            logger.debug(f"Embedding endpoint failed ({e}), using hash embedding")
            vector = hash_embedding(text)

        await self.cache.set(cache_key, vector, ttl=EMBEDDING_CACHE_TTL)
        return vector

    async def similarity(self, a: str, b: str) -> float:
        return cosine_similarity(await self.embed(a), await self.embed(b))
