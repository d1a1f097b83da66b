"""Embedding providers, the batching client, and vector (de)serialization."""

from __future__ import annotations

import asyncio
import hashlib
import logging
import math
import re
import sys
from array import array
from dataclasses import dataclass, field
from typing import Protocol, Sequence

import httpx

from study_grounding.core.config import Settings
from study_grounding.core.errors import DimensionMismatchError, EmbeddingProviderError
from study_grounding.core.metrics import EMBEDDING_REQUESTS, EMBEDDING_TOKENS

logger = logging.getLogger(__name__)

_TOKEN_RE = re.compile(r"\w+")
_FLOAT_BYTES = 4


@dataclass(slots=True)
class ProviderResponse:
    vectors: list[list[float]]
    total_tokens: int = 0


@dataclass(slots=True)
class EmbeddingUsage:
    total_tokens: int = 0


@dataclass(slots=True)
class BatchEmbeddingResult:
    embeddings: list[list[float]]
    usage: EmbeddingUsage = field(default_factory=EmbeddingUsage)


class EmbeddingProvider(Protocol):
    """One round-trip to an embedding backend; batching happens in the client."""

    name: str

    async def embed(self, texts: Sequence[str]) -> ProviderResponse:  # pragma: no cover - interface
        ...


class VoyageEmbeddingProvider:
    """HTTP provider speaking the Voyage AI ``/embeddings`` API."""

    name = "voyage"

    def __init__(
        self,
        api_key: str | None,
        model: str,
        base_url: str = "https://api.voyageai.com/v1",
        timeout: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not api_key:
            raise ValueError("An embedding API key is required for the voyage backend (set SGR_EMBEDDING_API_KEY)")
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._api_key = api_key
        self._transport = transport

    async def embed(self, texts: Sequence[str]) -> ProviderResponse:
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            response = await client.post(
                f"{self.base_url}/embeddings",
                headers={"Authorization": f"Bearer {self._api_key}"},
                json={"input": list(texts), "model": self.model},
            )
        response.raise_for_status()
        payload = response.json()
        data = payload.get("data") or []
        if len(data) != len(texts):
            raise EmbeddingProviderError("Mismatch between input batch size and embedding response")
        ordered = sorted(data, key=lambda item: item.get("index", 0))
        vectors: list[list[float]] = []
        for item in ordered:
            vector = item.get("embedding")
            if not vector:
                raise EmbeddingProviderError("Missing embedding in batch response item")
            vectors.append([float(value) for value in vector])
        usage = payload.get("usage") or {}
        return ProviderResponse(vectors=vectors, total_tokens=int(usage.get("total_tokens") or 0))


class HashedEmbeddingProvider:
    """Deterministic bag-of-words vectors; no network, used offline and in tests."""

    name = "hashed"

    def __init__(self, dim: int = 1536) -> None:
        self.dim = dim

    async def embed(self, texts: Sequence[str]) -> ProviderResponse:
        vectors: list[list[float]] = []
        total_tokens = 0
        for text in texts:
            tokens = _tokenize(text)
            total_tokens += len(tokens)
            vector = [0.0] * self.dim
            for token in tokens:
                vector[_hash_token(token, self.dim)] += 1.0
            _normalize(vector)
            vectors.append(vector)
        return ProviderResponse(vectors=vectors, total_tokens=total_tokens)


class EmbeddingClient:
    """Batches texts to a provider and enforces the configured dimensionality."""

    def __init__(
        self,
        provider: EmbeddingProvider,
        dim: int,
        batch_size: int = 128,
        max_retries: int = 3,
        retry_delay: float = 1.0,
    ) -> None:
        self.provider = provider
        self.dim = dim
        self.batch_size = batch_size
        self.max_retries = max_retries
        self.retry_delay = retry_delay

    @classmethod
    def from_settings(cls, settings: Settings) -> "EmbeddingClient":
        provider: EmbeddingProvider
        if settings.embedding_backend == "hashed":
            provider = HashedEmbeddingProvider(dim=settings.embedding_dim)
        else:
            provider = VoyageEmbeddingProvider(
                api_key=settings.embedding_api_key,
                model=settings.embedding_model,
                base_url=settings.embedding_base_url,
                timeout=settings.embedding_timeout,
            )
        return cls(
            provider=provider,
            dim=settings.embedding_dim,
            batch_size=settings.embedding_batch_size,
            max_retries=settings.embedding_max_retries,
            retry_delay=settings.embedding_retry_delay,
        )

    async def generate_embedding(self, text: str) -> list[float]:
        """Embed a single text (the query path)."""
        try:
            result = await self._with_retries(self._embed_all, [text])
        except EmbeddingProviderError as exc:
            raise EmbeddingProviderError(f"Embedding generation failed: {exc}") from exc
        if not result.embeddings:
            raise EmbeddingProviderError("Embedding generation failed: no embedding returned")
        return result.embeddings[0]

    async def generate_batch_embeddings(self, texts: Sequence[str]) -> BatchEmbeddingResult:
        """Embed all texts, splitting into provider-sized batches.

        Either every text gets a vector or the call raises; partial results are
        never returned.
        """
        if not texts:
            return BatchEmbeddingResult(embeddings=[])
        try:
            return await self._with_retries(self._embed_all, list(texts))
        except EmbeddingProviderError as exc:
            raise EmbeddingProviderError(f"Batch embedding generation failed: {exc}") from exc

    async def _embed_all(self, texts: list[str]) -> BatchEmbeddingResult:
        embeddings: list[list[float]] = []
        total_tokens = 0
        for start in range(0, len(texts), self.batch_size):
            batch = texts[start : start + self.batch_size]
            response = await self.provider.embed(batch)
            if len(response.vectors) != len(batch):
                raise EmbeddingProviderError("Mismatch between input batch size and embedding response")
            for vector in response.vectors:
                if len(vector) != self.dim:
                    raise DimensionMismatchError(
                        f"Embedding has {len(vector)} dimensions, expected {self.dim}"
                    )
            embeddings.extend(response.vectors)
            total_tokens += response.total_tokens
        EMBEDDING_TOKENS.labels(backend=self.provider.name).inc(total_tokens)
        return BatchEmbeddingResult(embeddings=embeddings, usage=EmbeddingUsage(total_tokens=total_tokens))

    async def _with_retries(self, func, texts: list[str]) -> BatchEmbeddingResult:
        attempts = self.max_retries + 1
        last_error: Exception | None = None
        for attempt in range(1, attempts + 1):
            try:
                result = await func(texts)
            except DimensionMismatchError:
                EMBEDDING_REQUESTS.labels(backend=self.provider.name, outcome="error").inc()
                raise
            except (httpx.HTTPError, EmbeddingProviderError, ValueError) as exc:
                last_error = exc
                EMBEDDING_REQUESTS.labels(backend=self.provider.name, outcome="error").inc()
                if attempt < attempts:
                    logger.warning(
                        "Embedding request failed, retrying (%s attempts left): %s",
                        attempts - attempt,
                        exc,
                    )
                    await asyncio.sleep(self.retry_delay)
                continue
            EMBEDDING_REQUESTS.labels(backend=self.provider.name, outcome="ok").inc()
            return result
        logger.error("Embedding request failed after %s attempts: %s", attempts, last_error)
        raise EmbeddingProviderError(str(last_error)) from last_error


def serialize_embedding(vector: Sequence[float]) -> bytes:
    """Pack a vector as little-endian float32."""
    arr = array("f", vector)
    if sys.byteorder == "big":
        arr.byteswap()
    return arr.tobytes()


def deserialize_embedding(data: bytes | bytearray | memoryview) -> list[float]:
    """Inverse of :func:`serialize_embedding`."""
    raw = bytes(data)
    if len(raw) % _FLOAT_BYTES:
        raise ValueError(f"Embedding byte length {len(raw)} is not a multiple of {_FLOAT_BYTES}")
    arr = array("f")
    arr.frombytes(raw)
    if sys.byteorder == "big":
        arr.byteswap()
    return arr.tolist()


def _tokenize(text: str) -> list[str]:
    return _TOKEN_RE.findall(text.lower())


def _hash_token(token: str, dim: int) -> int:
    digest = hashlib.blake2b(token.encode("utf-8"), digest_size=8).digest()
    return int.from_bytes(digest, "big") % dim


def _normalize(vector: list[float]) -> None:
    norm = math.sqrt(sum(value * value for value in vector))
    if norm == 0:
        return
    inv = 1.0 / norm
    for idx, value in enumerate(vector):
        vector[idx] = value * inv


__all__ = [
    "BatchEmbeddingResult",
    "EmbeddingUsage",
    "EmbeddingProvider",
    "ProviderResponse",
    "VoyageEmbeddingProvider",
    "HashedEmbeddingProvider",
    "EmbeddingClient",
    "serialize_embedding",
    "deserialize_embedding",
]
