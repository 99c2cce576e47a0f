"""
Embedding generators.

The store treats the generator as a black box: same text in, a
fixed-length vector usable for cosine similarity out.  Three providers
ship with the package:

- ``ollama``  — local Ollama server over HTTP (``/api/embed``)
- ``openai``  — OpenAI Embeddings API (``pip install 'workstore[semantic]'``)
- ``hashing`` — deterministic offline feature hashing, no model needed

Every provider raises :class:`~workstore.errors.EmbeddingError` when it
cannot produce a vector; callers decide whether that is fatal.
"""

from __future__ import annotations

import hashlib
import logging
import math
import os
import random
import re
import time
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Optional

import requests

from ..errors import EmbeddingError

if TYPE_CHECKING:
    from ..config import Config

logger = logging.getLogger(__name__)

_TOKEN_RE = re.compile(r"[a-z0-9]+")


class EmbeddingProvider(ABC):
    """Base class with retry and jittered exponential back-off."""

    def __init__(self, model: str, dimensions: int = 0,
                 max_retries: int = 3, retry_delay: float = 1.0) -> None:
        self.model = model
        self._dimensions = dimensions
        self.max_retries = max(1, max_retries)
        self.retry_delay = retry_delay

    @property
    def model_name(self) -> str:
        return self.model

    @property
    def dimensions(self) -> int:
        """Vector length; 0 until the first vector is seen for remote models."""
        return self._dimensions

    def embed(self, text: str) -> list[float]:
        """Embed *text*, retrying transient failures.

        An :class:`EmbeddingError` raised by the provider itself (missing
        package, missing key, empty vector) is not retried.

        Raises
        ------
        EmbeddingError
            If every attempt fails or the provider returns an empty vector.
        """
        last_error: Exception | None = None
        for attempt in range(1, self.max_retries + 1):
            try:
                vector = self._embed(text)
                if not vector:
                    raise EmbeddingError(f"{self.model} returned an empty vector")
                self._dimensions = len(vector)
                return vector
            except EmbeddingError:
                raise
            except Exception as exc:
                last_error = exc
                if attempt < self.max_retries:
                    wait = self.retry_delay * (2 ** (attempt - 1))
                    jitter = wait * 0.1 * random.random()
                    logger.warning(
                        "Embedding error (attempt %d/%d): %s, retrying in %.1fs",
                        attempt, self.max_retries, exc, wait + jitter,
                    )
                    time.sleep(wait + jitter)

        raise EmbeddingError(
            f"Embedding failed after {self.max_retries} attempts: {last_error}",
            model=self.model,
        ) from last_error

    @abstractmethod
    def _embed(self, text: str) -> list[float]:
        """Produce one vector; may raise on failure."""


class OllamaEmbeddingProvider(EmbeddingProvider):
    """Embeddings from a local Ollama server."""

    def __init__(self, base_url: str, model: str, timeout: float = 30.0,
                 **kwargs) -> None:
        super().__init__(model, **kwargs)
        # Accept either the server root or a full /api/... endpoint
        if "/api/" in base_url:
            self._api_root = base_url.rsplit("/api/", 1)[0]
        else:
            self._api_root = base_url.rstrip("/")
        self.timeout = timeout

    def _embed(self, text: str) -> list[float]:
        url = f"{self._api_root}/api/embed"
        payload = {"model": self.model, "input": text}
        response = requests.post(url, json=payload, timeout=(10, self.timeout))
        response.raise_for_status()
        data = response.json()
        embeddings = data.get("embeddings") or [[]]
        logger.debug("[Ollama] Embedded %d chars", len(text))
        return embeddings[0]


class OpenAIEmbeddingProvider(EmbeddingProvider):
    """Embeddings from the OpenAI Embeddings API."""

    def __init__(self, model: str = "text-embedding-3-small",
                 api_key: Optional[str] = None,
                 base_url: Optional[str] = None,
                 timeout: float = 30.0, **kwargs) -> None:
        super().__init__(model, **kwargs)
        self._api_key = api_key or os.environ.get("OPENAI_API_KEY", "")
        self._base_url = base_url
        self.timeout = timeout
        self._client = None

    def _get_client(self):
        if self._client is None:
            try:
                import openai  # type: ignore
            except ImportError as exc:
                raise EmbeddingError(
                    "openai package is required for the openai provider. "
                    "Install it with: pip install 'workstore[semantic]'"
                ) from exc
            if not self._api_key:
                raise EmbeddingError("OPENAI_API_KEY is not set")
            self._client = openai.OpenAI(
                api_key=self._api_key, base_url=self._base_url,
                timeout=self.timeout,
            )
        return self._client

    def _embed(self, text: str) -> list[float]:
        response = self._get_client().embeddings.create(model=self.model, input=text)
        return list(response.data[0].embedding)


class HashingEmbeddingProvider(EmbeddingProvider):
    """Deterministic local embedder using signed feature hashing.

    Word tokens land in ``dimensions`` buckets chosen by a SHA-256 digest;
    the result is L2-normalised.  Texts sharing words get positive cosine
    similarity, which is enough for offline use and for tests.
    """

    def __init__(self, dimensions: int = 384, **kwargs) -> None:
        if dimensions <= 0:
            raise ValueError("dimensions must be > 0")
        super().__init__("hashing-v1", dimensions=dimensions, **kwargs)

    def _embed(self, text: str) -> list[float]:
        vec = [0.0] * self._dimensions
        for token in _TOKEN_RE.findall(text.lower()):
            digest = hashlib.sha256(token.encode("utf-8")).digest()
            bucket = int.from_bytes(digest[:8], "big") % self._dimensions
            sign = -1.0 if digest[8] & 1 else 1.0
            vec[bucket] += sign

        norm = math.sqrt(sum(v * v for v in vec))
        if norm == 0.0:
            # empty text still needs a usable (non-zero) vector
            vec[0] = 1.0
            return vec
        return [v / norm for v in vec]


def create_embedding_provider(config: "Config") -> EmbeddingProvider:
    """Build the provider named by ``config.EMBEDDING_PROVIDER``."""
    name = config.EMBEDDING_PROVIDER
    common = {"max_retries": config.EMBEDDING_MAX_RETRIES}
    if name == "ollama":
        return OllamaEmbeddingProvider(
            base_url=config.OLLAMA_BASE_URL,
            model=config.EMBEDDING_MODEL,
            timeout=config.EMBEDDING_TIMEOUT,
            **common,
        )
    if name == "openai":
        return OpenAIEmbeddingProvider(
            model=config.EMBEDDING_MODEL,
            api_key=config.OPENAI_API_KEY,
            base_url=config.OPENAI_BASE_URL,
            timeout=config.EMBEDDING_TIMEOUT,
            **common,
        )
    if name == "hashing":
        return HashingEmbeddingProvider(dimensions=config.EMBEDDING_DIMENSIONS,
                                        **common)
    raise ValueError(
        f"Unknown embedding provider '{name}'. "
        "Expected one of: ollama, openai, hashing"
    )
