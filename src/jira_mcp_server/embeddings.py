"""
Embedding Client

Wraps an OpenAI-compatible embeddings endpoint for project search:
- batches texts under a token budget (cheap length-based estimate)
- emits a null vector for any single text larger than the budget
- turns provider failures into null vectors so search can fall back to
  lexical matching
"""

import asyncio
import logging
import math
from dataclasses import dataclass
from typing import AsyncIterator, Awaitable, Callable, Iterable, List, Optional, Tuple, TypeVar

import numpy as np
import openai
from openai import AsyncOpenAI
from pydantic import BaseModel, Field

from .errors import EmbeddingUnavailableError, OversizedInputError

logger = logging.getLogger(__name__)

T = TypeVar("T")

EmbedBatch = Callable[[List[str]], Awaitable[List[Optional[np.ndarray]]]]

DEFAULT_EMBEDDING_MODEL = "text-embedding-3-large"
DEFAULT_EMBEDDING_DIMENSIONS = 1536
DEFAULT_BATCH_TOKEN_LIMIT = 8000


class EmbeddingConfig(BaseModel):
    """Configuration for the embedding provider."""
    api_key: Optional[str] = Field(None, description="Embedding provider API key")
    base_url: Optional[str] = Field(None, description="Base URL of an OpenAI-compatible API")
    model: str = Field(DEFAULT_EMBEDDING_MODEL, description="Embedding model name")
    dimensions: int = Field(DEFAULT_EMBEDDING_DIMENSIONS, description="Embedding vector dimension")
    batch_token_limit: int = Field(DEFAULT_BATCH_TOKEN_LIMIT, description="Token budget per request")
    timeout: float = Field(30.0, description="Request timeout in seconds")


@dataclass
class EmbeddingResult:
    """Vectors in input order plus provider usage."""
    vectors: List[Optional[np.ndarray]]
    total_tokens: int
    model: str


def estimate_tokens(text: str) -> int:
    """Approximate token count: one token per two characters."""
    return math.ceil(len(text) / 2) if text else 0


def check_budget(tokens: int, limit: int) -> None:
    if tokens > limit:
        raise OversizedInputError(
            f"Text of ~{tokens} tokens exceeds batch budget of {limit}", tokens, limit
        )


async def _flush(
    embed_batch: EmbedBatch,
    items: List[T],
    texts: List[str]
) -> List[Tuple[T, Optional[np.ndarray]]]:
    vectors = await embed_batch(texts)
    logger.debug(f"Got {len(vectors)} embeddings for {len(items)} items")
    return [
        (item, vectors[i] if i < len(vectors) else None)
        for i, item in enumerate(items)
    ]


async def fill_embeddings(
    items: Iterable[T],
    embed_batch: EmbedBatch,
    batch_token_limit: int = DEFAULT_BATCH_TOKEN_LIMIT,
    text_of: Callable[[T], str] = str,
    token_counter: Callable[[str], int] = estimate_tokens
) -> AsyncIterator[Tuple[T, Optional[np.ndarray]]]:
    """
    Embed items in batches that stay under a token budget.

    Oversized items are yielded immediately with a None vector; the batch
    being assembled is unaffected.

    Args:
        items: Items to embed
        embed_batch: Coroutine embedding a list of texts
        batch_token_limit: Maximum estimated tokens per batch
        text_of: Extracts the text of an item
        token_counter: Token estimator

    Yields:
        (item, vector or None) pairs
    """
    batch_items: List[T] = []
    batch_texts: List[str] = []
    total_tokens = 0

    for item in items:
        text = text_of(item) or ""
        tokens = token_counter(text)

        try:
            check_budget(tokens, batch_token_limit)
        except OversizedInputError as e:
            logger.warning(f"Skipping embedding: {e.message}")
            yield item, None
            continue

        if batch_items and total_tokens + tokens > batch_token_limit:
            for pair in await _flush(embed_batch, batch_items, batch_texts):
                yield pair
            batch_items, batch_texts, total_tokens = [], [], 0

        batch_items.append(item)
        batch_texts.append(text)
        total_tokens += tokens

    if batch_items:
        for pair in await _flush(embed_batch, batch_items, batch_texts):
            yield pair


class EmbeddingClient:
    """
    Asynchronous embedding client.

    Failures never propagate out of :meth:`embed`. Authentication,
    permission and missing-model errors mark the client unavailable so
    callers can stop trying for the rest of the session.
    """

    def __init__(self, config: EmbeddingConfig, client: Optional[AsyncOpenAI] = None):
        self.config = config
        self._client = client
        self.unavailable_reason: Optional[str] = None
        self.total_tokens = 0

    @property
    def is_available(self) -> bool:
        return self.unavailable_reason is None

    @property
    def dimensions(self) -> int:
        return self.config.dimensions

    def _get_client(self) -> AsyncOpenAI:
        """Lazy initialization of the OpenAI client."""
        if self._client is None:
            if not self.config.api_key:
                raise EmbeddingUnavailableError(
                    "Embedding API key is required", retryable=False, reason="misconfigured"
                )
            kwargs = {"api_key": self.config.api_key}
            if self.config.base_url:
                kwargs["base_url"] = self.config.base_url
            self._client = AsyncOpenAI(**kwargs)
        return self._client

    async def get_embeddings(self, texts: List[str]) -> EmbeddingResult:
        """
        Embed texts in a single provider call.

        Blank texts are not sent and map to None.

        Raises:
            EmbeddingUnavailableError: The provider call failed
        """
        model = self.config.model
        if not texts:
            return EmbeddingResult(vectors=[], total_tokens=0, model=model)

        stripped = [t.strip() if t else "" for t in texts]
        valid = [t for t in stripped if t]
        if not valid:
            return EmbeddingResult(vectors=[None] * len(texts), total_tokens=0, model=model)

        client = self._get_client()
        try:
            response = await asyncio.wait_for(
                client.embeddings.create(
                    input=valid,
                    model=model,
                    dimensions=self.config.dimensions,
                    encoding_format="float",
                ),
                self.config.timeout,
            )
        except asyncio.TimeoutError as e:
            raise EmbeddingUnavailableError(
                f"Embedding request timed out after {self.config.timeout}s",
                original_error=e, reason="timeout"
            ) from e
        except openai.AuthenticationError as e:
            raise EmbeddingUnavailableError(
                f"Embedding provider rejected credentials: {e}",
                retryable=False, original_error=e, reason="unauthorized"
            ) from e
        except openai.PermissionDeniedError as e:
            raise EmbeddingUnavailableError(
                f"Embedding provider denied access: {e}",
                retryable=False, original_error=e, reason="forbidden"
            ) from e
        except openai.NotFoundError as e:
            raise EmbeddingUnavailableError(
                f"Embedding model {model} not found: {e}",
                retryable=False, original_error=e, reason="model_not_found"
            ) from e
        except openai.RateLimitError as e:
            raise EmbeddingUnavailableError(
                f"Embedding provider rate limit: {e}", original_error=e, reason="rate_limited"
            ) from e
        except openai.APIConnectionError as e:
            raise EmbeddingUnavailableError(
                f"Embedding provider unreachable: {e}", original_error=e, reason="unreachable"
            ) from e
        except openai.APIError as e:
            raise EmbeddingUnavailableError(
                f"Embedding provider error: {e}", original_error=e, reason="provider_error"
            ) from e

        by_index = {
            item.index: np.asarray(item.embedding, dtype=np.float32)
            for item in response.data
        }

        vectors: List[Optional[np.ndarray]] = []
        valid_index = 0
        for text in stripped:
            if text:
                vectors.append(by_index.get(valid_index))
                valid_index += 1
            else:
                vectors.append(None)

        usage = getattr(response, "usage", None)
        total_tokens = getattr(usage, "total_tokens", 0) or 0
        self.total_tokens += total_tokens

        return EmbeddingResult(vectors=vectors, total_tokens=total_tokens, model=model)

    async def embed_batch(self, texts: List[str]) -> List[Optional[np.ndarray]]:
        """Embed one batch; any failure yields None for every text."""
        if not self.is_available:
            return [None] * len(texts)

        try:
            result = await self.get_embeddings(texts)
        except EmbeddingUnavailableError as e:
            if not e.retryable:
                self.unavailable_reason = e.reason
                logger.warning(f"Embeddings disabled for this session ({e.reason}): {e.message}")
            else:
                logger.warning(f"Embedding batch of {len(texts)} texts failed: {e.message}")
            return [None] * len(texts)

        return result.vectors

    async def embed(self, texts: List[str]) -> List[Optional[np.ndarray]]:
        """
        Embed texts of any count, batching under the token budget.

        Returns:
            One vector or None per input text, in input order
        """
        vectors: List[Optional[np.ndarray]] = [None] * len(texts)
        async for (index, _), vector in fill_embeddings(
            list(enumerate(texts)),
            self.embed_batch,
            self.config.batch_token_limit,
            text_of=lambda pair: pair[1],
        ):
            vectors[index] = vector
        return vectors

    async def embed_one(self, text: str) -> Optional[np.ndarray]:
        vectors = await self.embed([text])
        return vectors[0]

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None
