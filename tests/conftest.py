"""Shared fixtures and fakes for the project search tests."""

import asyncio
from types import SimpleNamespace
from typing import List
from unittest.mock import AsyncMock

import httpx
import numpy as np
import openai
import pytest

from jira_mcp_server.embeddings import EmbeddingClient, EmbeddingConfig
from jira_mcp_server.projects_cache import Project
from jira_mcp_server.transliterate import transliterate

LETTERS = "abcdefghijklmnopqrstuvwxyz"
FAKE_DIMENSIONS = len(LETTERS)

REQUEST = httpx.Request("POST", "https://api.example.com/v1/embeddings")


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeCatalog:
    """Upstream project source with call counting and failure injection."""

    def __init__(self, projects: List[Project], delay: float = 0.0):
        self.projects = list(projects)
        self.delay = delay
        self.calls = 0
        self.error = None

    async def fetch(self) -> List[Project]:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return list(self.projects)


def letter_vector(text: str) -> List[float]:
    """Bag-of-letters embedding of the Latin spelling of a text."""
    counts = [0.0] * FAKE_DIMENSIONS
    for ch in transliterate(text):
        index = LETTERS.find(ch)
        if index >= 0:
            counts[index] += 1.0
    return counts


def make_openai_client(embed=letter_vector, error=None):
    """Stand-in for AsyncOpenAI exposing ``embeddings.create``."""

    async def create(input, model, dimensions, encoding_format):
        if error is not None:
            raise error
        return SimpleNamespace(
            data=[SimpleNamespace(index=i, embedding=embed(text)) for i, text in enumerate(input)],
            usage=SimpleNamespace(total_tokens=sum(len(text) for text in input)),
        )

    client = SimpleNamespace(
        embeddings=SimpleNamespace(create=AsyncMock(side_effect=create)),
        close=AsyncMock(),
    )
    return client


def auth_error() -> openai.AuthenticationError:
    return openai.AuthenticationError(
        "invalid api key", response=httpx.Response(401, request=REQUEST), body=None
    )


def rate_limit_error() -> openai.RateLimitError:
    return openai.RateLimitError(
        "rate limit exceeded", response=httpx.Response(429, request=REQUEST), body=None
    )


def make_embedding_client(openai_client=None, **overrides) -> EmbeddingClient:
    settings = {"api_key": "test-key", "dimensions": FAKE_DIMENSIONS}
    settings.update(overrides)
    return EmbeddingClient(EmbeddingConfig(**settings), client=openai_client or make_openai_client())


def unit(values) -> np.ndarray:
    vector = np.asarray(values, dtype=np.float32)
    return vector / np.linalg.norm(vector)


@pytest.fixture
def projects() -> List[Project]:
    return [
        Project("MOSK", "Москва"),
        Project("AITECH", "AI Tech Platform"),
        Project("CRM", "Customer Relations"),
        Project("BILLING", "Billing Service", description="Invoices and payments"),
        Project("DEVOPS", "Инфраструктура"),
    ]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def catalog(projects) -> FakeCatalog:
    return FakeCatalog(projects)
