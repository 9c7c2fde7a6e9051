"""
Shared fixtures for the scrape_embed test modules.

Providers are faked in-process; nothing here touches the network.
"""

import pytest

from scrape_embed.cache import reset_default_cache
from scrape_embed.exceptions import ProviderError
from scrape_embed.schemas import EmbeddingUsage, EmbedResponse


class FakeProvider:
    """
    Deterministic embedding provider.

    Each text maps to [len(text), number of words, 1.0] so tests can predict
    vectors. `fail_times` makes the first N calls raise a retryable error;
    `fail_status` makes every call raise with that HTTP status.
    """

    def __init__(self, name="fake", fail_times=0, fail_status=None, usage_tokens=None):
        self.name = name
        self.calls = []
        self.fail_times = fail_times
        self.fail_status = fail_status
        self.usage_tokens = usage_tokens

    async def embed(self, texts, request):
        self.calls.append(list(texts))

        if self.fail_status is not None:
            raise ProviderError(
                f"HTTP {self.fail_status}",
                provider=self.name,
                status_code=self.fail_status,
                retryable=self.fail_status in (429, 500, 502, 503, 504),
            )
        if self.fail_times > 0:
            self.fail_times -= 1
            raise ProviderError("temporarily unavailable", provider=self.name, retryable=True)

        usage = None
        if self.usage_tokens is not None:
            usage = EmbeddingUsage(prompt_tokens=self.usage_tokens, total_tokens=self.usage_tokens)

        return EmbedResponse(
            embeddings=[[float(len(t)), float(len(t.split())), 1.0] for t in texts],
            usage=usage,
        )


class FakeClock:
    """Manually advanced monotonic clock (seconds)."""

    def __init__(self, start=1000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture(autouse=True)
def clean_default_cache():
    """Every test starts and ends with an empty process-wide cache."""
    reset_default_cache()
    yield
    reset_default_cache()


@pytest.fixture
def fake_provider():
    return FakeProvider()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def article_text():
    return (
        "Embedding pipelines turn cleaned page text into vectors. "
        "Each chunk is embedded separately and the vectors are combined. "
        "Identical content under identical settings is served from the cache."
    )
