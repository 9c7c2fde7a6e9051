"""
Tests for the embedding side of scrape_embed.

Covers the building blocks (chunking, aggregation, redaction, cache, input
selection), the provider adapters and the end-to-end pipeline. Providers are
faked or driven through httpx.MockTransport; no test touches the network.
"""

import asyncio
import json
from types import SimpleNamespace

import httpx
import pytest
from pydantic import ValidationError

from conftest import FakeProvider
from scrape_embed.aggregation import (
    aggregate_vectors,
    cosine_similarity,
    dot_product,
    euclidean_distance,
    get_dimensions,
    normalize_vector,
)
from scrape_embed.cache import (
    InMemoryEmbeddingCache,
    NoOpEmbeddingCache,
    generate_cache_key,
    generate_checksum,
    get_default_cache,
    reset_default_cache,
    validate_cached_result,
)
from scrape_embed.chunking import (
    chunk_text,
    collapse_whitespace,
    estimate_tokens,
    get_chunking_stats,
    needs_chunking,
)
from scrape_embed.config import ProviderSettings
from scrape_embed.exceptions import (
    ConfigurationError,
    ProviderError,
    ProviderTimeoutError,
    ResponseValidationError,
    UpstreamError,
)
from scrape_embed.input import preview_input, select_input, validate_input
from scrape_embed.pipeline import embed, generate_embeddings
from scrape_embed.providers import (
    HttpEmbeddingProvider,
    create_azure_embedding,
    create_cohere_embedding,
    create_embedding_provider,
    create_embedding_provider_from_env,
    create_huggingface_embedding,
    create_ollama_embedding,
    create_openai_embedding,
    get_provider_cache_key,
    is_private_host,
    validate_embed_response,
    validate_url,
)
from scrape_embed.redactor import REDACTED, contains_pii, create_pii_redactor, redact_pii
from scrape_embed.resilience import CircuitBreaker, RateLimiter
from scrape_embed.schemas import (
    CacheConfig,
    ChunkingConfig,
    CircuitBreakerConfig,
    EmbeddingOptions,
    EmbeddingSource,
    EmbeddingSuccessMultiple,
    EmbeddingSuccessSingle,
    EmbedRequest,
    EmbedResponse,
    HttpEmbeddingConfig,
    HttpProviderConfig,
    InputConfig,
    PiiRedactionConfig,
    RateLimitConfig,
    ResilienceConfig,
    ResilienceState,
    RetryConfig,
    SafetyConfig,
    ScrapedData,
)


LONG_TEXT = " ".join(f"Sentence number {i} talks about embeddings." for i in range(40))

NO_WAIT_RETRY = RetryConfig(max_attempts=2, backoff_seconds=0)


def _single(vector, chunks=1):
    return EmbeddingSuccessSingle(
        aggregation="average",
        vector=vector,
        source=EmbeddingSource(chunks=chunks, tokens=3, checksum="abc", latency_ms=1.0),
    )


# --- Chunking ---

def test_chunk_text_respects_max_input_length():
    chunks = chunk_text("a" * 10000, ChunkingConfig(max_input_length=1000))

    assert sum(len(c.text) for c in chunks) <= 1000


def test_chunk_text_blank_input():
    assert chunk_text("") == []
    assert chunk_text(" \n\t ") == []


def test_chunk_text_short_input_is_one_chunk():
    chunks = chunk_text("Short   text\nwith   spaces.")

    assert len(chunks) == 1
    assert chunks[0].text == "Short text with spaces."
    assert (chunks[0].start_index, chunks[0].end_index) == (0, len(chunks[0].text))


def test_chunk_text_splits_with_overlap_at_word_boundaries():
    config = ChunkingConfig(size=100, overlap=10)
    normalized = collapse_whitespace(LONG_TEXT)

    chunks = chunk_text(LONG_TEXT, config)

    assert len(chunks) > 1
    assert chunks[0].start_index == 0
    assert chunks[-1].end_index == len(normalized)
    for previous, chunk in zip(chunks, chunks[1:]):
        assert chunk.start_index > previous.start_index
        assert chunk.start_index <= previous.end_index
        assert normalized[chunk.start_index - 1] == " "
    for chunk in chunks:
        assert len(chunk.text) <= 400
        assert chunk.text == normalized[chunk.start_index:chunk.end_index].strip()


def test_chunk_text_overlap_larger_than_size_still_progresses():
    chunks = chunk_text(LONG_TEXT, ChunkingConfig(size=10, overlap=50))

    assert len(chunks) > 1
    assert chunks[-1].end_index == len(collapse_whitespace(LONG_TEXT))


def test_chunk_text_custom_tokenizer():
    chunks = chunk_text("one two three four", ChunkingConfig(tokenizer=lambda text: len(text.split())))

    assert chunks[0].tokens == 4


def test_chunking_helpers():
    assert estimate_tokens("abcd") == 1
    assert estimate_tokens("abcde") == 2
    assert needs_chunking("a" * 2004, max_tokens=500) is True
    assert needs_chunking("a" * 2000, max_tokens=500) is False

    stats = get_chunking_stats("a" * 10000)
    assert stats.input_length == 10000
    assert stats.estimated_tokens == 2500
    assert stats.estimated_chunks == 6
    assert stats.will_truncate is False


# --- Aggregation ---

def test_aggregate_average():
    result = aggregate_vectors([[1, 2], [3, 4]], "average")

    assert result.type == "single"
    assert result.vector == [2, 3]
    assert result.dimensions == 2


def test_aggregate_other_strategies():
    vectors = [[1, 5], [3, 4]]

    assert aggregate_vectors(vectors, "max").vector == [3, 5]
    assert aggregate_vectors(vectors, "first").vector == [1, 5]

    everything = aggregate_vectors(vectors, "all")
    assert everything.type == "multiple"
    assert everything.vectors == [[1, 5], [3, 4]]


def test_aggregate_rejects_bad_input():
    with pytest.raises(ConfigurationError, match="empty"):
        aggregate_vectors([], "average")
    with pytest.raises(ConfigurationError, match="zero-dimension"):
        aggregate_vectors([[], []], "max")
    with pytest.raises(ConfigurationError, match="expected 2, got 3 at index 1"):
        aggregate_vectors([[1, 2], [1, 2, 3]], "average")
    with pytest.raises(ConfigurationError, match="Unknown aggregation strategy"):
        aggregate_vectors([[1, 2]], "median")


def test_similarity_helpers():
    assert cosine_similarity([1, 0], [0, 1]) == pytest.approx(0.0)
    assert cosine_similarity([1, 2], [2, 4]) == pytest.approx(1.0)
    assert cosine_similarity([0, 0], [1, 1]) == 0.0
    assert euclidean_distance([0, 0], [3, 4]) == pytest.approx(5.0)
    assert dot_product([1, 2], [3, 4]) == pytest.approx(11.0)
    assert normalize_vector([3, 4]) == pytest.approx([0.6, 0.8])
    assert normalize_vector([0, 0]) == [0, 0]
    assert get_dimensions([1.0, 2.0, 3.0]) == 3
    assert get_dimensions([[1.0, 2.0], [3.0, 4.0]]) == 2

    with pytest.raises(ConfigurationError):
        cosine_similarity([1, 2], [1, 2, 3])


# --- Redaction ---

def test_redact_pii_all_detectors():
    result = redact_pii("Contact jane@example.com or 555-123-4567 today.")

    assert result.text == f"Contact {REDACTED} or {REDACTED} today."
    assert result.redacted is True
    assert result.redaction_count == 2
    assert result.redactions_by_type == {"email": 1, "phone": 1}


def test_credit_cards_are_redacted_before_phones():
    redact = create_pii_redactor(PiiRedactionConfig(credit_card=True, phone=True))

    result = redact("Card 4111111111111111 is on file.")

    assert result.text == f"Card {REDACTED} is on file."
    assert result.redactions_by_type == {"credit_card": 1}


def test_redact_ssn_ip_and_custom_patterns():
    redact = create_pii_redactor(PiiRedactionConfig(ssn=True, ip_address=True, custom_patterns=[r"ACME-\d+"]))

    result = redact("SSN 123-45-6789 from 192.168.0.1 about ticket ACME-42.")

    assert result.text == f"SSN {REDACTED} from {REDACTED} about ticket {REDACTED}."
    assert result.redactions_by_type == {"ssn": 1, "ip_address": 1, "custom_0": 1}


def test_redaction_disabled_detectors_leave_text_alone():
    result = create_pii_redactor(PiiRedactionConfig())("Mail jane@example.com")

    assert result.text == "Mail jane@example.com"
    assert result.redacted is False
    assert result.redaction_count == 0


def test_contains_pii():
    assert contains_pii("mail me at a@b.io") is True
    assert contains_pii("nothing personal in here") is False
    assert contains_pii("mail me at a@b.io", email=False) is False

    with pytest.raises(ConfigurationError):
        contains_pii("text", custom_patterns=["("])
    with pytest.raises(ValidationError):
        PiiRedactionConfig(custom_patterns=["("])


# --- Cache ---

def test_cache_key_is_deterministic_and_sensitive():
    base = dict(content="hello world", provider_key="custom:fake")
    key = generate_cache_key(**base)

    assert key == generate_cache_key(**base)
    assert len(key) == 64
    assert key != generate_cache_key(content="hello world!", provider_key="custom:fake")
    assert key != generate_cache_key(**base, model="other-model")
    assert key != generate_cache_key(**base, dimensions=256)
    assert key != generate_cache_key(**base, aggregation="max")
    assert key != generate_cache_key(**base, cache_key_salt="tenant-a")
    assert key != generate_cache_key(**base, chunking=ChunkingConfig(size=100))
    assert generate_cache_key(**base, input_config=InputConfig()) != generate_cache_key(
        **base, input_config=InputConfig(transform=lambda data: data.title)
    )
    assert key != generate_cache_key(
        **base, safety=SafetyConfig(pii_redaction=PiiRedactionConfig(email=True))
    )


def test_checksum_and_cached_result_validation():
    assert len(generate_checksum("abc")) == 16

    assert validate_cached_result(_single([1.0, 2.0]), expected_dimensions=2) is True
    assert validate_cached_result(_single([1.0, 2.0]), expected_dimensions=3) is False
    assert validate_cached_result(_single([1.0, 2.0])) is True

    multiple = EmbeddingSuccessMultiple(
        vectors=[[1.0, 2.0, 3.0]],
        source=EmbeddingSource(chunks=1, tokens=1, checksum="x", latency_ms=0.0),
    )
    assert validate_cached_result(multiple, expected_dimensions=3) is True


@pytest.mark.asyncio
async def test_in_memory_cache_ttl(clock):
    cache = InMemoryEmbeddingCache(ttl_seconds=10, clock=clock)
    await cache.set("k", _single([1.0]))

    clock.advance(10)
    assert await cache.get("k") is not None

    clock.advance(0.1)
    assert await cache.get("k") is None
    assert len(cache) == 0


@pytest.mark.asyncio
async def test_in_memory_cache_evicts_least_recently_used(clock):
    cache = InMemoryEmbeddingCache(max_entries=2, clock=clock)

    await cache.set("a", _single([1.0]))
    clock.advance(1)
    await cache.set("b", _single([2.0]))
    clock.advance(1)
    await cache.get("a")
    clock.advance(1)
    await cache.set("c", _single([3.0]))

    assert await cache.get("a") is not None
    assert await cache.get("b") is None
    assert await cache.get("c") is not None


@pytest.mark.asyncio
async def test_in_memory_cache_overwrite_does_not_evict(clock):
    cache = InMemoryEmbeddingCache(max_entries=2, clock=clock)
    await cache.set("a", _single([1.0]))
    await cache.set("b", _single([2.0]))
    await cache.set("a", _single([9.0]))

    assert (await cache.get("a")).vector == [9.0]
    assert await cache.get("b") is not None


@pytest.mark.asyncio
async def test_in_memory_cache_hits_are_independent_copies(clock):
    cache = InMemoryEmbeddingCache(clock=clock)
    stored = _single([1.0, 2.0])
    await cache.set("k", stored)

    stored.vector.append(99.0)
    hit = await cache.get("k")
    hit.vector[0] = -1.0

    assert (await cache.get("k")).vector == [1.0, 2.0]


@pytest.mark.asyncio
async def test_in_memory_cache_stats_cleanup_delete(clock):
    cache = InMemoryEmbeddingCache(max_entries=4, clock=clock)
    await cache.set("short", _single([1.0]), ttl_seconds=5)
    await cache.set("long", _single([2.0]), ttl_seconds=100)
    clock.advance(6)

    stats = cache.get_stats()
    assert (stats.size, stats.max_entries, stats.expired) == (2, 4, 1)
    assert stats.utilization == 0.5

    assert cache.cleanup() == 1
    assert len(cache) == 1
    assert await cache.delete("long") is True
    assert await cache.delete("long") is False

    await cache.set("x", _single([1.0]))
    await cache.clear()
    assert len(cache) == 0


@pytest.mark.asyncio
async def test_no_op_cache():
    cache = NoOpEmbeddingCache()
    await cache.set("k", _single([1.0]))

    assert await cache.get("k") is None
    assert await cache.delete("k") is False


def test_default_cache_singleton_and_reset():
    cache = get_default_cache()
    assert get_default_cache() is cache

    reset_default_cache()
    assert get_default_cache() is not cache


# --- Input selection ---

def test_select_input_text_content_fallbacks():
    assert select_input({"text_content": "  Plain\x00 text   here  "}) == "Plain text here"
    assert select_input(
        ScrapedData(content="# Title\n\nSome **bold** and [link](http://x.io) text")
    ) == "Title\n\nSome bold and link text"
    assert select_input({"excerpt": "An excerpt.", "description": "A description."}) == "An excerpt."
    assert select_input({"description": "A description."}) == "A description."
    assert select_input({}) is None


def test_select_input_title_summary_transform_and_custom():
    data = ScrapedData(title="Release notes", summary="Parsing is faster now.", text_content="Body text.")

    assert select_input(data, InputConfig(type="title_summary")) == "Release notes\n\nParsing is faster now."
    assert select_input(data, InputConfig(transform=lambda d: d.title.upper())) == "RELEASE NOTES"
    assert select_input(data, InputConfig(type="custom", custom_text="Given text")) == "Given text"
    assert select_input(data, InputConfig(type="custom")) == "Body text."


def test_validate_input_reasons():
    assert validate_input(None).reason == "No input text available"
    assert validate_input("short").reason == "Input too short (5 < 10 characters)"
    assert validate_input("a b c d e f g h i j k").reason == "Input has too few words (0 < 3)"

    valid = validate_input("Three real words here")
    assert valid.valid is True
    assert valid.word_count == 4
    assert valid.char_count == len("Three real words here")


def test_preview_input():
    assert preview_input({}) == "[No input available]"
    assert preview_input({"text_content": "x" * 300}) == "x" * 200 + "..."
    assert preview_input({"text_content": "short"}) == "short"


# --- Provider response validation ---

def test_validate_embed_response_shapes():
    assert validate_embed_response([[1, 2]], 1).embeddings == [[1.0, 2.0]]
    assert validate_embed_response({"embedding": [1, 2]}, 1).embeddings == [[1.0, 2.0]]

    openai_shaped = validate_embed_response(
        {"data": [{"embedding": [0.5]}, {"embedding": [0.25]}], "usage": {"prompt_tokens": 2, "total_tokens": 2}},
        2,
    )
    assert openai_shaped.embeddings == [[0.5], [0.25]]
    assert openai_shaped.usage.total_tokens == 2


@pytest.mark.parametrize("response,count", [
    ({"embeddings": [[1.0]]}, 2),
    ({"embeddings": [[1.0, 2.0], [1.0]]}, 2),
    ({"embeddings": [[1.0, float("nan")]]}, 1),
    ({"embeddings": [[True, 1.0]]}, 1),
    ({"embeddings": [[]]}, 1),
    ({"unexpected": 1}, 1),
    ("not json", 1),
])
def test_validate_embed_response_rejects(response, count):
    with pytest.raises(ResponseValidationError):
        validate_embed_response(response, count)


def test_provider_cache_key():
    config = HttpProviderConfig(config=HttpEmbeddingConfig(base_url="https://a.example.com/embed/", model="m"))

    assert get_provider_cache_key(config) == "http:https://a.example.com/embed:m"


# --- URL safety ---

def test_private_hosts():
    assert is_private_host("localhost") is True
    assert is_private_host("10.0.0.5") is True
    assert is_private_host("192.168.1.10") is True
    assert is_private_host("::1") is True
    assert is_private_host("api.example.com") is False
    assert is_private_host("8.8.8.8") is False


@pytest.mark.parametrize("url,kwargs,code", [
    ("ftp://files.example.com/embed", {}, UpstreamError.INVALID_URL),
    ("http://api.example.com/embed", {}, UpstreamError.INVALID_URL),
    ("https://127.0.0.1/embed", {}, UpstreamError.BLOCKED),
    ("http://localhost:11434/api", {"require_https": False}, UpstreamError.BLOCKED),
])
def test_validate_url_rejects(url, kwargs, code):
    with pytest.raises(UpstreamError) as exc_info:
        validate_url(url, **kwargs)

    assert exc_info.value.code == code
    assert exc_info.value.to_response()["code"] == code


def test_validate_url_allows():
    assert validate_url("https://api.example.com/v1/embeddings").host == "api.example.com"
    assert validate_url("http://localhost:11434/api", require_https=False, allow_private=True).port == 11434


# --- HTTP provider ---

def _mock_client(handler):
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def _http_config(**kwargs):
    return HttpEmbeddingConfig(base_url="https://embed.example.com/v1/embeddings", model="embed-small", **kwargs)


@pytest.mark.asyncio
async def test_http_provider_success():
    seen = {}

    def handler(request):
        seen["body"] = json.loads(request.content)
        seen["auth"] = request.headers.get("authorization")
        data = [{"embedding": [0.1, 0.2]} for _ in seen["body"]["input"]]
        return httpx.Response(200, json={"data": data, "usage": {"prompt_tokens": 3, "total_tokens": 3}})

    async with _mock_client(handler) as client:
        provider = HttpEmbeddingProvider(_http_config(headers={"Authorization": "Bearer k"}), client=client)
        response = await provider.embed(["a", "b"], EmbedRequest())

    assert seen["body"] == {"input": ["a", "b"], "model": "embed-small"}
    assert seen["auth"] == "Bearer k"
    assert response.embeddings == [[0.1, 0.2], [0.1, 0.2]]
    assert response.usage.total_tokens == 3


@pytest.mark.asyncio
async def test_http_provider_model_override():
    seen = {}

    def handler(request):
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"embeddings": [[1.0]]})

    async with _mock_client(handler) as client:
        provider = HttpEmbeddingProvider(_http_config(), client=client)
        await provider.embed(["a"], EmbedRequest(model="embed-large"))

    assert seen["body"]["model"] == "embed-large"


@pytest.mark.asyncio
@pytest.mark.parametrize("status,retryable", [(503, True), (429, True), (400, False), (401, False)])
async def test_http_provider_error_statuses(status, retryable):
    def handler(request):
        return httpx.Response(status, json={"error": {"message": "upstream says no"}})

    async with _mock_client(handler) as client:
        provider = HttpEmbeddingProvider(_http_config(), client=client)
        with pytest.raises(ProviderError) as exc_info:
            await provider.embed(["a"], EmbedRequest())

    assert exc_info.value.status_code == status
    assert exc_info.value.retryable is retryable
    assert "upstream says no" in str(exc_info.value)


@pytest.mark.asyncio
async def test_http_provider_bad_json_and_count_mismatch():
    async with _mock_client(lambda request: httpx.Response(200, content=b"not json")) as client:
        provider = HttpEmbeddingProvider(_http_config(), client=client)
        with pytest.raises(ResponseValidationError):
            await provider.embed(["a"], EmbedRequest())

    async with _mock_client(lambda request: httpx.Response(200, json={"embeddings": [[1.0]]})) as client:
        provider = HttpEmbeddingProvider(_http_config(), client=client)
        with pytest.raises(ResponseValidationError, match="count mismatch"):
            await provider.embed(["a", "b"], EmbedRequest())


@pytest.mark.asyncio
async def test_http_provider_transport_error_is_retryable():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    async with _mock_client(handler) as client:
        provider = HttpEmbeddingProvider(_http_config(), client=client)
        with pytest.raises(ProviderError) as exc_info:
            await provider.embed(["a"], EmbedRequest())

    assert exc_info.value.retryable is True
    assert exc_info.value.status_code is None


@pytest.mark.asyncio
async def test_http_provider_cancelled_signal():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200, json={"embeddings": [[1.0]]})

    signal = asyncio.Event()
    signal.set()

    async with _mock_client(handler) as client:
        provider = HttpEmbeddingProvider(_http_config(), client=client)
        with pytest.raises(ProviderTimeoutError):
            await provider.embed(["a"], EmbedRequest(signal=signal))

    assert calls == []


def test_http_provider_rejects_unsafe_url_at_construction():
    with pytest.raises(UpstreamError):
        HttpEmbeddingProvider(HttpEmbeddingConfig(base_url="https://10.1.2.3/embed", model="m"))


# --- Presets ---

@pytest.mark.asyncio
async def test_ollama_preset_one_prompt_per_request():
    seen = []

    def handler(request):
        seen.append(json.loads(request.content))
        return httpx.Response(200, json={"embedding": [1.0, 2.0, 3.0]})

    async with _mock_client(handler) as client:
        provider = create_ollama_embedding(client=client)
        response = await provider.embed(["hello there"], EmbedRequest())

        with pytest.raises(ConfigurationError):
            await provider.embed(["one", "two"], EmbedRequest())

    assert provider.name == "ollama"
    assert seen == [{"model": "nomic-embed-text", "prompt": "hello there"}]
    assert response.embeddings == [[1.0, 2.0, 3.0]]


@pytest.mark.asyncio
async def test_azure_preset_url_and_headers():
    seen = {}

    def handler(request):
        seen["url"] = request.url
        seen["api_key"] = request.headers.get("api-key")
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"data": [{"embedding": [0.5, 0.5]}]})

    async with _mock_client(handler) as client:
        provider = create_azure_embedding(
            endpoint="https://res.openai.azure.com/",
            deployment_name="emb",
            api_version="2024-02-01",
            api_key="azure-key",
            client=client,
        )
        await provider.embed(["x"], EmbedRequest())

    assert seen["url"].path == "/openai/deployments/emb/embeddings"
    assert seen["url"].params["api-version"] == "2024-02-01"
    assert seen["api_key"] == "azure-key"
    assert seen["body"] == {"input": ["x"]}


@pytest.mark.asyncio
async def test_cohere_and_huggingface_presets():
    def cohere_handler(request):
        body = json.loads(request.content)
        assert body["input_type"] == "search_document"
        return httpx.Response(200, json={"embeddings": [[0.1] for _ in body["texts"]]})

    async with _mock_client(cohere_handler) as client:
        cohere = create_cohere_embedding(api_key="co-key", client=client)
        assert (await cohere.embed(["a", "b"], EmbedRequest())).embeddings == [[0.1], [0.1]]

    # A single input comes back from HuggingFace as one flat vector
    async with _mock_client(lambda request: httpx.Response(200, json=[0.3, 0.4])) as client:
        huggingface = create_huggingface_embedding(client=client)
        assert (await huggingface.embed(["a"], EmbedRequest())).embeddings == [[0.3, 0.4]]


def test_presets_require_api_keys(monkeypatch):
    monkeypatch.delenv("COHERE_API_KEY", raising=False)
    monkeypatch.delenv("AZURE_OPENAI_API_KEY", raising=False)

    with pytest.raises(ConfigurationError):
        create_cohere_embedding()
    with pytest.raises(ConfigurationError):
        create_azure_embedding(endpoint="https://res.openai.azure.com", deployment_name="d", api_version="v")


class _FakeOpenAIEmbeddings:
    def __init__(self):
        self.kwargs = None

    async def create(self, **kwargs):
        self.kwargs = kwargs
        # Deliberately out of order
        return SimpleNamespace(
            data=[SimpleNamespace(index=1, embedding=[0.0, 1.0]), SimpleNamespace(index=0, embedding=[1.0, 0.0])],
            usage=SimpleNamespace(prompt_tokens=4, total_tokens=4),
        )


@pytest.mark.asyncio
async def test_openai_provider_with_injected_client():
    embeddings = _FakeOpenAIEmbeddings()
    provider = create_openai_embedding(client=SimpleNamespace(embeddings=embeddings))

    response = await provider.embed(["first", "second"], EmbedRequest(dimensions=2))

    assert embeddings.kwargs == {"model": "text-embedding-3-small", "input": ["first", "second"], "dimensions": 2}
    assert response.embeddings == [[1.0, 0.0], [0.0, 1.0]]
    assert response.usage.total_tokens == 4


def test_create_embedding_provider_factory():
    provider = create_embedding_provider({
        "type": "http",
        "config": {"base_url": "https://embed.example.com/v1", "model": "m"},
    })
    assert isinstance(provider, HttpEmbeddingProvider)

    fake = FakeProvider()
    assert create_embedding_provider({"type": "custom", "provider": fake}) is fake

    with pytest.raises(ConfigurationError):
        create_embedding_provider({"type": "custom", "provider": object()})


# --- Configuration from environment ---

@pytest.fixture
def empty_env_file(tmp_path):
    path = tmp_path / ".env"
    path.write_text("")
    return str(path)


def test_provider_settings_from_env(monkeypatch, empty_env_file):
    monkeypatch.setenv("EMBEDDING_PROVIDER", "Ollama")
    monkeypatch.setenv("EMBEDDING_MODEL", "all-minilm")

    settings = ProviderSettings.from_env(empty_env_file)
    provider = create_embedding_provider_from_env(settings)

    assert settings.provider == "ollama"
    assert provider.name == "ollama"
    assert provider.model == "all-minilm"


def test_provider_settings_overrides_win(monkeypatch, empty_env_file):
    monkeypatch.setenv("EMBEDDING_PROVIDER", "ollama")

    settings = ProviderSettings.from_env(empty_env_file, provider="http", base_url="https://e.example.com/embed")

    assert settings.provider == "http"
    assert settings.base_url == "https://e.example.com/embed"


def test_provider_settings_errors(monkeypatch, empty_env_file):
    monkeypatch.setenv("EMBEDDING_PROVIDER", "bogus")
    with pytest.raises(ConfigurationError):
        ProviderSettings.from_env(empty_env_file)

    monkeypatch.setenv("EMBEDDING_PROVIDER", "azure")
    monkeypatch.delenv("AZURE_OPENAI_ENDPOINT", raising=False)
    with pytest.raises(ConfigurationError, match="AZURE_OPENAI_ENDPOINT"):
        create_embedding_provider_from_env(env_file=empty_env_file)

    monkeypatch.setenv("EMBEDDING_PROVIDER", "http")
    monkeypatch.delenv("EMBEDDING_BASE_URL", raising=False)
    with pytest.raises(ConfigurationError, match="EMBEDDING_BASE_URL"):
        create_embedding_provider_from_env(env_file=empty_env_file)


# --- Pipeline ---

@pytest.mark.asyncio
async def test_pipeline_second_call_is_served_from_cache(article_text):
    provider = FakeProvider()
    options = EmbeddingOptions(provider=provider, cache=CacheConfig(store=InMemoryEmbeddingCache()))
    data = ScrapedData(text_content=article_text)

    first = await generate_embeddings(data, options)
    second = await generate_embeddings(data, options)

    assert first.status == "success"
    assert first.source.cached is False
    assert second.source.cached is True
    assert second.vector == first.vector
    assert len(provider.calls) == 1


@pytest.mark.asyncio
async def test_pipeline_cache_respects_salt(article_text):
    provider = FakeProvider()
    data = {"text_content": article_text}

    await generate_embeddings(data, {"provider": provider, "cache": {"cache_key_salt": "a"}})
    await generate_embeddings(data, {"provider": provider, "cache": {"cache_key_salt": "b"}})

    assert len(provider.calls) == 2


@pytest.mark.asyncio
@pytest.mark.parametrize("data,reason", [
    ({}, "No input text available"),
    ({"text_content": "too short"}, "Input too short (9 < 10 characters)"),
    ({"text_content": "a b c d e f g h i j"}, "Input has too few words (0 < 3)"),
])
async def test_pipeline_skips_insufficient_input(data, reason):
    provider = FakeProvider()

    result = await generate_embeddings(data, EmbeddingOptions(provider=provider))

    assert result.status == "skipped"
    assert result.reason == reason
    assert provider.calls == []


@pytest.mark.asyncio
async def test_pipeline_min_text_length_override():
    result = await generate_embeddings(
        {"text_content": "Tiny but real"},
        EmbeddingOptions(provider=FakeProvider(), safety=SafetyConfig(min_text_length=50)),
    )

    assert result.reason == "Input too short (13 < 50 characters)"


@pytest.mark.asyncio
async def test_pipeline_average_of_chunks():
    provider = FakeProvider()
    options = EmbeddingOptions(provider=provider, chunking=ChunkingConfig(size=50, overlap=5))

    result = await generate_embeddings({"text_content": LONG_TEXT}, options)

    texts = [call[0] for call in provider.calls]
    expected = [
        sum(len(t) for t in texts) / len(texts),
        sum(len(t.split()) for t in texts) / len(texts),
        1.0,
    ]
    assert result.status == "success"
    assert result.aggregation == "average"
    assert result.vector == pytest.approx(expected)
    assert result.source.chunks == len(texts) > 1
    assert result.source.checksum == generate_checksum(LONG_TEXT)


@pytest.mark.asyncio
async def test_pipeline_all_vectors_and_usage_tokens():
    provider = FakeProvider(usage_tokens=7)
    options = EmbeddingOptions(
        provider=provider,
        chunking=ChunkingConfig(size=50, overlap=5),
        output={"aggregation": "all"},
    )

    result = await generate_embeddings({"text_content": LONG_TEXT}, options)

    assert result.aggregation == "all"
    assert len(result.vectors) == len(provider.calls)
    assert result.source.tokens == 7 * len(provider.calls)


@pytest.mark.asyncio
async def test_pipeline_max_tokens_caps_chunk_size():
    provider = FakeProvider()
    options = EmbeddingOptions(provider=provider, safety=SafetyConfig(max_tokens=20))

    result = await generate_embeddings({"text_content": LONG_TEXT}, options)

    assert result.source.chunks > 1
    assert all(len(call[0]) <= 80 for call in provider.calls)


@pytest.mark.asyncio
async def test_pipeline_redacts_before_provider_and_callbacks():
    text = "Please contact jane.doe@example.com about the quarterly report."
    provider = FakeProvider()
    seen_chunks = []
    metrics = []

    options = EmbeddingOptions(
        provider=provider,
        safety=SafetyConfig(pii_redaction=PiiRedactionConfig(email=True)),
        on_chunk=lambda chunk, vector: seen_chunks.append(chunk),
        on_metrics=metrics.append,
    )
    await generate_embeddings({"text_content": text}, options)

    redacted = f"Please contact {REDACTED} about the quarterly report."
    assert provider.calls == [[redacted]]
    assert seen_chunks == [redacted]
    assert metrics[0].pii_redacted is True


@pytest.mark.asyncio
async def test_pipeline_sensitive_callbacks_see_original_text():
    text = "Please contact jane.doe@example.com about the quarterly report."
    seen_chunks = []

    async def on_chunk(chunk, vector):
        seen_chunks.append(chunk)

    options = EmbeddingOptions(
        provider=FakeProvider(),
        safety=SafetyConfig(pii_redaction=PiiRedactionConfig(email=True), allow_sensitive_callbacks=True),
        on_chunk=on_chunk,
    )
    await generate_embeddings({"text_content": text}, options)

    assert seen_chunks == [text]


@pytest.mark.asyncio
async def test_pipeline_metrics(article_text):
    metrics = []
    options = EmbeddingOptions(provider=FakeProvider(), on_metrics=metrics.append)

    await generate_embeddings({"text_content": article_text}, options)
    await generate_embeddings({"text_content": article_text}, options)

    first, second = metrics
    assert first.provider == "fake"
    assert first.cached is False
    assert first.output_dimensions == 3
    assert first.chunks == 1
    assert first.retries == 0
    assert second.cached is True
    assert second.retries == 0


@pytest.mark.asyncio
async def test_pipeline_retries_transient_failures(article_text):
    provider = FakeProvider(fail_times=1)
    metrics = []
    options = EmbeddingOptions(
        provider=provider,
        resilience=ResilienceConfig(retry=NO_WAIT_RETRY),
        on_metrics=metrics.append,
    )

    result = await generate_embeddings({"text_content": article_text}, options)

    assert result.status == "success"
    assert len(provider.calls) == 2
    assert metrics[0].retries == 1


@pytest.mark.asyncio
@pytest.mark.parametrize("status,expected_calls", [(503, 2), (400, 1)])
async def test_pipeline_provider_failure_is_skipped(article_text, status, expected_calls):
    provider = FakeProvider(fail_status=status)
    options = EmbeddingOptions(provider=provider, resilience=ResilienceConfig(retry=NO_WAIT_RETRY))

    result = await generate_embeddings({"text_content": article_text}, options)

    assert result.status == "skipped"
    assert result.reason == f"HTTP {status}"
    assert result.source.latency_ms is not None
    assert len(provider.calls) == expected_calls


@pytest.mark.asyncio
async def test_pipeline_shared_breaker_opens_and_skips(article_text):
    breaker = CircuitBreaker(CircuitBreakerConfig(failure_threshold=1, reset_timeout_seconds=60))
    provider = FakeProvider(fail_status=400)
    options = EmbeddingOptions(
        provider=provider,
        resilience=ResilienceConfig(retry=NO_WAIT_RETRY, state=ResilienceState(circuit_breaker=breaker)),
    )

    first = await generate_embeddings({"text_content": article_text}, options)
    second = await generate_embeddings({"text_content": article_text}, options)

    assert first.reason == "HTTP 400"
    assert breaker.get_state() == "open"
    assert second.status == "skipped"
    assert second.reason == "Circuit breaker is open"
    assert second.source.chunks == 0
    assert len(provider.calls) == 1


@pytest.mark.asyncio
async def test_pipeline_invalid_custom_provider_is_skipped(article_text):
    result = await generate_embeddings(
        {"text_content": article_text},
        {"provider": {"type": "custom", "provider": object()}},
    )

    assert result.status == "skipped"
    assert "Custom provider must have" in result.reason


@pytest.mark.asyncio
@pytest.mark.parametrize("base_url,code", [
    ("https://10.0.0.5/v1/embeddings", UpstreamError.BLOCKED),
    ("http://api.example.com/v1/embeddings", UpstreamError.INVALID_URL),
])
async def test_pipeline_propagates_upstream_errors(article_text, base_url, code):
    options = {"provider": {"type": "http", "config": {"base_url": base_url, "model": "m"}}}

    with pytest.raises(UpstreamError) as exc_info:
        await generate_embeddings({"text_content": article_text}, options)

    assert exc_info.value.code == code


@pytest.mark.asyncio
async def test_pipeline_with_http_provider(article_text):
    def handler(request):
        body = json.loads(request.content)
        return httpx.Response(200, json={
            "data": [{"embedding": [0.25, 0.75]} for _ in body["input"]],
            "usage": {"prompt_tokens": 11, "total_tokens": 11},
        })

    async with _mock_client(handler) as client:
        provider = HttpEmbeddingProvider(_http_config(), client=client, name="mock-http")
        result = await generate_embeddings({"text_content": article_text}, EmbeddingOptions(provider=provider))

    assert result.vector == [0.25, 0.75]
    assert result.source.tokens == 11


@pytest.mark.asyncio
async def test_embed_forces_plain_text_input(article_text):
    provider = FakeProvider()

    result = await embed(article_text, {"provider": provider, "input": {"type": "title_summary"}})

    assert result.status == "success"
    assert provider.calls == [[article_text]]


class _MiscountingProvider(FakeProvider):
    """Returns `per_call` vectors no matter how many texts it was given."""

    def __init__(self, per_call):
        super().__init__(name="miscounting")
        self.per_call = per_call

    async def embed(self, texts, request):
        self.calls.append(list(texts))
        return EmbedResponse(embeddings=[[1.0, 2.0]] * self.per_call)


@pytest.mark.asyncio
@pytest.mark.parametrize("per_call", [0, 2])
async def test_pipeline_rejects_wrong_vector_count(per_call):
    provider = _MiscountingProvider(per_call)
    options = EmbeddingOptions(
        provider=provider,
        chunking=ChunkingConfig(size=50, overlap=5),
        output={"aggregation": "all"},
        resilience=ResilienceConfig(retry=NO_WAIT_RETRY),
    )

    result = await generate_embeddings({"text_content": LONG_TEXT}, options)

    assert result.status == "skipped"
    assert result.reason == f"Embedding count mismatch: expected 1, got {per_call}"
    # Terminal: neither retried nor continued with later chunks
    assert len(provider.calls) == 1


@pytest.mark.asyncio
async def test_pipeline_wrong_vector_count_trips_shared_breaker(article_text):
    breaker = CircuitBreaker(CircuitBreakerConfig(failure_threshold=1, reset_timeout_seconds=60))
    options = EmbeddingOptions(
        provider=_MiscountingProvider(2),
        resilience=ResilienceConfig(state=ResilienceState(circuit_breaker=breaker)),
    )

    await generate_embeddings({"text_content": article_text}, options)

    assert breaker.get_state() == "open"


@pytest.mark.asyncio
async def test_pipeline_with_configured_rate_limit(article_text):
    provider = FakeProvider()
    options = EmbeddingOptions(
        provider=provider,
        resilience=ResilienceConfig(rate_limit=RateLimitConfig(requests_per_minute=600)),
    )

    result = await generate_embeddings({"text_content": article_text}, options)

    assert result.status == "success"
    assert len(provider.calls) == 1


@pytest.mark.asyncio
async def test_pipeline_waits_on_shared_rate_limiter(clock, monkeypatch):
    sleeps = []

    async def fake_sleep(seconds):
        sleeps.append(seconds)
        clock.advance(seconds)

    monkeypatch.setattr("scrape_embed.resilience.asyncio.sleep", fake_sleep)

    # 0.1 requests per second with a burst of one
    limiter = RateLimiter(RateLimitConfig(requests_per_minute=6), clock=clock)
    provider = FakeProvider()
    options = EmbeddingOptions(
        provider=provider,
        chunking=ChunkingConfig(size=50, overlap=5),
        output={"aggregation": "all"},
        resilience=ResilienceConfig(state=ResilienceState(rate_limiter=limiter)),
    )

    result = await generate_embeddings({"text_content": LONG_TEXT}, options)

    assert result.status == "success"
    assert len(result.vectors) == len(provider.calls) > 1
    assert sleeps == [pytest.approx(10.0)] * (len(provider.calls) - 1)
