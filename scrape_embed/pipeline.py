"""
Embedding pipeline.

One generate_embeddings() call, in order:
  1. Resolve provider and effective model
  2. Select and clean input text
  3. Validate length and word count (→ skipped)
  4. Redact PII (optional)
  5. Cache lookup over redacted content + configuration fingerprint
  6. Chunk (→ skipped when nothing is left)
  7. Embed chunks sequentially: rate limit → breaker check → semaphore → timeout/retry
  8. Aggregate vectors
  9. Build source metadata and result
 10. Cache the success result
 11. Emit metrics

Insufficient input and provider outages come back as `skipped` results.
Only UpstreamError (invalid URL, blocked) propagates to the caller.
"""

import inspect
import time
from typing import Any, Callable, Optional, Union

from .aggregation import aggregate_vectors, get_dimensions
from .cache import generate_cache_key, generate_checksum, get_default_cache, validate_cached_result
from .chunking import chunk_text, create_tokenizer
from .exceptions import ResponseValidationError, UpstreamError
from .input import DEFAULT_MIN_LENGTH, select_input, validate_input
from .providers import create_embedding_provider, get_provider_cache_key
from .redactor import create_pii_redactor
from .resilience import CircuitBreaker, RateLimiter, Semaphore, with_resilience
from .schemas import (
    ChunkingConfig,
    EmbeddingMetrics,
    EmbeddingOptions,
    EmbeddingResult,
    EmbeddingSkipped,
    EmbeddingSource,
    EmbeddingSuccessMultiple,
    EmbeddingSuccessSingle,
    EmbedRequest,
    PartialEmbeddingSource,
    ScrapedData,
    TextChunk,
)
from .logger import get_module_logger

logger = get_module_logger("pipeline")


def get_effective_model(options: EmbeddingOptions) -> Optional[str]:
    """Explicit option > HTTP provider config; custom providers pick their own default."""
    if options.model:
        return options.model
    if options.provider.type == "http":
        return options.provider.config.model
    return None


def apply_max_tokens_to_chunking(chunking: ChunkingConfig, max_tokens: Optional[int]) -> ChunkingConfig:
    """Clamp chunk size to max_tokens and keep the overlap strictly below it."""
    if not max_tokens or max_tokens <= 0:
        return chunking

    size = min(chunking.size, max_tokens)
    overlap = min(chunking.overlap, max(0, size - 1))
    return chunking.model_copy(update={"size": size, "overlap": overlap})


def _skipped(reason: str, **source) -> EmbeddingSkipped:
    return EmbeddingSkipped(reason=reason, source=PartialEmbeddingSource(**source))


def _elapsed_ms(start_time: float) -> float:
    return (time.perf_counter() - start_time) * 1000


async def _invoke(callback: Optional[Callable], *args) -> None:
    """Callbacks may be plain functions or coroutines."""
    if callback is None:
        return
    result = callback(*args)
    if inspect.isawaitable(result):
        await result


class EmbeddingPipeline:
    """
    Runs the embedding steps for one options object.

    Resilience primitives come from options.resilience.state when shared,
    otherwise they are created per run from the resilience config.
    """

    def __init__(self, options: EmbeddingOptions):
        self.options = options

    async def run(self, data: Union[ScrapedData, dict]) -> EmbeddingResult:
        start_time = time.perf_counter()
        try:
            return await self._run(data, start_time)
        except UpstreamError:
            raise
        except Exception as e:
            reason = str(e) or type(e).__name__
            logger.warning(f"Embedding skipped after error: {reason}")
            return _skipped(reason, latency_ms=_elapsed_ms(start_time))

    async def _run(self, data: Union[ScrapedData, dict], start_time: float) -> EmbeddingResult:
        options = self.options

        # Step 1: provider and model
        provider = create_embedding_provider(options.provider)
        provider_name = getattr(provider, "name", "custom")
        model = get_effective_model(options)

        # Steps 2-3: input selection and validation
        raw_input = select_input(data, options.input)
        min_length = options.safety.min_text_length
        validation = validate_input(raw_input, DEFAULT_MIN_LENGTH if min_length is None else min_length)
        if not validation.valid:
            logger.info(f"Embedding skipped: {validation.reason}")
            return _skipped(validation.reason, model=model)

        original_input = validation.text
        input_text = validation.text

        # Step 4: PII redaction
        pii_redacted = False
        if options.safety.pii_redaction is not None:
            redaction = create_pii_redactor(options.safety.pii_redaction)(input_text)
            input_text = redaction.text
            pii_redacted = redaction.redacted

        # Step 5: cache lookup
        chunking = apply_max_tokens_to_chunking(options.chunking, options.safety.max_tokens)
        count_tokens = create_tokenizer(chunking.tokenizer)

        cache_key = generate_cache_key(
            content=input_text,
            provider_key=get_provider_cache_key(options.provider),
            model=model,
            dimensions=options.output.dimensions,
            aggregation=options.output.aggregation,
            input_config=options.input,
            chunking=chunking,
            safety=options.safety,
            cache_key_salt=options.cache.cache_key_salt,
        )

        cache = options.cache.store if options.cache.store is not None else get_default_cache()
        cached = await cache.get(cache_key)

        if cached is not None and cached.status == "success" \
                and validate_cached_result(cached, options.output.dimensions):
            logger.info(f"Embedding cache hit ({cached.source.chunks} chunks)")
            hit = cached.model_copy(update={"source": cached.source.model_copy(update={"cached": True})})
            await _invoke(options.on_metrics, EmbeddingMetrics(
                provider=provider_name,
                model=model,
                input_tokens=count_tokens(input_text),
                output_dimensions=get_dimensions(hit.vectors if hit.aggregation == "all" else hit.vector),
                chunks=hit.source.chunks,
                latency_ms=_elapsed_ms(start_time),
                cached=True,
                retries=0,
                pii_redacted=pii_redacted,
            ))
            return hit

        logger.debug("Embedding cache miss")

        # Step 6: chunking
        chunks = chunk_text(input_text, chunking)
        if not chunks:
            return _skipped("No content after chunking", model=model)

        callback_chunks = None
        if options.on_chunk is not None and options.safety.allow_sensitive_callbacks:
            callback_chunks = chunk_text(original_input, chunking)

        # Step 7: embed chunk by chunk
        outcome = await self._embed_chunks(provider, provider_name, model, chunks, callback_chunks)
        if isinstance(outcome, EmbeddingSkipped):
            return outcome
        embeddings, total_tokens, retries = outcome

        # Step 8: aggregation
        aggregation = options.output.aggregation
        aggregated = aggregate_vectors(embeddings, aggregation)

        # Steps 9-10: result
        source = EmbeddingSource(
            model=model,
            chunks=len(chunks),
            tokens=total_tokens or count_tokens(input_text),
            checksum=generate_checksum(input_text),
            cached=False,
            latency_ms=_elapsed_ms(start_time),
        )

        if aggregated.type == "single":
            result = EmbeddingSuccessSingle(aggregation=aggregation, vector=aggregated.vector, source=source)
        else:
            result = EmbeddingSuccessMultiple(vectors=aggregated.vectors, source=source)

        await cache.set(cache_key, result, ttl_seconds=options.cache.ttl_seconds)

        logger.info(
            f"Embedded {len(chunks)} chunks with {provider_name} "
            f"({aggregated.dimensions} dims, {source.tokens} tokens, {retries} retries)"
        )

        # Step 11: metrics
        await _invoke(options.on_metrics, EmbeddingMetrics(
            provider=provider_name,
            model=model,
            input_tokens=source.tokens,
            output_dimensions=aggregated.dimensions,
            chunks=len(chunks),
            latency_ms=source.latency_ms,
            cached=False,
            retries=retries,
            pii_redacted=pii_redacted,
        ))

        return result

    def _resilience_primitives(self) -> tuple[Optional[Any], Optional[Any], Any]:
        """Shared state wins; otherwise build from config. A semaphore always exists."""
        config = self.options.resilience
        shared = config.state

        rate_limiter = shared.rate_limiter if shared and shared.rate_limiter is not None else None
        if rate_limiter is None and config.rate_limit is not None:
            rate_limiter = RateLimiter(config.rate_limit)

        breaker = shared.circuit_breaker if shared and shared.circuit_breaker is not None else None
        if breaker is None and config.circuit_breaker is not None:
            breaker = CircuitBreaker(config.circuit_breaker)

        semaphore = shared.semaphore if shared and shared.semaphore is not None else None
        if semaphore is None:
            semaphore = Semaphore(config.concurrency)

        return rate_limiter, breaker, semaphore

    async def _embed_chunks(
        self,
        provider,
        provider_name: str,
        model: Optional[str],
        chunks: list[TextChunk],
        callback_chunks: Optional[list[TextChunk]]
    ) -> Union[tuple[list[list[float]], int, int], EmbeddingSkipped]:
        """
        Embed chunks in order.

        Returns:
            (vectors, total tokens, retry count), or a skipped result when the
            circuit breaker opens part way through
        """
        options = self.options
        rate_limiter, breaker, semaphore = self._resilience_primitives()

        embeddings: list[list[float]] = []
        total_tokens = 0
        retries = 0

        def on_retry(attempt: int, error: BaseException, delay: float) -> None:
            nonlocal retries
            retries += 1
            if breaker is not None:
                breaker.record_failure()

        for i, chunk in enumerate(chunks):
            if rate_limiter is not None:
                await rate_limiter.acquire()

            if breaker is not None and not breaker.allow_request():
                logger.warning(f"Circuit breaker open after {i}/{len(chunks)} chunks")
                return _skipped("Circuit breaker is open", model=model, chunks=i)

            async def call(signal, text=chunk.text):
                return await provider.embed(
                    [text],
                    EmbedRequest(model=model, dimensions=options.output.dimensions, signal=signal)
                )

            async def attempt():
                try:
                    response, _ = await with_resilience(
                        call, options.resilience, on_retry=on_retry, provider=provider_name
                    )
                    # One text in, exactly one vector out
                    if len(response.embeddings) != 1:
                        raise ResponseValidationError(
                            f"Embedding count mismatch: expected 1, got {len(response.embeddings)}",
                            details={"chunk": i, "provider": provider_name}
                        )
                except Exception:
                    if breaker is not None:
                        breaker.record_failure()
                    raise
                if breaker is not None:
                    breaker.record_success()
                return response

            response = await semaphore.execute(attempt)

            if response.usage is not None:
                total_tokens += response.usage.total_tokens
            else:
                total_tokens += chunk.tokens

            embedding = response.embeddings[0]
            embeddings.append(embedding)

            if options.on_chunk is not None:
                callback_text = chunk.text
                if callback_chunks is not None and i < len(callback_chunks):
                    callback_text = callback_chunks[i].text
                await _invoke(options.on_chunk, callback_text, embedding)

        return embeddings, total_tokens, retries


async def generate_embeddings(
    data: Union[ScrapedData, dict],
    options: Union[EmbeddingOptions, dict]
) -> EmbeddingResult:
    """
    Generate embeddings for scraped data.

    Args:
        data: Scraped page fields (ScrapedData or a plain dict)
        options: EmbeddingOptions (or a dict of them)

    Returns:
        EmbeddingSuccessSingle / EmbeddingSuccessMultiple, or EmbeddingSkipped

    Raises:
        UpstreamError: invalid or blocked provider URL
    """
    if isinstance(options, dict):
        options = EmbeddingOptions(**options)
    return await EmbeddingPipeline(options).run(data)


async def embed(text: str, options: Union[EmbeddingOptions, dict]) -> EmbeddingResult:
    """Embed arbitrary text, outside of any scrape."""
    if isinstance(options, dict):
        options = EmbeddingOptions(**options)
    # Force plain-text input; a transform still applies
    input_config = options.input.model_copy(update={"type": "text_content"})
    return await generate_embeddings(
        ScrapedData(text_content=text),
        options.model_copy(update={"input": input_config})
    )


async def embed_scraped_data(data: Union[ScrapedData, dict], options: Union[EmbeddingOptions, dict]) -> EmbeddingResult:
    """Embed already scraped data."""
    return await generate_embeddings(data, options)
