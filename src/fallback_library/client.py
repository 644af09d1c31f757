"""
Fallback orchestrator.

Streams a completion from the first (provider, model) candidate that
succeeds. Providers are tried in configuration order; within a provider the
requested model is tried first, then the provider's fallback models.
"""

import asyncio
import logging
import time
import uuid
from typing import (
    Any,
    AsyncGenerator,
    Callable,
    Dict,
    Iterable,
    List,
    Optional,
    Set,
    Tuple,
    Union,
)

from .error_handler import (
    AllProvidersFailedError,
    ConfigurationError,
    ProviderCallError,
    RequestCancelledError,
    classify_error,
    is_rate_limit_error,
)
from .provider_config import ProviderConfig, ProviderSettings
from .providers import ProviderInterface, create_provider
from .types import CompletionRequest, Message, SamplingParams, StreamChunk, as_conversation
from .usage_tracker import ModelUsageTracker

lib_logger = logging.getLogger("fallback_library")

ProviderFactory = Callable[[ProviderConfig], ProviderInterface]


class FallbackClient:
    """
    Entry point for streamed completions with provider/model fallback.

    Usage:
        client = create_fallback_client()

        async for text in client.stream_completion(
            [{"role": "user", "content": "Is this headline real?"}],
            model="qwen/qwen3-coder:free",
        ):
            print(text, end="")
    """

    def __init__(
        self,
        configs: Iterable[ProviderConfig],
        usage_tracker: Optional[ModelUsageTracker] = None,
        tier: Optional[str] = None,
        provider_factory: ProviderFactory = create_provider,
    ):
        # Eligibility is decided once, here, not per call
        eligible = [config for config in configs if config.has_credentials]
        if not eligible:
            raise ConfigurationError(
                "No AI providers configured. Please set at least one API key."
            )

        self._providers: List[ProviderInterface] = [
            provider_factory(config) for config in eligible
        ]
        self.usage_tracker = usage_tracker
        self.tier = tier

        lib_logger.info(f"Fallback client ready. Providers: {self.provider_names}")

    @property
    def providers(self) -> List[ProviderInterface]:
        return list(self._providers)

    @property
    def provider_names(self) -> List[str]:
        return [provider.name for provider in self._providers]

    def _candidates(self, requested_model: str) -> List[Tuple[ProviderInterface, str]]:
        """Ordered (provider, model) pairs, each appearing once."""
        seen: Set[Tuple[str, str]] = set()
        candidates = []
        for provider in self._providers:
            for model in [requested_model, *provider.fallback_models]:
                key = (provider.name, model)
                if key in seen:
                    continue
                seen.add(key)
                candidates.append((provider, model))
        return candidates

    def _record_success(self, model: str) -> None:
        if self.usage_tracker is not None and self.tier:
            self.usage_tracker.mark_used(self.tier, model)

    def _record_failure(self, model: str, error: ProviderCallError) -> None:
        if self.usage_tracker is None or not self.tier:
            return
        if is_rate_limit_error(error):
            self.usage_tracker.mark_rate_limited(self.tier, model)

    async def stream_chunks(
        self,
        messages: Iterable[Union[Message, Dict[str, Any]]],
        model: str,
        temperature: Optional[float] = None,
        top_p: Optional[float] = None,
        max_tokens: Optional[int] = None,
        signal: Optional[asyncio.Event] = None,
    ) -> AsyncGenerator[StreamChunk, None]:
        """
        Streams chunks tagged with the attempt that produced them.

        A failure after partial output still moves on to the next candidate;
        the next attempt's chunks carry a higher `attempt` number so the
        caller can discard what it already received.

        Raises:
            InvalidRequestError: empty conversation or blank model
            RequestCancelledError: the signal fired (no fallback is attempted)
            AllProvidersFailedError: every candidate failed; wraps the last failure
        """
        request = CompletionRequest(
            conversation=as_conversation(messages),
            model=model,
            params=SamplingParams(temperature, top_p, max_tokens),
            signal=signal,
        )
        request.validate()

        request_id = uuid.uuid4().hex[:8]
        last_error: Optional[ProviderCallError] = None
        attempt = 0

        for provider, candidate_model in self._candidates(model):
            if signal is not None and signal.is_set():
                raise RequestCancelledError()

            attempt += 1
            chunk_count = 0
            start_time = time.time()
            lib_logger.info(
                f"[{request_id}] Trying provider {provider.name} with model {candidate_model}"
            )

            stream = provider.stream_completion(
                request.conversation, candidate_model, request.params, signal
            )
            try:
                async for text in stream:
                    chunk_count += 1
                    yield StreamChunk(
                        text=text,
                        provider=provider.name,
                        model=candidate_model,
                        attempt=attempt,
                    )

            except RequestCancelledError:
                lib_logger.info(
                    f"[{request_id}] Request cancelled during {provider.name}/{candidate_model}"
                )
                raise

            except ProviderCallError as e:
                last_error = e
                self._record_failure(candidate_model, e)
                lib_logger.warning(
                    f"[{request_id}] Provider {provider.name} with model {candidate_model} "
                    f"failed after {chunk_count} chunk(s): {e.cause} "
                    f"({classify_error(e).error_type})"
                )
                continue

            finally:
                # Releases the backend call when the consumer stops early
                await stream.aclose()

            latency_ms = (time.time() - start_time) * 1000
            self._record_success(candidate_model)
            lib_logger.info(
                f"[{request_id}] Successfully used provider {provider.name} with model "
                f"{candidate_model} ({chunk_count} chunks, {latency_ms:.1f}ms)"
            )
            return

        lib_logger.error(f"[{request_id}] All {attempt} candidate(s) failed")
        raise AllProvidersFailedError(last_error, attempts=attempt) from last_error

    async def stream_completion(
        self,
        messages: Iterable[Union[Message, Dict[str, Any]]],
        model: str,
        temperature: Optional[float] = None,
        top_p: Optional[float] = None,
        max_tokens: Optional[int] = None,
        signal: Optional[asyncio.Event] = None,
    ) -> AsyncGenerator[str, None]:
        """Text-only view of `stream_chunks`."""
        async for chunk in self.stream_chunks(
            messages, model, temperature, top_p, max_tokens, signal
        ):
            yield chunk.text

    async def complete(
        self,
        messages: Iterable[Union[Message, Dict[str, Any]]],
        model: str,
        temperature: Optional[float] = None,
        top_p: Optional[float] = None,
        max_tokens: Optional[int] = None,
        signal: Optional[asyncio.Event] = None,
    ) -> StreamChunk:
        """
        Collects the full text of the successful attempt. Partial output from
        failed attempts is dropped. Returns a StreamChunk holding the whole text.
        """
        parts: List[str] = []
        current: Optional[StreamChunk] = None
        async for chunk in self.stream_chunks(
            messages, model, temperature, top_p, max_tokens, signal
        ):
            if current is not None and chunk.attempt != current.attempt:
                parts = []
            parts.append(chunk.text)
            current = chunk

        # stream_chunks either yields at least one chunk or raises
        return StreamChunk(
            text="".join(parts),
            provider=current.provider,
            model=current.model,
            attempt=current.attempt,
        )


def create_fallback_client(
    settings: Optional[ProviderSettings] = None, **kwargs: Any
) -> FallbackClient:
    """Builds a FallbackClient from the environment-derived provider settings."""
    settings = settings or ProviderSettings.from_env()
    return FallbackClient(settings.provider_configs(), **kwargs)
