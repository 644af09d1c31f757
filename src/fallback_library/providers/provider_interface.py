import asyncio
import logging
from abc import ABC, abstractmethod
from typing import AsyncGenerator, AsyncIterator, Awaitable, List, Dict, Optional, TypeVar

from ..error_handler import (
    ConfigurationError,
    EmptyResponseError,
    ProviderCallError,
    RequestCancelledError,
)
from ..provider_config import ProviderConfig
from ..types import CompletionRequest, Conversation, SamplingParams

lib_logger = logging.getLogger("fallback_library")

T = TypeVar("T")


async def _next_item(iterator: AsyncIterator[T]) -> T:
    return await iterator.__anext__()


async def await_or_cancel(awaitable: Awaitable[T], signal: Optional[asyncio.Event]) -> T:
    """
    Awaits `awaitable`, aborting it as soon as `signal` is set.

    Raises:
        RequestCancelledError: if the signal fires first
    """
    if signal is None:
        return await awaitable
    if signal.is_set():
        if asyncio.iscoroutine(awaitable):
            awaitable.close()
        raise RequestCancelledError()

    task = asyncio.ensure_future(awaitable)
    waiter = asyncio.ensure_future(signal.wait())
    try:
        await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        waiter.cancel()
        if not task.done():
            task.cancel()
            # Let the aborted call unwind before going on
            await asyncio.wait({task})

    if task.cancelled():
        raise RequestCancelledError()
    return task.result()


async def iterate_with_cancellation(
    stream: AsyncIterator[T], signal: Optional[asyncio.Event]
) -> AsyncGenerator[T, None]:
    """Re-yields `stream`, stopping the pending read as soon as `signal` is set."""
    if signal is None:
        async for item in stream:
            yield item
        return

    while True:
        try:
            item = await await_or_cancel(_next_item(stream), signal)
        except StopAsyncIteration:
            return
        yield item


class ProviderInterface(ABC):
    """
    Uniform "stream tokens for a conversation" capability over one backend.

    Subclasses implement `_stream(request)` as an async generator of text
    fragments. The public `stream_completion` validates the request, threads
    the cancellation signal through, and wraps every backend failure in a
    ProviderCallError.
    """

    # Provider kind, also the key in PROVIDER_PLUGINS
    provider_kind: str = ""

    def __init__(self, config: ProviderConfig):
        if not config.has_credentials:
            raise ConfigurationError(
                f"{self.provider_kind} provider is missing required credentials"
            )
        self.config = config

    @property
    def name(self) -> str:
        return self.config.provider

    @property
    def fallback_models(self) -> List[str]:
        return list(self.config.fallback_models)

    @staticmethod
    def _payload_messages(conversation: Conversation) -> List[Dict[str, str]]:
        # Fresh dicts: the caller's conversation is never handed to a backend client
        return [message.to_dict() for message in conversation]

    @abstractmethod
    def _stream(self, request: CompletionRequest) -> AsyncIterator[str]:
        """Execute the backend call. Implementations must be async generators."""
        ...

    async def stream_completion(
        self,
        conversation: Conversation,
        model: str,
        params: Optional[SamplingParams] = None,
        signal: Optional[asyncio.Event] = None,
    ) -> AsyncGenerator[str, None]:
        """
        Streams text fragments for `conversation` from `model`, in the order
        the backend produces them.

        Raises:
            InvalidRequestError: empty conversation or blank model
            RequestCancelledError: the signal fired
            ProviderCallError: the backend call failed in any other way
        """
        request = CompletionRequest(
            conversation=tuple(conversation),
            model=model,
            params=(params or SamplingParams()).resolved(),
            signal=signal,
        )
        request.validate()
        if signal is not None and signal.is_set():
            raise RequestCancelledError()

        stream = self._stream(request)
        chunk_count = 0
        try:
            async for chunk in iterate_with_cancellation(stream, signal):
                chunk_count += 1
                yield chunk
            if chunk_count == 0:
                raise EmptyResponseError(self.name, model)
        except (ProviderCallError, RequestCancelledError):
            raise
        except Exception as e:
            raise ProviderCallError(self.name, model, e) from e
        finally:
            await stream.aclose()

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} provider={self.name!r}>"
