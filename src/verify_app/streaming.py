"""
Server-sent event framing for the verify endpoint.

Events, each a `data: {json}` line:
    chunk     {"type": "chunk", "content": ...}
    retry     {"type": "retry", "provider": ..., "model": ...}
              a later attempt took over after partial output; clients
              discard the chunks received so far
    metadata  {"type": "metadata", "verdict", "confidence", "provider", "model", "duration"}
    error     {"type": "error", "error": GENERIC_ERROR_MESSAGE}
"""

import asyncio
import json
import logging
import time
from typing import Any, AsyncGenerator, Awaitable, Callable, Dict, List, Optional

from fallback_library import AllProvidersFailedError, RequestCancelledError, StreamChunk
from fallback_library.error_handler import classify_error

from .prompts import parse_ai_response

logger = logging.getLogger(__name__)

GENERIC_ERROR_MESSAGE = "Analysis failed, please try again"


def sse_event(payload: Dict[str, Any]) -> str:
    return f"data: {json.dumps(payload)}\n\n"


def error_payload(error: BaseException, include_type: bool = False) -> Dict[str, Any]:
    """Client-facing error body. Provider error text is never included."""
    payload: Dict[str, Any] = {"type": "error", "error": GENERIC_ERROR_MESSAGE}
    if include_type:
        cause = error.last_error if isinstance(error, AllProvidersFailedError) else error
        payload["error_type"] = classify_error(cause).error_type if cause else "unknown"
    return payload


async def verification_events(
    chunks: AsyncGenerator[StreamChunk, None],
    first_chunk: StreamChunk,
    start_time: float,
    signal: Optional[asyncio.Event] = None,
    is_disconnected: Optional[Callable[[], Awaitable[bool]]] = None,
    debug_errors: bool = False,
) -> AsyncGenerator[str, None]:
    """
    Turns an already-started chunk stream into SSE events.

    `first_chunk` has been pulled from `chunks` by the caller before the
    response was committed.
    """
    current = first_chunk
    parts: List[str] = [first_chunk.text]

    try:
        yield sse_event({"type": "chunk", "content": first_chunk.text})

        async for chunk in chunks:
            if is_disconnected is not None and await is_disconnected():
                logger.warning("Client disconnected, stopping stream.")
                if signal is not None:
                    signal.set()
                return

            if chunk.attempt != current.attempt:
                logger.info(
                    f"Attempt {chunk.attempt} ({chunk.provider}/{chunk.model}) replaced "
                    f"partial output from {current.provider}/{current.model}"
                )
                parts = []
                yield sse_event(
                    {"type": "retry", "provider": chunk.provider, "model": chunk.model}
                )

            current = chunk
            parts.append(chunk.text)
            yield sse_event({"type": "chunk", "content": chunk.text})

    except AllProvidersFailedError as e:
        logger.error(f"Verification stream failed: {e}")
        yield sse_event(error_payload(e, include_type=debug_errors))
        return
    except RequestCancelledError:
        logger.info("Verification stream cancelled")
        return
    finally:
        await chunks.aclose()

    parsed = parse_ai_response("".join(parts))
    yield sse_event(
        {
            "type": "metadata",
            "verdict": parsed["verdict"],
            "confidence": parsed["confidence"],
            "provider": current.provider,
            "model": current.model,
            "duration": int((time.time() - start_time) * 1000),
        }
    )
