import logging
from typing import Any, AsyncIterator, Dict

import litellm

from .provider_interface import ProviderInterface
from ..types import CompletionRequest

lib_logger = logging.getLogger("fallback_library")


class OpenAIProvider(ProviderInterface):
    """
    Streaming chat completions against the OpenAI API, or any
    OpenAI-compatible endpoint when a base URL is configured.
    """

    provider_kind = "openai"
    # Prefix litellm uses to route the call
    litellm_prefix = "openai"

    def _completion_kwargs(self, request: CompletionRequest) -> Dict[str, Any]:
        kwargs: Dict[str, Any] = {
            "model": f"{self.litellm_prefix}/{request.model}",
            "messages": self._payload_messages(request.conversation),
            "temperature": request.params.temperature,
            "top_p": request.params.top_p,
            "max_tokens": request.params.max_tokens,
            "api_key": self.config.api_key,
            "stream": True,
        }
        if self.config.base_url:
            kwargs["api_base"] = self.config.base_url
        if self.config.extra_headers:
            kwargs["extra_headers"] = dict(self.config.extra_headers)
        return kwargs

    async def _stream(self, request: CompletionRequest) -> AsyncIterator[str]:
        lib_logger.debug(f"{self.name}: opening stream for model {request.model}")
        response = await litellm.acompletion(**self._completion_kwargs(request))

        async for chunk in response:
            choices = getattr(chunk, "choices", None)
            if not choices:
                continue
            delta = getattr(choices[0], "delta", None)
            content = getattr(delta, "content", None) if delta is not None else None
            if content:
                yield content
