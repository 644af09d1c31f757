"""
Generic text-generation backend (Hugging Face style `/generate` endpoint).

The backend has no multi-turn chat concept, so the conversation is
flattened into a single prompt. The response is one non-streamed text block,
re-exposed as a one-chunk stream.
"""

import logging
from typing import Any, AsyncIterator, Dict, Optional

import httpx

from .provider_interface import ProviderInterface
from ..provider_config import ProviderConfig
from ..types import CompletionRequest, Conversation

lib_logger = logging.getLogger("fallback_library")


def flatten_conversation(conversation: Conversation) -> str:
    """
    "Human: ...\\n\\nAssistant: ...\\n\\nAssistant:"

    User turns become "Human"; every other role, system included, becomes
    "Assistant".
    """
    turns = [
        f"{'Human' if message.role == 'user' else 'Assistant'}: {message.content}"
        for message in conversation
    ]
    return "\n\n".join(turns) + "\n\nAssistant:"


class HuggingFaceProvider(ProviderInterface):
    provider_kind = "hf"

    def __init__(self, config: ProviderConfig, client: Optional[httpx.AsyncClient] = None):
        super().__init__(config)
        self._client = client

    def _build_payload(self, request: CompletionRequest) -> Dict[str, Any]:
        # The model is addressed by the endpoint itself; only the prompt is sent
        return {
            "inputs": flatten_conversation(request.conversation),
            "parameters": {
                "temperature": request.params.temperature,
                "top_p": request.params.top_p,
                "max_new_tokens": request.params.max_tokens,
                "return_full_text": False,
            },
        }

    async def _post(self, client: httpx.AsyncClient, request: CompletionRequest) -> httpx.Response:
        return await client.post(
            f"{self.config.base_url.rstrip('/')}/generate",
            headers={
                "Authorization": f"Bearer {self.config.api_key}",
                "Content-Type": "application/json",
            },
            json=self._build_payload(request),
        )

    async def _stream(self, request: CompletionRequest) -> AsyncIterator[str]:
        lib_logger.debug(f"{self.name}: text generation request for model {request.model}")

        if self._client is not None:
            response = await self._post(self._client, request)
        else:
            async with httpx.AsyncClient(timeout=self.config.timeout) as client:
                response = await self._post(client, request)

        response.raise_for_status()
        data = response.json()

        # Some deployments wrap the result in a one-element list
        if isinstance(data, list) and data:
            data = data[0]
        generated = data.get("generated_text") if isinstance(data, dict) else None
        if not isinstance(generated, str):
            raise ValueError("Text generation response has no 'generated_text'")
        if generated:
            yield generated
