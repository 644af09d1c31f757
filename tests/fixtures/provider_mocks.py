"""Scripted providers and litellm stand-ins for testing."""

import asyncio
from types import SimpleNamespace
from typing import Dict, List, Optional, Sequence, Union

import httpx

from fallback_library.provider_config import ProviderConfig
from fallback_library.providers.provider_interface import ProviderInterface
from fallback_library.types import CompletionRequest

# Script item that blocks until the surrounding task is cancelled
HANG = object()

ScriptItem = Union[str, BaseException, object]


class ScriptedProvider(ProviderInterface):
    """
    Provider whose behavior per model is a script: strings are yielded as
    chunks, exceptions are raised, HANG blocks forever.
    """

    provider_kind = ""

    def __init__(
        self,
        config: ProviderConfig,
        scripts: Optional[Dict[str, Sequence[ScriptItem]]] = None,
        default_script: Sequence[ScriptItem] = ("ok",),
    ):
        super().__init__(config)
        self.scripts = dict(scripts or {})
        self.default_script = list(default_script)
        self.calls: List[CompletionRequest] = []
        self.closed = 0

    async def _stream(self, request: CompletionRequest):
        self.calls.append(request)
        try:
            for item in self.scripts.get(request.model, self.default_script):
                if item is HANG:
                    await asyncio.Event().wait()
                if isinstance(item, BaseException):
                    raise item
                yield item
        finally:
            self.closed += 1

    @property
    def attempted_models(self) -> List[str]:
        return [call.model for call in self.calls]


class ScriptedProviderFactory:
    """provider_factory for FallbackClient; keeps the providers it built by name."""

    def __init__(self, scripts: Optional[Dict[str, Dict[str, Sequence[ScriptItem]]]] = None, **defaults):
        self.scripts = scripts or {}
        self.defaults = defaults
        self.built: Dict[str, ScriptedProvider] = {}

    def __call__(self, config: ProviderConfig) -> ScriptedProvider:
        provider = ScriptedProvider(config, self.scripts.get(config.provider), **self.defaults)
        self.built[config.provider] = provider
        return provider


def make_config(provider: str, fallback_models: Sequence[str] = (), **kwargs) -> ProviderConfig:
    kwargs.setdefault("api_key", f"test-{provider}-key")
    if provider == "hf":
        kwargs.setdefault("base_url", "https://hf.example.com")
    return ProviderConfig(provider=provider, fallback_models=tuple(fallback_models), **kwargs)


def http_status_error(status_code: int, headers: Optional[Dict[str, str]] = None) -> httpx.HTTPStatusError:
    request = httpx.Request("POST", "https://api.example.com/v1/chat/completions")
    response = httpx.Response(status_code, headers=headers, request=request)
    return httpx.HTTPStatusError(f"HTTP {status_code}", request=request, response=response)


# --- litellm stream stand-ins ---


def litellm_chunk(content: Optional[str]):
    """Mimics a litellm ModelResponseStream chunk."""
    return SimpleNamespace(choices=[SimpleNamespace(delta=SimpleNamespace(content=content))])


class MockLiteLLMStream:
    """Async iterator over litellm-style chunks, optionally failing after them."""

    def __init__(self, contents: Sequence[Optional[str]], error: Optional[BaseException] = None):
        self.contents = list(contents)
        self.error = error

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for content in self.contents:
            yield litellm_chunk(content)
        if self.error is not None:
            raise self.error
