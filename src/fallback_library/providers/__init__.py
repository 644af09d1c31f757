import importlib
import logging
import pkgutil
from typing import Dict, Type

from .provider_interface import ProviderInterface
from ..error_handler import ConfigurationError
from ..provider_config import ProviderConfig

# --- Provider Plugin System ---

# Maps provider kind ("openai", "openrouter", "hf") to its adapter class
PROVIDER_PLUGINS: Dict[str, Type[ProviderInterface]] = {}


def _register_providers():
    """Discovers adapter classes in this package, keyed by their provider_kind."""
    for _, module_name, _ in pkgutil.iter_modules(__path__):
        module = importlib.import_module(f"{__name__}.{module_name}")

        for attribute_name in dir(module):
            attribute = getattr(module, attribute_name)
            if (
                isinstance(attribute, type)
                and issubclass(attribute, ProviderInterface)
                and attribute is not ProviderInterface
                and attribute.provider_kind
            ):
                PROVIDER_PLUGINS[attribute.provider_kind] = attribute
                logging.getLogger("fallback_library").debug(
                    f"Registered provider: {attribute.provider_kind}"
                )


def create_provider(config: ProviderConfig) -> ProviderInterface:
    """
    Builds the adapter for a provider config.

    Raises:
        ConfigurationError: unsupported provider kind or missing credentials
    """
    provider_class = PROVIDER_PLUGINS.get(config.provider)
    if provider_class is None:
        raise ConfigurationError(f"Unsupported provider: {config.provider}")
    return provider_class(config)


_register_providers()

from .huggingface_provider import HuggingFaceProvider, flatten_conversation  # noqa: E402
from .openai_provider import OpenAIProvider  # noqa: E402
from .openrouter_provider import OpenRouterProvider  # noqa: E402

__all__ = [
    "PROVIDER_PLUGINS",
    "ProviderInterface",
    "OpenAIProvider",
    "OpenRouterProvider",
    "HuggingFaceProvider",
    "create_provider",
    "flatten_conversation",
]
