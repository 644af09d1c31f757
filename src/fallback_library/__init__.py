import logging
from typing import TYPE_CHECKING

from .client import FallbackClient, create_fallback_client
from .error_handler import (
    AllProvidersFailedError,
    ConfigurationError,
    FallbackLibraryError,
    InvalidRequestError,
    NoProviderConfiguredError,
    ProviderCallError,
    RequestCancelledError,
)
from .model_selection import ModelSelector, TierConfig, get_user_tier, load_tier_configs
from .provider_config import ProviderConfig, ProviderResolver, ProviderSettings
from .types import Message, SamplingParams, StreamChunk
from .usage_tracker import ModelUsageTracker

# The application decides where library logs go
logging.getLogger("fallback_library").addHandler(logging.NullHandler())

# For type checkers (Pylint, mypy), import PROVIDER_PLUGINS statically
# At runtime, it's lazy-loaded via __getattr__
if TYPE_CHECKING:
    from .providers import PROVIDER_PLUGINS

__all__ = [
    "FallbackClient",
    "create_fallback_client",
    "PROVIDER_PLUGINS",
    "ProviderConfig",
    "ProviderSettings",
    "ProviderResolver",
    "ModelUsageTracker",
    "ModelSelector",
    "TierConfig",
    "get_user_tier",
    "load_tier_configs",
    "Message",
    "SamplingParams",
    "StreamChunk",
    "FallbackLibraryError",
    "ConfigurationError",
    "NoProviderConfiguredError",
    "InvalidRequestError",
    "ProviderCallError",
    "RequestCancelledError",
    "AllProvidersFailedError",
]


def __getattr__(name):
    if name == "PROVIDER_PLUGINS":
        from .providers import PROVIDER_PLUGINS

        return PROVIDER_PLUGINS
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
