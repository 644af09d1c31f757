# src/fallback_library/provider_config.py
"""
Provider configuration, read once from environment-style settings.

Environment variables:
    MODEL_PROVIDER - Active provider kind: openrouter | openai | hf (default: openrouter)
    MODEL_NAME - Default model for the active provider (default: qwen/qwen3-coder:free)
    OPENROUTER_API_KEY, OPENROUTER_BASE_URL
    OPENAI_API_KEY, OPENAI_BASE_URL
    HF_API_TOKEN, HF_API_URL
    APP_URL - Sent to OpenRouter as HTTP-Referer (default: http://localhost:3000)
    APP_NAME - Sent to OpenRouter as X-Title (default: FakeVerifier)
    {KIND}_FALLBACK_MODELS - Comma-separated override of a provider's fallback list
    HF_REQUEST_TIMEOUT - Transport timeout for the text-generation backend (default: 60s)
"""

import logging
import os
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Tuple

from .error_handler import ConfigurationError, NoProviderConfiguredError, mask_credential
from .model_selection import TierConfig, load_tier_configs
from .types import TIERS, USE_CASES

lib_logger = logging.getLogger("fallback_library")

OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"

PROVIDER_ORDER = ("openrouter", "openai", "hf")

DEFAULT_MODELS: Dict[str, str] = {
    "openrouter": "qwen/qwen3-coder:free",
    "openai": "gpt-4o",
    "hf": "microsoft/DialoGPT-medium",
}

DEFAULT_FALLBACK_MODELS: Dict[str, Tuple[str, ...]] = {
    "openrouter": (
        "qwen/qwen3-coder:free",
        "mistralai/mistral-7b-instruct:free",
        "meta-llama/llama-3.1-8b-instruct:free",
        "google/gemma-2-9b-it:free",
    ),
    "openai": ("gpt-4o-mini", "gpt-3.5-turbo"),
    "hf": ("facebook/blenderbot-400M-distill",),
}


@dataclass(frozen=True)
class ProviderConfig:
    """One configured backend. Created once at startup and never mutated."""

    provider: str
    api_key: Optional[str] = None
    base_url: Optional[str] = None
    default_model: str = ""
    fallback_models: Tuple[str, ...] = ()
    extra_headers: Mapping[str, str] = field(default_factory=dict)
    timeout: float = 60.0

    @property
    def has_credentials(self) -> bool:
        if self.provider == "hf":
            return bool(self.api_key) and bool(self.base_url)
        return bool(self.api_key)

    def __repr__(self) -> str:
        # Keys stay out of logs
        return (
            f"ProviderConfig(provider={self.provider!r}, base_url={self.base_url!r}, "
            f"default_model={self.default_model!r}, fallback_models={list(self.fallback_models)!r}, "
            f"has_credentials={self.has_credentials})"
        )


def _parse_model_list(raw: Optional[str]) -> Tuple[str, ...]:
    if not raw:
        return ()
    return tuple(m.strip() for m in raw.split(",") if m.strip())


def _get_env_float(env: Mapping[str, str], key: str, default: float) -> float:
    value = env.get(key)
    if value is not None:
        try:
            return float(value)
        except ValueError:
            lib_logger.warning(f"Invalid value for {key}: {value}. Using default: {default}")
    return default


@dataclass(frozen=True)
class ProviderSettings:
    """Snapshot of all provider settings, taken once at process start."""

    active_provider: str
    default_model: str
    configs: Mapping[str, ProviderConfig]

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "ProviderSettings":
        env = os.environ if environ is None else environ

        active = (env.get("MODEL_PROVIDER") or "openrouter").strip().lower()
        model_name = (env.get("MODEL_NAME") or "").strip()
        app_url = env.get("APP_URL") or "http://localhost:3000"
        app_name = env.get("APP_NAME") or "FakeVerifier"

        def fallbacks(kind: str) -> Tuple[str, ...]:
            override = _parse_model_list(env.get(f"{kind.upper()}_FALLBACK_MODELS"))
            return override or DEFAULT_FALLBACK_MODELS[kind]

        def default_model(kind: str) -> str:
            # MODEL_NAME only applies to the active provider
            if kind == active and model_name:
                return model_name
            return DEFAULT_MODELS[kind]

        configs = {
            "openrouter": ProviderConfig(
                provider="openrouter",
                api_key=env.get("OPENROUTER_API_KEY") or None,
                base_url=env.get("OPENROUTER_BASE_URL") or OPENROUTER_BASE_URL,
                default_model=default_model("openrouter"),
                fallback_models=fallbacks("openrouter"),
                extra_headers={"HTTP-Referer": app_url, "X-Title": app_name},
            ),
            "openai": ProviderConfig(
                provider="openai",
                api_key=env.get("OPENAI_API_KEY") or None,
                base_url=env.get("OPENAI_BASE_URL") or None,
                default_model=default_model("openai"),
                fallback_models=fallbacks("openai"),
            ),
            "hf": ProviderConfig(
                provider="hf",
                api_key=env.get("HF_API_TOKEN") or None,
                base_url=env.get("HF_API_URL") or None,
                default_model=default_model("hf"),
                fallback_models=fallbacks("hf"),
                timeout=_get_env_float(env, "HF_REQUEST_TIMEOUT", 60.0),
            ),
        }

        settings = cls(
            active_provider=active,
            default_model=model_name or DEFAULT_MODELS.get(active, ""),
            configs=configs,
        )
        configured = [c.provider for c in settings.provider_configs()]
        lib_logger.info(
            f"Provider settings loaded: active={active}, configured={configured or 'none'}"
        )
        for config in settings.provider_configs():
            lib_logger.debug(f"{config.provider}: key={mask_credential(config.api_key)}")
        return settings

    def default_config(self) -> ProviderConfig:
        """Config of the active provider kind (MODEL_PROVIDER)."""
        if self.active_provider not in self.configs:
            raise ConfigurationError(
                f"Unsupported provider: {self.active_provider}. "
                f"Supported providers: {', '.join(PROVIDER_ORDER)}"
            )
        return self.configs[self.active_provider]

    def provider_configs(self) -> List[ProviderConfig]:
        """
        Configs with credentials, active provider first, then the rest in
        the fixed order openrouter, openai, hf.
        """
        order = list(PROVIDER_ORDER)
        if self.active_provider in order:
            order.remove(self.active_provider)
            order.insert(0, self.active_provider)
        return [self.configs[kind] for kind in order if self.configs[kind].has_credentials]


@dataclass(frozen=True)
class ResolvedCandidates:
    tier: str
    use_case: str
    provider: str
    models: Tuple[str, ...]
    config: ProviderConfig


class ProviderResolver:
    """
    Picks the ranked candidate models for a tier and use case, plus the
    provider config needed to reach them. Models are returned in their
    declared order; there is no reordering by latency or cost.
    """

    def __init__(
        self,
        settings: ProviderSettings,
        tiers: Optional[Mapping[str, TierConfig]] = None,
    ):
        self.settings = settings
        self.tiers = tiers if tiers is not None else load_tier_configs()

    def resolve(self, tier: str, use_case: str) -> ResolvedCandidates:
        if tier not in TIERS or tier not in self.tiers:
            raise ConfigurationError(f"Unknown tier '{tier}'. Expected one of: {', '.join(TIERS)}")
        if use_case not in USE_CASES:
            raise ConfigurationError(
                f"Unknown use case '{use_case}'. Expected one of: {', '.join(USE_CASES)}"
            )

        tier_config = self.tiers[tier]
        models = tuple(tier_config.models.get(use_case, ()))
        if not models:
            raise ConfigurationError(f"No models declared for {tier}/{use_case}")

        preferred = self.settings.configs.get(tier_config.provider)
        if preferred is not None and preferred.has_credentials:
            return ResolvedCandidates(tier, use_case, preferred.provider, models, preferred)

        available = self.settings.provider_configs()
        if not available:
            raise NoProviderConfiguredError(
                "No AI providers configured. Please set at least one API key."
            )

        substitute = available[0]
        lib_logger.warning(
            f"{tier} tier provider '{tier_config.provider}' has no credentials; "
            f"using '{substitute.provider}' models instead"
        )
        substitute_models = tuple(
            dict.fromkeys((substitute.default_model, *substitute.fallback_models))
        )
        return ResolvedCandidates(
            tier, use_case, substitute.provider, substitute_models, substitute
        )
