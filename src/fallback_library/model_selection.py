"""
Tier-aware model selection.

Each user tier declares, per use case, an ordered list of models. The
selector walks that list and proactively skips models the usage tracker
reports as recently used or rate limited.
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple

import yaml

from .error_handler import ConfigurationError
from .types import TIERS, USE_CASES
from .usage_tracker import ModelUsageTracker

lib_logger = logging.getLogger("fallback_library")

DEFAULT_TIERS_CONFIG_PATH = "config/model_tiers.yaml"


@dataclass(frozen=True)
class TierConfig:
    provider: str
    models: Mapping[str, Tuple[str, ...]]
    max_tokens: int
    temperature: float
    fallback_message: str


DEFAULT_TIER_CONFIGS: Dict[str, TierConfig] = {
    "FREE": TierConfig(
        provider="openrouter",
        models={
            "default": (
                "qwen/qwen3-coder:free",
                "mistralai/mistral-7b-instruct:free",
                "meta-llama/llama-3.1-8b-instruct:free",
                "google/gemma-2-9b-it:free",
            ),
            "search": (
                "qwen/qwen3-coder:free",
                "mistralai/mistral-7b-instruct:free",
                "meta-llama/llama-3.1-8b-instruct:free",
            ),
            "analysis": (
                "qwen/qwen3-coder:free",
                "mistralai/mistral-7b-instruct:free",
                "meta-llama/llama-3.1-8b-instruct:free",
            ),
        },
        max_tokens=2000,
        temperature=0.3,
        fallback_message=(
            "Free tier rate limit reached. Upgrade to Pro for unlimited access "
            "to premium AI models."
        ),
    ),
    "PAID": TierConfig(
        provider="openai",
        models={
            "default": ("gpt-4o",),
            "search": ("gpt-4o-search-preview",),
            "analysis": ("gpt-4o",),
        },
        max_tokens=3000,
        temperature=0.3,
        fallback_message="Pro tier rate limit reached. Please wait a moment and try again.",
    ),
}


def _tier_from_dict(name: str, data: Mapping[str, Any], base: Optional[TierConfig]) -> TierConfig:
    if not isinstance(data, Mapping):
        raise ConfigurationError(f"Tier '{name}' must be a mapping")

    models_raw = data.get("models", {} if base else None)
    if not isinstance(models_raw, Mapping):
        raise ConfigurationError(f"Tier '{name}' must declare a 'models' mapping")

    # Use cases left out keep the built-in lists
    models: Dict[str, Tuple[str, ...]] = dict(base.models) if base else {}
    for use_case, model_list in models_raw.items():
        if use_case not in USE_CASES:
            raise ConfigurationError(f"Tier '{name}' declares unknown use case '{use_case}'")
        # A single model may be given as a plain string
        if isinstance(model_list, str):
            model_list = [model_list]
        if not model_list:
            raise ConfigurationError(f"Tier '{name}' has an empty model list for '{use_case}'")
        models[use_case] = tuple(str(m) for m in model_list)

    try:
        return TierConfig(
            provider=str(data.get("provider", base.provider if base else "openrouter")),
            models=models,
            max_tokens=int(data.get("max_tokens", base.max_tokens if base else 2000)),
            temperature=float(data.get("temperature", base.temperature if base else 0.3)),
            fallback_message=str(
                data.get("fallback_message", base.fallback_message if base else "")
            ),
        )
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid settings for tier '{name}': {e}") from e


def load_tier_configs(path: Optional[str] = None) -> Dict[str, TierConfig]:
    """
    Loads tier configuration from YAML, layered over the built-in defaults.

    A missing or unreadable file keeps the defaults. Contents that are
    present but malformed raise ConfigurationError.
    """
    config_path = path or os.getenv("MODEL_TIERS_CONFIG") or DEFAULT_TIERS_CONFIG_PATH
    tiers = dict(DEFAULT_TIER_CONFIGS)

    try:
        with open(config_path, "r") as f:
            data = yaml.safe_load(f) or {}
    except OSError as e:
        if path is not None:
            lib_logger.warning(f"Failed to load tier config from {config_path}: {e}")
        return tiers
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {config_path}: {e}") from e

    tier_section = data.get("tiers", {}) if isinstance(data, Mapping) else None
    if not isinstance(tier_section, Mapping):
        raise ConfigurationError(f"{config_path}: 'tiers' must be a mapping")

    for name, tier_data in tier_section.items():
        if name not in TIERS:
            raise ConfigurationError(f"{config_path}: unknown tier '{name}'")
        tiers[name] = _tier_from_dict(name, tier_data, DEFAULT_TIER_CONFIGS.get(name))

    lib_logger.debug(f"Loaded tier config from {Path(config_path)}")
    return tiers


def get_user_tier(has_subscription: bool, subscription: Optional[Mapping[str, Any]] = None) -> str:
    """PAID only for an active subscription that is not cancelling at period end."""
    if not has_subscription or not subscription:
        return "FREE"
    if subscription.get("status") == "active" and not subscription.get("cancel_at_period_end"):
        return "PAID"
    return "FREE"


@dataclass(frozen=True)
class ModelSelection:
    model: str
    is_fallback: bool
    message: Optional[str] = None


class ModelSelector:
    def __init__(
        self,
        tracker: ModelUsageTracker,
        tiers: Optional[Mapping[str, TierConfig]] = None,
    ):
        self.tracker = tracker
        self.tiers = tiers if tiers is not None else load_tier_configs()

    def get_tier_config(self, tier: str) -> TierConfig:
        if tier not in self.tiers:
            raise ConfigurationError(f"Unknown tier '{tier}'. Expected one of: {', '.join(TIERS)}")
        return self.tiers[tier]

    def model_for_use_case(
        self,
        tier: str,
        use_case: str,
        attempted_models: Iterable[str] = (),
    ) -> ModelSelection:
        """
        Returns the first declared model for the use case that has not been
        attempted yet and is eligible in the usage tracker. When nothing
        qualifies the first model is returned, flagged as a fallback and
        carrying the tier's fallback message.
        """
        config = self.get_tier_config(tier)
        if use_case not in USE_CASES or use_case not in config.models:
            raise ConfigurationError(f"Unknown use case '{use_case}' for tier {tier}")

        attempted = list(attempted_models)
        model_list = config.models[use_case]

        for model in model_list:
            if model in attempted:
                continue
            if self.tracker.is_eligible(tier, model):
                return ModelSelection(
                    model=model,
                    is_fallback=len(attempted) > 0,
                    message=f"Switched to fallback model: {model}" if attempted else None,
                )

        lib_logger.info(f"No eligible {tier}/{use_case} model left, returning {model_list[0]}")
        return ModelSelection(
            model=model_list[0], is_fallback=True, message=config.fallback_message
        )

    def model_params(self, tier: str) -> Dict[str, Any]:
        config = self.get_tier_config(tier)
        return {"max_tokens": config.max_tokens, "temperature": config.temperature}


def get_rate_limit_message(tier: str, model: str) -> str:
    if tier == "FREE":
        return (
            f"Free tier rate limit reached for {model}. Upgrade to Pro for unlimited "
            f"access to premium AI models like GPT-4o."
        )
    return "Pro tier rate limit reached. Please wait a moment and try again."


def get_upgrade_suggestion() -> str:
    return (
        "Upgrade to Pro for unlimited access to premium AI models, faster response "
        "times, and priority support."
    )
