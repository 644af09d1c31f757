"""
Provider configuration and resolver tests.
"""

import logging

import pytest

from fallback_library.error_handler import ConfigurationError, NoProviderConfiguredError
from fallback_library.model_selection import DEFAULT_TIER_CONFIGS
from fallback_library.provider_config import (
    DEFAULT_FALLBACK_MODELS,
    OPENROUTER_BASE_URL,
    ProviderConfig,
    ProviderResolver,
    ProviderSettings,
)


class TestProviderSettingsFromEnv:
    def test_defaults_without_credentials(self):
        settings = ProviderSettings.from_env({})

        assert settings.active_provider == "openrouter"
        assert settings.default_model == "qwen/qwen3-coder:free"
        assert settings.provider_configs() == []
        assert settings.configs["openrouter"].base_url == OPENROUTER_BASE_URL

    def test_openrouter_identification_headers(self):
        settings = ProviderSettings.from_env(
            {
                "OPENROUTER_API_KEY": "sk-or-test",
                "APP_URL": "https://fakeverifier.example",
                "APP_NAME": "Verifier",
            }
        )

        assert settings.configs["openrouter"].extra_headers == {
            "HTTP-Referer": "https://fakeverifier.example",
            "X-Title": "Verifier",
        }

    def test_model_name_applies_to_active_provider_only(self):
        settings = ProviderSettings.from_env(
            {"MODEL_PROVIDER": "openai", "MODEL_NAME": "gpt-4.1", "OPENAI_API_KEY": "k"}
        )

        assert settings.configs["openai"].default_model == "gpt-4.1"
        assert settings.configs["openrouter"].default_model == "qwen/qwen3-coder:free"
        assert settings.default_config().provider == "openai"

    def test_fallback_list_override(self):
        settings = ProviderSettings.from_env(
            {"OPENAI_API_KEY": "k", "OPENAI_FALLBACK_MODELS": " gpt-4o-mini , ,o3-mini "}
        )

        assert settings.configs["openai"].fallback_models == ("gpt-4o-mini", "o3-mini")
        assert settings.configs["openrouter"].fallback_models == DEFAULT_FALLBACK_MODELS["openrouter"]

    def test_hf_requires_token_and_url(self):
        token_only = ProviderSettings.from_env({"HF_API_TOKEN": "hf_test"})
        both = ProviderSettings.from_env(
            {"HF_API_TOKEN": "hf_test", "HF_API_URL": "https://hf.example.com"}
        )

        assert token_only.provider_configs() == []
        assert [c.provider for c in both.provider_configs()] == ["hf"]

    def test_invalid_timeout_uses_default(self, caplog):
        with caplog.at_level(logging.WARNING, logger="fallback_library"):
            settings = ProviderSettings.from_env({"HF_REQUEST_TIMEOUT": "soon"})

        assert settings.configs["hf"].timeout == 60.0
        assert "HF_REQUEST_TIMEOUT" in caplog.text

    def test_load_logs_masked_keys_only(self, caplog):
        with caplog.at_level(logging.DEBUG, logger="fallback_library"):
            ProviderSettings.from_env({"OPENAI_API_KEY": "sk-live-abcdefghijklmnop"})

        assert "openai: key=sk-l...mnop" in caplog.text
        assert "sk-live-abcdefghijklmnop" not in caplog.text

    def test_active_provider_listed_first(self, provider_env):
        env = dict(provider_env, MODEL_PROVIDER="openai", HF_API_TOKEN="t", HF_API_URL="u")

        settings = ProviderSettings.from_env(env)

        assert [c.provider for c in settings.provider_configs()] == ["openai", "openrouter", "hf"]

    def test_unsupported_active_provider(self):
        settings = ProviderSettings.from_env({"MODEL_PROVIDER": "anthropic"})

        with pytest.raises(ConfigurationError):
            settings.default_config()

    def test_repr_hides_api_key(self):
        config = ProviderConfig(provider="openai", api_key="sk-secret-value-123")

        assert "sk-secret-value-123" not in repr(config)


class TestProviderResolver:
    def test_paid_tier_uses_openai_models(self, provider_env):
        resolver = ProviderResolver(
            ProviderSettings.from_env(provider_env), tiers=DEFAULT_TIER_CONFIGS
        )

        resolved = resolver.resolve("PAID", "search")

        assert resolved.provider == "openai"
        assert resolved.models == ("gpt-4o-search-preview",)
        assert resolved.config.api_key == provider_env["OPENAI_API_KEY"]

    def test_free_tier_uses_openrouter_models_in_order(self, provider_env):
        resolver = ProviderResolver(
            ProviderSettings.from_env(provider_env), tiers=DEFAULT_TIER_CONFIGS
        )

        resolved = resolver.resolve("FREE", "default")

        assert resolved.provider == "openrouter"
        assert resolved.models == DEFAULT_TIER_CONFIGS["FREE"].models["default"]

    def test_substitutes_configured_provider(self):
        settings = ProviderSettings.from_env({"OPENROUTER_API_KEY": "sk-or-test"})
        resolver = ProviderResolver(settings, tiers=DEFAULT_TIER_CONFIGS)

        resolved = resolver.resolve("PAID", "default")

        assert resolved.provider == "openrouter"
        assert resolved.models[0] == "qwen/qwen3-coder:free"
        assert len(resolved.models) == len(set(resolved.models))

    def test_no_credentials_raises(self):
        resolver = ProviderResolver(ProviderSettings.from_env({}), tiers=DEFAULT_TIER_CONFIGS)

        with pytest.raises(NoProviderConfiguredError):
            resolver.resolve("FREE", "default")

    def test_unknown_tier_or_use_case(self, provider_env):
        resolver = ProviderResolver(
            ProviderSettings.from_env(provider_env), tiers=DEFAULT_TIER_CONFIGS
        )

        with pytest.raises(ConfigurationError):
            resolver.resolve("TRIAL", "default")
        with pytest.raises(ConfigurationError):
            resolver.resolve("FREE", "summarize")
