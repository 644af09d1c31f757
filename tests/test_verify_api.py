"""
Verify endpoint tests: streaming events, fallback signalling, rate limits.
"""

import json
import logging

import pytest
from fastapi.testclient import TestClient

from fallback_library.provider_config import ProviderSettings
from verify_app.app import create_app, get_subscription
from verify_app.settings import AppSettings
from verify_app.streaming import GENERIC_ERROR_MESSAGE
from tests.fixtures.provider_mocks import ScriptedProviderFactory

FREE_MODEL = "qwen/qwen3-coder:free"
SECRET_ERROR = "upstream said: invalid key sk-live-abc"

VERIFY_BODY = {"messages": [{"role": "user", "content": "Did the council ban bicycles?"}]}


def sse_events(response):
    return [
        json.loads(line[len("data: "):])
        for line in response.text.splitlines()
        if line.startswith("data: ")
    ]


def make_client(provider_env, scripts, app_settings=None, **factory_defaults):
    factory_defaults.setdefault("default_script", [RuntimeError(SECRET_ERROR)])
    app = create_app(
        app_settings=app_settings or AppSettings(),
        provider_settings=ProviderSettings.from_env(provider_env),
        provider_factory=ScriptedProviderFactory(scripts, **factory_defaults),
    )
    return app, TestClient(app)


class TestVerifyStreaming:
    def test_streams_chunks_then_metadata(self, provider_env):
        _, client = make_client(
            provider_env,
            {"openrouter": {FREE_MODEL: ["VERDICT: false\n", "CONFIDENCE: 80\n", "EXPLANATION: no"]}},
        )

        response = client.post("/api/verify", json=VERIFY_BODY)

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        assert response.headers["x-ratelimit-limit"] == "60"
        events = sse_events(response)
        assert [e["type"] for e in events] == ["chunk", "chunk", "chunk", "metadata"]
        metadata = events[-1]
        assert metadata["verdict"] == "false"
        assert metadata["confidence"] == 80
        assert metadata["provider"] == "openrouter"
        assert metadata["model"] == FREE_MODEL

    def test_retry_event_after_partial_output(self, provider_env):
        _, client = make_client(
            provider_env,
            {
                "openrouter": {
                    FREE_MODEL: ["VERDICT: true\n", RuntimeError(SECRET_ERROR)],
                    "mistralai/mistral-7b-instruct:free": ["VERDICT: false\nCONFIDENCE: 90"],
                }
            },
        )

        events = sse_events(client.post("/api/verify", json=VERIFY_BODY))

        assert [e["type"] for e in events] == ["chunk", "retry", "chunk", "metadata"]
        assert events[1]["model"] == "mistralai/mistral-7b-instruct:free"
        assert events[-1]["verdict"] == "false"
        assert events[-1]["confidence"] == 90

    def test_all_providers_failing_before_output_returns_503(self, provider_env):
        _, client = make_client(provider_env, {})

        response = client.post("/api/verify", json=VERIFY_BODY)

        assert response.status_code == 503
        assert response.json() == {"error": GENERIC_ERROR_MESSAGE}
        assert SECRET_ERROR not in response.text

    def test_terminal_failure_mid_stream_sends_generic_error(self, provider_env):
        _, client = make_client(
            provider_env, {"openrouter": {FREE_MODEL: ["VERDICT: ", RuntimeError(SECRET_ERROR)]}}
        )

        response = client.post("/api/verify", json=VERIFY_BODY)

        events = sse_events(response)
        assert events[0] == {"type": "chunk", "content": "VERDICT: "}
        assert events[-1] == {"type": "error", "error": GENERIC_ERROR_MESSAGE}
        assert SECRET_ERROR not in response.text

    def test_debug_errors_adds_error_type_only(self, provider_env):
        _, client = make_client(provider_env, {}, app_settings=AppSettings(debug_errors=True))

        response = client.post("/api/verify", json=VERIFY_BODY)

        assert response.json() == {"error": GENERIC_ERROR_MESSAGE, "error_type": "unknown"}

    def test_paid_subscription_uses_openai(self, provider_env):
        app, client = make_client(provider_env, {"openai": {"gpt-4o": ["VERDICT: true"]}})
        app.dependency_overrides[get_subscription] = lambda: {
            "hasSubscription": True,
            "subscription": {"status": "active", "cancel_at_period_end": False},
        }

        events = sse_events(client.post("/api/verify", json=VERIFY_BODY))

        assert events[-1]["provider"] == "openai"
        assert events[-1]["model"] == "gpt-4o"
        assert events[-1]["verdict"] == "true"


class TestVerifyRequestHandling:
    def test_invalid_body_returns_400(self, provider_env):
        _, client = make_client(provider_env, {})

        response = client.post("/api/verify", json={"messages": []})

        assert response.status_code == 400
        assert response.json()["error"] == "Invalid request"

    def test_non_json_body_returns_400(self, provider_env):
        _, client = make_client(provider_env, {})

        response = client.post(
            "/api/verify", content=b"{not json", headers={"content-type": "application/json"}
        )

        assert response.status_code == 400

    def test_rate_limit_returns_429_with_retry_after(self, provider_env):
        _, client = make_client(
            provider_env,
            {"openrouter": {FREE_MODEL: ["ok"]}},
            app_settings=AppSettings(rate_limit_burst=1),
        )
        headers = {"x-forwarded-for": "203.0.113.9"}

        first = client.post("/api/verify", json=VERIFY_BODY, headers=headers)
        second = client.post("/api/verify", json=VERIFY_BODY, headers=headers)

        assert first.status_code == 200
        assert second.status_code == 429
        assert second.headers["retry-after"] == "60"
        assert second.headers["x-ratelimit-remaining"] == "0"

    def test_no_configured_provider_returns_503(self):
        _, client = make_client({}, {})

        response = client.post("/api/verify", json=VERIFY_BODY)

        assert response.status_code == 503
        assert response.json() == {"error": GENERIC_ERROR_MESSAGE}


class TestOriginCheck:
    ALLOWED = ("https://fakeverifier.example",)

    def make_client(self, provider_env, **settings):
        settings.setdefault("allowed_origins", self.ALLOWED)
        return make_client(
            provider_env,
            {"openrouter": {FREE_MODEL: ["ok"]}},
            app_settings=AppSettings(**settings),
        )

    def test_request_without_origin_or_referer_is_allowed(self, provider_env):
        _, client = self.make_client(provider_env)

        response = client.post("/api/verify", json=VERIFY_BODY)

        assert response.status_code == 200

    def test_allowed_origin(self, provider_env):
        _, client = self.make_client(provider_env)

        response = client.post(
            "/api/verify", json=VERIFY_BODY, headers={"origin": "https://fakeverifier.example"}
        )

        assert response.status_code == 200

    def test_referer_with_allowed_prefix(self, provider_env):
        _, client = self.make_client(provider_env)

        response = client.post(
            "/api/verify",
            json=VERIFY_BODY,
            headers={"referer": "https://fakeverifier.example/verify?q=1"},
        )

        assert response.status_code == 200

    def test_disallowed_origin_returns_403(self, provider_env, caplog):
        _, client = self.make_client(provider_env)

        with caplog.at_level(logging.WARNING, logger="verify_app"):
            response = client.post(
                "/api/verify", json=VERIFY_BODY, headers={"origin": "https://evil.example"}
            )

        assert response.status_code == 403
        assert response.json() == {
            "error": "Invalid origin",
            "details": "Request origin not allowed",
        }
        assert response.headers["x-frame-options"] == "DENY"
        assert "invalid_origin" in caplog.text
        assert "https://evil.example" in caplog.text

    def test_origin_rejected_when_none_configured(self, provider_env):
        _, client = self.make_client(provider_env, allowed_origins=())

        response = client.post(
            "/api/verify", json=VERIFY_BODY, headers={"origin": "https://fakeverifier.example"}
        )

        assert response.status_code == 403

    def test_rejected_origin_does_not_use_rate_limit(self, provider_env):
        _, client = self.make_client(provider_env, rate_limit_burst=1)
        client_ip = {"x-forwarded-for": "203.0.113.20"}

        rejected = client.post(
            "/api/verify",
            json=VERIFY_BODY,
            headers={**client_ip, "origin": "https://evil.example"},
        )
        accepted = client.post("/api/verify", json=VERIFY_BODY, headers=client_ip)

        assert rejected.status_code == 403
        assert "x-ratelimit-remaining" not in rejected.headers
        assert accepted.status_code == 200

    def test_content_security_policy_header(self, provider_env):
        _, client = self.make_client(provider_env)

        response = client.post("/api/verify", json=VERIFY_BODY)

        assert response.headers["content-security-policy"] == (
            "default-src 'self'; script-src 'self' 'unsafe-inline'; "
            "style-src 'self' 'unsafe-inline';"
        )

    def test_allowed_origins_from_env(self):
        settings = AppSettings.from_env(
            {
                "ALLOWED_ORIGINS": "https://a.example, ,https://b.example",
                "APP_URL": "https://app.example",
            }
        )

        assert settings.allowed_origins == (
            "https://a.example",
            "https://b.example",
            "https://app.example",
        )


class TestHealth:
    def test_reports_routes_and_usage(self, provider_env):
        _, client = make_client(provider_env, {"openrouter": {FREE_MODEL: ["ok"]}})
        client.post("/api/verify", json=VERIFY_BODY)

        body = client.get("/health").json()

        assert body["status"] == "ok"
        assert body["providers"] == ["openai", "openrouter"]
        assert body["tiers"]["FREE"] == {"provider": "openrouter", "model": FREE_MODEL}
        assert body["tiers"]["PAID"] == {"provider": "openai", "model": "gpt-4o"}
        assert f"FREE-{FREE_MODEL}" in body["model_usage"]

    def test_degraded_without_providers(self):
        _, client = make_client({}, {})

        assert client.get("/health").json()["status"] == "degraded"
