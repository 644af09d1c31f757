import asyncio
import logging
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional, Sequence

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse, StreamingResponse

from fallback_library import (
    AllProvidersFailedError,
    ConfigurationError,
    FallbackClient,
    Message,
    ModelUsageTracker,
    ProviderResolver,
    ProviderSettings,
    get_user_tier,
)
from fallback_library.client import ProviderFactory
from fallback_library.providers import create_provider
from fallback_library.types import TIERS

from .prompts import generate_system_prompt
from .rate_limiter import RateLimiter, RateLimitResult, client_identifier
from .schemas import RequestValidationFailed, parse_verify_request
from .settings import AppSettings
from .streaming import GENERIC_ERROR_MESSAGE, error_payload, verification_events

logger = logging.getLogger(__name__)

VERIFY_TEMPERATURE = 0.3
VERIFY_MAX_TOKENS = 2000

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "X-XSS-Protection": "1; mode=block",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Content-Security-Policy": (
        "default-src 'self'; script-src 'self' 'unsafe-inline'; "
        "style-src 'self' 'unsafe-inline';"
    ),
}


@dataclass
class TierRoute:
    client: FallbackClient
    provider: str
    model: str


async def get_subscription(request: Request) -> Optional[Dict[str, Any]]:
    """
    Subscription lookup for the caller, as {"hasSubscription": bool,
    "subscription": {...}}. No billing backend is wired in, so every caller
    is on the free tier unless this dependency is overridden.
    """
    return None


def build_tier_routes(
    provider_settings: ProviderSettings,
    tracker: ModelUsageTracker,
    provider_factory: ProviderFactory = create_provider,
) -> Dict[str, TierRoute]:
    """
    One fallback client per tier. The tier's resolved provider is tried
    first, the other configured providers after it.
    """
    resolver = ProviderResolver(provider_settings)
    routes: Dict[str, TierRoute] = {}
    for tier in TIERS:
        try:
            resolved = resolver.resolve(tier, "default")
        except ConfigurationError as e:
            logger.error(f"{tier} tier has no usable provider: {e}")
            continue

        configs = [resolved.config] + [
            c for c in provider_settings.provider_configs() if c.provider != resolved.provider
        ]
        routes[tier] = TierRoute(
            client=FallbackClient(
                configs, usage_tracker=tracker, tier=tier, provider_factory=provider_factory
            ),
            provider=resolved.provider,
            model=resolved.models[0],
        )
        logger.info(f"{tier} tier -> {resolved.provider}/{resolved.models[0]}")
    return routes


def is_allowed_origin(headers: Mapping[str, str], allowed_origins: Sequence[str]) -> bool:
    """
    Requests without Origin and Referer are treated as same-origin. Otherwise
    either header must start with one of the allowed origins.
    """
    origin = headers.get("origin")
    referer = headers.get("referer")
    if not origin and not referer:
        return True
    if origin and any(origin.startswith(allowed) for allowed in allowed_origins):
        return True
    if referer and any(referer.startswith(allowed) for allowed in allowed_origins):
        return True
    return False


def rate_limit_headers(limit: int, result: RateLimitResult) -> Dict[str, str]:
    return {
        "X-RateLimit-Limit": str(limit),
        "X-RateLimit-Remaining": str(result.remaining),
        "X-RateLimit-Reset": datetime.fromtimestamp(result.reset_time, tz=timezone.utc).isoformat(),
    }


def create_app(
    app_settings: Optional[AppSettings] = None,
    provider_settings: Optional[ProviderSettings] = None,
    tracker: Optional[ModelUsageTracker] = None,
    rate_limiter: Optional[RateLimiter] = None,
    provider_factory: ProviderFactory = create_provider,
) -> FastAPI:
    settings = app_settings or AppSettings.from_env()
    provider_settings = provider_settings or ProviderSettings.from_env()
    tracker = tracker or ModelUsageTracker()
    rate_limiter = rate_limiter or RateLimiter()
    routes = build_tier_routes(provider_settings, tracker, provider_factory)

    app = FastAPI(title="FakeVerifier API")
    app.state.settings = settings
    app.state.tracker = tracker
    app.state.rate_limiter = rate_limiter
    app.state.routes = routes

    @app.post("/api/verify")
    async def verify(
        request: Request,
        subscription: Optional[Dict[str, Any]] = Depends(get_subscription),
    ):
        start_time = time.time()
        request_id = f"req_{uuid.uuid4().hex[:12]}"

        if not is_allowed_origin(request.headers, settings.allowed_origins):
            logger.warning(
                f"[{request_id}] Security event: invalid_origin "
                f"origin={request.headers.get('origin')} referer={request.headers.get('referer')} "
                f"client={request.client.host if request.client else 'unknown'}"
            )
            return JSONResponse(
                {"error": "Invalid origin", "details": "Request origin not allowed"},
                status_code=403,
                headers=SECURITY_HEADERS,
            )

        identifier = client_identifier(
            request.headers, request.client.host if request.client else None
        )
        limit_result = await rate_limiter.check_limit(
            identifier,
            limit=settings.rate_limit_per_hour,
            window=settings.rate_limit_window_seconds,
            burst_limit=settings.rate_limit_burst,
            burst_window=settings.rate_limit_burst_window_seconds,
        )
        headers = {
            **rate_limit_headers(settings.rate_limit_per_hour, limit_result),
            **SECURITY_HEADERS,
        }

        if not limit_result.allowed:
            logger.warning(f"[{request_id}] Rate limit exceeded for {identifier}")
            return JSONResponse(
                {
                    "error": "Too many requests",
                    "details": "Rate limit exceeded. Please try again later.",
                    "retryAfter": limit_result.retry_after,
                },
                status_code=429,
                headers={**headers, "Retry-After": str(limit_result.retry_after or 60)},
            )

        try:
            body = await request.json()
        except ValueError:
            return JSONResponse(
                {"error": "Invalid request", "details": "Request body must be valid JSON"},
                status_code=400,
                headers=headers,
            )

        try:
            verify_request = parse_verify_request(body)
        except RequestValidationFailed as e:
            return JSONResponse(
                {"error": e.error, "details": e.details}, status_code=400, headers=headers
            )

        if subscription:
            tier = get_user_tier(
                bool(subscription.get("hasSubscription")), subscription.get("subscription")
            )
        else:
            tier = "FREE"

        utm = verify_request.meta.utm if verify_request.meta else None
        if utm is not None:
            logger.info(
                f"[{request_id}] UTM parameters: {utm.model_dump(exclude_none=True)} "
                f"tier={tier} source={verify_request.source}"
            )

        route = routes.get(tier)
        if route is None:
            logger.error(f"[{request_id}] No AI provider available for {tier} tier")
            return JSONResponse(
                {"error": GENERIC_ERROR_MESSAGE}, status_code=503, headers=headers
            )

        messages = [Message("system", generate_system_prompt())] + [
            Message(m.role, m.content) for m in verify_request.messages
        ]
        signal = asyncio.Event()
        chunks = route.client.stream_chunks(
            messages,
            route.model,
            temperature=VERIFY_TEMPERATURE,
            max_tokens=VERIFY_MAX_TOKENS,
            signal=signal,
        )

        # Nothing is committed to the client until the first chunk arrives
        try:
            first_chunk = await chunks.__anext__()
        except AllProvidersFailedError as e:
            duration = int((time.time() - start_time) * 1000)
            logger.error(f"[{request_id}] Verification failed after {duration}ms: {e}")
            error_body = error_payload(e, include_type=settings.debug_errors)
            error_body.pop("type")
            return JSONResponse(error_body, status_code=503, headers=headers)

        logger.info(
            f"[{request_id}] Streaming {tier} verification from "
            f"{first_chunk.provider}/{first_chunk.model}"
        )
        return StreamingResponse(
            verification_events(
                chunks,
                first_chunk,
                start_time,
                signal=signal,
                is_disconnected=request.is_disconnected,
                debug_errors=settings.debug_errors,
            ),
            media_type="text/event-stream",
            headers={**headers, "Cache-Control": "no-cache", "Connection": "keep-alive"},
        )

    @app.get("/health")
    async def health():
        providers = sorted({name for r in routes.values() for name in r.client.provider_names})
        return {
            "status": "ok" if routes else "degraded",
            "providers": providers,
            "tiers": {tier: {"provider": r.provider, "model": r.model} for tier, r in routes.items()},
            "model_usage": tracker.snapshot(),
        }

    return app
