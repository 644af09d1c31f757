import logging
from typing import Optional

import httpx

from litellm.exceptions import (
    APIConnectionError,
    AuthenticationError,
    BadRequestError,
    InternalServerError,
    RateLimitError,
    ServiceUnavailableError,
    Timeout,
)

lib_logger = logging.getLogger("fallback_library")


class FallbackLibraryError(Exception):
    """Base exception for the fallback library."""

    pass


class ConfigurationError(FallbackLibraryError):
    """Raised when provider or tier configuration is invalid."""

    pass


class NoProviderConfiguredError(ConfigurationError):
    """Raised when no backend has the credentials it needs."""

    pass


class InvalidRequestError(FallbackLibraryError, ValueError):
    """Raised when a completion request is malformed (empty conversation, blank model)."""

    pass


class RequestCancelledError(FallbackLibraryError):
    """
    Raised when the caller's cancellation signal fires.

    Cancellation is terminal for a request: the orchestrator never falls
    back to another candidate after this error.
    """

    def __init__(self, message: str = "Request cancelled"):
        super().__init__(message)


class ProviderCallError(FallbackLibraryError):
    """
    A single (provider, model) attempt failed.

    Attributes:
        provider: The provider kind (e.g., "openrouter")
        model: The model that was requested
        cause: The underlying exception (network, HTTP status, malformed payload)
    """

    def __init__(self, provider: str, model: str, cause: BaseException):
        self.provider = provider
        self.model = model
        self.cause = cause
        super().__init__(f"{provider} call with model '{model}' failed: {cause}")

    @property
    def status_code(self) -> Optional[int]:
        return _status_code_of(self.cause)


class EmptyResponseError(FallbackLibraryError):
    """Raised when a backend completes its stream without producing any text."""

    def __init__(self, provider: str, model: str):
        self.provider = provider
        self.model = model
        super().__init__(f"Empty response from {provider}/{model}")


class AllProvidersFailedError(FallbackLibraryError):
    """
    Every configured (provider, model) candidate failed.

    Only the last failure is kept; earlier ones are visible in the logs.
    """

    def __init__(self, last_error: Optional[ProviderCallError], attempts: int = 0):
        self.last_error = last_error
        self.attempts = attempts
        if last_error is None:
            message = "All AI providers failed"
        else:
            message = f"All AI providers failed after {attempts} attempt(s). Last error: {last_error}"
        super().__init__(message)


def mask_credential(credential: Optional[str]) -> str:
    """Shows only the first and last four characters of an API key."""
    if not credential:
        return "<none>"
    if len(credential) <= 12:
        return "****"
    return f"{credential[:4]}...{credential[-4:]}"


# =============================================================================
# ERROR CLASSIFICATION
# =============================================================================


class ClassifiedError:
    def __init__(
        self,
        error_type: str,
        original_exception: BaseException,
        status_code: Optional[int] = None,
        retry_after: Optional[int] = None,
    ):
        self.error_type = error_type
        self.original_exception = original_exception
        self.status_code = status_code
        self.retry_after = retry_after

    def __str__(self):
        return (
            f"ClassifiedError(type={self.error_type}, status={self.status_code}, "
            f"retry_after={self.retry_after}, original_exc={self.original_exception})"
        )


def _status_code_of(error: BaseException) -> Optional[int]:
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code
    status_code = getattr(error, "status_code", None)
    return status_code if isinstance(status_code, int) else None


def get_retry_after(error: BaseException) -> Optional[int]:
    """Reads a Retry-After header (seconds) from an HTTP-carrying exception."""
    response = getattr(error, "response", None)
    headers = getattr(response, "headers", None)
    if not headers:
        return None
    value = headers.get("retry-after")
    if value is None:
        return None
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return None


def classify_error(e: BaseException) -> ClassifiedError:
    """
    Classifies an exception into a structured ClassifiedError object.
    Handles httpx and litellm exceptions; a ProviderCallError is unwrapped
    to its cause first.

    Error types:
    - rate_limit (429)
    - authentication (401)
    - forbidden (403)
    - invalid_request (other 4xx)
    - server_error (5xx)
    - api_connection (timeouts, network failures)
    - unknown
    """
    if isinstance(e, ProviderCallError):
        e = e.cause

    status_code = _status_code_of(e)

    if isinstance(e, RateLimitError):
        return ClassifiedError("rate_limit", e, 429, get_retry_after(e))
    if isinstance(e, AuthenticationError):
        return ClassifiedError("authentication", e, 401)
    if isinstance(e, (Timeout, APIConnectionError)):
        return ClassifiedError("api_connection", e, status_code)
    if isinstance(e, (ServiceUnavailableError, InternalServerError)):
        return ClassifiedError("server_error", e, status_code or 500)
    if isinstance(e, BadRequestError):
        return ClassifiedError("invalid_request", e, 400)

    if isinstance(e, (httpx.TimeoutException, httpx.NetworkError)):
        return ClassifiedError("api_connection", e, status_code)

    if status_code is not None:
        if status_code == 429:
            return ClassifiedError("rate_limit", e, status_code, get_retry_after(e))
        if status_code == 401:
            return ClassifiedError("authentication", e, status_code)
        if status_code == 403:
            return ClassifiedError("forbidden", e, status_code)
        if 400 <= status_code < 500:
            return ClassifiedError("invalid_request", e, status_code)
        if status_code >= 500:
            return ClassifiedError("server_error", e, status_code)

    # Some OpenAI-compatible backends only report the limit in the message
    error_str = str(e).lower()
    if any(kw in error_str for kw in ("rate limit", "rate_limit", "too many requests")):
        return ClassifiedError("rate_limit", e, status_code)

    return ClassifiedError("unknown", e, status_code)


def is_rate_limit_error(e: BaseException) -> bool:
    return classify_error(e).error_type == "rate_limit"
