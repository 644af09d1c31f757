"""
Request models for the verify endpoint.
"""

import re
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, ValidationError

MAX_TOTAL_CONTENT_CHARS = 16000

# Applied in order: brackets first, so a bracket cannot hide a scheme
_UNSAFE_PATTERNS = (
    re.compile(r"[<>]"),
    re.compile(r"javascript:", re.IGNORECASE),
    re.compile(r"data:", re.IGNORECASE),
    re.compile(r"vbscript:", re.IGNORECASE),
)


class ChatMessage(BaseModel):
    role: Literal["user", "assistant", "system"]
    content: str = Field(min_length=1, max_length=2000)


class UTMParams(BaseModel):
    utm_source: Optional[str] = Field(default=None, max_length=100)
    utm_medium: Optional[str] = Field(default=None, max_length=100)
    utm_campaign: Optional[str] = Field(default=None, max_length=100)
    utm_term: Optional[str] = Field(default=None, max_length=100)
    utm_content: Optional[str] = Field(default=None, max_length=100)


class RequestMeta(BaseModel):
    utm: Optional[UTMParams] = None


class VerifyRequest(BaseModel):
    messages: List[ChatMessage] = Field(min_length=1, max_length=32)
    source: Literal["hero", "chip", "direct"] = "direct"
    meta: Optional[RequestMeta] = None


class RequestValidationFailed(Exception):
    """Raised when the request body or its messages are rejected."""

    def __init__(self, error: str, details: str):
        self.error = error
        self.details = details
        super().__init__(f"{error}: {details}")


def sanitize_text(text: str) -> str:
    """Strips angle brackets and script-like URL schemes."""
    for pattern in _UNSAFE_PATTERNS:
        text = pattern.sub("", text)
    return text.strip()


def format_validation_error(error: ValidationError) -> str:
    parts = []
    for err in error.errors():
        location = ".".join(str(p) for p in err.get("loc", ()))
        parts.append(f"{location}: {err.get('msg')}")
    return "Validation error: " + ", ".join(parts)


def parse_verify_request(body: object) -> VerifyRequest:
    """
    Validates the raw JSON body and sanitizes message contents.

    Raises:
        RequestValidationFailed: schema violation, or sanitized content
            exceeding the total size limit
    """
    try:
        request = VerifyRequest.model_validate(body)
    except ValidationError as e:
        raise RequestValidationFailed("Invalid request", format_validation_error(e)) from e

    sanitized = [
        ChatMessage.model_construct(role=m.role, content=sanitize_text(m.content))
        for m in request.messages
    ]

    total_size = sum(len(m.content) for m in sanitized)
    if total_size > MAX_TOTAL_CONTENT_CHARS:
        raise RequestValidationFailed(
            "Invalid messages", "Total payload size exceeds 16KB limit"
        )

    return request.model_copy(update={"messages": sanitized})
