"""
Request and response types shared by the adapters and the orchestrator.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Optional, Tuple, Union

from .error_handler import InvalidRequestError

VALID_ROLES = frozenset({"user", "assistant", "system"})

TIERS = ("FREE", "PAID")
USE_CASES = ("default", "search", "analysis")

DEFAULT_TEMPERATURE = 0.3
DEFAULT_TOP_P = 1.0
DEFAULT_MAX_TOKENS = 2000


@dataclass(frozen=True)
class Message:
    role: str
    content: str

    def __post_init__(self):
        if self.role not in VALID_ROLES:
            raise InvalidRequestError(
                f"Invalid message role '{self.role}'. Expected one of: {sorted(VALID_ROLES)}"
            )
        if not isinstance(self.content, str):
            raise InvalidRequestError("Message content must be a string")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Message":
        try:
            return cls(role=data["role"], content=data["content"])
        except KeyError as e:
            raise InvalidRequestError(f"Message is missing field {e}") from e

    def to_dict(self) -> Dict[str, str]:
        return {"role": self.role, "content": self.content}


Conversation = Tuple[Message, ...]


def as_conversation(messages: Iterable[Union[Message, Dict[str, Any]]]) -> Conversation:
    """Builds an immutable conversation from Message objects or role/content dicts."""
    return tuple(
        m if isinstance(m, Message) else Message.from_dict(m) for m in messages
    )


@dataclass(frozen=True)
class SamplingParams:
    """Sampling parameters; None means the provider default is used."""

    temperature: Optional[float] = None
    top_p: Optional[float] = None
    max_tokens: Optional[int] = None

    def resolved(self) -> "SamplingParams":
        return SamplingParams(
            temperature=DEFAULT_TEMPERATURE if self.temperature is None else self.temperature,
            top_p=DEFAULT_TOP_P if self.top_p is None else self.top_p,
            max_tokens=DEFAULT_MAX_TOKENS if self.max_tokens is None else self.max_tokens,
        )


@dataclass(frozen=True)
class CompletionRequest:
    conversation: Conversation
    model: str
    params: SamplingParams = field(default_factory=SamplingParams)
    signal: Optional[asyncio.Event] = field(default=None, compare=False)

    def validate(self) -> None:
        if not self.conversation:
            raise InvalidRequestError("Conversation must contain at least one message")
        if not isinstance(self.model, str) or not self.model.strip():
            raise InvalidRequestError("Model must be a non-empty identifier")


@dataclass(frozen=True)
class StreamChunk:
    """
    An incremental text fragment.

    `attempt` is the 1-based index of the (provider, model) attempt that
    produced the chunk. When it changes mid-request, earlier chunks belonged
    to a failed attempt and should be discarded.
    """

    text: str
    provider: str
    model: str
    attempt: int = 1
