"""
Pytest configuration and fixtures for the test suite.
"""
import pytest
import os
import sys

# Add src directory to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from fallback_library.types import Message  # noqa: E402
from fallback_library.usage_tracker import ModelUsageTracker  # noqa: E402


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "asyncio: mark test as an async test"
    )


class FakeClock:
    """Manually advanced clock for time-dependent tests."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def tracker(fake_clock):
    return ModelUsageTracker(clock=fake_clock)


@pytest.fixture
def sample_messages():
    """Sample messages for chat completion tests."""
    return [
        {"role": "system", "content": "You are a news verification assistant."},
        {"role": "user", "content": "Did the city council ban bicycles downtown?"}
    ]


@pytest.fixture
def sample_conversation(sample_messages):
    return tuple(Message.from_dict(m) for m in sample_messages)


@pytest.fixture
def provider_env():
    """Environment with OpenRouter and OpenAI credentials."""
    return {
        "MODEL_PROVIDER": "openrouter",
        "OPENROUTER_API_KEY": "sk-or-test-1234567890",
        "OPENAI_API_KEY": "sk-openai-test-1234567890",
    }
