import json

import pytest

from review_stream.config import default_config


class FakeClock:
    """Monotonic clock the tests move by hand."""

    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def sse(payload) -> str:
    """One SSE message carrying `payload` (JSON-encoded unless already text)."""
    if not isinstance(payload, str):
        payload = json.dumps(payload)
    return f"data: {payload}\n\n"


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def config():
    return default_config()
