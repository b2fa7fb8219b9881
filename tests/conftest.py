import pytest

from envelope_transport.core.config import Settings
from envelope_transport.transport.rate_limiter import RateLimiter
from envelope_transport.transport.types import Envelope, EnvelopeItem

TEST_DSN = "https://public@ingest.example.com/42"


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_envelope(*item_types: str, **headers) -> Envelope:
    items = [EnvelopeItem(item_type=t, payload=f'{{"type":"{t}"}}'.encode()) for t in item_types or ("event",)]
    return Envelope.from_items(*items, **headers)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def limiter(clock):
    return RateLimiter(clock=clock)


@pytest.fixture
def config():
    return Settings(
        dsn=TEST_DSN,
        http_proxy=None,
        https_proxy=None,
        accept_invalid_certs=False,
        queue_capacity=30,
        request_timeout=5.0,
        shutdown_timeout=2.0,
    )
