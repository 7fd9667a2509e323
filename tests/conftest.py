import pytest
import httpx
from datetime import datetime, timedelta, timezone

from webhook_relay.utils.metrics import metrics


class FakeClock:
    """Controllable UTC clock for visibility-timeout tests."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2026, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def clock():
    """Returns a fresh fake clock."""
    return FakeClock()


@pytest.fixture(autouse=True)
def reset_metrics():
    """Start every test with zeroed metrics."""
    metrics.reset()
    yield
    metrics.reset()


@pytest.fixture
def make_destination():
    """
    Factory for a mocked destination endpoint.

    Returns (client, requests): an AsyncClient whose requests are answered
    with the given status codes in order (the last one repeats), and the
    list of requests it received.
    """
    def _make(*status_codes: int):
        codes = list(status_codes) or [200]
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            code = codes[min(len(requests) - 1, len(codes) - 1)]
            return httpx.Response(code, json={"received": True})

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        return client, requests

    return _make
