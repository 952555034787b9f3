"""Fake monitoring platform for integration testing.

Serves the platform HTTP API from memory through httpx.MockTransport so the
real Api facade, retries included, runs unchanged in tests.

Key Features:
- In-memory state per resource kind with platform-assigned ids
- Dashboard listing returns summaries, SLO listing is paginated
- Error injection (status codes, Retry-After, transport errors)
- Call log for asserting on the requests a run made

Usage:
    from platform_mock import MockPlatform

    platform = MockPlatform()
    monitor_id = platform.state.add("monitor", {"name": "cpu", "type": "metric alert"})

    with platform.api() as api:
        engine = Engine(config, api=api)
        ...

    assert platform.state.mutating_calls == []
"""

from .platform import BASE_URL, MockPlatform
from .state import Call, InjectedError, MockPlatformState

__all__ = [
    "BASE_URL",
    "Call",
    "InjectedError",
    "MockPlatform",
    "MockPlatformState",
]
