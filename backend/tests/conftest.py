"""
conftest.py — shared fixtures for the presence engine tests.

Strategy:
- No network: the poller and the API run against ``FakeProvider``, an
  in-memory provider whose change-check answers and payloads are scripted
  per test. Provider HTTP tests use ``httpx.MockTransport`` instead.
- Poller timings are shrunk to milliseconds via ``fast_config``.
- API tests use httpx ``ASGITransport`` with ``get_hub`` overridden, so the
  app lifespan (real HTTP provider) never runs.
"""

from __future__ import annotations

import asyncio
from collections import deque
from datetime import date
from typing import Any

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from geopresence.api.presence import get_hub
from geopresence.core.errors import FetchError
from geopresence.main import app
from geopresence.schemas.records import ChangeCheck, LocationsPayload
from geopresence.services.hub import PresenceHub
from geopresence.services.poller import PollerConfig
from geopresence.services.provider import SubscriptionKey
from geopresence.services.spatial_dedup import DedupParams

DAY = date(2025, 3, 10)
DHAKA = (23.8103, 90.4125)


# ---------------------------------------------------------------------------
# Fake provider
# ---------------------------------------------------------------------------


class FakeProvider:
    """
    Scripted provider.

    ``checks`` is a queue of ChangeCheck / Exception / "hang" entries consumed
    one per ``changed_since`` call; when empty, ``default_check`` is returned.
    ``fetch`` returns ``payload`` unless a failure is queued in ``fetch_errors``;
    if ``fetch_gate`` is set, the call waits for it first.
    """

    def __init__(self) -> None:
        self.checks: deque[Any] = deque()
        self.default_check = ChangeCheck(changed=False, version="v1")
        self.payload = LocationsPayload()
        self.fetch_errors: deque[Exception] = deque()
        self.fetch_gate: asyncio.Event | None = None
        self.check_calls: list[tuple[SubscriptionKey, str | None]] = []
        self.fetch_calls: list[SubscriptionKey] = []

    async def changed_since(self, key: SubscriptionKey, last_version: str | None) -> ChangeCheck:
        self.check_calls.append((key, last_version))
        item = self.checks.popleft() if self.checks else self.default_check
        if item == "hang":
            await asyncio.sleep(3600)
        if isinstance(item, Exception):
            raise item
        return item

    async def fetch(self, key: SubscriptionKey) -> LocationsPayload:
        self.fetch_calls.append(key)
        gate = self.fetch_gate
        if gate is not None:
            await gate.wait()
        if self.fetch_errors:
            raise self.fetch_errors.popleft()
        return self.payload

    def fail_checks(self, n: int) -> None:
        for _ in range(n):
            self.checks.append(FetchError("provider down"))


# ---------------------------------------------------------------------------
# Payload builders
# ---------------------------------------------------------------------------


def cycle(
    punchin_location: Any = None,
    punchout_location: Any = None,
    *,
    punchin_time: Any = "2025-03-10 09:00:00",
    punchout_time: Any = None,
    is_complete: bool | None = None,
    attendance_id: int | None = None,
    punchin_photo_url: str | None = None,
    punchout_photo_url: str | None = None,
) -> dict[str, Any]:
    return {
        "attendance_id": attendance_id,
        "punchin_location": punchin_location,
        "punchout_location": punchout_location,
        "punchin_time": punchin_time,
        "punchout_time": punchout_time,
        "punchin_photo_url": punchin_photo_url,
        "punchout_photo_url": punchout_photo_url,
        "is_complete": punchout_time is not None if is_complete is None else is_complete,
    }


def user_row(user_id: int, cycles: list[dict[str, Any]] | None = None, **legacy: Any) -> dict[str, Any]:
    row: dict[str, Any] = {
        "user_id": user_id,
        "name": f"Field User {user_id}",
        "designation": "Supervisor",
        "profile_image_url": None,
        "attendance_type": {"id": 7, "name": "Site A", "slug": "geo_polygon_7", "base_slug": "geo_polygon"},
        "requires_photo": True,
        "cycles": cycles or [],
    }
    row.update(legacy)
    return row


def polygon_config(
    points: list[tuple[float, float]], *, type_id: int = 7, name: str = "Site A", slug: str = "geo_polygon_7"
) -> dict[str, Any]:
    return {
        "id": type_id,
        "name": name,
        "slug": slug,
        "base_slug": None,
        "config": {"polygon": [{"lat": lat, "lng": lng} for lat, lng in points]},
    }


SQUARE = [(23.80, 90.40), (23.80, 90.42), (23.82, 90.42), (23.82, 90.40)]


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def key() -> SubscriptionKey:
    return SubscriptionKey(day=DAY, tenant="acme")


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def sample_payload() -> LocationsPayload:
    """Two users at the same spot: one finished their day, one is still out."""
    lat, lng = DHAKA
    return LocationsPayload(
        date=DAY.isoformat(),
        locations=[
            user_row(
                1,
                [
                    cycle(
                        {"lat": lat, "lng": lng},
                        {"lat": lat + 0.01, "lng": lng + 0.01},
                        punchout_time="2025-03-10 17:30:00",
                        punchin_photo_url="https://cdn.test/in-1.jpg",
                        punchout_photo_url="https://cdn.test/out-1.jpg",
                    )
                ],
            ),
            user_row(2, [cycle(f"{lat},{lng}")]),
        ],
        attendance_type_configs=[polygon_config(SQUARE)],
    )


@pytest.fixture
def fast_config() -> PollerConfig:
    return PollerConfig(
        interval=0.01,
        fetch_timeout=0.5,
        watchdog=0.05,
        backoff_mode="fixed",
        backoff_base=0.01,
        backoff_max=0.05,
        failure_ceiling=3,
        dedup=DedupParams(),
    )


@pytest_asyncio.fixture
async def hub(provider: FakeProvider, fast_config: PollerConfig) -> PresenceHub:
    hub = PresenceHub(provider, fast_config)
    yield hub
    await hub.stop_all()


@pytest_asyncio.fixture
async def client(hub: PresenceHub) -> AsyncClient:
    """HTTPX async client bound to the app with the fake hub injected."""
    app.dependency_overrides[get_hub] = lambda: hub
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
