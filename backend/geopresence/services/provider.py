"""
External location data provider.

The HRM backend exposes two endpoints per day:
  - a cheap "has anything changed" check returning ``last_updated``;
  - the full per-user location list plus attendance-type zone configs.

``HttpLocationProvider`` talks to them over httpx. Every failure (transport,
timeout, HTTP status, ``success: false``, malformed body) surfaces as
``FetchError`` so the poller has a single recovery path.
"""

import logging
import time
from dataclasses import dataclass
from datetime import date
from typing import Any, Protocol

import httpx
from pydantic import BaseModel, ValidationError

from geopresence.core.config import settings
from geopresence.core.errors import FetchError
from geopresence.schemas.records import ChangeCheck, LocationsPayload, UpdatesResponse

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class SubscriptionKey:
    day: date
    tenant: str

    def __str__(self) -> str:
        return f"{self.day.isoformat()}@{self.tenant}"


class LocationProvider(Protocol):
    async def changed_since(self, key: SubscriptionKey, last_version: str | None) -> ChangeCheck: ...

    async def fetch(self, key: SubscriptionKey) -> LocationsPayload: ...


class HttpLocationProvider:
    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        *,
        base_url: str = settings.PROVIDER_BASE_URL,
        updates_path: str = settings.PROVIDER_UPDATES_PATH,
        locations_path: str = settings.PROVIDER_LOCATIONS_PATH,
        tenant_header: str = settings.PROVIDER_TENANT_HEADER,
        timeout: float = settings.FETCH_TIMEOUT_SEC,
    ) -> None:
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=timeout,
            follow_redirects=True,
        )
        self._updates_path = updates_path
        self._locations_path = locations_path
        self._tenant_header = tenant_header
        self._timeout = timeout

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _get(
        self, path: str, key: SubscriptionKey, model: type[BaseModel], params: dict[str, Any] | None = None
    ) -> Any:
        try:
            resp = await self._client.get(
                path,
                params=params,
                headers={self._tenant_header: key.tenant},
                timeout=self._timeout,
            )
            resp.raise_for_status()
            body = resp.json()
        except (httpx.HTTPError, httpx.TimeoutException) as exc:
            logger.warning("Запрос к провайдеру %s [%s] не удался: %s", path, key, exc)
            raise FetchError(f"{path}: {exc}") from exc
        except ValueError as exc:
            raise FetchError(f"{path}: response is not JSON") from exc

        try:
            parsed = model.model_validate(body)
        except ValidationError as exc:
            raise FetchError(f"{path}: unexpected response format ({exc.error_count()} errors)") from exc

        if not parsed.success:
            raise FetchError(f"{path}: provider reported failure")
        return parsed

    async def changed_since(self, key: SubscriptionKey, last_version: str | None) -> ChangeCheck:
        path = self._updates_path.format(date=key.day.isoformat())
        updates: UpdatesResponse = await self._get(path, key, UpdatesResponse)
        version = updates.last_updated
        return ChangeCheck(changed=version is not None and version != last_version, version=version)

    async def fetch(self, key: SubscriptionKey) -> LocationsPayload:
        params = {"date": key.day.isoformat(), "_t": int(time.time() * 1000)}
        payload: LocationsPayload = await self._get(self._locations_path, key, LocationsPayload, params)
        logger.debug(
            "Провайдер [%s]: строк=%d, конфигураций зон=%d",
            key, len(payload.locations), len(payload.attendance_type_configs),
        )
        return payload
