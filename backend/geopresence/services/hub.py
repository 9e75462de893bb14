"""
Registry of live subscriptions, one poller per (date, tenant) key.

Pollers do not share state; the hub only creates, looks up and stops them.
A subscription nobody has read for ``idle_ttl`` seconds is stopped by the
reaper, the same way an explicit unsubscribe would.
"""

import asyncio
import contextlib
import logging

from geopresence.core.config import settings
from geopresence.services.poller import ChangeDetectionPoller, PollerConfig
from geopresence.services.provider import LocationProvider, SubscriptionKey

logger = logging.getLogger(__name__)


class PresenceHub:
    def __init__(
        self,
        provider: LocationProvider,
        config: PollerConfig | None = None,
        *,
        idle_ttl: float = settings.SUBSCRIPTION_IDLE_SEC,
    ) -> None:
        self.provider = provider
        self.config = config or PollerConfig()
        self.idle_ttl = idle_ttl
        self._pollers: dict[SubscriptionKey, ChangeDetectionPoller] = {}
        self._last_access: dict[SubscriptionKey, float] = {}
        self._lock = asyncio.Lock()
        self._reaper: asyncio.Task | None = None

    @staticmethod
    def _now() -> float:
        return asyncio.get_running_loop().time()

    def get(self, key: SubscriptionKey) -> ChangeDetectionPoller | None:
        return self._pollers.get(key)

    def keys(self) -> list[SubscriptionKey]:
        return list(self._pollers)

    async def subscribe(self, key: SubscriptionKey) -> ChangeDetectionPoller:
        async with self._lock:
            self._last_access[key] = self._now()
            poller = self._pollers.get(key)
            if poller is None:
                poller = ChangeDetectionPoller(self.provider, self.config)
                self._pollers[key] = poller
                await poller.start(key)
            return poller

    async def unsubscribe(self, key: SubscriptionKey) -> bool:
        async with self._lock:
            poller = self._pollers.pop(key, None)
            self._last_access.pop(key, None)
        if poller is None:
            return False
        await poller.stop()
        return True

    async def expire_idle(self) -> list[SubscriptionKey]:
        """Stop every subscription not read within ``idle_ttl``; returns the expired keys."""
        deadline = self._now() - self.idle_ttl
        async with self._lock:
            expired = [k for k, seen in self._last_access.items() if seen <= deadline]
            pollers = [self._pollers.pop(k) for k in expired if k in self._pollers]
            for k in expired:
                del self._last_access[k]
        for poller in pollers:
            await poller.stop()
        if expired:
            logger.info("Остановлено неактивных подписок: %d (%s)", len(expired), ", ".join(map(str, expired)))
        return expired

    def start_reaper(self, interval: float | None = None) -> None:
        if self._reaper is not None and not self._reaper.done():
            return
        period = interval if interval is not None else max(self.idle_ttl / 2, 0.01)
        self._reaper = asyncio.create_task(self._reap_loop(period), name="presence-hub-reaper")

    async def _reap_loop(self, period: float) -> None:
        while True:
            await asyncio.sleep(period)
            try:
                await self.expire_idle()
            except Exception:
                logger.exception("Ошибка при очистке неактивных подписок")

    async def stop_all(self) -> None:
        reaper, self._reaper = self._reaper, None
        if reaper is not None:
            reaper.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await reaper
        async with self._lock:
            pollers, self._pollers = list(self._pollers.values()), {}
            self._last_access.clear()
        await asyncio.gather(*(p.stop() for p in pollers), return_exceptions=True)
        if pollers:
            logger.info("Остановлено подписок: %d", len(pollers))
