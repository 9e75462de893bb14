"""
Change-detection poller.

One poller serves one (date, tenant) subscription:

  IDLE → POLLING → (UP_TO_DATE | REFRESHING) → POLLING → … → STOPPED

Every tick asks the provider whether the day changed since the last known
version and only runs the full fetch + snapshot pipeline when it did.
Failures never leave the loop: they are counted, delay the next tick and,
past ``failure_ceiling``, mark the subscription as degraded.

Each fetch takes a sequence number. Changing the key, stopping, or starting a
newer fetch bumps the current number, and a fetch that completes with an
older number is dropped. A watchdog clears ``loading`` after a fixed ceiling
even if the fetch never returns.
"""

import asyncio
import contextlib
import enum
import logging
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Literal

from geopresence.core.config import settings
from geopresence.core.errors import FetchError, StaleResponseError
from geopresence.schemas.records import ChangeCheck, LocationsPayload
from geopresence.schemas.snapshot import Snapshot, Staleness, SubscriptionView, ZoneResolution
from geopresence.services import overlay_resolver
from geopresence.services.provider import LocationProvider, SubscriptionKey
from geopresence.services.snapshot_builder import build_snapshot, with_zones
from geopresence.services.spatial_dedup import DedupParams

logger = logging.getLogger(__name__)

SnapshotListener = Callable[[Snapshot], Any]
StatusListener = Callable[[Staleness], Any]
LoadingListener = Callable[[bool], Any]


class PollerState(str, enum.Enum):
    IDLE = "idle"
    POLLING = "polling"
    UP_TO_DATE = "up_to_date"
    REFRESHING = "refreshing"
    STOPPED = "stopped"


@dataclass
class PollState:
    last_known_version: str | None = None
    last_success_at: datetime | None = None
    consecutive_failures: int = 0
    # True после первого успешного обновления (версия может остаться None)
    synced: bool = False


@dataclass(frozen=True, slots=True)
class PollerConfig:
    interval: float = settings.POLL_INTERVAL_SEC
    fetch_timeout: float = settings.FETCH_TIMEOUT_SEC
    watchdog: float = settings.LOADING_WATCHDOG_SEC
    backoff_mode: Literal["fixed", "exponential"] = settings.BACKOFF_MODE
    backoff_base: float = settings.BACKOFF_BASE_SEC
    backoff_max: float = settings.BACKOFF_MAX_SEC
    failure_ceiling: int = settings.FAILURE_CEILING
    dedup: DedupParams = field(default_factory=DedupParams)

    def delay_after(self, failures: int) -> float:
        """Seconds until the next tick given the current failure streak."""
        if failures <= 0:
            return self.interval
        if self.backoff_mode == "fixed":
            backoff = self.backoff_base
        else:
            backoff = self.backoff_base * 2 ** (failures - 1)
        return max(self.interval, min(backoff, self.backoff_max))


def _notify(listener: Callable[[Any], Any] | None, value: Any) -> None:
    if listener is None:
        return
    try:
        listener(value)
    except Exception:
        logger.exception("Ошибка в обработчике подписчика")


class ChangeDetectionPoller:
    def __init__(
        self,
        provider: LocationProvider,
        config: PollerConfig | None = None,
        *,
        on_snapshot: SnapshotListener | None = None,
        on_status: StatusListener | None = None,
        on_loading: LoadingListener | None = None,
    ) -> None:
        self.provider = provider
        self.config = config or PollerConfig()
        self.on_snapshot = on_snapshot
        self.on_status = on_status
        self.on_loading = on_loading

        self.key: SubscriptionKey | None = None
        self.state = PollerState.IDLE
        self.poll_state = PollState()
        self.snapshot: Snapshot | None = None
        self.loading = False
        self.publish_count = 0

        self._seq = 0
        self._loading_seq = 0
        self._task: asyncio.Task | None = None
        self._watchdog_task: asyncio.Task | None = None
        self._zones = ZoneResolution()
        self._payload_zone_configs: list[dict[str, Any]] | None = None

    # --- lifecycle ---------------------------------------------------------

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def seq(self) -> int:
        return self._seq

    async def start(self, key: SubscriptionKey) -> None:
        """Start polling ``key``; a different running key is cancelled first."""
        if self.running and key == self.key:
            return
        await self.bind(key)
        logger.info("Подписка %s: опрос запущен (интервал %.1fs)", key, self.config.interval)
        self._task = asyncio.create_task(self._run(), name=f"presence-poller:{key}")

    async def bind(self, key: SubscriptionKey) -> None:
        """Switch to ``key`` with a fresh ``PollState`` without scheduling the loop."""
        await self._cancel()
        self.key = key
        self.poll_state = PollState()
        self.snapshot = None
        self._zones = ZoneResolution()
        self._payload_zone_configs = None
        self.state = PollerState.POLLING

    async def stop(self) -> None:
        await self._cancel()
        if self.state != PollerState.STOPPED:
            logger.info("Подписка %s: опрос остановлен", self.key)
        self.state = PollerState.STOPPED

    async def _cancel(self) -> None:
        # Любой ответ, пришедший после этого, считается устаревшим
        self._seq += 1
        task, self._task = self._task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._set_loading(False)

    async def _run(self) -> None:
        while True:
            try:
                await self.tick()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.exception("Подписка %s: непредвиденная ошибка опроса", self.key)
                self._record_failure(exc)
            await asyncio.sleep(self.next_delay())

    def next_delay(self) -> float:
        return self.config.delay_after(self.poll_state.consecutive_failures)

    # --- polling -----------------------------------------------------------

    def _needs_refresh(self, check: ChangeCheck) -> bool:
        # Решение только по версии: флаг changed не учитывается
        ps = self.poll_state
        if not ps.synced:
            return True
        if check.version is None:
            return False
        return check.version != ps.last_known_version

    async def tick(self) -> bool:
        """
        Run one change check. Returns True if a new snapshot was published.
        """
        key = self.key
        if key is None or self.state == PollerState.STOPPED:
            return False
        seq_at_start = self._seq
        self.state = PollerState.POLLING

        try:
            check = await asyncio.wait_for(
                self.provider.changed_since(key, self.poll_state.last_known_version),
                timeout=self.config.fetch_timeout,
            )
        except (FetchError, asyncio.TimeoutError) as exc:
            if seq_at_start == self._seq:
                self._record_failure(exc)
            return False

        if seq_at_start != self._seq:
            logger.debug("Подписка %s: результат проверки устарел, пропуск", key)
            return False

        self._record_success()
        if not self._needs_refresh(check):
            self.state = PollerState.UP_TO_DATE
            return False
        return await self._refresh(key, check.version, manual=False)

    async def refresh_now(self) -> bool:
        """Full fetch bypassing the change check."""
        if self.key is None or self.state == PollerState.STOPPED:
            return False
        return await self._refresh(self.key, self.poll_state.last_known_version, manual=True)

    async def _refresh(self, key: SubscriptionKey, version: str | None, *, manual: bool) -> bool:
        self._seq += 1
        seq = self._seq
        self.state = PollerState.REFRESHING
        self._set_loading(True, seq)

        try:
            payload = await asyncio.wait_for(self.provider.fetch(key), timeout=self.config.fetch_timeout)
            if seq != self._seq:
                raise StaleResponseError(seq, self._seq)
        except StaleResponseError as exc:
            logger.debug("Подписка %s: %s, ответ отброшен", key, exc)
            return False
        except (FetchError, asyncio.TimeoutError) as exc:
            if seq == self._seq:
                self._record_failure(exc)
                self.state = PollerState.POLLING
            return False
        finally:
            if seq == self._loading_seq:
                self._set_loading(False)

        self._apply_payload_zones(payload)
        ps = self.poll_state
        if not manual:
            ps.last_known_version = version
        ps.synced = True
        self._record_success()

        snapshot = build_snapshot(
            payload,
            day=key.day,
            tenant=key.tenant,
            zones=self._zones,
            version=version,
            staleness=self.staleness,
            params=self.config.dedup,
        )
        self._publish(snapshot)
        self.state = PollerState.POLLING
        logger.info(
            "Подписка %s: снимок обновлён (версия=%s, маркеров=%d, активных=%d, завершили=%d)",
            key, version, len(snapshot.markers), snapshot.summary.active, snapshot.summary.completed,
        )
        return True

    # --- zones -------------------------------------------------------------

    def _apply_payload_zones(self, payload: LocationsPayload) -> None:
        configs = payload.attendance_type_configs
        if configs == self._payload_zone_configs:
            return
        self._payload_zone_configs = configs
        self._zones = overlay_resolver.resolve(configs)

    def update_zone_configs(self, zone_configs: Sequence[Mapping[str, Any]]) -> ZoneResolution:
        """
        Apply a zone configuration change pushed from outside the poll loop
        (tenant or attendance-type switch) and publish the result.
        """
        self._zones = overlay_resolver.resolve(zone_configs)
        if self.key is None:
            return self._zones
        if self.snapshot is not None:
            snapshot = with_zones(self.snapshot, self._zones)
        else:
            snapshot = build_snapshot(
                LocationsPayload(),
                day=self.key.day,
                tenant=self.key.tenant,
                zones=self._zones,
                staleness=self.staleness,
                params=self.config.dedup,
            )
        self._publish(snapshot)
        return self._zones

    # --- status ------------------------------------------------------------

    @property
    def staleness(self) -> Staleness:
        ps = self.poll_state
        return Staleness(
            last_success_at=ps.last_success_at,
            degraded=ps.consecutive_failures >= self.config.failure_ceiling,
            consecutive_failures=ps.consecutive_failures,
        )

    def _record_success(self) -> None:
        ps = self.poll_state
        was_degraded = ps.consecutive_failures >= self.config.failure_ceiling
        ps.consecutive_failures = 0
        ps.last_success_at = datetime.now(timezone.utc)
        if was_degraded:
            logger.info("Подписка %s: связь с провайдером восстановлена", self.key)
            _notify(self.on_status, self.staleness)

    def _record_failure(self, exc: BaseException) -> None:
        ps = self.poll_state
        ps.consecutive_failures += 1
        reason = str(exc) or type(exc).__name__
        logger.warning(
            "Подписка %s: ошибка запроса #%d подряд: %s", self.key, ps.consecutive_failures, reason
        )
        if ps.consecutive_failures >= self.config.failure_ceiling:
            if ps.consecutive_failures == self.config.failure_ceiling:
                logger.warning("Подписка %s: данные устарели (degraded)", self.key)
            _notify(self.on_status, self.staleness)

    def _publish(self, snapshot: Snapshot) -> None:
        self.snapshot = snapshot
        self.publish_count += 1
        _notify(self.on_snapshot, snapshot)

    # --- loading indicator -------------------------------------------------

    def _set_loading(self, value: bool, seq: int | None = None) -> None:
        watchdog, self._watchdog_task = self._watchdog_task, None
        if watchdog is not None and watchdog is not asyncio.current_task():
            watchdog.cancel()

        if value:
            self._loading_seq = seq if seq is not None else self._seq
            self._watchdog_task = asyncio.create_task(self._watchdog(self._loading_seq))
        if self.loading != value:
            self.loading = value
            _notify(self.on_loading, value)

    async def _watchdog(self, seq: int) -> None:
        await asyncio.sleep(self.config.watchdog)
        if self.loading and seq == self._loading_seq:
            logger.warning(
                "Подписка %s: загрузка дольше %.0fs, индикатор снят", self.key, self.config.watchdog
            )
            self._set_loading(False)

    def view(self) -> SubscriptionView:
        if self.key is None:
            raise RuntimeError("poller has no subscription key")
        return SubscriptionView(
            date=self.key.day,
            tenant=self.key.tenant,
            state=self.state.value,
            loading=self.loading,
            staleness=self.staleness,
            snapshot=self.snapshot,
        )
