import logging
from datetime import date
from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException, Query, Request, status

from geopresence.schemas.snapshot import SubscriptionView, ZoneResolution
from geopresence.services import overlay_resolver
from geopresence.services.hub import PresenceHub
from geopresence.services.provider import SubscriptionKey

logger = logging.getLogger(__name__)

router = APIRouter()


def get_hub(request: Request) -> PresenceHub:
    return request.app.state.hub


def _key(
    date_: date = Query(alias="date", description="ISO date YYYY-MM-DD"),
    tenant: str = Query(default="default", min_length=1),
) -> SubscriptionKey:
    return SubscriptionKey(day=date_, tenant=tenant)


@router.get(
    "/snapshot",
    response_model=SubscriptionView,
    summary="Latest presence snapshot for a day (subscribes on first call)",
)
async def get_snapshot(
    key: SubscriptionKey = Depends(_key),
    hub: PresenceHub = Depends(get_hub),
) -> SubscriptionView:
    poller = await hub.subscribe(key)
    return poller.view()


@router.post(
    "/refresh",
    response_model=SubscriptionView,
    summary="Force a full refresh, bypassing the change check",
)
async def refresh_now(
    key: SubscriptionKey = Depends(_key),
    hub: PresenceHub = Depends(get_hub),
) -> SubscriptionView:
    poller = await hub.subscribe(key)
    refreshed = await poller.refresh_now()
    logger.info("Ручное обновление %s: %s", key, "выполнено" if refreshed else "без результата")
    return poller.view()


@router.delete(
    "/subscription",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Stop polling a day",
)
async def unsubscribe(
    key: SubscriptionKey = Depends(_key),
    hub: PresenceHub = Depends(get_hub),
) -> None:
    if not await hub.unsubscribe(key):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No active subscription for {key}",
        )


@router.post(
    "/zones",
    response_model=SubscriptionView,
    summary="Push a zone configuration change into a subscription",
)
async def push_zone_configs(
    zone_configs: list[dict[str, Any]] = Body(...),
    key: SubscriptionKey = Depends(_key),
    hub: PresenceHub = Depends(get_hub),
) -> SubscriptionView:
    poller = await hub.subscribe(key)
    resolution = poller.update_zone_configs(zone_configs)
    if resolution.discarded:
        logger.info("Зоны %s: принято=%d, отброшено=%d", key, len(resolution.zones), len(resolution.discarded))
    return poller.view()


@router.post(
    "/zones/resolve",
    response_model=ZoneResolution,
    summary="Resolve zone configurations without a subscription",
)
async def resolve_zones(zone_configs: list[dict[str, Any]] = Body(...)) -> ZoneResolution:
    return overlay_resolver.resolve(zone_configs)
