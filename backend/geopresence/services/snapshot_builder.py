"""
Builds the renderer-facing ``Snapshot`` from one provider payload.

Pipeline per refresh: decode rows → reconstruct cycles → place markers
(complete cycles place punch-in then punch-out, open cycles only their
anchor) → connect complete cycles → summarise.
"""

import logging
from datetime import date, datetime, timezone

from pydantic import ValidationError

from geopresence.core.config import settings
from geopresence.core.errors import ParseError
from geopresence.schemas.location import AttendanceCycle, LocationSample, PunchEvent
from geopresence.schemas.records import LocationsPayload, UserRecord, decode_user_record
from geopresence.schemas.snapshot import (
    Connector,
    Marker,
    Snapshot,
    Staleness,
    UserInfo,
    ZoneResolution,
)
from geopresence.services.cycle_reconstructor import reconstruct
from geopresence.services.presence_aggregator import summarize
from geopresence.services.spatial_dedup import DedupParams, MarkerLayout

logger = logging.getLogger(__name__)


def default_center() -> LocationSample:
    return LocationSample(latitude=settings.DEFAULT_CENTER_LAT, longitude=settings.DEFAULT_CENTER_LNG)


def _user_info(record: UserRecord) -> UserInfo:
    att_type = record.attendance_type
    return UserInfo(
        user_id=record.user_id,
        name=record.name,
        designation=record.designation,
        profile_image_url=record.profile_image_url,
        attendance_type_id=att_type.id if att_type else None,
        attendance_type_name=att_type.name if att_type else None,
        requires_photo=record.requires_photo,
    )


def _place_event(layout: MarkerLayout, event: PunchEvent, cycle: AttendanceCycle) -> Marker:
    # Событие без координат сюда не попадает: вызывающий код проверяет location
    placed = layout.add(cycle.user_id, event.location)
    return Marker(placed=placed, event=event, cycle_index=cycle.index, cycle_complete=cycle.complete)


def build_snapshot(
    payload: LocationsPayload,
    *,
    day: date,
    tenant: str,
    zones: ZoneResolution,
    version: str | None = None,
    staleness: Staleness | None = None,
    params: DedupParams | None = None,
    center: LocationSample | None = None,
) -> Snapshot:
    layout = MarkerLayout(params)
    parse_errors: list[ParseError] = []
    users: list[UserInfo] = []
    cycles_by_user: dict[str, list[AttendanceCycle]] = {}
    markers: list[Marker] = []
    connectors: list[Connector] = []
    skipped_rows = 0

    for raw in payload.locations:
        try:
            record = decode_user_record(raw)
        except ValidationError as exc:
            skipped_rows += 1
            logger.warning("Пропуск строки без user_id/с неверными полями: %s", exc.errors()[:1])
            continue

        cycles = reconstruct(record.user_id, record, day=day, errors=parse_errors)
        if record.user_id not in cycles_by_user:
            users.append(_user_info(record))
            cycles_by_user[record.user_id] = []
        cycles_by_user[record.user_id].extend(cycles)

        for cycle in cycles:
            if cycle.complete:
                start = _place_event(layout, cycle.punch_in, cycle)
                end = _place_event(layout, cycle.punch_out, cycle)
                markers.extend((start, end))
                connectors.append(
                    Connector(
                        user_id=cycle.user_id,
                        cycle_index=cycle.index,
                        start=start.placed.adjusted,
                        end=end.placed.adjusted,
                    )
                )
            else:
                markers.append(_place_event(layout, cycle.anchor_event, cycle))

    if parse_errors:
        logger.warning(
            "Снимок %s/%s: %d некорректных координат пропущено", day, tenant, len(parse_errors)
        )
    unresolved = sum(1 for m in markers if not m.placed.resolved)
    if unresolved:
        logger.info("Снимок %s/%s: %d маркеров остались наложенными", day, tenant, unresolved)

    summary = summarize(cycles_by_user)
    logger.debug(
        "Снимок %s/%s: пользователей=%d, маркеров=%d, пропущено строк=%d",
        day, tenant, len(users), len(markers), skipped_rows,
    )

    return Snapshot(
        date=day,
        tenant=tenant,
        version=version,
        users=users,
        cycles=cycles_by_user,
        markers=markers,
        connectors=connectors,
        zones=zones.zones,
        bounds=zones.bounds,
        center=center or (zones.bounds.center if zones.bounds else default_center()),
        summary=summary,
        staleness=staleness or Staleness(),
        parse_failures=len(parse_errors),
        generated_at=datetime.now(timezone.utc),
    )


def with_zones(snapshot: Snapshot, zones: ZoneResolution, center: LocationSample | None = None) -> Snapshot:
    """Swap the overlay geometry of an existing snapshot without touching user data."""
    return snapshot.model_copy(
        update={
            "zones": zones.zones,
            "bounds": zones.bounds,
            "center": center or (zones.bounds.center if zones.bounds else default_center()),
            "generated_at": datetime.now(timezone.utc),
        }
    )
