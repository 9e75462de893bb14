"""
Cycle reconstruction.

Turns one user's daily record into ordered ``AttendanceCycle`` objects.
Cycle-bearing rows yield one cycle per source cycle; legacy rows yield a
single synthetic cycle from the top-level punch fields. Cycles keep the
order the provider sent them in.
"""

import logging
from collections.abc import Mapping
from datetime import date, datetime, time
from typing import Any

from pydantic import TypeAdapter, ValidationError

from geopresence.core.errors import ParseError
from geopresence.schemas.location import AttendanceCycle, LocationSample, PunchEvent, PunchKind
from geopresence.schemas.records import CycleRecord, LegacyRecord, UserRecord, decode_user_record
from geopresence.services.coordinate_parser import is_blank, parse

logger = logging.getLogger(__name__)

_datetime_adapter = TypeAdapter(datetime)
_time_adapter = TypeAdapter(time)


def parse_timestamp(value: Any, day: date | None = None) -> datetime | None:
    """
    Parse a punch time. Full datetimes are taken as-is; time-only values
    ("09:15:00") are combined with ``day`` when it is known.
    """
    if is_blank(value):
        return None
    try:
        return _datetime_adapter.validate_python(value)
    except ValidationError:
        pass
    if day is not None:
        try:
            return datetime.combine(day, _time_adapter.validate_python(value))
        except ValidationError:
            pass
    logger.debug("Не удалось разобрать время отметки: %r", value)
    return None


def _resolve_location(raw: Any, errors: list[ParseError] | None) -> LocationSample | None:
    if is_blank(raw):
        return None
    result = parse(raw)
    if isinstance(result, ParseError):
        logger.debug("Некорректные координаты %r: %s", result.raw, result.reason)
        if errors is not None:
            errors.append(result)
        return None
    return result


def _build_event(
    user_id: str,
    kind: PunchKind,
    location: LocationSample | None,
    time_raw: Any,
    photo: str | None,
    day: date | None,
    location_raw: Any,
) -> PunchEvent | None:
    if location is None and is_blank(location_raw) and is_blank(time_raw) and not photo:
        return None
    return PunchEvent(
        user_id=user_id,
        kind=kind,
        timestamp=parse_timestamp(time_raw, day),
        location=location,
        photo_ref=photo or None,
    )


def _assemble(
    *,
    user_id: str,
    index: int,
    attendance_id: str | None,
    in_location_raw: Any,
    out_location_raw: Any,
    in_time_raw: Any,
    out_time_raw: Any,
    in_photo: str | None,
    out_photo: str | None,
    source_complete: bool,
    day: date | None,
    errors: list[ParseError] | None,
) -> AttendanceCycle | None:
    in_location = _resolve_location(in_location_raw, errors)
    out_location = _resolve_location(out_location_raw, errors)

    if in_location is None and out_location is None:
        logger.debug("Цикл #%d пользователя %s без координат, пропуск", index, user_id)
        return None

    punch_in = _build_event(user_id, "in", in_location, in_time_raw, in_photo, day, in_location_raw)
    punch_out = _build_event(user_id, "out", out_location, out_time_raw, out_photo, day, out_location_raw)

    complete = source_complete and in_location is not None and out_location is not None
    return AttendanceCycle(
        user_id=user_id,
        index=index,
        attendance_id=attendance_id,
        punch_in=punch_in,
        punch_out=punch_out,
        complete=complete,
        anchor="in" if in_location is not None else "out",
    )


def _from_cycles(
    record: CycleRecord, day: date | None, errors: list[ParseError] | None
) -> list[AttendanceCycle]:
    cycles: list[AttendanceCycle] = []
    for index, raw in enumerate(record.cycles):
        cycle = _assemble(
            user_id=record.user_id,
            index=index,
            attendance_id=raw.attendance_id,
            in_location_raw=raw.punchin_location,
            out_location_raw=raw.punchout_location,
            in_time_raw=raw.punchin_time,
            out_time_raw=raw.punchout_time,
            in_photo=raw.punchin_photo_url,
            out_photo=raw.punchout_photo_url,
            source_complete=raw.is_complete,
            day=day,
            errors=errors,
        )
        if cycle is not None:
            cycles.append(cycle)
    return cycles


def _from_legacy(
    record: LegacyRecord, day: date | None, errors: list[ParseError] | None
) -> list[AttendanceCycle]:
    cycle = _assemble(
        user_id=record.user_id,
        index=0,
        attendance_id=None,
        in_location_raw=record.punchin_location,
        out_location_raw=record.punchout_location,
        in_time_raw=record.punchin_time,
        out_time_raw=record.punchout_time,
        in_photo=record.punchin_photo_url,
        out_photo=record.punchout_photo_url,
        # В старом формате цикл завершён, если есть время выхода
        source_complete=not is_blank(record.punchout_time),
        day=day,
        errors=errors,
    )
    return [cycle] if cycle is not None else []


def reconstruct(
    user_id: str,
    record: UserRecord | Mapping[str, Any],
    day: date | None = None,
    errors: list[ParseError] | None = None,
) -> list[AttendanceCycle]:
    """
    Rebuild a user's attendance cycles for one day.

    Args:
        user_id: Owner of the record.
        record: Decoded ``CycleRecord`` / ``LegacyRecord`` or the raw row.
        day: The day being viewed; used to complete time-only punch values.
        errors: Optional list that collects coordinate ``ParseError`` values
                so the caller can report data quality for a whole refresh.

    Returns:
        Cycles in source order. Cycles with no resolvable location are dropped.

    Raises:
        pydantic.ValidationError: a raw row could not be decoded.
    """
    if isinstance(record, Mapping):
        record = decode_user_record({**record, "user_id": user_id})
    elif record.user_id != user_id:
        record = record.model_copy(update={"user_id": user_id})

    if isinstance(record, CycleRecord):
        return _from_cycles(record, day, errors)
    return _from_legacy(record, day, errors)
