"""
Raw upstream payloads as sent by the HRM backend.

Per-user rows are decoded once, at ingestion, into either ``CycleRecord``
(rows carrying a non-empty ``cycles`` list) or ``LegacyRecord`` (rows with
only the top-level punch fields). Location and time values are kept raw here;
the coordinate parser and the cycle reconstructor interpret them.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Annotated, Any, Literal

from pydantic import BaseModel, BeforeValidator, ConfigDict, field_validator

_SLUG_SUFFIX_RE = re.compile(r"_\d+$")


def _as_str_id(v: Any) -> Any:
    if isinstance(v, int) and not isinstance(v, bool):
        return str(v)
    return v


# HRM отдаёт id то числом, то строкой
StrId = Annotated[str, BeforeValidator(_as_str_id)]


def base_slug_of(slug: str) -> str:
    """``geo_polygon_2`` → ``geo_polygon``."""
    return _SLUG_SUFFIX_RE.sub("", slug)


class AttendanceTypeRef(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: StrId | None = None
    name: str | None = None
    slug: str | None = None
    base_slug: str | None = None


class RawCycle(BaseModel):
    model_config = ConfigDict(extra="ignore")

    attendance_id: StrId | None = None
    punchin_location: Any = None
    punchout_location: Any = None
    punchin_time: Any = None
    punchout_time: Any = None
    punchin_photo_url: str | None = None
    punchout_photo_url: str | None = None
    is_complete: bool = False


class _UserFields(BaseModel):
    model_config = ConfigDict(extra="ignore")

    user_id: StrId
    name: str = "Unknown"
    designation: str | None = None
    profile_image_url: str | None = None
    attendance_type: AttendanceTypeRef | None = None
    requires_photo: bool = False

    @field_validator("name", mode="before")
    @classmethod
    def _default_name(cls, v: Any) -> Any:
        return v or "Unknown"


class CycleRecord(_UserFields):
    shape: Literal["cycles"] = "cycles"
    cycles: list[RawCycle]


class LegacyRecord(_UserFields):
    shape: Literal["legacy"] = "legacy"
    punchin_location: Any = None
    punchout_location: Any = None
    punchin_time: Any = None
    punchout_time: Any = None
    punchin_photo_url: str | None = None
    punchout_photo_url: str | None = None


UserRecord = CycleRecord | LegacyRecord


def decode_user_record(raw: Mapping[str, Any]) -> UserRecord:
    """
    Decode one upstream row into its tagged shape.

    Raises:
        pydantic.ValidationError: the row has no usable ``user_id`` or a
            field of the wrong type.
    """
    cycles = raw.get("cycles")
    if isinstance(cycles, list) and cycles:
        return CycleRecord.model_validate(raw)
    return LegacyRecord.model_validate({k: v for k, v in raw.items() if k != "cycles"})


class RawZoneConfig(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: StrId
    name: str = ""
    slug: str = ""
    base_slug: str | None = None
    config: dict[str, Any] = {}

    @field_validator("config", mode="before")
    @classmethod
    def _none_config(cls, v: Any) -> Any:
        return v if v is not None else {}

    @property
    def discriminator(self) -> str:
        return self.base_slug or base_slug_of(self.slug)


class LocationsPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    success: bool = True
    date: str | None = None
    locations: list[dict[str, Any]] = []
    attendance_type_configs: list[dict[str, Any]] = []


class UpdatesResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    success: bool = True
    has_updates: bool = False
    last_updated: str | None = None


class ChangeCheck(BaseModel):
    changed: bool
    version: str | None = None
