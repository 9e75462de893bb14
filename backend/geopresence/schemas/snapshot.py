from datetime import date, datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict

from geopresence.core.errors import ConfigurationError
from geopresence.schemas.location import (
    AttendanceCycle,
    BoundingBox,
    LocationSample,
    OverlayZone,
    PlacedPoint,
    PunchEvent,
)


class UserInfo(BaseModel):
    user_id: str
    name: str
    designation: str | None = None
    profile_image_url: str | None = None
    attendance_type_id: str | None = None
    attendance_type_name: str | None = None
    requires_photo: bool = False


class Marker(BaseModel):
    """A placed point plus the punch it stands for."""

    placed: PlacedPoint
    event: PunchEvent
    cycle_index: int
    cycle_complete: bool


class Connector(BaseModel):
    user_id: str
    cycle_index: int
    start: LocationSample
    end: LocationSample


class PresenceSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    total: int = 0
    active: int = 0
    completed: int = 0


class Staleness(BaseModel):
    last_success_at: datetime | None = None
    degraded: bool = False
    consecutive_failures: int = 0


class ZoneResolution(BaseModel):
    zones: list[OverlayZone] = []
    bounds: BoundingBox | None = None
    discarded: list[ConfigurationError] = []


class Snapshot(BaseModel):
    date: date
    tenant: str
    version: str | None = None
    users: list[UserInfo] = []
    cycles: dict[str, list[AttendanceCycle]] = {}
    markers: list[Marker] = []
    connectors: list[Connector] = []
    zones: list[OverlayZone] = []
    bounds: BoundingBox | None = None
    center: LocationSample
    summary: PresenceSummary = PresenceSummary()
    staleness: Staleness = Staleness()
    parse_failures: int = 0
    generated_at: datetime


PollerStateName = Literal["idle", "polling", "up_to_date", "refreshing", "stopped"]


class SubscriptionView(BaseModel):
    date: date
    tenant: str
    state: PollerStateName
    loading: bool
    staleness: Staleness
    snapshot: Snapshot | None = None
