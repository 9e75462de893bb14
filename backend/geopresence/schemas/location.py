from datetime import datetime
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

PunchKind = Literal["in", "out"]


class LocationSample(BaseModel):
    model_config = ConfigDict(frozen=True)

    latitude: float = Field(ge=-90.0, le=90.0)
    longitude: float = Field(ge=-180.0, le=180.0)


class PunchEvent(BaseModel):
    """One side of an attendance action. Timestamp and location are independent."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    kind: PunchKind
    timestamp: datetime | None = None
    location: LocationSample | None = None
    photo_ref: str | None = None


class AttendanceCycle(BaseModel):
    """
    A punch-in → punch-out pairing.

    ``anchor`` is the side an open cycle is pinned to on the map: ``in`` when
    the punch-in location resolved, ``out`` when only the punch-out did.
    Complete cycles are anchored on ``in`` and place both sides.
    """

    model_config = ConfigDict(frozen=True)

    user_id: str
    index: int = 0
    attendance_id: str | None = None
    punch_in: PunchEvent | None = None
    punch_out: PunchEvent | None = None
    complete: bool = False
    anchor: PunchKind = "in"

    @model_validator(mode="after")
    def _complete_needs_both_sides(self) -> "AttendanceCycle":
        if self.complete and (self.punch_in is None or self.punch_out is None):
            raise ValueError("complete cycle must have both punch_in and punch_out")
        return self

    @property
    def anchor_event(self) -> PunchEvent | None:
        return self.punch_in if self.anchor == "in" else self.punch_out


class PlacedPoint(BaseModel):
    model_config = ConfigDict(frozen=True)

    owner_id: str
    original: LocationSample
    adjusted: LocationSample
    attempts: int = 0
    # False, если бюджет попыток исчерпан и точка всё ещё рядом с другой
    resolved: bool = True


class BoundingBox(BaseModel):
    model_config = ConfigDict(frozen=True)

    south: float
    west: float
    north: float
    east: float

    @classmethod
    def around(cls, points: list[LocationSample]) -> "BoundingBox":
        """Smallest box containing ``points``. Raises ``ValueError`` for an empty list."""
        if not points:
            raise ValueError("cannot build a bounding box around zero points")
        lats = [p.latitude for p in points]
        lngs = [p.longitude for p in points]
        return cls(south=min(lats), west=min(lngs), north=max(lats), east=max(lngs))

    def extend(self, other: "BoundingBox") -> "BoundingBox":
        return BoundingBox(
            south=min(self.south, other.south),
            west=min(self.west, other.west),
            north=max(self.north, other.north),
            east=max(self.east, other.east),
        )

    @property
    def center(self) -> LocationSample:
        return LocationSample(
            latitude=(self.south + self.north) / 2,
            longitude=(self.west + self.east) / 2,
        )


class PolygonZone(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["polygon"] = "polygon"
    type_id: str
    name: str
    points: list[LocationSample] = Field(min_length=3)


class RouteZone(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["route"] = "route"
    type_id: str
    name: str
    waypoints: list[LocationSample] = Field(min_length=2)


OverlayZone = Annotated[PolygonZone | RouteZone, Field(discriminator="kind")]


def zone_points(zone: PolygonZone | RouteZone) -> list[LocationSample]:
    return zone.points if isinstance(zone, PolygonZone) else zone.waypoints
