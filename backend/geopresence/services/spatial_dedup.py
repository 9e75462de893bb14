"""
Spatial deduplication of map markers.

Markers that land within ``threshold`` degrees of an already placed marker
(on both axes) are nudged along the north-east diagonal by
``offset * attempt`` from their original position until they clear every
placed marker or the attempt budget runs out. Points are handled strictly in
input order, so the same batch always produces the same layout.
"""

from collections.abc import Iterable
from dataclasses import dataclass

from geopresence.core.config import settings
from geopresence.schemas.location import LocationSample, PlacedPoint


@dataclass(frozen=True, slots=True)
class DedupParams:
    threshold: float = settings.POSITION_THRESHOLD
    offset: float = settings.OFFSET_MULTIPLIER
    max_attempts: int = settings.MAX_ADJUST_ATTEMPTS


@dataclass(frozen=True, slots=True)
class PointRequest:
    owner_id: str
    location: LocationSample


def are_close(a: LocationSample, b: LocationSample, threshold: float) -> bool:
    return abs(a.latitude - b.latitude) < threshold and abs(a.longitude - b.longitude) < threshold


def _shift(value: float, delta: float, limit: float) -> float:
    # У края диапазона (полюс, антимеридиан) сдвигаем в обратную сторону
    if value + delta > limit:
        return value - delta
    return value + delta


def nudge(location: LocationSample, attempt: int, offset: float) -> LocationSample:
    delta = offset * attempt
    return LocationSample(
        latitude=_shift(location.latitude, delta, 90.0),
        longitude=_shift(location.longitude, delta, 180.0),
    )


class MarkerLayout:
    """
    Running set of placed markers for one map refresh.

    The snapshot builder feeds markers one at a time while it walks users and
    cycles; ``place`` is the batch form.
    """

    def __init__(self, params: DedupParams | None = None) -> None:
        self.params = params or DedupParams()
        self._placed: list[LocationSample] = []

    def _collides(self, candidate: LocationSample) -> bool:
        return any(are_close(candidate, pos, self.params.threshold) for pos in self._placed)

    def add(self, owner_id: str, location: LocationSample) -> PlacedPoint:
        candidate = location
        attempts = 0
        while attempts < self.params.max_attempts and self._collides(candidate):
            attempts += 1
            candidate = nudge(location, attempts, self.params.offset)

        resolved = not self._collides(candidate)
        self._placed.append(candidate)
        return PlacedPoint(
            owner_id=owner_id,
            original=location,
            adjusted=candidate,
            attempts=attempts,
            resolved=resolved,
        )

    def __len__(self) -> int:
        return len(self._placed)


def place(points: Iterable[PointRequest], params: DedupParams | None = None) -> list[PlacedPoint]:
    """Place a batch of points; output order matches input order."""
    layout = MarkerLayout(params)
    return [layout.add(p.owner_id, p.location) for p in points]
