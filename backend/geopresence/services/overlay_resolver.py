"""
Overlay geometry resolver.

Reads attendance-type configurations and produces the static zones drawn
under the user markers:

  geo_polygon    → config.polygon (one ring) and/or config.polygons[].points
  route_waypoint → config.waypoints (one route) and/or config.routes[].waypoints

Rings with fewer than 3 resolvable points and routes with fewer than 2 are
dropped and reported as ``ConfigurationError`` values, never raised.
"""

import logging
from collections.abc import Iterable, Mapping
from typing import Any

from pydantic import ValidationError

from geopresence.core.errors import ConfigurationError, ParseError
from geopresence.schemas.location import (
    BoundingBox,
    LocationSample,
    PolygonZone,
    RouteZone,
    zone_points,
)
from geopresence.schemas.records import RawZoneConfig
from geopresence.schemas.snapshot import ZoneResolution
from geopresence.services.coordinate_parser import parse

logger = logging.getLogger(__name__)

POLYGON_SLUG = "geo_polygon"
ROUTE_SLUG = "route_waypoint"

_MIN_POLYGON_POINTS = 3
_MIN_ROUTE_POINTS = 2


def _resolvable(points: Any) -> list[LocationSample]:
    if not isinstance(points, list):
        return []
    samples = []
    for raw in points:
        result = parse(raw)
        if not isinstance(result, ParseError):
            samples.append(result)
    return samples


def _point_lists(
    config: Mapping[str, Any], single_key: str, multi_key: str, item_key: str, fallback: str
) -> list[tuple[str | None, Any]]:
    """(name, raw point list) pairs; ``None`` name means "use the type name"."""
    lists: list[tuple[str | None, Any]] = []
    single = config.get(single_key)
    if single:
        lists.append((None, single))
    multi = config.get(multi_key) or []
    if isinstance(multi, list):
        for n, entry in enumerate(multi, start=1):
            if isinstance(entry, Mapping):
                lists.append((entry.get("name") or f"{fallback} {n}", entry.get(item_key)))
    return lists


def _resolve_one(
    cfg: RawZoneConfig, issues: list[ConfigurationError]
) -> list[PolygonZone | RouteZone]:
    kind = cfg.discriminator
    if kind == POLYGON_SLUG:
        lists = _point_lists(cfg.config, "polygon", "polygons", "points", "Zone")
        minimum = _MIN_POLYGON_POINTS
    elif kind == ROUTE_SLUG:
        lists = _point_lists(cfg.config, "waypoints", "routes", "waypoints", "Route")
        minimum = _MIN_ROUTE_POINTS
    else:
        issues.append(ConfigurationError(cfg.id, cfg.name, f"unsupported zone type '{kind}'"))
        return []

    zones: list[PolygonZone | RouteZone] = []
    for sub_name, raw_points in lists:
        name = sub_name or cfg.name
        points = _resolvable(raw_points)
        if len(points) < minimum:
            issues.append(
                ConfigurationError(
                    cfg.id, name, f"{len(points)} resolvable points, need at least {minimum}"
                )
            )
            continue
        if kind == POLYGON_SLUG:
            zones.append(PolygonZone(type_id=cfg.id, name=name, points=points))
        else:
            zones.append(RouteZone(type_id=cfg.id, name=name, waypoints=points))
    return zones


def resolve(zone_configs: Iterable[Mapping[str, Any] | RawZoneConfig]) -> ZoneResolution:
    """Resolve zone configurations into renderable zones and their combined bounds."""
    zones: list[PolygonZone | RouteZone] = []
    issues: list[ConfigurationError] = []

    for raw in zone_configs:
        try:
            cfg = raw if isinstance(raw, RawZoneConfig) else RawZoneConfig.model_validate(raw)
        except ValidationError as exc:
            issues.append(ConfigurationError("", "", f"invalid zone config: {exc.error_count()} errors"))
            continue
        zones.extend(_resolve_one(cfg, issues))

    for issue in issues:
        logger.debug("Зона '%s' (тип %s) пропущена: %s", issue.name, issue.zone_id, issue.reason)

    bounds: BoundingBox | None = None
    for zone in zones:
        box = BoundingBox.around(zone_points(zone))
        bounds = box if bounds is None else bounds.extend(box)

    return ZoneResolution(zones=zones, bounds=bounds, discarded=issues)
