"""
Coordinate parser.

Normalises the location encodings the HRM backend has used over time into a
``LocationSample``:

  {"lat": 23.81, "lng": 90.41, "address": "", "timestamp": "..."}
  {"latitude": "23.81", "longitude": "90.41"}
  '{"lat": 23.81, "lng": 90.41}'          (JSON encoded)
  "23.81, 90.41"                          (comma separated)

Never raises: every outcome is either a sample or a ``ParseError``.
"""

import json
import math
from collections.abc import Mapping
from typing import Any

from geopresence.core.errors import ParseError
from geopresence.schemas.location import LocationSample

ParseResult = LocationSample | ParseError

_LAT_KEYS = ("lat", "latitude")
_LNG_KEYS = ("lng", "longitude")


def _to_float(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        result = float(value)
    elif isinstance(value, str):
        try:
            result = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    return result if math.isfinite(result) else None


def _first_present(data: Mapping[str, Any], keys: tuple[str, ...]) -> Any:
    for key in keys:
        if data.get(key) is not None:
            return data[key]
    return None


def _make_sample(raw: Any, lat_raw: Any, lng_raw: Any) -> ParseResult:
    lat = _to_float(lat_raw)
    lng = _to_float(lng_raw)
    if lat is None or lng is None:
        return ParseError(raw, "non-numeric coordinate")
    if not -90.0 <= lat <= 90.0:
        return ParseError(raw, f"latitude {lat} out of range")
    if not -180.0 <= lng <= 180.0:
        return ParseError(raw, f"longitude {lng} out of range")
    return LocationSample(latitude=lat, longitude=lng)


def _from_mapping(raw: Any, data: Mapping[str, Any]) -> ParseResult:
    lat_raw = _first_present(data, _LAT_KEYS)
    lng_raw = _first_present(data, _LNG_KEYS)
    if lat_raw is None or lng_raw is None:
        return ParseError(raw, "missing lat/lng fields")
    return _make_sample(raw, lat_raw, lng_raw)


def _from_string(raw: str) -> ParseResult:
    text = raw.strip()
    if not text:
        return ParseError(raw, "empty string")

    try:
        decoded = json.loads(text)
    except ValueError:
        decoded = None
    if isinstance(decoded, Mapping):
        return _from_mapping(raw, decoded)

    tokens = text.split(",")
    if len(tokens) != 2:
        return ParseError(raw, "expected 'lat,lng'")
    return _make_sample(raw, tokens[0], tokens[1])


def parse(raw: Any) -> ParseResult:
    """Parse one raw location value into a sample or a ``ParseError``."""
    if isinstance(raw, Mapping):
        return _from_mapping(raw, raw)
    if isinstance(raw, str):
        return _from_string(raw)
    return ParseError(raw, f"unsupported location type {type(raw).__name__}")


def is_blank(raw: Any) -> bool:
    """True for values that mean "no location recorded" rather than bad data."""
    if raw is None:
        return True
    if isinstance(raw, str) and not raw.strip():
        return True
    return isinstance(raw, Mapping) and not raw
