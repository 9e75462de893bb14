"""
Failure types of the presence engine.

Only ``FetchError`` and ``StaleResponseError`` are exceptions, and both stop
at the poller. ``ParseError`` and ``ConfigurationError`` are plain values
handed back to the caller next to the successful results.
"""

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class ParseError:
    raw: Any
    reason: str


@dataclass(frozen=True)
class ConfigurationError:
    zone_id: str
    name: str
    reason: str


class FetchError(Exception):
    """Provider call failed: transport, timeout, HTTP status or bad payload."""


class StaleResponseError(Exception):
    """A fetch finished after its subscription moved on."""

    def __init__(self, seq: int, current_seq: int) -> None:
        super().__init__(f"response #{seq} superseded by #{current_seq}")
        self.seq = seq
        self.current_seq = current_seq
