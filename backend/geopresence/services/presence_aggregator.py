from collections.abc import Mapping, Sequence

from geopresence.schemas.location import AttendanceCycle
from geopresence.schemas.snapshot import PresenceSummary


def summarize(cycles_by_user: Mapping[str, Sequence[AttendanceCycle]]) -> PresenceSummary:
    """
    Count users for the day header.

    A user is counted once they have any cycle with a punch-in. Their status
    comes from the last cycle in provider order: complete → completed,
    otherwise active.
    """
    total = active = completed = 0
    for cycles in cycles_by_user.values():
        if not any(c.punch_in is not None for c in cycles):
            continue
        total += 1
        if cycles[-1].complete:
            completed += 1
        else:
            active += 1
    return PresenceSummary(total=total, active=active, completed=completed)
