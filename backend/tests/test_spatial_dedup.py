"""
Spatial dedup tests.

Tests:
  - two users on the same spot end up distinct and within 0.001°
  - far-apart points are left untouched
  - identical batches give identical layouts
  - seeded property: every later point clears earlier ones or is flagged
  - exhausted attempt budget → resolved=False
"""

from __future__ import annotations

import random

from geopresence.schemas.location import LocationSample
from geopresence.services.spatial_dedup import (
    DedupParams,
    MarkerLayout,
    PointRequest,
    are_close,
    nudge,
    place,
)

PARAMS = DedupParams(threshold=0.0001, offset=0.0001, max_attempts=10)


def _loc(lat: float, lng: float) -> LocationSample:
    return LocationSample(latitude=lat, longitude=lng)


class TestPlacement:
    def test_two_users_same_spot(self) -> None:
        spot = _loc(23.8103, 90.4125)
        first, second = place([PointRequest("1", spot), PointRequest("2", spot)], PARAMS)

        assert first.adjusted == spot
        assert first.attempts == 0
        assert second.adjusted != first.adjusted
        assert second.resolved is True
        assert second.attempts >= 1
        assert not are_close(first.adjusted, second.adjusted, PARAMS.threshold)
        assert abs(second.adjusted.latitude - spot.latitude) < 0.001
        assert abs(second.adjusted.longitude - spot.longitude) < 0.001
        assert second.original == spot

    def test_far_points_untouched(self) -> None:
        a, b = _loc(23.80, 90.40), _loc(23.81, 90.41)
        placed = place([PointRequest("1", a), PointRequest("2", b)], PARAMS)
        assert [p.adjusted for p in placed] == [a, b]
        assert all(p.attempts == 0 and p.resolved for p in placed)

    def test_close_on_one_axis_only_is_not_close(self) -> None:
        a, b = _loc(23.8103, 90.4125), _loc(23.8103, 90.4135)
        assert not are_close(a, b, PARAMS.threshold)
        assert place([PointRequest("1", a), PointRequest("2", b)], PARAMS)[1].attempts == 0

    def test_deterministic(self) -> None:
        spot = _loc(23.8103, 90.4125)
        batch = [PointRequest(str(i), spot) for i in range(5)]
        assert place(batch, PARAMS) == place(batch, PARAMS)

    def test_output_order_matches_input(self) -> None:
        batch = [PointRequest(str(i), _loc(10 + i, 20)) for i in range(4)]
        assert [p.owner_id for p in place(batch, PARAMS)] == ["0", "1", "2", "3"]

    def test_budget_exhausted(self) -> None:
        spot = _loc(23.8103, 90.4125)
        params = DedupParams(threshold=0.01, offset=0.0001, max_attempts=1)
        first, second = place([PointRequest("1", spot), PointRequest("2", spot)], params)

        assert first.resolved is True
        assert second.attempts == 1
        assert second.resolved is False
        # точка всё равно размещена, пусть и рядом с другой
        assert second.adjusted == nudge(spot, 1, params.offset)

    def test_layout_counts_every_point(self) -> None:
        layout = MarkerLayout(PARAMS)
        layout.add("1", _loc(1, 1))
        layout.add("1", _loc(1, 1))
        assert len(layout) == 2


class TestNudge:
    def test_diagonal_step(self) -> None:
        moved = nudge(_loc(10.0, 20.0), 3, 0.5)
        assert moved == _loc(11.5, 21.5)

    def test_turns_back_at_range_edge(self) -> None:
        moved = nudge(_loc(90.0, 180.0), 1, 0.0001)
        assert moved.latitude < 90.0
        assert moved.longitude < 180.0


class TestProperty:
    def test_random_clusters(self) -> None:
        rng = random.Random(42)
        for _ in range(50):
            centre_lat = rng.uniform(-60, 60)
            centre_lng = rng.uniform(-170, 170)
            batch = [
                PointRequest(
                    str(i),
                    _loc(
                        round(centre_lat + rng.uniform(-0.0003, 0.0003), 6),
                        round(centre_lng + rng.uniform(-0.0003, 0.0003), 6),
                    ),
                )
                for i in range(rng.randint(2, 12))
            ]
            placed = place(batch, PARAMS)

            assert len(placed) == len(batch)
            for j, later in enumerate(placed):
                assert later.original == batch[j].location
                if not later.resolved:
                    continue
                for earlier in placed[:j]:
                    assert not are_close(later.adjusted, earlier.adjusted, PARAMS.threshold)
