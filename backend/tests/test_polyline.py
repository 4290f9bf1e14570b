"""
Tests for GPS route simplification.
"""

import numpy as np
import pytest

from ridelab.models.raw import GpsStream
from ridelab.models.run import MapGpsQuality
from ridelab.services.polyline import (
    GpsPolylineSimplifier,
    classify_gps_quality,
    select_indices,
    simplify_polyline,
)


def dense_gps(n=1000, accuracy=10.0, with_altitude=False):
    """A gently curving descent with one fix per 0.2 s."""
    i = np.arange(n, dtype=np.float64)
    return GpsStream(
        timestamps_ns=(1_000_000_000 + i * 200_000_000).astype(np.int64),
        latitude=46.02 - i * 2e-5,
        longitude=7.749 + i * 1.5e-5 + 1e-4 * np.sin(i / 50.0),
        accuracy=np.full(n, accuracy),
        speed=np.full(n, 8.0),
        altitude=2200.0 - i * 0.2 if with_altitude else None,
    )


class TestQualityClassification:
    def test_thresholds(self):
        assert classify_gps_quality(3.0) == MapGpsQuality.GOOD
        assert classify_gps_quality(14.99) == MapGpsQuality.GOOD
        assert classify_gps_quality(15.0) == MapGpsQuality.OK
        assert classify_gps_quality(29.99) == MapGpsQuality.OK
        assert classify_gps_quality(30.0) == MapGpsQuality.POOR


class TestSelectIndices:
    def test_short_trace_kept_whole(self):
        assert select_indices(np.array([0.0, 1.0, 2.0]), 150) == [0, 1, 2]

    def test_zero_length_trace(self):
        assert select_indices(np.zeros(500), 150) == [0, 499]

    def test_even_spacing(self):
        cumulative = np.arange(11, dtype=np.float64)  # 0..10 m, 1 m apart

        # budget 6 -> 2 m spacing
        assert select_indices(cumulative, 6) == [0, 2, 4, 6, 8, 10]


class TestGpsPolylineSimplifier:
    """Tests for GpsPolylineSimplifier."""

    def test_thousand_fixes_simplified(self):
        """1,000 fixes at 10 m accuracy: at most 150 points, ends kept, GOOD."""
        gps = dense_gps(1000, accuracy=10.0)

        polyline = GpsPolylineSimplifier(150).simplify("run-1", gps)

        assert 2 <= len(polyline.points) <= 150
        assert polyline.points[0].lat == gps.latitude[0]
        assert polyline.points[0].lon == gps.longitude[0]
        assert polyline.points[-1].lat == gps.latitude[-1]
        assert polyline.points[-1].lon == gps.longitude[-1]
        assert polyline.gps_quality == MapGpsQuality.GOOD
        assert polyline.avg_accuracy_m == pytest.approx(10.0)

    def test_dist_pct_spans_route(self):
        polyline = simplify_polyline("run-1", dense_gps(1000))
        pcts = [p.dist_pct for p in polyline.points]

        assert pcts[0] == 0.0
        assert pcts[-1] == pytest.approx(100.0)
        assert all(b >= a for a, b in zip(pcts, pcts[1:]))

    def test_quality_from_all_samples(self):
        """Accuracy is averaged over every fix, not just kept ones."""
        gps = dense_gps(1000, accuracy=10.0)
        gps.accuracy[1:-1:2] = 30.0  # half of the fixes are poor

        polyline = simplify_polyline("run-1", gps)

        assert polyline.avg_accuracy_m == pytest.approx(np.mean(gps.accuracy))
        assert polyline.gps_quality == MapGpsQuality.OK

    def test_small_trace_kept(self):
        gps = dense_gps(20)

        polyline = simplify_polyline("run-1", gps)

        assert len(polyline.points) == 20

    def test_empty_stream(self):
        polyline = simplify_polyline("run-1", GpsStream.empty())

        assert polyline.points == []
        assert polyline.gps_quality == MapGpsQuality.POOR
        assert polyline.avg_accuracy_m == 0.0
        assert not polyline.is_usable

    def test_single_fix_not_usable(self):
        polyline = simplify_polyline("run-1", dense_gps(1))

        assert len(polyline.points) == 1
        assert polyline.points[0].dist_pct == 0.0
        assert not polyline.is_usable

    def test_explicit_distance_basis(self):
        """A longer basis compresses percentages; they stay clamped to [0, 100]."""
        gps = dense_gps(100)
        raw = simplify_polyline("run-1", gps)

        doubled = simplify_polyline("run-1", gps, total_distance_m=raw.total_distance_m * 2)
        halved = simplify_polyline("run-1", gps, total_distance_m=raw.total_distance_m / 2)

        assert doubled.points[-1].dist_pct == pytest.approx(50.0)
        assert halved.points[-1].dist_pct == 100.0
        assert all(0.0 <= p.dist_pct <= 100.0 for p in halved.points)

    def test_zero_basis(self):
        polyline = simplify_polyline("run-1", dense_gps(10), total_distance_m=0.0)

        assert all(p.dist_pct == 0.0 for p in polyline.points)

    def test_altitude_carried(self):
        gps = dense_gps(300, with_altitude=True)

        polyline = simplify_polyline("run-1", gps)

        assert polyline.points[0].altitude == pytest.approx(2200.0)
        assert all(p.altitude is not None for p in polyline.points)

    def test_no_altitude(self):
        polyline = simplify_polyline("run-1", dense_gps(300))

        assert all(p.altitude is None for p in polyline.points)
