"""
Time-to-distance mapping along a run's GPS trace.

Two distance bases exist on purpose:
- DistanceMapper uses the raw cumulative distance of every fix, so it answers
  "where along the route" consistently with the polyline.
- filtered_distance() only counts segments that pass accuracy/speed/movement
  gates, so it answers "how far did we really travel".
"""

import logging

import numpy as np

from ridelab.models.raw import GpsStream
from ridelab.utils.geo import cumulative_distances, segment_distances


logger = logging.getLogger(__name__)

MAX_ACCURACY_M = 20.0
MIN_SPEED_MPS = 0.5
MIN_DISTANCE_FACTOR = 0.5


class DistanceMapper:
    """Maps capture timestamps to distance-percent along the route."""

    def __init__(self, gps: GpsStream):
        self._timestamps = gps.timestamps_ns
        self._cumulative = cumulative_distances(gps.latitude, gps.longitude)
        self.total_distance_m = float(self._cumulative[-1]) if len(self._cumulative) else 0.0

    @property
    def cumulative_m(self) -> np.ndarray:
        return self._cumulative

    def dist_pct_at(self, timestamp_ns: int) -> float:
        """
        Distance percentage (0-100) for a timestamp.

        Uses the largest fix whose timestamp is <= target and the fix after
        it; before the first fix the first one is used.
        """
        n = len(self._timestamps)
        if n == 0 or self.total_distance_m == 0.0:
            return 0.0

        low = int(np.searchsorted(self._timestamps, timestamp_ns, side="right")) - 1
        low = max(low, 0)
        high = min(low + 1, n - 1)

        if low == high:
            return float(self._cumulative[low] / self.total_distance_m * 100.0)

        t0 = int(self._timestamps[low])
        t1 = int(self._timestamps[high])
        if t1 == t0:
            fraction = 0.0
        else:
            fraction = (timestamp_ns - t0) / (t1 - t0)

        low_dist = self._cumulative[low]
        high_dist = self._cumulative[high]
        distance = low_dist + fraction * (high_dist - low_dist)
        return float(np.clip(distance / self.total_distance_m * 100.0, 0.0, 100.0))

    def distance_m_at(self, timestamp_ns: int) -> float:
        return self.dist_pct_at(timestamp_ns) / 100.0 * self.total_distance_m


def max_accuracy_for(gps_sensitivity: float) -> float:
    """Accuracy gate scaled by GPS sensitivity (20 m at 1.0)."""
    return float(np.clip(MAX_ACCURACY_M / max(gps_sensitivity, 0.01), 10.0, 60.0))


def filtered_distance(gps: GpsStream, gps_sensitivity: float = 1.0) -> float:
    """
    Total distance with GPS drift filtering.

    A segment a->b is counted only when b's accuracy is acceptable, b's
    reported speed shows real movement and the segment is longer than half
    the worse accuracy of the two fixes.
    """
    if len(gps) < 2:
        return 0.0

    segments = segment_distances(gps.latitude, gps.longitude)
    acc_a = gps.accuracy[:-1]
    acc_b = gps.accuracy[1:]
    speed_b = gps.speed[1:]

    accepted = (
        (acc_b <= max_accuracy_for(gps_sensitivity))
        & (speed_b >= MIN_SPEED_MPS)
        & (segments > np.maximum(acc_a, acc_b) * MIN_DISTANCE_FACTOR)
        & np.isfinite(segments)
    )
    total = float(np.sum(segments[accepted]))
    logger.debug(f"Drift filter kept {int(np.sum(accepted))}/{len(segments)} segments ({total:.1f} m)")
    return total
