"""
Elapsed time along a run as a function of distance-percent.

Measured timing comes from the run's SPEED_TIME series. Without one, time
is assumed to grow linearly with distance over the run duration.
"""

from typing import Optional

import numpy as np

from ridelab.models.run import Run, RunSeries
from ridelab.models.raw import GpsStream
from ridelab.services.resampler import interpolate_at, resample_series
from ridelab.utils.geo import cumulative_distances


END_OF_TRACE_PCT = 99.5


class RunTimingProfile:
    def __init__(self, run: Run, timing_series: Optional[RunSeries] = None):
        self.run = run
        self._points = None
        if timing_series is not None and timing_series.point_count > 0:
            self._points = timing_series.points[: timing_series.point_count]

    @property
    def has_measured_timing(self) -> bool:
        return self._points is not None

    def elapsed_ms_at(self, dist_pct: float) -> Optional[float]:
        target = float(np.clip(dist_pct, 0.0, 100.0))
        if self._points is not None:
            return max(interpolate_at(self._points, target) * 1000.0, 0.0)
        if self.run.duration_ms > 0:
            return self.run.duration_ms * target / 100.0
        return None

    def section_time_ms(self, start_pct: float, end_pct: float) -> Optional[float]:
        start = self.elapsed_ms_at(start_pct)
        end = self.elapsed_ms_at(end_pct)
        if start is None or end is None:
            return None
        return end - start


def timing_samples(
    gps: GpsStream,
    start_time_ns: int,
    duration_ms: int,
) -> Optional[tuple[list[float], list[float]]]:
    """
    Raw (dist_pct, elapsed_s) pairs for the timing series.

    One pair per GPS fix on the raw cumulative-distance basis, padded so the
    profile always spans 0-100 % and the full duration.
    """
    if duration_ms <= 0:
        return None

    duration_s = duration_ms / 1000.0
    cumulative = cumulative_distances(gps.latitude, gps.longitude)
    total = float(cumulative[-1]) if len(cumulative) else 0.0
    if len(gps) < 2 or total <= 0:
        return [0.0, 100.0], [0.0, duration_s]

    dist_pcts = list(np.clip(cumulative / total * 100.0, 0.0, 100.0))
    elapsed = list(np.maximum(gps.timestamps_ns - start_time_ns, 0) / 1e9)
    dist_pcts[0] = 0.0

    if dist_pcts[-1] < END_OF_TRACE_PCT:
        dist_pcts.append(100.0)
        elapsed.append(duration_s)
    else:
        elapsed[-1] = max(elapsed[-1], duration_s)

    return [float(x) for x in dist_pcts], [float(y) for y in elapsed]


def build_timing_points(
    gps: GpsStream,
    start_time_ns: int,
    duration_ms: int,
    num_points: int,
):
    """Timing samples resampled onto the canonical grid, or None."""
    samples = timing_samples(gps, start_time_ns, duration_ms)
    if samples is None:
        return None
    dist_pcts, elapsed = samples
    return resample_series(elapsed, dist_pcts, num_points)
