"""
GPS route simplification for map display.

Keeps roughly evenly spaced points by distance, bounded by a point budget,
and classifies the trace quality from mean reported accuracy.
"""

import logging
from typing import Optional

import numpy as np

from ridelab.config import POLYLINE_MAX_POINTS
from ridelab.models.raw import GpsStream
from ridelab.models.run import GpsPoint, GpsPolyline, MapGpsQuality
from ridelab.utils.geo import cumulative_distances


logger = logging.getLogger(__name__)

GOOD_ACCURACY_M = 15.0
OK_ACCURACY_M = 30.0


def classify_gps_quality(avg_accuracy_m: float) -> MapGpsQuality:
    if avg_accuracy_m < GOOD_ACCURACY_M:
        return MapGpsQuality.GOOD
    if avg_accuracy_m < OK_ACCURACY_M:
        return MapGpsQuality.OK
    return MapGpsQuality.POOR


def select_indices(cumulative: np.ndarray, max_points: int) -> list[int]:
    """
    Indices of the samples to keep.

    First and last are always kept; in between a sample is kept once it is
    at least total / (max_points - 1) beyond the previously kept one.
    """
    n = len(cumulative)
    if n <= max_points:
        return list(range(n))

    total = float(cumulative[-1])
    if total <= 0:
        return [0, n - 1]

    spacing = total / (max_points - 1)
    kept = [0]
    last_kept = 0.0
    for i in range(1, n - 1):
        if len(kept) >= max_points - 1:
            break
        if cumulative[i] - last_kept >= spacing:
            kept.append(i)
            last_kept = float(cumulative[i])
    kept.append(n - 1)
    return kept


class GpsPolylineSimplifier:
    """Builds a GpsPolyline of at most max_points points."""

    def __init__(self, max_points: int = POLYLINE_MAX_POINTS):
        self.max_points = max(max_points, 2)

    def simplify(
        self,
        run_id: str,
        gps: GpsStream,
        total_distance_m: Optional[float] = None,
    ) -> GpsPolyline:
        """
        Args:
            run_id: Owning run
            gps: Full GPS stream
            total_distance_m: Percent basis; defaults to the raw cumulative
                length of the trace

        Returns:
            GpsPolyline; an empty stream gives no points and POOR quality
        """
        if len(gps) == 0:
            return GpsPolyline(
                run_id=run_id,
                points=[],
                total_distance_m=0.0,
                avg_accuracy_m=0.0,
                gps_quality=MapGpsQuality.POOR,
            )

        cumulative = cumulative_distances(gps.latitude, gps.longitude)
        basis = float(cumulative[-1]) if total_distance_m is None else float(total_distance_m)

        points = []
        for i in select_indices(cumulative, self.max_points):
            if basis > 0:
                pct = float(np.clip(cumulative[i] / basis * 100.0, 0.0, 100.0))
            else:
                pct = 0.0
            altitude = None
            if gps.altitude is not None and np.isfinite(gps.altitude[i]):
                altitude = float(gps.altitude[i])
            points.append(
                GpsPoint(
                    lat=float(gps.latitude[i]),
                    lon=float(gps.longitude[i]),
                    dist_pct=pct,
                    altitude=altitude,
                )
            )

        avg_accuracy = float(np.mean(gps.accuracy))
        logger.debug(f"Simplified {len(gps)} GPS fixes to {len(points)} points for run {run_id}")

        return GpsPolyline(
            run_id=run_id,
            points=points,
            total_distance_m=basis,
            avg_accuracy_m=avg_accuracy,
            gps_quality=classify_gps_quality(avg_accuracy),
        )


def simplify_polyline(
    run_id: str,
    gps: GpsStream,
    total_distance_m: Optional[float] = None,
    max_points: int = POLYLINE_MAX_POINTS,
) -> GpsPolyline:
    return GpsPolylineSimplifier(max_points).simplify(run_id, gps, total_distance_m)
