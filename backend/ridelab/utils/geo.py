"""
Great-circle distance utilities.

Every distance-aware component measures GPS traces with the haversine
formula on a sphere of mean Earth radius.
"""

import numpy as np
from numpy.typing import NDArray

EARTH_RADIUS_M = 6371000.0  # Earth's mean radius in meters


def haversine_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Calculate great-circle distance between two points.

    Args:
        lat1, lon1: First point coordinates in degrees
        lat2, lon2: Second point coordinates in degrees

    Returns:
        Distance in meters
    """
    lat1_rad = np.radians(lat1)
    lat2_rad = np.radians(lat2)
    dlat = np.radians(lat2 - lat1)
    dlon = np.radians(lon2 - lon1)

    a = np.sin(dlat/2)**2 + np.cos(lat1_rad) * np.cos(lat2_rad) * np.sin(dlon/2)**2
    c = 2 * np.arctan2(np.sqrt(a), np.sqrt(1-a))

    return float(EARTH_RADIUS_M * c)


def segment_distances(
    lat: NDArray[np.float64],
    lon: NDArray[np.float64],
) -> NDArray[np.float64]:
    """
    Distance between each consecutive pair of points.

    Args:
        lat: Latitude array in degrees
        lon: Longitude array in degrees

    Returns:
        Array of length len(lat) - 1 (empty for fewer than two points)
    """
    if len(lat) < 2:
        return np.zeros(0, dtype=np.float64)

    lat_rad = np.radians(lat)
    dlat = np.diff(lat_rad)
    dlon = np.radians(np.diff(lon))

    a = np.sin(dlat/2)**2 + np.cos(lat_rad[:-1]) * np.cos(lat_rad[1:]) * np.sin(dlon/2)**2
    c = 2 * np.arctan2(np.sqrt(a), np.sqrt(1-a))
    return EARTH_RADIUS_M * c


def cumulative_distances(
    lat: NDArray[np.float64],
    lon: NDArray[np.float64],
) -> NDArray[np.float64]:
    """Running haversine sum; first element is 0."""
    if len(lat) == 0:
        return np.zeros(0, dtype=np.float64)
    return np.concatenate(([0.0], np.cumsum(segment_distances(lat, lon))))
