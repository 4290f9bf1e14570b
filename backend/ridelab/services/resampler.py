"""
Canonical series resampling.

Irregular (dist_pct, value) samples are projected onto a fixed grid of N
points spanning 0-100 % so that runs of any length compare point-for-point.
"""

import numpy as np
from numpy.typing import NDArray

from ridelab.config import OUTPUT_POINTS


MERGE_EPSILON = 1e-5
FLAT_SEGMENT_EPSILON = 1e-6


def canonical_grid(num_points: int = OUTPUT_POINTS) -> NDArray[np.float64]:
    """x_i = i * 100 / (N - 1)."""
    if num_points < 2:
        return np.zeros(max(num_points, 0), dtype=np.float64)
    return np.arange(num_points, dtype=np.float64) * 100.0 / (num_points - 1)


def sanitize_samples(
    values,
    dist_pcts,
) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
    """
    Clean raw samples before interpolation.

    Non-finite pairs are dropped, x is clamped to [0, 100], samples are
    stably sorted by x and neighbours closer than MERGE_EPSILON are merged by
    averaging y pairwise (left to right).
    """
    y = np.asarray(values, dtype=np.float64)
    x = np.asarray(dist_pcts, dtype=np.float64)
    n = min(len(x), len(y))
    x, y = x[:n], y[:n]

    keep = np.isfinite(x) & np.isfinite(y)
    x = np.clip(x[keep], 0.0, 100.0)
    y = y[keep]
    if len(x) == 0:
        return x, y

    order = np.argsort(x, kind="stable")
    x, y = x[order], y[order]

    merged_x = [float(x[0])]
    merged_y = [float(y[0])]
    for xi, yi in zip(x[1:], y[1:]):
        if abs(merged_x[-1] - xi) < MERGE_EPSILON:
            merged_y[-1] = (merged_y[-1] + float(yi)) / 2.0
        else:
            merged_x.append(float(xi))
            merged_y.append(float(yi))
    return np.asarray(merged_x), np.asarray(merged_y)


def resample_series(values, dist_pcts, num_points: int = OUTPUT_POINTS) -> NDArray[np.float64]:
    """
    Resample (dist_pct, value) samples onto the canonical grid.

    Returns:
        Array of shape (num_points, 2) with x in column 0 and y in column 1.
        No usable samples gives all-zero y; a single sample gives a constant.
    """
    grid = canonical_grid(num_points)
    out = np.zeros((len(grid), 2), dtype=np.float64)
    out[:, 0] = grid

    xs, ys = sanitize_samples(values, dist_pcts)
    if len(xs) == 0:
        return out
    if len(xs) == 1:
        out[:, 1] = ys[0]
        return out

    last = len(xs) - 1
    segment = 0
    for i, target in enumerate(grid):
        if target <= xs[0]:
            out[i, 1] = ys[0]
        elif target >= xs[last]:
            out[i, 1] = ys[last]
        else:
            # grid is ascending, so the segment index only moves forward
            while segment < last - 1 and xs[segment + 1] < target:
                segment += 1
            out[i, 1] = _lerp(xs[segment], ys[segment], xs[segment + 1], ys[segment + 1], target)
    return out


def interpolate_at(points: NDArray[np.float64], x: float) -> float:
    """
    Value of a sorted (x, y) point array at x.

    Clamps to the end values outside the covered range and interpolates
    linearly inside it. Empty input gives 0.
    """
    if len(points) == 0:
        return 0.0
    xs = points[:, 0]
    ys = points[:, 1]
    if x <= xs[0]:
        return float(ys[0])
    if x >= xs[-1]:
        return float(ys[-1])
    high = int(np.searchsorted(xs, x, side="left"))
    low = high - 1
    return _lerp(xs[low], ys[low], xs[high], ys[high], x)


def _lerp(x0: float, y0: float, x1: float, y1: float, x: float) -> float:
    dx = x1 - x0
    if abs(dx) < FLAT_SEGMENT_EPSILON:
        return float(y0)
    return float(y0 + (x - x0) / dx * (y1 - y0))
