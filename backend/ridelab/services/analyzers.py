"""
Windowed metric analyzers.

Each analyzer reduces one fixed-duration window of IMU samples to a single
finite float. Analyzers are pure: no state survives between windows, and
empty or short windows yield 0.0 instead of raising.
"""

import math
from typing import Protocol

import numpy as np
from numpy.typing import NDArray

from ridelab.config import SensorSensitivity
from ridelab.models.raw import ImuStream


GRAVITY = 9.81
DEFAULT_SAMPLE_RATE_HZ = 200.0


class WindowAnalyzer(Protocol):
    """One window in, one scalar out."""

    name: str

    def analyze_window(self, window: ImuStream, sample_rate_hz: float) -> float:
        ...


def _finite_or_zero(value: float) -> float:
    return float(value) if math.isfinite(value) else 0.0


def estimate_sample_rate(timestamps_ns: NDArray[np.int64]) -> float:
    """Sample rate from timestamps, clamped to [20, 500] Hz."""
    if len(timestamps_ns) < 2:
        return DEFAULT_SAMPLE_RATE_HZ
    duration_ns = max(int(timestamps_ns[-1] - timestamps_ns[0]), 1)
    rate = (len(timestamps_ns) - 1) * 1e9 / duration_ns
    if not math.isfinite(rate):
        return DEFAULT_SAMPLE_RATE_HZ
    return float(np.clip(rate, 20.0, 500.0))


def detect_peak_indices(
    signal: NDArray[np.float64],
    threshold: float,
    min_distance_samples: int,
) -> list[int]:
    """
    Local maxima above threshold, tolerant of flat tops.

    When two peaks are closer than min_distance_samples the stronger one is
    kept.
    """
    peaks: list[int] = []
    if len(signal) < 3:
        return peaks

    for i in range(1, len(signal) - 1):
        current = signal[i]
        if current <= threshold:
            continue
        prev = signal[i - 1]
        nxt = signal[i + 1]
        if not (current >= prev and current >= nxt and (current > prev or current > nxt)):
            continue

        if peaks and (i - peaks[-1]) < min_distance_samples:
            if current > signal[peaks[-1]]:
                peaks[-1] = i
        else:
            peaks.append(i)

    return peaks


class ImpactAnalyzer:
    """
    Impact density from linear-acceleration magnitude peaks.

    Score is the sum of squared peak G over peaks above the impact threshold.
    """

    name = "impact"

    IMPACT_THRESHOLD_MS2 = 2.5  # at sensitivity 1.0
    MIN_PEAK_DISTANCE_MS = 100

    def __init__(self, sensitivity: SensorSensitivity = SensorSensitivity()):
        self.sensitivity = sensitivity.normalized()

    @property
    def threshold_ms2(self) -> float:
        return self.IMPACT_THRESHOLD_MS2 / max(self.sensitivity.impact, 0.01)

    def min_peak_distance_samples(self, sample_rate_hz: float) -> int:
        rate = max(sample_rate_hz, 1.0)
        return max(int(self.MIN_PEAK_DISTANCE_MS / 1000.0 * rate), 1)

    def analyze_window(self, window: ImuStream, sample_rate_hz: float) -> float:
        window = window.finite()
        if len(window) < 3:
            return 0.0

        magnitudes = window.magnitude()
        rate = estimate_sample_rate(window.timestamps_ns)
        peaks = detect_peak_indices(
            magnitudes, self.threshold_ms2, self.min_peak_distance_samples(rate)
        )
        score = sum((magnitudes[i] / GRAVITY) ** 2 for i in peaks)
        return _finite_or_zero(score)

    def detect_peaks(self, accel: ImuStream, sample_rate_hz: float) -> list[tuple[int, float]]:
        """(timestamp_ns, peak_g) for each impact peak in a whole stream."""
        accel = accel.finite()
        if len(accel) < 3:
            return []
        magnitudes = accel.magnitude()
        indices = detect_peak_indices(
            magnitudes, self.threshold_ms2, self.min_peak_distance_samples(sample_rate_hz)
        )
        return [(int(accel.timestamps_ns[i]), float(magnitudes[i] / GRAVITY)) for i in indices]


class HarshnessAnalyzer:
    """High-frequency chatter: RMS of the magnitude's first difference."""

    name = "harshness"

    MIN_SAMPLES = 50

    def __init__(self, sensitivity: SensorSensitivity = SensorSensitivity()):
        self.sensitivity = sensitivity.normalized()

    def analyze_window(self, window: ImuStream, sample_rate_hz: float) -> float:
        if sample_rate_hz <= 0:
            return 0.0
        window = window.finite()
        if len(window) < self.MIN_SAMPLES:
            return 0.0

        diffs = np.diff(window.magnitude())
        if len(diffs) == 0:
            return 0.0
        rms = math.sqrt(float(np.mean(diffs**2)))
        return _finite_or_zero(rms * self.sensitivity.harshness)


class StabilityAnalyzer:
    """
    Rider/bike stability from gyroscope variance.

    Pitch and roll (x, y) variance are summed; yaw says little about
    instability. Lower is more stable.
    """

    name = "stability"

    MIN_SAMPLES = 10

    def __init__(self, sensitivity: SensorSensitivity = SensorSensitivity()):
        self.sensitivity = sensitivity.normalized()

    def analyze_window(self, window: ImuStream, sample_rate_hz: float) -> float:
        window = window.finite()
        if len(window) < self.MIN_SAMPLES:
            return 0.0
        index = (float(np.var(window.x)) + float(np.var(window.y))) * self.sensitivity.stability
        return _finite_or_zero(index)
