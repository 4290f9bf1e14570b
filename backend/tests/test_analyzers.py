"""
Tests for the windowed metric analyzers.
"""

import numpy as np
import pytest

from ridelab.config import SensorSensitivity
from ridelab.models.raw import ImuStream
from ridelab.services.analyzers import (
    DEFAULT_SAMPLE_RATE_HZ,
    GRAVITY,
    HarshnessAnalyzer,
    ImpactAnalyzer,
    StabilityAnalyzer,
    detect_peak_indices,
    estimate_sample_rate,
)


UNIT = SensorSensitivity(impact=1.0, harshness=1.0, stability=1.0, gps=1.0)


def imu(x, y=None, z=None, rate_hz=100.0):
    x = np.asarray(x, dtype=np.float64)
    n = len(x)
    return ImuStream(
        timestamps_ns=(np.arange(n) * (1e9 / rate_hz)).astype(np.int64),
        x=x,
        y=np.zeros(n) if y is None else np.asarray(y, dtype=np.float64),
        z=np.zeros(n) if z is None else np.asarray(z, dtype=np.float64),
    )


class TestSampleRate:
    def test_estimated_from_timestamps(self):
        window = imu(np.zeros(101), rate_hz=100.0)

        assert estimate_sample_rate(window.timestamps_ns) == pytest.approx(100.0)

    def test_too_few_samples(self):
        assert estimate_sample_rate(np.array([5], dtype=np.int64)) == DEFAULT_SAMPLE_RATE_HZ

    def test_clamped(self):
        assert estimate_sample_rate(imu(np.zeros(50), rate_hz=2000.0).timestamps_ns) == 500.0
        assert estimate_sample_rate(imu(np.zeros(5), rate_hz=1.0).timestamps_ns) == 20.0


class TestPeakDetection:
    def test_separate_peaks(self):
        signal = np.array([0.0, 5.0, 0.0, 0.0, 6.0, 0.0])

        assert detect_peak_indices(signal, threshold=1.0, min_distance_samples=1) == [1, 4]

    def test_close_peaks_keep_stronger(self):
        signal = np.array([0.0, 5.0, 0.0, 0.0, 6.0, 0.0])

        assert detect_peak_indices(signal, threshold=1.0, min_distance_samples=5) == [4]

    def test_flat_top_counted_once(self):
        signal = np.array([0.0, 5.0, 5.0, 0.0])

        assert detect_peak_indices(signal, threshold=1.0, min_distance_samples=2) == [1]

    def test_below_threshold_ignored(self):
        signal = np.array([0.0, 0.5, 0.0, 3.0, 0.0])

        assert detect_peak_indices(signal, threshold=1.0, min_distance_samples=1) == [3]

    def test_short_signal(self):
        assert detect_peak_indices(np.array([0.0, 9.0]), threshold=1.0, min_distance_samples=1) == []


class TestImpactAnalyzer:
    """Tests for ImpactAnalyzer."""

    def test_single_spike(self):
        """A 2 g spike scores (2 g)^2."""
        z = np.zeros(100)
        z[50] = 2.0 * GRAVITY

        score = ImpactAnalyzer(UNIT).analyze_window(imu(np.zeros(100), z=z), 100.0)

        assert score == pytest.approx(4.0)

    def test_sensitivity_lowers_threshold(self):
        z = np.zeros(100)
        z[50] = 3.0  # m/s², below the 2.5 / 0.5 threshold

        low = ImpactAnalyzer(SensorSensitivity(impact=0.5)).analyze_window(imu(np.zeros(100), z=z), 100.0)
        high = ImpactAnalyzer(SensorSensitivity(impact=2.0)).analyze_window(imu(np.zeros(100), z=z), 100.0)

        assert low == 0.0
        assert high > 0.0

    def test_quiet_window(self):
        assert ImpactAnalyzer(UNIT).analyze_window(imu(np.full(100, 0.5)), 100.0) == 0.0

    def test_empty_and_short_windows(self):
        analyzer = ImpactAnalyzer(UNIT)

        assert analyzer.analyze_window(ImuStream.empty(), 100.0) == 0.0
        assert analyzer.analyze_window(imu([50.0, 0.0]), 100.0) == 0.0

    def test_non_finite_samples_dropped(self):
        z = np.zeros(100)
        z[50] = 2.0 * GRAVITY
        x = np.zeros(100)
        x[10] = np.nan

        score = ImpactAnalyzer(UNIT).analyze_window(imu(x, z=z), 100.0)

        assert score == pytest.approx(4.0)

    def test_detect_peaks_over_stream(self):
        z = np.zeros(300)
        z[100] = 3.0 * GRAVITY
        z[250] = 4.0 * GRAVITY
        stream = imu(np.zeros(300), z=z)

        peaks = ImpactAnalyzer(UNIT).detect_peaks(stream, 100.0)

        assert [ts for ts, _ in peaks] == [int(stream.timestamps_ns[100]), int(stream.timestamps_ns[250])]
        assert [g for _, g in peaks] == pytest.approx([3.0, 4.0])


class TestHarshnessAnalyzer:
    """Tests for HarshnessAnalyzer."""

    def test_alternating_signal(self):
        """Magnitude toggling between 0 and 1 has unit RMS difference."""
        z = np.tile([0.0, 1.0], 50)

        score = HarshnessAnalyzer(UNIT).analyze_window(imu(np.zeros(100), z=z), 100.0)

        assert score == pytest.approx(1.0)

    def test_sensitivity_scales(self):
        z = np.tile([0.0, 1.0], 50)
        window = imu(np.zeros(100), z=z)

        score = HarshnessAnalyzer(SensorSensitivity(harshness=3.0)).analyze_window(window, 100.0)

        assert score == pytest.approx(3.0)

    def test_smooth_signal_is_zero(self):
        assert HarshnessAnalyzer(UNIT).analyze_window(imu(np.full(100, 4.0)), 100.0) == 0.0

    def test_short_window(self):
        assert HarshnessAnalyzer(UNIT).analyze_window(imu(np.tile([0.0, 9.0], 20)), 100.0) == 0.0

    def test_zero_rate(self):
        z = np.tile([0.0, 1.0], 50)

        assert HarshnessAnalyzer(UNIT).analyze_window(imu(np.zeros(100), z=z), 0.0) == 0.0


class TestStabilityAnalyzer:
    """Tests for StabilityAnalyzer."""

    def test_pitch_and_roll_variance(self):
        x = np.tile([1.0, -1.0], 10)  # variance 1
        y = np.tile([2.0, -2.0], 10)  # variance 4
        z = np.tile([9.0, -9.0], 10)  # yaw is ignored

        score = StabilityAnalyzer(UNIT).analyze_window(imu(x, y, z), 100.0)

        assert score == pytest.approx(5.0)

    def test_default_sensitivity(self):
        x = np.tile([1.0, -1.0], 10)

        score = StabilityAnalyzer().analyze_window(imu(x), 100.0)

        assert score == pytest.approx(0.1)

    def test_short_window(self):
        assert StabilityAnalyzer(UNIT).analyze_window(imu(np.tile([1.0, -1.0], 4)), 100.0) == 0.0


class TestAnalyzerContract:
    """Every analyzer is pure, finite and tolerant of bad windows."""

    @pytest.mark.parametrize("analyzer", [ImpactAnalyzer(), HarshnessAnalyzer(), StabilityAnalyzer()])
    def test_finite_and_deterministic(self, analyzer):
        rng = np.random.default_rng(11)
        for n in (0, 1, 5, 60, 250):
            x, y, z = rng.normal(0, 4, (3, n))
            if n > 3:
                x[2] = np.nan
                y[3] = np.inf
            window = imu(x, y, z, rate_hz=200.0)

            first = analyzer.analyze_window(window, 200.0)
            second = analyzer.analyze_window(window, 200.0)

            assert np.isfinite(first)
            assert first == second

    def test_sensitivity_is_clamped(self):
        normalized = SensorSensitivity(impact=10.0, harshness=0.0).normalized()

        assert normalized.impact == 5.0
        assert normalized.harshness == 0.1
