"""
Tests for the signal processing pipeline.
"""

import logging
import threading
from datetime import datetime

import numpy as np
import pytest

from ridelab.config import ProcessingConfig
from ridelab.errors import ProcessingFailure
from ridelab.models.raw import GpsStream, ImuStream, RawCapture, RawCaptureHandle
from ridelab.models.run import EventType, GpsQuality, SeriesType
from ridelab.services.analyzers import StabilityAnalyzer
from ridelab.services.distance import DistanceMapper
from ridelab.services.events import LandingCandidate, LandingDetector
from ridelab.services.pipeline import (
    ProcessingStage,
    SignalProcessor,
    percentile,
    process_capture,
    resolve_sample_rate,
    round_half_up,
)
from ridelab.utils.geo import EARTH_RADIUS_M
from ridelab.utils.sample_data import generate_downhill_capture


START_NS = 1_000_000_000
FIXED_NOW = datetime(2024, 6, 1, 12, 0, 0)


def counter_ids():
    count = {"n": 0}

    def next_id():
        count["n"] += 1
        return f"id-{count['n']}"

    return next_id


def make_processor(**kwargs):
    kwargs.setdefault("clock", lambda: FIXED_NOW)
    kwargs.setdefault("id_factory", counter_ids())
    return SignalProcessor(**kwargs)


@pytest.fixture
def short_capture():
    """10 s at 50 Hz, GPS at 5 m/s for 50 m."""
    rng = np.random.default_rng(42)
    n_accel = 501
    accel_ts = START_NS + np.arange(n_accel, dtype=np.int64) * 20_000_000
    accel = ImuStream(
        timestamps_ns=accel_ts,
        x=rng.normal(0, 2.0, n_accel),
        y=rng.normal(0, 2.0, n_accel),
        z=rng.normal(0, 2.0, n_accel),
    )
    gyro = ImuStream(
        timestamps_ns=accel_ts.copy(),
        x=rng.normal(0, 0.2, n_accel),
        y=rng.normal(0, 0.2, n_accel),
        z=rng.normal(0, 0.1, n_accel),
    )

    i = np.arange(11)
    meters_per_deg = EARTH_RADIUS_M * np.pi / 180.0
    gps = GpsStream(
        timestamps_ns=START_NS + i.astype(np.int64) * 1_000_000_000,
        latitude=46.0 + i * 5.0 / meters_per_deg,
        longitude=np.full(11, 7.75),
        accuracy=np.array([2.0, 3.0, 4.0, 5.0, 3.0, 2.0, 4.0, 5.0, 3.0, 2.0, 4.0]),
        speed=np.full(11, 5.0),
    )
    handle = RawCaptureHandle(
        session_id="short",
        track_id="t1",
        start_time_ns=START_NS,
        end_time_ns=START_NS + 10_000_000_000,
        device_model="test",
        accel_sample_rate_hz=50.0,
        gyro_sample_rate_hz=50.0,
    )
    return RawCapture(handle=handle, accel=accel, gyro=gyro, gps=gps)


class TestHelpers:
    def test_round_half_up(self):
        assert round_half_up(12.5) == 13
        assert round_half_up(12.49) == 12
        assert round_half_up(2.5) == 3

    def test_percentile_nearest_rank(self):
        assert percentile([4.0, 1.0, 3.0, 2.0], 90) == 3.0

    def test_declared_rate_used(self, short_capture):
        assert resolve_sample_rate(50.0, short_capture.accel) == 50.0

    def test_missing_rate_estimated(self, short_capture):
        assert resolve_sample_rate(float("nan"), short_capture.accel) == pytest.approx(50.0)
        assert resolve_sample_rate(0.0, short_capture.accel) == pytest.approx(50.0)


class TestShortRun:
    """A 10 s, 50 Hz capture travelling 50 m."""

    def test_distance(self, short_capture):
        processed = make_processor().process(short_capture, run_id="r1")

        assert processed.run.distance_m == pytest.approx(50.0, rel=1e-6)

    def test_midpoint_mapping(self, short_capture):
        mapper = DistanceMapper(short_capture.gps)

        assert mapper.dist_pct_at(START_NS + 5_000_000_000) == pytest.approx(50.0, abs=1e-6)

    def test_window_count(self, short_capture):
        """1 s windows with a 0.25 s hop; the trailing partial window is dropped."""
        processor = make_processor()
        mapper = DistanceMapper(short_capture.gps)

        windows = processor.process_windows(short_capture, mapper, 50.0)

        window, hop = 50, 13
        assert len(windows) == (501 - window) // hop + 1
        assert len(windows.impact) == len(windows.harshness) == len(windows.stability) == len(windows)
        assert all(0.0 <= p <= 100.0 for p in windows.dist_pcts)
        assert windows.dist_pcts == sorted(windows.dist_pcts)

    def test_summaries(self, short_capture):
        processor = make_processor()
        processed = processor.process(short_capture, run_id="r1")
        windows = processor.process_windows(short_capture, DistanceMapper(short_capture.gps), 50.0)
        run = processed.run

        assert run.impact_score == pytest.approx(sum(windows.impact))
        assert run.harshness_avg == pytest.approx(np.mean(windows.harshness))
        assert run.harshness_p90 == sorted(windows.harshness)[int(0.9 * (len(windows) - 1))]
        assert run.stability_score == pytest.approx(np.mean(windows.stability))

    def test_run_fields(self, short_capture):
        processed = make_processor().process(short_capture, run_id="r1")
        run = processed.run

        assert run.run_id == "r1"
        assert run.track_id == "t1"
        assert run.duration_ms == 10_000
        assert run.ended_at == FIXED_NOW
        assert (run.ended_at - run.started_at).total_seconds() == 10.0
        assert run.max_speed == 5.0
        assert run.avg_speed == pytest.approx(5.0, rel=1e-6)
        assert run.landing_quality_score is None

    def test_short_run_invalid(self, short_capture):
        run = make_processor().process(short_capture).run

        assert not run.is_valid
        assert run.issues[0].name == "TOO_SHORT"

    def test_series(self, short_capture):
        processed = make_processor().process(short_capture, run_id="r1")

        types = [s.series_type for s in processed.series]
        assert types == [
            SeriesType.IMPACT_DENSITY,
            SeriesType.HARSHNESS,
            SeriesType.STABILITY,
            SeriesType.SPEED_TIME,
        ]
        for series in processed.series:
            assert series.point_count == 200
            assert series.run_id == "r1"
            assert series.x_values[0] == 0.0
            assert series.x_values[-1] == pytest.approx(100.0)

    def test_speed_time_series(self, short_capture):
        processed = make_processor().process(short_capture, run_id="r1")
        timing = processed.get_series(SeriesType.SPEED_TIME)

        assert timing.y_values[0] == pytest.approx(0.0)
        assert timing.y_values[-1] == pytest.approx(10.0)
        assert np.all(np.diff(timing.y_values) >= -1e-9)

    def test_polyline_uses_raw_basis(self, short_capture):
        processed = make_processor().process(short_capture, run_id="r1")

        assert processed.polyline.is_usable
        assert len(processed.polyline.points) == 11
        assert processed.polyline.points[-1].dist_pct == pytest.approx(100.0)

    def test_generated_ids(self, short_capture):
        processed = make_processor().process(short_capture)

        assert processed.run.run_id == "id-1"

    def test_stage_transitions_logged(self, short_capture, caplog):
        caplog.set_level(logging.INFO, logger="ridelab.services.pipeline")

        make_processor().process(short_capture, run_id="r1")

        stages = [r.getMessage() for r in caplog.records if ": stage " in r.getMessage()]
        assert stages == [
            f"Run r1: stage {ProcessingStage.IDLE.value} -> {ProcessingStage.WINDOWING.value}",
            "Run r1: stage windowing -> event_detection",
            "Run r1: stage event_detection -> summarizing",
            "Run r1: stage summarizing -> done",
        ]

    def test_custom_config(self, short_capture):
        config = ProcessingConfig(window_sec=2.0, hop_sec=1.0, output_points=50)
        processed = make_processor(config=config).process(short_capture)

        assert all(s.point_count == 50 for s in processed.series)


class TestDownhillRun:
    """A generated one-minute run with a jump."""

    @pytest.fixture
    def processed(self):
        capture = generate_downhill_capture(duration_s=60.0, jumps_s=(20.0,), seed=4)
        return make_processor().process(capture, run_id="dh")

    def test_valid(self, processed):
        run = processed.run

        assert run.is_valid
        assert run.invalid_reason is None
        assert run.gps_quality == GpsQuality.EXCELLENT
        assert 590.0 <= run.distance_m <= 650.0

    def test_landing_detected(self, processed):
        landings = [e for e in processed.events if e.type == EventType.LANDING]

        assert len(landings) == 1
        landing = landings[0]
        assert landing.time_sec == pytest.approx(20.3, abs=0.05)
        assert landing.meta.peak_g == pytest.approx(4.5, rel=0.01)
        assert landing.severity == 2.0
        assert 30.0 <= landing.dist_pct <= 37.0
        assert processed.run.landing_quality_score == 2.0

    def test_no_impact_peak_on_landing(self, processed):
        landing = next(e for e in processed.events if e.type == EventType.LANDING)
        peaks = [e for e in processed.events if e.type == EventType.IMPACT_PEAK]

        assert all(abs(p.time_sec - landing.time_sec) > 0.35 for p in peaks)

    def test_events_ordered_by_distance(self, processed):
        keys = [(e.dist_pct, e.time_sec) for e in processed.events]

        assert keys == sorted(keys)
        assert all(e.run_id == "dh" for e in processed.events)
        assert len({e.event_id for e in processed.events}) == len(processed.events)


class TestEdgeCases:
    def test_no_gps(self, short_capture):
        short_capture.gps = GpsStream.empty()

        processed = make_processor().process(short_capture)

        assert processed.run.distance_m == 0.0
        assert processed.run.max_speed is None
        assert not processed.polyline.is_usable
        assert processed.run.gps_quality == GpsQuality.POOR
        impact = processed.get_series(SeriesType.IMPACT_DENSITY)
        assert impact.point_count == 200

    def test_no_accel(self, short_capture):
        short_capture.accel = ImuStream.empty()

        processed = make_processor().process(short_capture)

        assert processed.run.impact_score == 0.0
        assert processed.run.harshness_avg == 0.0
        assert processed.run.harshness_p90 == 0.0
        assert processed.events == []
        assert np.all(processed.get_series(SeriesType.HARSHNESS).y_values == 0.0)

    def test_non_finite_samples_tolerated(self, short_capture):
        short_capture.accel.x[::7] = np.nan
        short_capture.gyro.y[::5] = np.inf

        processed = make_processor().process(short_capture)

        assert np.isfinite(processed.run.impact_score)
        assert np.isfinite(processed.run.stability_score)
        for series in processed.series:
            assert np.all(np.isfinite(series.y_values))

    def test_analyzer_failure_aborts(self, short_capture):
        class BrokenAnalyzer:
            name = "broken"

            def analyze_window(self, window, sample_rate_hz):
                raise RuntimeError("boom")

        processor = make_processor(stability_analyzer=BrokenAnalyzer())

        with pytest.raises(ProcessingFailure) as exc_info:
            processor.process(short_capture)

        assert exc_info.value.stage == "windowing"
        assert isinstance(exc_info.value.cause, RuntimeError)

    def test_landing_before_declared_start_clamped(self, short_capture):
        class EarlyLandingDetector:
            def detect(self, accel, sample_rate_hz):
                return [LandingCandidate(
                    timestamp_ms=START_NS // 1_000_000 - 50,
                    peak_g=3.0,
                    energy_300ms=1.0,
                    recovery_ms=100,
                    airtime_ms=200,
                )]

        processed = make_processor(landing_detector=EarlyLandingDetector()).process(short_capture)

        landing = next(e for e in processed.events if e.type == EventType.LANDING)
        assert landing.time_sec == 0.0
        assert all(e.time_sec >= 0.0 for e in processed.events)

    def test_shared_processor_reports_own_stage(self, short_capture):
        """A failing run reports its own stage while another run is further along."""
        other_detecting = threading.Event()
        failing_done = threading.Event()

        class FailingStability(StabilityAnalyzer):
            def analyze_window(self, window, sample_rate_hz):
                if threading.current_thread().name == "failing":
                    other_detecting.wait(timeout=5)
                    raise RuntimeError("gyro dropout")
                return super().analyze_window(window, sample_rate_hz)

        class SignallingDetector(LandingDetector):
            def detect(self, accel, sample_rate_hz):
                if threading.current_thread().name == "healthy":
                    other_detecting.set()
                    failing_done.wait(timeout=5)
                return super().detect(accel, sample_rate_hz)

        processor = make_processor(
            stability_analyzer=FailingStability(ProcessingConfig().sensitivity),
            landing_detector=SignallingDetector(),
        )
        outcome = {}

        def run_failing():
            try:
                processor.process(short_capture, run_id="failing")
            except ProcessingFailure as e:
                outcome["failure"] = e
            finally:
                failing_done.set()

        def run_healthy():
            outcome["processed"] = processor.process(short_capture, run_id="healthy")

        threads = [
            threading.Thread(target=run_failing, name="failing"),
            threading.Thread(target=run_healthy, name="healthy"),
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=30)

        assert other_detecting.is_set()
        assert outcome["failure"].stage == ProcessingStage.WINDOWING.value
        assert outcome["processed"].run.run_id == "healthy"

    def test_process_capture(self, short_capture):
        processed = process_capture(short_capture)

        assert processed.run.track_id == "t1"
        assert len(processed.series) == 4
