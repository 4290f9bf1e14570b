"""
Signal processing pipeline.

Turns a RawCapture into a ProcessedRun:

    raw capture -> drift-filtered distance + distance mapping
                -> windowed metrics (impact, harshness, stability)
                -> events (landings, impact peaks, harshness bursts)
                -> summaries, canonical series, simplified GPS route

Processing is synchronous and pure over its inputs. Any analyzer error aborts
the whole run with ProcessingFailure; no partial result is returned.
"""

import logging
import math
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Optional

import numpy as np

from ridelab.config import ProcessingConfig
from ridelab.errors import ProcessingFailure
from ridelab.models.raw import ImuStream, RawCapture
from ridelab.models.run import (
    EventMeta,
    EventType,
    ProcessedRun,
    Run,
    RunEvent,
    RunSeries,
    SeriesType,
    XAxisType,
)
from ridelab.services.analyzers import (
    DEFAULT_SAMPLE_RATE_HZ,
    HarshnessAnalyzer,
    ImpactAnalyzer,
    StabilityAnalyzer,
    WindowAnalyzer,
    estimate_sample_rate,
)
from ridelab.services.distance import DistanceMapper, filtered_distance
from ridelab.services.events import (
    LandingDetector,
    detect_harshness_bursts,
    detect_impact_peaks,
    nearest_rank_percentile,
)
from ridelab.services.polyline import GpsPolylineSimplifier
from ridelab.services.resampler import resample_series
from ridelab.services.timing import build_timing_points
from ridelab.services.validator import RunValidator


logger = logging.getLogger(__name__)

MIN_DECLARED_RATE_HZ = 5.0


class ProcessingStage(Enum):
    IDLE = "idle"
    WINDOWING = "windowing"
    EVENT_DETECTION = "event_detection"
    SUMMARIZING = "summarizing"
    DONE = "done"


@dataclass
class WindowResults:
    impact: list[float] = field(default_factory=list)
    harshness: list[float] = field(default_factory=list)
    stability: list[float] = field(default_factory=list)
    dist_pcts: list[float] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.dist_pcts)


def resolve_sample_rate(declared_hz: float, accel: ImuStream) -> float:
    """Declared rate when plausible, otherwise estimated from timestamps."""
    if declared_hz is not None and math.isfinite(declared_hz) and declared_hz >= MIN_DECLARED_RATE_HZ:
        return float(declared_hz)
    if len(accel) < 2:
        return DEFAULT_SAMPLE_RATE_HZ
    return estimate_sample_rate(accel.timestamps_ns)


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def percentile(values: list[float], p: float) -> float:
    return nearest_rank_percentile(values, p)


def _uuid() -> str:
    return str(uuid.uuid4())


class SignalProcessor:
    """
    Processes one capture at a time.

    Analyzers, the landing detector, the validator, the clock and the id
    factory are injectable so tests can pin every source of variation.
    """

    def __init__(
        self,
        config: Optional[ProcessingConfig] = None,
        impact_analyzer: Optional[ImpactAnalyzer] = None,
        harshness_analyzer: Optional[HarshnessAnalyzer] = None,
        stability_analyzer: Optional[WindowAnalyzer] = None,
        landing_detector: Optional[LandingDetector] = None,
        validator: Optional[RunValidator] = None,
        clock: Callable[[], datetime] = datetime.now,
        id_factory: Callable[[], str] = _uuid,
    ):
        self.config = config or ProcessingConfig()
        sensitivity = self.config.sensitivity
        self.impact_analyzer = impact_analyzer or ImpactAnalyzer(sensitivity)
        self.harshness_analyzer = harshness_analyzer or HarshnessAnalyzer(sensitivity)
        self.stability_analyzer = stability_analyzer or StabilityAnalyzer(sensitivity)
        self.landing_detector = landing_detector or LandingDetector()
        self.validator = validator or RunValidator(sensitivity)
        self.simplifier = GpsPolylineSimplifier(self.config.polyline_max_points)
        self.clock = clock
        self.id_factory = id_factory

    def process(self, capture: RawCapture, run_id: Optional[str] = None) -> ProcessedRun:
        handle = capture.handle
        run_id = run_id or self.id_factory()
        logger.info(f"Processing capture {handle.session_id} as run {run_id}")

        duration_ms = handle.duration_ms
        distance_m = filtered_distance(capture.gps, self.config.sensitivity.normalized().gps)
        mapper = DistanceMapper(capture.gps)
        sample_rate = resolve_sample_rate(handle.accel_sample_rate_hz, capture.accel)

        # Stage is local so one processor can serve concurrent runs
        stage = self._advance(run_id, ProcessingStage.IDLE, ProcessingStage.WINDOWING)
        windows = self._guarded(stage, self.process_windows, capture, mapper, sample_rate)

        stage = self._advance(run_id, stage, ProcessingStage.EVENT_DETECTION)
        events = self._guarded(stage, self.detect_events, run_id, capture, mapper, sample_rate)

        stage = self._advance(run_id, stage, ProcessingStage.SUMMARIZING)
        validation = self.validator.validate(capture.accel, capture.gps, duration_ms, distance_m)
        run = self._build_run(run_id, capture, windows, events, distance_m, validation)
        series = self._build_series(run_id, capture, windows)
        polyline = self.simplifier.simplify(run_id, capture.gps)

        self._advance(run_id, stage, ProcessingStage.DONE)
        logger.info(
            f"Run {run_id}: {len(windows)} windows, {len(events)} events, "
            f"{distance_m:.0f} m, valid={run.is_valid}"
        )
        return ProcessedRun(run=run, series=series, events=events, polyline=polyline)

    @staticmethod
    def _advance(run_id: str, current: ProcessingStage, nxt: ProcessingStage) -> ProcessingStage:
        logger.info(f"Run {run_id}: stage {current.value} -> {nxt.value}")
        return nxt

    @staticmethod
    def _guarded(stage: ProcessingStage, fn, *args):
        try:
            return fn(*args)
        except ProcessingFailure:
            raise
        except Exception as e:
            logger.error(f"Analyzer failed during {stage.value}: {e}")
            raise ProcessingFailure(stage.value, e) from e

    def process_windows(
        self,
        capture: RawCapture,
        mapper: DistanceMapper,
        sample_rate: float,
    ) -> WindowResults:
        """
        Slide fixed windows over the accelerometer stream.

        A trailing window shorter than the full window size is dropped.
        """
        results = WindowResults()
        accel = capture.accel
        gyro = capture.gyro
        if len(accel) == 0:
            return results

        window_size = max(round_half_up(self.config.window_sec * sample_rate), 1)
        hop = max(round_half_up(self.config.hop_sec * sample_rate), 1)

        start = 0
        while start + window_size <= len(accel):
            window = accel.slice(start, start + window_size)
            start_ns = int(window.timestamps_ns[0])
            end_ns = int(window.timestamps_ns[-1])
            center_ns = int(window.timestamps_ns[len(window) // 2])

            gyro_lo = int(np.searchsorted(gyro.timestamps_ns, start_ns, side="left"))
            gyro_hi = int(np.searchsorted(gyro.timestamps_ns, end_ns, side="right"))
            window_gyro = gyro.slice(gyro_lo, gyro_hi)

            results.impact.append(self.impact_analyzer.analyze_window(window, sample_rate))
            results.harshness.append(self.harshness_analyzer.analyze_window(window, sample_rate))
            results.stability.append(self.stability_analyzer.analyze_window(window_gyro, sample_rate))
            results.dist_pcts.append(mapper.dist_pct_at(center_ns))

            start += hop

        return results

    def detect_events(
        self,
        run_id: str,
        capture: RawCapture,
        mapper: DistanceMapper,
        sample_rate: float,
    ) -> list[RunEvent]:
        accel = capture.accel.finite()
        start_ns = capture.handle.start_time_ns
        events: list[RunEvent] = []

        landings = self.landing_detector.detect(accel, sample_rate)
        for landing in landings:
            timestamp_ns = landing.timestamp_ms * 1_000_000
            events.append(
                RunEvent(
                    event_id=self.id_factory(),
                    run_id=run_id,
                    type=EventType.LANDING,
                    dist_pct=mapper.dist_pct_at(timestamp_ns),
                    time_sec=max(landing.timestamp_ms - start_ns // 1_000_000, 0) / 1000.0,
                    severity=landing.severity,
                    meta=EventMeta(
                        peak_g=landing.peak_g,
                        energy_300ms=landing.energy_300ms,
                        recovery_ms=landing.recovery_ms,
                    ),
                )
            )

        landing_times = [landing.timestamp_ms * 1_000_000 for landing in landings]
        for peak in detect_impact_peaks(accel, sample_rate, self.impact_analyzer, landing_times):
            events.append(
                RunEvent(
                    event_id=self.id_factory(),
                    run_id=run_id,
                    type=EventType.IMPACT_PEAK,
                    dist_pct=mapper.dist_pct_at(peak.timestamp_ns),
                    time_sec=max(peak.timestamp_ns - start_ns, 0) / 1e9,
                    severity=peak.peak_g,
                    meta=EventMeta(peak_g=peak.peak_g),
                )
            )

        for burst in detect_harshness_bursts(accel, sample_rate, self.harshness_analyzer):
            events.append(
                RunEvent(
                    event_id=self.id_factory(),
                    run_id=run_id,
                    type=EventType.HARSHNESS_BURST,
                    dist_pct=mapper.dist_pct_at(burst.peak_ns),
                    time_sec=max(burst.peak_ns - start_ns, 0) / 1e9,
                    severity=burst.severity,
                    meta=EventMeta(rms_value=burst.peak_rms, duration_ms=burst.duration_ms),
                )
            )

        events.sort(key=lambda e: (e.dist_pct, e.time_sec))
        return events

    def _build_run(self, run_id, capture, windows, events, distance_m, validation) -> Run:
        handle = capture.handle
        duration_ms = handle.duration_ms

        harshness_avg = float(np.mean(windows.harshness)) if windows.harshness else 0.0
        stability = float(np.mean(windows.stability)) if windows.stability else 0.0

        landing_severities = [e.severity for e in events if e.type == EventType.LANDING]
        landing_quality = float(np.mean(landing_severities)) if landing_severities else None

        speeds = capture.gps.speed[np.isfinite(capture.gps.speed)]
        max_speed = float(np.max(speeds)) if len(speeds) else None

        ended_at = self.clock()
        return Run(
            run_id=run_id,
            track_id=handle.track_id,
            started_at=ended_at - timedelta(milliseconds=duration_ms),
            ended_at=ended_at,
            duration_ms=duration_ms,
            is_valid=validation.is_valid,
            device_model=handle.device_model,
            sample_rate_accel_hz=handle.accel_sample_rate_hz,
            sample_rate_gyro_hz=handle.gyro_sample_rate_hz,
            gps_quality=validation.gps.quality,
            distance_m=distance_m,
            impact_score=float(sum(windows.impact)),
            harshness_avg=harshness_avg,
            harshness_p90=percentile(windows.harshness, 90),
            stability_score=stability,
            landing_quality_score=landing_quality,
            avg_speed=distance_m / (duration_ms / 1000.0) if duration_ms > 0 else 0.0,
            max_speed=max_speed,
            invalid_reason=validation.invalid_reason,
            issues=tuple(validation.issues),
        )

    def _build_series(self, run_id: str, capture: RawCapture, windows: WindowResults) -> list[RunSeries]:
        n = self.config.output_points

        def series(series_type: SeriesType, points) -> RunSeries:
            return RunSeries(
                run_id=run_id,
                series_type=series_type,
                points=points,
                point_count=len(points),
                x_type=XAxisType.DIST_PCT,
            )

        result = [
            series(SeriesType.IMPACT_DENSITY, resample_series(windows.impact, windows.dist_pcts, n)),
            series(SeriesType.HARSHNESS, resample_series(windows.harshness, windows.dist_pcts, n)),
            series(SeriesType.STABILITY, resample_series(windows.stability, windows.dist_pcts, n)),
        ]

        timing = build_timing_points(
            capture.gps, capture.handle.start_time_ns, capture.handle.duration_ms, n
        )
        if timing is not None:
            result.append(series(SeriesType.SPEED_TIME, timing))
        return result


def process_capture(capture: RawCapture, config: Optional[ProcessingConfig] = None) -> ProcessedRun:
    """Process a capture with default analyzers."""
    return SignalProcessor(config).process(capture)
