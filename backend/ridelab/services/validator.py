"""
Run validation from GPS and movement data.

A downhill run is valid when it has a plausible duration and distance,
usable GPS, continuous movement and a healthy accelerometer signal.
"""

from dataclasses import dataclass, field

import numpy as np

from ridelab.config import SensorSensitivity
from ridelab.models.raw import GpsStream, ImuStream
from ridelab.models.run import GpsQuality, InvalidRunReason


MIN_DURATION_MS = 30_000
MAX_DURATION_MS = 3_600_000
MIN_DISTANCE_M = 250.0
MIN_GPS_SAMPLES = 10
MAX_GPS_ACCURACY_M = 25.0
MIN_GOOD_GPS_RATIO = 0.7
MIN_SIGNAL_QUALITY = 0.6
MIN_SIGNAL_SAMPLES = 100

MOVING_SPEED_MPS = 2.22  # 8 km/h
MIN_MOVING_RATIO = 0.7
PAUSE_SPEED_MPS = 0.56  # 2 km/h
MAX_PAUSE_MS = 2000


@dataclass
class GpsValidation:
    quality: GpsQuality
    good_sample_ratio: float
    average_accuracy_m: float
    max_gap_ms: int


@dataclass
class MovementValidation:
    is_valid_movement: bool
    moving_ratio: float
    has_long_pauses: bool
    max_pause_ms: int


@dataclass
class ValidationResult:
    issues: list[InvalidRunReason]
    gps: GpsValidation
    movement: MovementValidation
    signal_quality: float
    avg_speed_mps: float
    warnings: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.issues

    @property
    def invalid_reason(self):
        return self.issues[0] if self.issues else None


class RunValidator:
    def __init__(self, sensitivity: SensorSensitivity = SensorSensitivity()):
        self.sensitivity = sensitivity.normalized()

    @property
    def max_gps_accuracy_m(self) -> float:
        return float(np.clip(MAX_GPS_ACCURACY_M / max(self.sensitivity.gps, 0.01), 10.0, 60.0))

    @property
    def min_good_gps_ratio(self) -> float:
        return float(np.clip(MIN_GOOD_GPS_RATIO + (self.sensitivity.gps - 1.0) * 0.2, 0.5, 0.95))

    def validate(
        self,
        accel: ImuStream,
        gps: GpsStream,
        duration_ms: int,
        distance_m: float,
    ) -> ValidationResult:
        issues: list[InvalidRunReason] = []
        warnings: list[str] = []

        def flag(reason: InvalidRunReason):
            if reason not in issues:
                issues.append(reason)

        if duration_ms < MIN_DURATION_MS:
            flag(InvalidRunReason.TOO_SHORT)
        if duration_ms > MAX_DURATION_MS:
            flag(InvalidRunReason.TOO_LONG)
        if distance_m < MIN_DISTANCE_M:
            flag(InvalidRunReason.NO_MOVEMENT)

        gps_validation = self.validate_gps_quality(gps)
        if gps_validation.quality == GpsQuality.POOR:
            flag(InvalidRunReason.GPS_POOR)

        movement = self.validate_movement(gps)
        if not movement.is_valid_movement:
            flag(InvalidRunReason.NO_MOVEMENT)
        if movement.has_long_pauses:
            warnings.append("Long pauses detected during run")

        signal_quality = self.validate_signal_quality(accel)
        if signal_quality < MIN_SIGNAL_QUALITY:
            flag(InvalidRunReason.POOR_SIGNAL)

        avg_speed = distance_m / (duration_ms / 1000.0) if duration_ms > 0 else 0.0

        return ValidationResult(
            issues=issues,
            gps=gps_validation,
            movement=movement,
            signal_quality=signal_quality,
            avg_speed_mps=avg_speed,
            warnings=warnings,
        )

    def validate_gps_quality(self, gps: GpsStream) -> GpsValidation:
        if len(gps) < MIN_GPS_SAMPLES:
            return GpsValidation(
                quality=GpsQuality.POOR,
                good_sample_ratio=0.0,
                average_accuracy_m=float("inf"),
                max_gap_ms=2**63 - 1,
            )

        max_accuracy = self.max_gps_accuracy_m
        good_ratio = float(np.mean(gps.accuracy < max_accuracy))
        avg_accuracy = float(np.mean(gps.accuracy))
        max_gap_ms = int(np.max(np.diff(gps.timestamps_ns)) // 1_000_000)

        if good_ratio >= 0.9 and avg_accuracy < 10.0:
            quality = GpsQuality.EXCELLENT
        elif good_ratio >= self.min_good_gps_ratio and avg_accuracy < max_accuracy:
            quality = GpsQuality.GOOD
        elif good_ratio >= 0.5:
            quality = GpsQuality.FAIR
        else:
            quality = GpsQuality.POOR

        return GpsValidation(quality, good_ratio, avg_accuracy, max_gap_ms)

    def validate_movement(self, gps: GpsStream) -> MovementValidation:
        """Share of moving fixes and the longest near-standstill pause."""
        if len(gps) < MIN_GPS_SAMPLES:
            return MovementValidation(False, 0.0, True, 2**63 - 1)

        moving = 0
        max_pause_ms = 0
        pause_start = None
        for ts, speed in zip(gps.timestamps_ns, gps.speed):
            if speed >= MOVING_SPEED_MPS:
                moving += 1
                if pause_start is not None:
                    max_pause_ms = max(max_pause_ms, int(ts - pause_start) // 1_000_000)
                    pause_start = None
            elif speed < PAUSE_SPEED_MPS and pause_start is None:
                pause_start = ts

        if pause_start is not None:
            max_pause_ms = max(max_pause_ms, int(gps.timestamps_ns[-1] - pause_start) // 1_000_000)

        moving_ratio = moving / len(gps)
        has_long_pauses = max_pause_ms > MAX_PAUSE_MS
        return MovementValidation(
            is_valid_movement=moving_ratio >= MIN_MOVING_RATIO and not has_long_pauses,
            moving_ratio=moving_ratio,
            has_long_pauses=has_long_pauses,
            max_pause_ms=max_pause_ms,
        )

    def validate_signal_quality(self, accel: ImuStream) -> float:
        """
        Accelerometer health in [0, 1].

        Penalises sample gaps, a flat or exploding signal and a stuck sensor.
        """
        if len(accel) < MIN_SIGNAL_SAMPLES:
            return 0.0

        score = 1.0

        intervals = np.diff(accel.timestamps_ns).astype(np.float64)
        large_gaps = int(np.sum(intervals > np.mean(intervals) * 3))
        score -= float(np.clip(large_gaps / len(intervals), 0.0, 0.3))

        magnitudes = accel.magnitude()
        variance = float(np.var(magnitudes))
        if variance < 0.01:
            score -= 0.3
        if variance > 1000.0:
            score -= 0.2

        truncated = np.stack([accel.x, accel.y, accel.z], axis=1)
        truncated = np.trunc(np.nan_to_num(truncated)).astype(np.int64)
        unique_readings = len(np.unique(truncated, axis=0))
        if unique_readings < len(accel) // 10:
            score -= 0.4

        return float(np.clip(score, 0.0, 1.0))
