"""
Processed run model.

A Run is the immutable summary of one processed capture. Series, events and
the simplified GPS route are stored alongside it under the same run id.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional

import numpy as np
from numpy.typing import NDArray


class SeriesType(Enum):
    """Kind of per-run metric series."""

    IMPACT_DENSITY = "impact_density"
    HARSHNESS = "harshness"
    STABILITY = "stability"
    SPEED_TIME = "speed_time"  # y = elapsed seconds at each distance-percent


class XAxisType(Enum):
    DIST_PCT = "dist_pct"
    TIME_S = "time_s"


class GpsQuality(Enum):
    """GPS classification from run validation."""

    EXCELLENT = "excellent"
    GOOD = "good"
    FAIR = "fair"
    POOR = "poor"


class MapGpsQuality(Enum):
    """GPS classification for map display, from mean reported accuracy."""

    GOOD = "good"  # < 15 m
    OK = "ok"  # 15-30 m
    POOR = "poor"  # >= 30 m


class InvalidRunReason(Enum):
    TOO_SHORT = "Run duration too short"
    TOO_LONG = "Run duration too long"
    NO_MOVEMENT = "No continuous movement detected"
    GPS_POOR = "GPS signal too poor for alignment"
    POOR_SIGNAL = "Sensor signal quality too poor"


class EventType(Enum):
    LANDING = "landing"
    IMPACT_PEAK = "impact_peak"
    HARSHNESS_BURST = "harshness_burst"


@dataclass(frozen=True)
class Run:
    """Summary of one completed, processed recording."""

    run_id: str
    track_id: str
    started_at: datetime
    ended_at: datetime
    duration_ms: int
    is_valid: bool
    device_model: str
    sample_rate_accel_hz: float
    sample_rate_gyro_hz: float
    gps_quality: GpsQuality

    distance_m: float  # drift-filtered

    # Burden scalars
    impact_score: float  # sum over windows
    harshness_avg: float
    harshness_p90: float
    stability_score: float
    landing_quality_score: Optional[float] = None

    avg_speed: float = 0.0
    max_speed: Optional[float] = None

    invalid_reason: Optional[InvalidRunReason] = None
    issues: tuple[InvalidRunReason, ...] = ()

    @property
    def duration_s(self) -> float:
        return self.duration_ms / 1000.0


@dataclass
class RunSeries:
    """
    One metric resampled onto the canonical axis.

    points has shape (N, 2) holding (x, y) rows; only the first point_count
    rows are meaningful.
    """

    run_id: str
    series_type: SeriesType
    points: NDArray[np.float64]
    point_count: int
    x_type: XAxisType = XAxisType.DIST_PCT

    @property
    def x_values(self) -> NDArray[np.float64]:
        return self.points[: self.point_count, 0]

    @property
    def y_values(self) -> NDArray[np.float64]:
        return self.points[: self.point_count, 1]

    def point(self, index: int) -> tuple[float, float]:
        if not 0 <= index < self.point_count:
            raise IndexError(f"point index {index} out of range 0..{self.point_count - 1}")
        return float(self.points[index, 0]), float(self.points[index, 1])


@dataclass(frozen=True)
class EventMeta:
    """Metadata bag for events; fields depend on the event type."""

    peak_g: Optional[float] = None
    energy_300ms: Optional[float] = None
    recovery_ms: Optional[int] = None
    rms_value: Optional[float] = None
    duration_ms: Optional[int] = None


@dataclass(frozen=True)
class RunEvent:
    event_id: str
    run_id: str
    type: EventType
    dist_pct: float
    time_sec: float
    severity: float
    meta: EventMeta = field(default_factory=EventMeta)


@dataclass(frozen=True)
class GpsPoint:
    lat: float
    lon: float
    dist_pct: float
    altitude: Optional[float] = None


@dataclass
class GpsPolyline:
    """Simplified route for map rendering."""

    run_id: str
    points: list[GpsPoint]
    total_distance_m: float
    avg_accuracy_m: float
    gps_quality: MapGpsQuality

    @property
    def is_usable(self) -> bool:
        return len(self.points) >= 2


@dataclass
class ProcessedRun:
    """Everything the processor produces for one capture."""

    run: Run
    series: list[RunSeries]
    events: list[RunEvent]
    polyline: Optional[GpsPolyline] = None

    def get_series(self, series_type: SeriesType) -> Optional[RunSeries]:
        for s in self.series:
            if s.series_type == series_type:
                return s
        return None


@dataclass
class RunSummary:
    """Lightweight summary of a run for listing."""

    id: str
    track_id: str
    started_at: str
    duration_s: float
    distance_m: float
    is_valid: bool
    has_gps: bool
    event_count: int

    @classmethod
    def from_processed(cls, processed: ProcessedRun) -> "RunSummary":
        run = processed.run
        return cls(
            id=run.run_id,
            track_id=run.track_id,
            started_at=run.started_at.isoformat(),
            duration_s=run.duration_s,
            distance_m=run.distance_m,
            is_valid=run.is_valid,
            has_gps=processed.polyline is not None and processed.polyline.is_usable,
            event_count=len(processed.events),
        )
