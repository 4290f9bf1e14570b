"""
API schemas (Pydantic models) for request/response validation.
"""

from typing import Optional

from pydantic import BaseModel, Field


# ============================================================================
# Run Schemas
# ============================================================================

class RunSummaryResponse(BaseModel):
    """Summary of a processed run for listing."""
    id: str
    track_id: str
    started_at: str
    duration_s: float
    distance_m: float
    is_valid: bool
    has_gps: bool
    event_count: int


class RunResponse(BaseModel):
    """Full summary record of one run."""
    id: str
    track_id: str
    started_at: str
    ended_at: str
    duration_ms: int
    is_valid: bool
    invalid_reason: Optional[str] = None
    issues: list[str] = []
    device_model: str
    sample_rate_accel_hz: Optional[float] = None
    sample_rate_gyro_hz: Optional[float] = None
    gps_quality: str
    distance_m: float
    impact_score: float
    harshness_avg: float
    harshness_p90: float
    stability_score: float
    landing_quality_score: Optional[float] = None
    avg_speed: float
    max_speed: Optional[float] = None


class SeriesResponse(BaseModel):
    """One canonical metric series."""
    series_type: str
    x_type: str
    point_count: int
    x: list[float]
    y: list[float]


class EventMetaResponse(BaseModel):
    peak_g: Optional[float] = None
    energy_300ms: Optional[float] = None
    recovery_ms: Optional[int] = None
    rms_value: Optional[float] = None
    duration_ms: Optional[int] = None


class EventResponse(BaseModel):
    id: str
    type: str
    dist_pct: float
    time_sec: float
    severity: float
    meta: EventMetaResponse


class GpsPointResponse(BaseModel):
    lat: float
    lon: float
    dist_pct: float
    altitude: Optional[float] = None


class PolylineResponse(BaseModel):
    """Simplified route for map display."""
    run_id: str
    points: list[GpsPointResponse]
    total_distance_m: float
    avg_accuracy_m: float
    gps_quality: str


# ============================================================================
# Comparison Schemas
# ============================================================================

class CompareRequest(BaseModel):
    """Request to compare runs on one track."""
    track_id: str
    run_ids: list[str] = Field(min_length=2)
    include_invalid: bool = True


class RunWithColorResponse(BaseModel):
    run_id: str
    label: str
    color: str  # "#AARRGGBB"


class MetricComparisonResponse(BaseModel):
    metric_name: str
    values: list[Optional[float]]
    best_run_index: Optional[int] = None
    lower_is_better: bool


class VerdictResponse(BaseModel):
    type: str
    title: str
    description: str
    best_run_index: Optional[int] = None
    best_run_label: str = ""


class SectionSplitResponse(BaseModel):
    index: int
    label: str
    start_pct: float
    end_pct: float
    times_ms: list[Optional[float]]
    avg_speeds_mps: list[Optional[float]]
    deltas_ms: list[Optional[float]]
    best_run_index: Optional[int] = None


class MapComparisonResponse(BaseModel):
    run_ids: list[str]
    baseline_index: int
    has_measured_split_timing: bool
    sections: list[SectionSplitResponse]


class AltitudeSectionResponse(BaseModel):
    index: int
    start_pct: float
    end_pct: float
    ascent_m: list[Optional[float]]
    descent_m: list[Optional[float]]


class AltitudeComparisonResponse(BaseModel):
    run_ids: list[str]
    sections: list[AltitudeSectionResponse]


class ComparisonResponse(BaseModel):
    """Result of a multi-run comparison."""
    track_id: str
    runs: list[RunWithColorResponse]
    metric_comparisons: list[MetricComparisonResponse]
    burden_scores: dict[str, list[Optional[float]]]
    verdict: VerdictResponse
    insights: list[str]
    map_comparison: Optional[MapComparisonResponse] = None
    altitude_comparison: Optional[AltitudeComparisonResponse] = None


class RunSectionsResponse(BaseModel):
    """A run's sections against the fastest run on its track."""
    run_id: str
    baseline_run_id: str
    is_fastest: bool
    has_measured_split_timing: bool
    sections: list[SectionSplitResponse]


# ============================================================================
# Folder Management Schemas
# ============================================================================

class SetFolderRequest(BaseModel):
    """Request to set the data folder."""
    path: str


class FolderInfoResponse(BaseModel):
    """Information about the current data folder."""
    path: Optional[str]
    run_count: int


# ============================================================================
# Error Schemas
# ============================================================================

class ErrorResponse(BaseModel):
    """Standard error response."""
    detail: str
    code: Optional[str] = None
