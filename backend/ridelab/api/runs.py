"""
API routes for processed runs and comparisons.
"""

import math
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, HTTPException, Query

from ridelab.api.schemas import (
    AltitudeComparisonResponse,
    AltitudeSectionResponse,
    CompareRequest,
    ComparisonResponse,
    EventMetaResponse,
    EventResponse,
    FolderInfoResponse,
    GpsPointResponse,
    MapComparisonResponse,
    MetricComparisonResponse,
    PolylineResponse,
    RunResponse,
    RunSectionsResponse,
    RunSummaryResponse,
    RunWithColorResponse,
    SectionSplitResponse,
    SeriesResponse,
    SetFolderRequest,
    VerdictResponse,
)
from ridelab.errors import CaptureFormatError, ComparisonError, ProcessingFailure, RunNotFound
from ridelab.models.comparison import MultiRunComparisonResult, SectionSplit
from ridelab.models.run import ProcessedRun, Run, RunSeries, SeriesType
from ridelab.services.comparison import MultiRunComparisonEngine
from ridelab.services.repository import get_repository


router = APIRouter(prefix="/runs", tags=["runs"])


def _nan_to_none(value: Optional[float]) -> Optional[float]:
    """Convert NaN to None for JSON serialization."""
    if value is None or math.isnan(value):
        return None
    return value


def _load(run_id: str) -> ProcessedRun:
    """Fetch a run or raise the matching HTTP error."""
    repo = get_repository()
    try:
        processed = repo.get_run(run_id)
    except CaptureFormatError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except ProcessingFailure as e:
        raise HTTPException(status_code=500, detail=str(e))

    if processed is None:
        raise HTTPException(status_code=404, detail=f"Run not found: {run_id}")
    return processed


def _build_run_response(run: Run) -> RunResponse:
    return RunResponse(
        id=run.run_id,
        track_id=run.track_id,
        started_at=run.started_at.isoformat(),
        ended_at=run.ended_at.isoformat(),
        duration_ms=run.duration_ms,
        is_valid=run.is_valid,
        invalid_reason=run.invalid_reason.value if run.invalid_reason else None,
        issues=[issue.value for issue in run.issues],
        device_model=run.device_model,
        sample_rate_accel_hz=_nan_to_none(run.sample_rate_accel_hz),
        sample_rate_gyro_hz=_nan_to_none(run.sample_rate_gyro_hz),
        gps_quality=run.gps_quality.value,
        distance_m=run.distance_m,
        impact_score=run.impact_score,
        harshness_avg=run.harshness_avg,
        harshness_p90=run.harshness_p90,
        stability_score=run.stability_score,
        landing_quality_score=run.landing_quality_score,
        avg_speed=run.avg_speed,
        max_speed=run.max_speed,
    )


def _build_series_response(series: RunSeries) -> SeriesResponse:
    return SeriesResponse(
        series_type=series.series_type.value,
        x_type=series.x_type.value,
        point_count=series.point_count,
        x=series.x_values.tolist(),
        y=series.y_values.tolist(),
    )


def _build_section_response(section: SectionSplit) -> SectionSplitResponse:
    return SectionSplitResponse(
        index=section.index,
        label=section.label,
        start_pct=section.start_pct,
        end_pct=section.end_pct,
        times_ms=section.times_ms,
        avg_speeds_mps=section.avg_speeds_mps,
        deltas_ms=section.deltas_ms,
        best_run_index=section.best_run_index,
    )


def build_comparison_response(result: MultiRunComparisonResult) -> ComparisonResponse:
    map_response = None
    if result.map_comparison is not None:
        mc = result.map_comparison
        map_response = MapComparisonResponse(
            run_ids=mc.run_ids,
            baseline_index=mc.baseline_index,
            has_measured_split_timing=mc.has_measured_split_timing,
            sections=[_build_section_response(s) for s in mc.sections],
        )

    altitude_response = None
    if result.altitude_comparison is not None:
        ac = result.altitude_comparison
        altitude_response = AltitudeComparisonResponse(
            run_ids=ac.run_ids,
            sections=[
                AltitudeSectionResponse(
                    index=s.index,
                    start_pct=s.start_pct,
                    end_pct=s.end_pct,
                    ascent_m=s.ascent_m,
                    descent_m=s.descent_m,
                )
                for s in ac.sections
            ],
        )

    verdict = result.verdict
    return ComparisonResponse(
        track_id=result.track_id,
        runs=[
            RunWithColorResponse(run_id=r.run.run_id, label=r.label, color=f"#{r.color:08X}")
            for r in result.runs
        ],
        metric_comparisons=[
            MetricComparisonResponse(
                metric_name=m.metric_name,
                values=m.values,
                best_run_index=m.best_run_index,
                lower_is_better=m.lower_is_better,
            )
            for m in result.metric_comparisons
        ],
        burden_scores=result.burden_scores,
        verdict=VerdictResponse(
            type=verdict.type.value,
            title=verdict.title,
            description=verdict.description,
            best_run_index=verdict.best_run_index,
            best_run_label=verdict.best_run_label,
        ),
        insights=result.insights,
        map_comparison=map_response,
        altitude_comparison=altitude_response,
    )


@router.get("", response_model=list[RunSummaryResponse])
def list_runs(track_id: Optional[str] = Query(None, description="Only runs on this track")):
    """
    List all available runs.

    Returns summaries sorted by start time (newest first).
    """
    repo = get_repository()
    summaries = repo.list_runs()
    if track_id is not None:
        summaries = [s for s in summaries if s.track_id == track_id]

    return [
        RunSummaryResponse(
            id=s.id,
            track_id=s.track_id,
            started_at=s.started_at,
            duration_s=s.duration_s,
            distance_m=s.distance_m,
            is_valid=s.is_valid,
            has_gps=s.has_gps,
            event_count=s.event_count,
        )
        for s in summaries
    ]


@router.get("/{run_id}", response_model=RunResponse)
def get_run(run_id: str):
    """Get the summary record of a run."""
    return _build_run_response(_load(run_id).run)


@router.get("/{run_id}/series", response_model=list[SeriesResponse])
def get_run_series(
    run_id: str,
    series_type: Optional[str] = Query(None, description="impact_density, harshness, stability or speed_time"),
):
    """Get the canonical series of a run, optionally a single type."""
    processed = _load(run_id)

    if series_type is None:
        return [_build_series_response(s) for s in processed.series]

    try:
        wanted = SeriesType(series_type)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Unknown series type: {series_type}")

    series = processed.get_series(wanted)
    return [_build_series_response(series)] if series is not None else []


@router.get("/{run_id}/events", response_model=list[EventResponse])
def get_run_events(run_id: str):
    """Get detected events ordered by distance."""
    processed = _load(run_id)
    return [
        EventResponse(
            id=e.event_id,
            type=e.type.value,
            dist_pct=e.dist_pct,
            time_sec=e.time_sec,
            severity=e.severity,
            meta=EventMetaResponse(
                peak_g=e.meta.peak_g,
                energy_300ms=e.meta.energy_300ms,
                recovery_ms=e.meta.recovery_ms,
                rms_value=e.meta.rms_value,
                duration_ms=e.meta.duration_ms,
            ),
        )
        for e in processed.events
    ]


@router.get("/{run_id}/polyline", response_model=PolylineResponse)
def get_run_polyline(run_id: str):
    """Get the simplified GPS route of a run."""
    polyline = _load(run_id).polyline
    if polyline is None or not polyline.is_usable:
        raise HTTPException(status_code=404, detail=f"No GPS route for run: {run_id}")

    return PolylineResponse(
        run_id=polyline.run_id,
        points=[
            GpsPointResponse(lat=p.lat, lon=p.lon, dist_pct=p.dist_pct, altitude=p.altitude)
            for p in polyline.points
        ],
        total_distance_m=polyline.total_distance_m,
        avg_accuracy_m=polyline.avg_accuracy_m,
        gps_quality=polyline.gps_quality.value,
    )


@router.get("/{run_id}/sections", response_model=Optional[RunSectionsResponse])
def get_run_sections(run_id: str):
    """
    Compare a run's sections with the fastest run on its track.

    Returns null when there is nothing to compare against.
    """
    engine = MultiRunComparisonEngine(get_repository())
    try:
        result = engine.compare_run_sections(run_id)
    except RunNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except CaptureFormatError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except ProcessingFailure as e:
        raise HTTPException(status_code=500, detail=str(e))

    if result is None:
        return None

    return RunSectionsResponse(
        run_id=result.run_id,
        baseline_run_id=result.baseline_run_id,
        is_fastest=result.is_fastest,
        has_measured_split_timing=result.has_measured_split_timing,
        sections=[_build_section_response(s) for s in result.sections],
    )


# ============================================================================
# Comparison Routes
# ============================================================================

compare_router = APIRouter(prefix="/compare", tags=["compare"])


@compare_router.post("", response_model=ComparisonResponse)
def compare_runs(request: CompareRequest):
    """
    Compare two or more runs on the same track.

    The first requested run is the baseline for section deltas.
    """
    engine = MultiRunComparisonEngine(get_repository())
    try:
        result = engine.compare(request.track_id, request.run_ids, request.include_invalid)
    except ComparisonError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except CaptureFormatError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except ProcessingFailure as e:
        raise HTTPException(status_code=500, detail=str(e))

    return build_comparison_response(result)


# ============================================================================
# Folder Management Routes
# ============================================================================

folder_router = APIRouter(prefix="/folder", tags=["folder"])


@folder_router.get("", response_model=FolderInfoResponse)
def get_folder_info():
    """Get information about the current data folder."""
    repo = get_repository()

    return FolderInfoResponse(
        path=str(repo.data_folder) if repo.data_folder else None,
        run_count=repo.run_count,
    )


@folder_router.post("", response_model=FolderInfoResponse)
def set_folder(request: SetFolderRequest):
    """
    Set the data folder to scan for capture files.

    This will clear the current cache and re-scan.
    """
    repo = get_repository()

    path = Path(request.path)
    if not path.exists():
        raise HTTPException(status_code=400, detail=f"Folder does not exist: {request.path}")
    if not path.is_dir():
        raise HTTPException(status_code=400, detail=f"Path is not a directory: {request.path}")

    count = repo.set_data_folder(path)

    return FolderInfoResponse(
        path=str(path),
        run_count=count,
    )


@folder_router.post("/rescan", response_model=FolderInfoResponse)
def rescan_folder():
    """
    Rescan the current data folder for new capture files.
    """
    repo = get_repository()

    if repo.data_folder is None:
        raise HTTPException(status_code=400, detail="No data folder set")

    repo.clear_cache()
    count = repo.scan_folder(repo.data_folder)

    return FolderInfoResponse(
        path=str(repo.data_folder),
        run_count=count,
    )
