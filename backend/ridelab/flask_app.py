"""
RideLab Downhill Telemetry - Flask Backend

Alternative to FastAPI for environments where FastAPI isn't available.
Same API structure, different framework.
"""

import logging
import math
from pathlib import Path
from typing import Optional

from flask import Flask, jsonify, request

from ridelab.config import data_folder_from_env
from ridelab.errors import CaptureFormatError, ComparisonError, ProcessingFailure
from ridelab.models.comparison import MultiRunComparisonResult, SectionSplit
from ridelab.models.run import ProcessedRun, SeriesType
from ridelab.services.comparison import MultiRunComparisonEngine
from ridelab.services.repository import get_repository, init_repository


# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


# Create Flask app
app = Flask(__name__)


def _nan_to_none(value: Optional[float]) -> Optional[float]:
    """Convert NaN to None for JSON serialization."""
    if value is None:
        return None
    if math.isnan(value):
        return None
    return value


def _load(run_id: str):
    """Return (processed, None) or (None, error response)."""
    repo = get_repository()
    try:
        processed = repo.get_run(run_id)
    except CaptureFormatError as e:
        return None, (jsonify({"detail": str(e)}), 422)
    except ProcessingFailure as e:
        return None, (jsonify({"detail": str(e)}), 500)
    if processed is None:
        return None, (jsonify({"detail": f"Run not found: {run_id}"}), 404)
    return processed, None


def _build_run_dict(processed: ProcessedRun) -> dict:
    run = processed.run
    return {
        "id": run.run_id,
        "track_id": run.track_id,
        "started_at": run.started_at.isoformat(),
        "ended_at": run.ended_at.isoformat(),
        "duration_ms": run.duration_ms,
        "is_valid": run.is_valid,
        "invalid_reason": run.invalid_reason.value if run.invalid_reason else None,
        "issues": [issue.value for issue in run.issues],
        "device_model": run.device_model,
        "sample_rate_accel_hz": _nan_to_none(run.sample_rate_accel_hz),
        "sample_rate_gyro_hz": _nan_to_none(run.sample_rate_gyro_hz),
        "gps_quality": run.gps_quality.value,
        "distance_m": run.distance_m,
        "impact_score": run.impact_score,
        "harshness_avg": run.harshness_avg,
        "harshness_p90": run.harshness_p90,
        "stability_score": run.stability_score,
        "landing_quality_score": run.landing_quality_score,
        "avg_speed": run.avg_speed,
        "max_speed": run.max_speed,
    }


# ============================================================================
# Health Endpoints
# ============================================================================

@app.route("/")
def root():
    """Root endpoint - basic health check."""
    return jsonify({
        "name": "RideLab Downhill Telemetry",
        "version": "0.1.0",
        "status": "running",
    })


@app.route("/health")
def health_check():
    """Health check endpoint."""
    repo = get_repository()
    return jsonify({
        "status": "healthy",
        "data_folder": str(repo.data_folder) if repo.data_folder else None,
        "run_count": repo.run_count,
    })


# ============================================================================
# Folder Management Endpoints
# ============================================================================

@app.route("/folder", methods=["GET"])
def get_folder_info():
    """Get information about the current data folder."""
    repo = get_repository()
    return jsonify({
        "path": str(repo.data_folder) if repo.data_folder else None,
        "run_count": repo.run_count,
    })


@app.route("/folder", methods=["POST"])
def set_folder():
    """Set the data folder to scan for capture files."""
    data = request.get_json()
    if not data or "path" not in data:
        return jsonify({"detail": "path is required"}), 400

    repo = get_repository()
    path = Path(data["path"])

    if not path.exists():
        return jsonify({"detail": f"Folder does not exist: {data['path']}"}), 400
    if not path.is_dir():
        return jsonify({"detail": f"Path is not a directory: {data['path']}"}), 400

    count = repo.set_data_folder(path)

    return jsonify({
        "path": str(path),
        "run_count": count,
    })


@app.route("/folder/rescan", methods=["POST"])
def rescan_folder():
    """Rescan the current data folder for new capture files."""
    repo = get_repository()

    if repo.data_folder is None:
        return jsonify({"detail": "No data folder set"}), 400

    repo.clear_cache()
    count = repo.scan_folder(repo.data_folder)

    return jsonify({
        "path": str(repo.data_folder),
        "run_count": count,
    })


# ============================================================================
# Run Endpoints
# ============================================================================

@app.route("/runs", methods=["GET"])
def list_runs():
    """List all available runs."""
    repo = get_repository()
    summaries = repo.list_runs()
    track_id = request.args.get("track_id")
    if track_id is not None:
        summaries = [s for s in summaries if s.track_id == track_id]

    return jsonify([
        {
            "id": s.id,
            "track_id": s.track_id,
            "started_at": s.started_at,
            "duration_s": s.duration_s,
            "distance_m": s.distance_m,
            "is_valid": s.is_valid,
            "has_gps": s.has_gps,
            "event_count": s.event_count,
        }
        for s in summaries
    ])


@app.route("/runs/<run_id>", methods=["GET"])
def get_run(run_id: str):
    """Get the summary record of a run."""
    processed, error = _load(run_id)
    if error:
        return error
    return jsonify(_build_run_dict(processed))


@app.route("/runs/<run_id>/series", methods=["GET"])
def get_run_series(run_id: str):
    """Get canonical series of a run."""
    processed, error = _load(run_id)
    if error:
        return error

    series_list = processed.series
    series_type = request.args.get("series_type")
    if series_type is not None:
        try:
            wanted = SeriesType(series_type)
        except ValueError:
            return jsonify({"detail": f"Unknown series type: {series_type}"}), 400
        series_list = [s for s in series_list if s.series_type == wanted]

    return jsonify([
        {
            "series_type": s.series_type.value,
            "x_type": s.x_type.value,
            "point_count": s.point_count,
            "x": s.x_values.tolist(),
            "y": s.y_values.tolist(),
        }
        for s in series_list
    ])


@app.route("/runs/<run_id>/events", methods=["GET"])
def get_run_events(run_id: str):
    """Get detected events ordered by distance."""
    processed, error = _load(run_id)
    if error:
        return error

    return jsonify([
        {
            "id": e.event_id,
            "type": e.type.value,
            "dist_pct": e.dist_pct,
            "time_sec": e.time_sec,
            "severity": e.severity,
            "meta": {
                "peak_g": e.meta.peak_g,
                "energy_300ms": e.meta.energy_300ms,
                "recovery_ms": e.meta.recovery_ms,
                "rms_value": e.meta.rms_value,
                "duration_ms": e.meta.duration_ms,
            },
        }
        for e in processed.events
    ])


@app.route("/runs/<run_id>/polyline", methods=["GET"])
def get_run_polyline(run_id: str):
    """Get the simplified GPS route of a run."""
    processed, error = _load(run_id)
    if error:
        return error

    polyline = processed.polyline
    if polyline is None or not polyline.is_usable:
        return jsonify({"detail": f"No GPS route for run: {run_id}"}), 404

    return jsonify({
        "run_id": polyline.run_id,
        "points": [
            {"lat": p.lat, "lon": p.lon, "dist_pct": p.dist_pct, "altitude": p.altitude}
            for p in polyline.points
        ],
        "total_distance_m": polyline.total_distance_m,
        "avg_accuracy_m": polyline.avg_accuracy_m,
        "gps_quality": polyline.gps_quality.value,
    })


@app.route("/compare", methods=["POST"])
def compare_runs():
    """Compare two or more runs on the same track."""
    data = request.get_json()
    if not data or "track_id" not in data or "run_ids" not in data:
        return jsonify({"detail": "track_id and run_ids are required"}), 400

    engine = MultiRunComparisonEngine(get_repository())
    try:
        result = engine.compare(
            data["track_id"],
            list(data["run_ids"]),
            bool(data.get("include_invalid", True)),
        )
    except ComparisonError as e:
        return jsonify({"detail": str(e)}), 400
    except CaptureFormatError as e:
        return jsonify({"detail": str(e)}), 422
    except ProcessingFailure as e:
        return jsonify({"detail": str(e)}), 500

    return jsonify(_comparison_dict(result))


def _section_dict(section: SectionSplit) -> dict:
    return {
        "index": section.index,
        "label": section.label,
        "start_pct": section.start_pct,
        "end_pct": section.end_pct,
        "times_ms": section.times_ms,
        "avg_speeds_mps": section.avg_speeds_mps,
        "deltas_ms": section.deltas_ms,
        "best_run_index": section.best_run_index,
    }


def _comparison_dict(result: MultiRunComparisonResult) -> dict:
    map_comparison = None
    if result.map_comparison is not None:
        mc = result.map_comparison
        map_comparison = {
            "run_ids": mc.run_ids,
            "baseline_index": mc.baseline_index,
            "has_measured_split_timing": mc.has_measured_split_timing,
            "sections": [_section_dict(s) for s in mc.sections],
        }

    altitude_comparison = None
    if result.altitude_comparison is not None:
        ac = result.altitude_comparison
        altitude_comparison = {
            "run_ids": ac.run_ids,
            "sections": [
                {
                    "index": s.index,
                    "start_pct": s.start_pct,
                    "end_pct": s.end_pct,
                    "ascent_m": s.ascent_m,
                    "descent_m": s.descent_m,
                }
                for s in ac.sections
            ],
        }

    verdict = result.verdict
    return {
        "track_id": result.track_id,
        "runs": [
            {"run_id": r.run.run_id, "label": r.label, "color": f"#{r.color:08X}"}
            for r in result.runs
        ],
        "metric_comparisons": [
            {
                "metric_name": m.metric_name,
                "values": m.values,
                "best_run_index": m.best_run_index,
                "lower_is_better": m.lower_is_better,
            }
            for m in result.metric_comparisons
        ],
        "burden_scores": result.burden_scores,
        "verdict": {
            "type": verdict.type.value,
            "title": verdict.title,
            "description": verdict.description,
            "best_run_index": verdict.best_run_index,
            "best_run_label": verdict.best_run_label,
        },
        "insights": result.insights,
        "map_comparison": map_comparison,
        "altitude_comparison": altitude_comparison,
    }


# ============================================================================
# Startup
# ============================================================================

def create_app(data_folder: Optional[Path] = None) -> Flask:
    """Create and configure the Flask app."""
    if data_folder is None:
        data_folder = data_folder_from_env()

    if data_folder.exists():
        init_repository(data_folder)
        logger.info(f"Initialized repository with folder: {data_folder}")
    else:
        logger.info(f"Default data folder not found: {data_folder}")
        logger.info("Use POST /folder to set data folder")

    return app


if __name__ == "__main__":
    import sys

    # Allow specifying data folder as argument
    data_folder = Path(sys.argv[1]) if len(sys.argv) > 1 else None

    create_app(data_folder)
    app.run(host="0.0.0.0", port=8000, debug=True)
