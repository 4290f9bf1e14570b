"""
Processing configuration.

Values are read from the environment once at import time; the dataclasses
below carry them into the processor so tests can override them per call.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path


MIN_SENSITIVITY = 0.1
MAX_SENSITIVITY = 5.0

WINDOW_SEC = float(os.getenv("RIDELAB_WINDOW_SEC", "1.0"))
HOP_SEC = float(os.getenv("RIDELAB_HOP_SEC", "0.25"))
OUTPUT_POINTS = int(os.getenv("RIDELAB_OUTPUT_POINTS", "200"))
POLYLINE_MAX_POINTS = int(os.getenv("RIDELAB_POLYLINE_MAX_POINTS", "150"))

IMPACT_SENSITIVITY = float(os.getenv("RIDELAB_IMPACT_SENSITIVITY", "0.62"))
HARSHNESS_SENSITIVITY = float(os.getenv("RIDELAB_HARSHNESS_SENSITIVITY", "5.0"))
STABILITY_SENSITIVITY = float(os.getenv("RIDELAB_STABILITY_SENSITIVITY", "0.1"))
GPS_SENSITIVITY = float(os.getenv("RIDELAB_GPS_SENSITIVITY", "1.0"))

DATA_FOLDER_ENV = "RIDELAB_DATA_FOLDER"
DEFAULT_DATA_FOLDER = Path("./data/captures")


def _clamp_sensitivity(value: float) -> float:
    return min(max(value, MIN_SENSITIVITY), MAX_SENSITIVITY)


@dataclass(frozen=True)
class SensorSensitivity:
    """Per-metric multipliers applied by the analyzers and the GPS filters."""

    impact: float = IMPACT_SENSITIVITY
    harshness: float = HARSHNESS_SENSITIVITY
    stability: float = STABILITY_SENSITIVITY
    gps: float = GPS_SENSITIVITY

    def normalized(self) -> "SensorSensitivity":
        return SensorSensitivity(
            impact=_clamp_sensitivity(self.impact),
            harshness=_clamp_sensitivity(self.harshness),
            stability=_clamp_sensitivity(self.stability),
            gps=_clamp_sensitivity(self.gps),
        )


@dataclass(frozen=True)
class ProcessingConfig:
    """Windowing and output shape for the signal processor."""

    window_sec: float = WINDOW_SEC
    hop_sec: float = HOP_SEC
    output_points: int = OUTPUT_POINTS
    polyline_max_points: int = POLYLINE_MAX_POINTS
    sensitivity: SensorSensitivity = field(default_factory=SensorSensitivity)


def data_folder_from_env() -> Path:
    """Capture folder configured for the HTTP app."""
    return Path(os.getenv(DATA_FOLDER_ENV, str(DEFAULT_DATA_FOLDER)))
