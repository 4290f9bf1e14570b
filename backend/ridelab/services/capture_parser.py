"""
Capture CSV adapter.

A capture file is a block of ``# key=value`` metadata lines followed by one
table holding every sample. The ``sensor`` column says which stream a row
belongs to (accel, gyro or gps); columns a stream does not use are empty.

    # session_id=2024-05-01_run3
    # track_id=lower-bikepark
    # device_model=Pixel 8
    # start_time_ns=1000000000
    # end_time_ns=61000000000
    # accel_hz=200
    # gyro_hz=200
    sensor,timestamp_ns,x,y,z,latitude,longitude,accuracy,speed,altitude
    accel,1000000000,0.12,-0.03,0.41,,,,,
    gps,1000000000,,,,46.0201,7.7490,4.0,6.2,2210.5
"""

import io
import logging
import math
from pathlib import Path
from typing import Optional, Protocol

import numpy as np
import pandas as pd

from ridelab.errors import CaptureFormatError
from ridelab.models.raw import GpsStream, ImuStream, RawCapture, RawCaptureHandle


logger = logging.getLogger(__name__)


class CaptureAdapter(Protocol):
    """Adapter interface for capture sources."""

    name: str

    def can_parse(self, filepath: Path) -> bool:
        ...

    def parse(self, filepath: Path) -> RawCapture:
        ...


# Column name mappings - exports from different logger builds vary
COLUMN_MAPPINGS = {
    "sensor": ["sensor", "Sensor", "SENSOR", "stream", "type"],
    "timestamp_ns": ["timestamp_ns", "timestampNs", "TimestampNs", "time_ns"],
    "timestamp_s": ["timestamp_s", "time", "Time", "time_s"],
    "x": ["x", "X", "value_x", "x_value"],
    "y": ["y", "Y", "value_y", "y_value"],
    "z": ["z", "Z", "value_z", "z_value"],
    "latitude": ["latitude", "Latitude", "LATITUDE", "lat", "Lat"],
    "longitude": ["longitude", "Longitude", "LONGITUDE", "lon", "Lon", "lng"],
    "accuracy": ["accuracy", "Accuracy", "gps_accuracy", "GPS_Accuracy"],
    "speed": ["speed", "Speed", "speed_ms", "Speed (m/s)"],
    "altitude": ["altitude", "Altitude", "alt", "Alt", "elevation"],
}

SENSOR_ALIASES = {
    "accel": "accel",
    "acc": "accel",
    "linear_acceleration": "accel",
    "gyro": "gyro",
    "gyroscope": "gyro",
    "gps": "gps",
    "location": "gps",
}

HEADER_KEYS = (
    "session_id",
    "track_id",
    "device_model",
    "start_time_ns",
    "end_time_ns",
    "accel_hz",
    "gyro_hz",
)


class CaptureCsvParser:
    """Parser for capture CSV files."""

    def parse_file(self, filepath: Path) -> RawCapture:
        with open(filepath, "r", encoding="utf-8-sig") as f:
            lines = f.read().splitlines()

        header, table_lines = self._split_header(lines)
        if not table_lines:
            raise CaptureFormatError(f"No sample table in {filepath.name}")

        df = pd.read_csv(io.StringIO("\n".join(table_lines)))
        df.columns = df.columns.str.strip()
        col_map = self._map_columns(df.columns.tolist())

        if col_map["sensor"] is None:
            raise CaptureFormatError(f"No sensor column in {filepath.name}")

        timestamps = self._parse_timestamps(df, col_map, filepath)
        sensors = df[col_map["sensor"]].astype(str).str.strip().str.lower().map(SENSOR_ALIASES)

        accel = self._imu_stream(df, col_map, timestamps, sensors == "accel")
        gyro = self._imu_stream(df, col_map, timestamps, sensors == "gyro")
        gps = self._gps_stream(df, col_map, timestamps, sensors == "gps")

        handle = self._build_handle(header, filepath, timestamps)
        logger.debug(
            f"Parsed {filepath.name}: {len(accel)} accel, {len(gyro)} gyro, {len(gps)} gps samples"
        )
        return RawCapture(handle=handle, accel=accel, gyro=gyro, gps=gps)

    def _split_header(self, lines: list[str]) -> tuple[dict[str, str], list[str]]:
        """Collect ``# key=value`` lines; everything else is the table."""
        header: dict[str, str] = {}
        table: list[str] = []
        for line in lines:
            stripped = line.strip()
            if not stripped:
                continue
            if stripped.startswith("#"):
                body = stripped.lstrip("#").strip()
                if "=" in body:
                    key, value = body.split("=", 1)
                    header[key.strip().lower()] = value.strip()
                continue
            table.append(line)
        return header, table

    def _map_columns(self, columns: list[str]) -> dict[str, Optional[str]]:
        col_map: dict[str, Optional[str]] = {}
        for std_name, variants in COLUMN_MAPPINGS.items():
            col_map[std_name] = None
            for variant in variants:
                if variant in columns:
                    col_map[std_name] = variant
                    break
        return col_map

    def _parse_timestamps(
        self,
        df: pd.DataFrame,
        col_map: dict[str, Optional[str]],
        filepath: Path,
    ) -> np.ndarray:
        if col_map["timestamp_ns"] is not None:
            values = pd.to_numeric(df[col_map["timestamp_ns"]], errors="coerce")
            scale = 1.0
        elif col_map["timestamp_s"] is not None:
            values = pd.to_numeric(df[col_map["timestamp_s"]], errors="coerce")
            scale = 1e9
        else:
            raise CaptureFormatError(f"No timestamp column in {filepath.name}")

        if values.isna().any():
            raise CaptureFormatError(f"Unreadable timestamps in {filepath.name}")
        if scale == 1.0:
            return values.values.astype(np.int64)
        return np.round(values.values.astype(np.float64) * scale).astype(np.int64)

    def _column(self, df, col_map, std_name: str, mask) -> np.ndarray:
        col = col_map.get(std_name)
        if col is None:
            return np.full(int(mask.sum()), np.nan, dtype=np.float64)
        return pd.to_numeric(df.loc[mask, col], errors="coerce").values.astype(np.float64)

    def _imu_stream(self, df, col_map, timestamps, mask) -> ImuStream:
        mask = mask.fillna(False).values if hasattr(mask, "fillna") else mask
        if not mask.any():
            return ImuStream.empty()
        ts = timestamps[mask]
        order = np.argsort(ts, kind="stable")
        return ImuStream(
            timestamps_ns=ts[order],
            x=self._column(df, col_map, "x", mask)[order],
            y=self._column(df, col_map, "y", mask)[order],
            z=self._column(df, col_map, "z", mask)[order],
        )

    def _gps_stream(self, df, col_map, timestamps, mask) -> GpsStream:
        mask = mask.fillna(False).values if hasattr(mask, "fillna") else mask
        if not mask.any():
            return GpsStream.empty()

        ts = timestamps[mask]
        lat = self._column(df, col_map, "latitude", mask)
        lon = self._column(df, col_map, "longitude", mask)

        # a fix without coordinates is not a fix
        keep = np.isfinite(lat) & np.isfinite(lon)
        order = np.argsort(ts[keep], kind="stable")

        def pick(values: np.ndarray) -> np.ndarray:
            return values[keep][order]

        accuracy = np.nan_to_num(pick(self._column(df, col_map, "accuracy", mask)), nan=0.0)
        speed = np.nan_to_num(pick(self._column(df, col_map, "speed", mask)), nan=0.0)
        altitude = pick(self._column(df, col_map, "altitude", mask))

        return GpsStream(
            timestamps_ns=pick(ts),
            latitude=pick(lat),
            longitude=pick(lon),
            accuracy=accuracy,
            speed=speed,
            altitude=altitude if np.any(np.isfinite(altitude)) else None,
        )

    def _build_handle(
        self,
        header: dict[str, str],
        filepath: Path,
        timestamps: np.ndarray,
    ) -> RawCaptureHandle:
        def number(key: str, default: float) -> float:
            raw = header.get(key)
            if raw is None or raw == "":
                return default
            try:
                return float(raw)
            except ValueError as e:
                raise CaptureFormatError(f"Invalid {key}={raw!r} in {filepath.name}") from e

        first_ts = int(timestamps.min()) if len(timestamps) else 0
        last_ts = int(timestamps.max()) if len(timestamps) else 0

        return RawCaptureHandle(
            session_id=header.get("session_id") or filepath.stem,
            track_id=header.get("track_id") or "unknown",
            start_time_ns=int(number("start_time_ns", first_ts)),
            end_time_ns=int(number("end_time_ns", last_ts)),
            device_model=header.get("device_model") or "unknown",
            accel_sample_rate_hz=number("accel_hz", math.nan),
            gyro_sample_rate_hz=number("gyro_hz", math.nan),
        )


class CaptureCsvAdapter:
    """Adapter for capture CSV files with a metadata header."""

    name = "capture_csv"

    def can_parse(self, filepath: Path) -> bool:
        return filepath.suffix.lower() == ".csv"

    def parse(self, filepath: Path) -> RawCapture:
        return CaptureCsvParser().parse_file(filepath)


ADAPTERS: list[CaptureAdapter] = [
    CaptureCsvAdapter(),
]


def _select_adapter(filepath: Path) -> CaptureAdapter:
    for adapter in ADAPTERS:
        if adapter.can_parse(filepath):
            return adapter
    raise CaptureFormatError(f"No adapter available for file: {filepath}")


def parse_capture_file(filepath: Path) -> RawCapture:
    """Parse a capture file via adapter selection."""
    return _select_adapter(filepath).parse(filepath)


def write_capture_file(capture: RawCapture, filepath: Path) -> Path:
    """Write a capture in the format parse_capture_file reads."""
    handle = capture.handle
    frames = []
    for sensor, stream in (("accel", capture.accel), ("gyro", capture.gyro)):
        if len(stream):
            frames.append(
                pd.DataFrame(
                    {
                        "sensor": sensor,
                        "timestamp_ns": stream.timestamps_ns,
                        "x": stream.x,
                        "y": stream.y,
                        "z": stream.z,
                    }
                )
            )
    gps = capture.gps
    if len(gps):
        gps_frame = pd.DataFrame(
            {
                "sensor": "gps",
                "timestamp_ns": gps.timestamps_ns,
                "latitude": gps.latitude,
                "longitude": gps.longitude,
                "accuracy": gps.accuracy,
                "speed": gps.speed,
            }
        )
        if gps.altitude is not None:
            gps_frame["altitude"] = gps.altitude
        frames.append(gps_frame)

    columns = ["sensor", "timestamp_ns", "x", "y", "z", "latitude", "longitude", "accuracy", "speed", "altitude"]
    df = pd.concat(frames, ignore_index=True) if frames else pd.DataFrame()
    df = df.reindex(columns=columns)

    header = {
        "session_id": handle.session_id,
        "track_id": handle.track_id,
        "device_model": handle.device_model,
        "start_time_ns": handle.start_time_ns,
        "end_time_ns": handle.end_time_ns,
        "accel_hz": handle.accel_sample_rate_hz,
        "gyro_hz": handle.gyro_sample_rate_hz,
    }

    filepath.parent.mkdir(parents=True, exist_ok=True)
    with open(filepath, "w", encoding="utf-8", newline="") as f:
        for key in HEADER_KEYS:
            f.write(f"# {key}={header[key]}\n")
        df.to_csv(f, index=False, float_format="%.9g")
    return filepath
