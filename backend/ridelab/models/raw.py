"""
Raw capture model (sensor streams as recorded, unprocessed).

Capture suppliers hand the processor a RawCaptureHandle plus three sample
streams. Streams are numpy-backed and sorted by timestamp; nothing
downstream re-sorts them.
"""

from dataclasses import dataclass
from typing import Iterable, Optional, Sequence

import numpy as np
from numpy.typing import NDArray


@dataclass(frozen=True)
class RawCaptureHandle:
    """A completed recording; owns no sample data."""

    session_id: str
    track_id: str
    start_time_ns: int
    end_time_ns: int
    device_model: str
    accel_sample_rate_hz: float
    gyro_sample_rate_hz: float

    @property
    def duration_ms(self) -> int:
        return max(0, (self.end_time_ns - self.start_time_ns) // 1_000_000)


@dataclass
class ImuStream:
    """Accelerometer (m/s², gravity removed) or gyroscope (rad/s) samples."""

    timestamps_ns: NDArray[np.int64]
    x: NDArray[np.float64]
    y: NDArray[np.float64]
    z: NDArray[np.float64]

    def __len__(self) -> int:
        return len(self.timestamps_ns)

    @classmethod
    def empty(cls) -> "ImuStream":
        return cls(
            timestamps_ns=np.zeros(0, dtype=np.int64),
            x=np.zeros(0),
            y=np.zeros(0),
            z=np.zeros(0),
        )

    @classmethod
    def from_samples(cls, samples: Iterable[Sequence[float]]) -> "ImuStream":
        """Build from (timestamp_ns, x, y, z) tuples."""
        rows = list(samples)
        if not rows:
            return cls.empty()
        arr = np.asarray(rows, dtype=np.float64)
        return cls(
            timestamps_ns=np.asarray([int(r[0]) for r in rows], dtype=np.int64),
            x=arr[:, 1],
            y=arr[:, 2],
            z=arr[:, 3],
        )

    def magnitude(self) -> NDArray[np.float64]:
        return np.sqrt(self.x**2 + self.y**2 + self.z**2)

    def slice(self, start: int, end: int) -> "ImuStream":
        return ImuStream(
            timestamps_ns=self.timestamps_ns[start:end],
            x=self.x[start:end],
            y=self.y[start:end],
            z=self.z[start:end],
        )

    def finite(self) -> "ImuStream":
        """Drop samples with any non-finite axis."""
        mask = np.isfinite(self.x) & np.isfinite(self.y) & np.isfinite(self.z)
        if bool(np.all(mask)):
            return self
        return ImuStream(
            timestamps_ns=self.timestamps_ns[mask],
            x=self.x[mask],
            y=self.y[mask],
            z=self.z[mask],
        )


@dataclass
class GpsStream:
    """GPS fixes mapped onto the capture's monotonic clock."""

    timestamps_ns: NDArray[np.int64]
    latitude: NDArray[np.float64]
    longitude: NDArray[np.float64]
    accuracy: NDArray[np.float64]  # meters
    speed: NDArray[np.float64]  # m/s
    altitude: Optional[NDArray[np.float64]] = None  # meters

    def __len__(self) -> int:
        return len(self.timestamps_ns)

    @classmethod
    def empty(cls) -> "GpsStream":
        return cls(
            timestamps_ns=np.zeros(0, dtype=np.int64),
            latitude=np.zeros(0),
            longitude=np.zeros(0),
            accuracy=np.zeros(0),
            speed=np.zeros(0),
        )

    @classmethod
    def from_samples(cls, samples: Iterable[Sequence[Optional[float]]]) -> "GpsStream":
        """
        Build from (timestamp_ns, lat, lon, accuracy, speed[, altitude]) tuples.

        Altitude is kept only when at least one sample carries it.
        """
        rows = list(samples)
        if not rows:
            return cls.empty()

        altitudes = [r[5] if len(r) > 5 else None for r in rows]
        altitude = None
        if any(a is not None for a in altitudes):
            altitude = np.asarray(
                [np.nan if a is None else float(a) for a in altitudes], dtype=np.float64
            )

        return cls(
            timestamps_ns=np.asarray([int(r[0]) for r in rows], dtype=np.int64),
            latitude=np.asarray([float(r[1]) for r in rows], dtype=np.float64),
            longitude=np.asarray([float(r[2]) for r in rows], dtype=np.float64),
            accuracy=np.asarray([float(r[3]) for r in rows], dtype=np.float64),
            speed=np.asarray([float(r[4]) for r in rows], dtype=np.float64),
            altitude=altitude,
        )

    @property
    def has_altitude(self) -> bool:
        return self.altitude is not None and bool(np.any(np.isfinite(self.altitude)))


@dataclass
class RawCapture:
    """A capture handle together with its sample buffers."""

    handle: RawCaptureHandle
    accel: ImuStream
    gyro: ImuStream
    gps: GpsStream
