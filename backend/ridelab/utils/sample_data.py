"""
Sample data generator for testing.

Generates realistic-looking downhill captures: a descending GPS trace at
roughly constant speed, trail vibration on the accelerometer and gyroscope,
and optional jumps (airtime followed by a landing spike).
"""

import math
from pathlib import Path
from typing import Optional, Sequence

import numpy as np

from ridelab.models.raw import GpsStream, ImuStream, RawCapture, RawCaptureHandle
from ridelab.services.capture_parser import write_capture_file


GRAVITY = 9.81
BOOT_OFFSET_NS = 1_000_000_000


def generate_downhill_capture(
    session_id: str = "sample",
    track_id: str = "sample-track",
    duration_s: float = 60.0,
    distance_m: float = 600.0,
    accel_hz: float = 200.0,
    gyro_hz: float = 200.0,
    gps_hz: float = 1.0,
    start_lat: float = 46.0207,  # Example: Zermatt area
    start_lon: float = 7.7491,
    start_alt_m: float = 2200.0,
    drop_m: float = 250.0,
    bearing_deg: float = 135.0,
    vibration_ms2: float = 3.0,
    gps_accuracy_m: float = 4.0,
    jumps_s: Sequence[float] = (),
    landing_g: float = 4.5,
    seed: Optional[int] = None,
) -> RawCapture:
    """
    Generate a synthetic downhill run.

    The rider moves at distance_m / duration_s along a gently weaving line
    heading bearing_deg while losing drop_m of altitude.

    Args:
        jumps_s: Takeoff times (seconds from start); each jump has 0.3 s of
            airtime and lands with a spike of landing_g
        seed: Random seed for reproducible noise

    Returns:
        RawCapture with accel, gyro and GPS streams
    """
    rng = np.random.default_rng(seed)
    start_ns = BOOT_OFFSET_NS
    end_ns = start_ns + int(round(duration_s * 1e9))

    accel = _generate_accel(rng, start_ns, duration_s, accel_hz, vibration_ms2, jumps_s, landing_g)
    gyro = _generate_gyro(rng, start_ns, duration_s, gyro_hz)
    gps = _generate_gps(
        rng, start_ns, duration_s, gps_hz, distance_m,
        start_lat, start_lon, start_alt_m, drop_m, bearing_deg, gps_accuracy_m,
    )

    handle = RawCaptureHandle(
        session_id=session_id,
        track_id=track_id,
        start_time_ns=start_ns,
        end_time_ns=end_ns,
        device_model="synthetic",
        accel_sample_rate_hz=accel_hz,
        gyro_sample_rate_hz=gyro_hz,
    )
    return RawCapture(handle=handle, accel=accel, gyro=gyro, gps=gps)


def _sample_times(start_ns: int, duration_s: float, rate_hz: float) -> np.ndarray:
    n_samples = int(duration_s * rate_hz) + 1
    return start_ns + np.round(np.arange(n_samples) / rate_hz * 1e9).astype(np.int64)


def _generate_accel(rng, start_ns, duration_s, rate_hz, vibration, jumps_s, landing_g) -> ImuStream:
    timestamps = _sample_times(start_ns, duration_s, rate_hz)
    n = len(timestamps)
    t = (timestamps - start_ns) / 1e9

    x = rng.normal(0, vibration, n)
    y = rng.normal(0, vibration, n)
    # Terrain undulation on the vertical axis
    z = rng.normal(0, vibration, n) + 4.0 * np.sin(2 * np.pi * t / 3.0)

    for takeoff in jumps_s:
        air = (t >= takeoff) & (t < takeoff + 0.3)
        x[air] = rng.normal(0, 0.2, int(air.sum()))
        y[air] = rng.normal(0, 0.2, int(air.sum()))
        z[air] = rng.normal(0, 0.2, int(air.sum()))

        # Spike decaying over ~50 ms
        land_idx = int(np.searchsorted(t, takeoff + 0.3))
        for k in range(max(int(0.05 * rate_hz), 1)):
            if land_idx + k < n:
                z[land_idx + k] = landing_g * GRAVITY * (1.0 - k / max(0.05 * rate_hz, 1.0))
                x[land_idx + k] = 0.0
                y[land_idx + k] = 0.0

    return ImuStream(timestamps_ns=timestamps, x=x, y=y, z=z)


def _generate_gyro(rng, start_ns, duration_s, rate_hz) -> ImuStream:
    timestamps = _sample_times(start_ns, duration_s, rate_hz)
    n = len(timestamps)
    return ImuStream(
        timestamps_ns=timestamps,
        x=rng.normal(0, 0.3, n),
        y=rng.normal(0, 0.3, n),
        z=rng.normal(0, 0.1, n),
    )


def _generate_gps(
    rng, start_ns, duration_s, rate_hz, distance_m,
    start_lat, start_lon, start_alt_m, drop_m, bearing_deg, accuracy_m,
) -> GpsStream:
    timestamps = _sample_times(start_ns, duration_s, rate_hz)
    n = len(timestamps)
    fraction = (timestamps - start_ns) / 1e9 / duration_s

    along = fraction * distance_m
    # Weave of a few meters across the fall line
    across = 3.0 * np.sin(2 * np.pi * fraction * 4)

    bearing = math.radians(bearing_deg)
    north = along * math.cos(bearing) - across * math.sin(bearing)
    east = along * math.sin(bearing) + across * math.cos(bearing)

    meters_per_deg_lat = 111000
    meters_per_deg_lon = 111000 * np.cos(np.radians(start_lat))

    speed = distance_m / duration_s
    return GpsStream(
        timestamps_ns=timestamps,
        latitude=start_lat + north / meters_per_deg_lat,
        longitude=start_lon + east / meters_per_deg_lon,
        accuracy=np.clip(rng.normal(accuracy_m, 0.5, n), 1.0, None),
        speed=np.clip(rng.normal(speed, 0.3, n), 0.0, None),
        altitude=start_alt_m - fraction * drop_m,
    )


def generate_test_data_set(output_folder: Path, track_id: str = "sample-track") -> list[Path]:
    """Generate a set of capture files on one track."""
    output_folder.mkdir(parents=True, exist_ok=True)

    runs = [
        ("run_001_steady", dict(duration_s=62.0, vibration_ms2=2.5, seed=1)),
        ("run_002_rough", dict(duration_s=58.0, vibration_ms2=4.0, jumps_s=(20.0, 41.0), seed=2)),
        ("run_003_fast", dict(duration_s=51.0, vibration_ms2=3.0, jumps_s=(33.0,), seed=3)),
    ]

    files = []
    for name, kwargs in runs:
        capture = generate_downhill_capture(session_id=name, track_id=track_id, **kwargs)
        files.append(write_capture_file(capture, output_folder / f"{name}.csv"))
    return files


if __name__ == "__main__":
    # Generate test data when run directly
    output = Path("./data/captures")
    files = generate_test_data_set(output)
    print(f"Generated {len(files)} capture files in {output}")
    for f in files:
        print(f"  - {f.name}")
