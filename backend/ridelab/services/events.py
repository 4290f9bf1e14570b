"""
Discrete event detection over a whole accelerometer stream.

Three detectors run once per capture:
- LandingDetector: airtime followed by a hard spike.
- impact peaks: strong single hits that are not part of a landing.
- harshness bursts: stretches of sustained chatter well above the run's
  own baseline.

The detectors return plain candidates; the pipeline turns them into
RunEvents with a distance-percent and a run id.
"""

import logging
import math
from bisect import bisect_left
from dataclasses import dataclass
from typing import Optional

import numpy as np

from ridelab.models.raw import ImuStream
from ridelab.services.analyzers import GRAVITY, HarshnessAnalyzer, ImpactAnalyzer


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LandingCandidate:
    timestamp_ms: int
    peak_g: float
    energy_300ms: float
    recovery_ms: int
    airtime_ms: int

    @property
    def severity(self) -> float:
        return 2.0 if self.peak_g > 4.0 else 1.0


class LandingDetector:
    """
    Detect landings from jumps or drops.

    Linear acceleration reads close to zero in free fall, so a landing is a
    spike above LANDING_THRESHOLD_G preceded by at least MIN_AIRTIME_MS of
    near-zero magnitude.
    """

    LANDING_THRESHOLD_G = 2.5
    AIRTIME_THRESHOLD_G = 0.3
    RECOVERY_THRESHOLD_G = 0.5
    MIN_AIRTIME_MS = 100
    DEBOUNCE_MS = 1000
    ENERGY_WINDOW_MS = 300
    PEAK_SEARCH_SAMPLES = 10
    LOOKBACK_EXTRA_SAMPLES = 50
    MIN_SAMPLES = 20

    def detect(self, accel: ImuStream, sample_rate_hz: float) -> list[LandingCandidate]:
        if len(accel) < self.MIN_SAMPLES or sample_rate_hz <= 0:
            return []

        samples_per_ms = sample_rate_hz / 1000.0
        energy_window = int(self.ENERGY_WINDOW_MS * samples_per_ms)
        debounce = int(self.DEBOUNCE_MS * samples_per_ms)
        lookback = int(self.MIN_AIRTIME_MS * samples_per_ms)

        magnitudes_g = accel.magnitude() / GRAVITY
        # NaN compares false everywhere, which already keeps it out of every threshold
        n = len(magnitudes_g)

        landings: list[LandingCandidate] = []
        last_landing_idx = -debounce
        i = 0
        while i < n:
            if i - last_landing_idx > debounce and magnitudes_g[i] > self.LANDING_THRESHOLD_G:
                airtime_start = self._find_airtime(magnitudes_g, i, lookback, samples_per_ms)
                if airtime_start is not None:
                    landing, peak_idx = self._measure(
                        accel, magnitudes_g, i, airtime_start, energy_window, samples_per_ms
                    )
                    landings.append(landing)
                    last_landing_idx = peak_idx
                    i = peak_idx + debounce
                    continue
            i += 1

        if landings:
            logger.debug(f"Detected {len(landings)} landings")
        return landings

    def _find_airtime(
        self,
        magnitudes_g: np.ndarray,
        spike_idx: int,
        lookback: int,
        samples_per_ms: float,
    ) -> Optional[int]:
        airtime_start = -1
        for j in range(max(spike_idx - lookback - self.LOOKBACK_EXTRA_SAMPLES, 0), spike_idx):
            if magnitudes_g[j] < self.AIRTIME_THRESHOLD_G:
                if airtime_start == -1:
                    airtime_start = j
                if (spike_idx - airtime_start) / samples_per_ms >= self.MIN_AIRTIME_MS:
                    return airtime_start
            else:
                airtime_start = -1
        return None

    def _measure(
        self,
        accel: ImuStream,
        magnitudes_g: np.ndarray,
        spike_idx: int,
        airtime_start: int,
        energy_window: int,
        samples_per_ms: float,
    ) -> tuple[LandingCandidate, int]:
        n = len(magnitudes_g)
        peak_end = min(spike_idx + self.PEAK_SEARCH_SAMPLES, n)
        peak_idx = spike_idx
        for j in range(spike_idx, peak_end):
            if magnitudes_g[j] > magnitudes_g[peak_idx]:
                peak_idx = j
        peak_g = float(magnitudes_g[peak_idx])

        energy_end = min(peak_idx + energy_window, n)
        window = magnitudes_g[peak_idx:energy_end]
        energy = math.sqrt(float(np.sum(window**2)) / max(energy_end - peak_idx, 1))

        recovery_ms = 0
        settled = np.nonzero(magnitudes_g[peak_idx:] < self.RECOVERY_THRESHOLD_G)[0]
        if len(settled):
            recovery_ms = int(settled[0] / samples_per_ms)

        airtime_ms = int((spike_idx - airtime_start) / samples_per_ms)

        candidate = LandingCandidate(
            timestamp_ms=int(accel.timestamps_ns[peak_idx]) // 1_000_000,
            peak_g=peak_g,
            energy_300ms=energy,
            recovery_ms=recovery_ms,
            airtime_ms=airtime_ms,
        )
        return candidate, peak_idx


# --- Impact peaks -----------------------------------------------------------

IMPACT_EVENT_DEBOUNCE_MS = 250
IMPACT_NEAR_LANDING_MS = 350


@dataclass(frozen=True)
class ImpactPeak:
    timestamp_ns: int
    peak_g: float


def _near_any(sorted_ns: list[int], target_ns: int, tolerance_ns: int) -> bool:
    if not sorted_ns:
        return False
    idx = bisect_left(sorted_ns, target_ns)
    for k in (idx - 1, idx):
        if 0 <= k < len(sorted_ns) and abs(sorted_ns[k] - target_ns) <= tolerance_ns:
            return True
    return False


def detect_impact_peaks(
    accel: ImuStream,
    sample_rate_hz: float,
    analyzer: ImpactAnalyzer,
    landing_times_ns: list[int],
) -> list[ImpactPeak]:
    """
    Impact peaks over the whole stream.

    Peaks closer than IMPACT_EVENT_DEBOUNCE_MS to the previous accepted one,
    or within IMPACT_NEAR_LANDING_MS of a landing, are dropped.
    """
    debounce_ns = IMPACT_EVENT_DEBOUNCE_MS * 1_000_000
    near_landing_ns = IMPACT_NEAR_LANDING_MS * 1_000_000
    landings = sorted(landing_times_ns)

    accepted: list[ImpactPeak] = []
    last_ns: Optional[int] = None
    for timestamp_ns, peak_g in analyzer.detect_peaks(accel, sample_rate_hz):
        if last_ns is not None and timestamp_ns - last_ns < debounce_ns:
            continue
        if _near_any(landings, timestamp_ns, near_landing_ns):
            continue
        accepted.append(ImpactPeak(timestamp_ns=timestamp_ns, peak_g=max(peak_g, 0.0)))
        last_ns = timestamp_ns
    return accepted


# --- Harshness bursts -------------------------------------------------------

BURST_WINDOW_SEC = 0.35
BURST_HOP_SEC = 0.10
BURST_MIN_WINDOW_SAMPLES = 30
BURST_MIN_HOP_SAMPLES = 8
BURST_MIN_DURATION_MS = 180
BURST_MERGE_GAP_MS = 220
BURST_MIN_THRESHOLD = 0.25


@dataclass(frozen=True)
class HarshnessBurst:
    start_ns: int
    end_ns: int
    peak_ns: int
    peak_rms: float
    threshold: float

    @property
    def duration_ms(self) -> int:
        return max(0, (self.end_ns - self.start_ns) // 1_000_000)

    @property
    def severity(self) -> float:
        return float(np.clip(self.peak_rms / self.threshold * 2.0, 1.0, 6.0))


def nearest_rank_percentile(values: list[float], p: float) -> float:
    """sorted[floor(p/100 * (n-1))]; 0 for no values."""
    if not values:
        return 0.0
    ordered = sorted(values)
    return float(ordered[int(p / 100.0 * (len(ordered) - 1))])


def detect_harshness_bursts(
    accel: ImuStream,
    sample_rate_hz: float,
    analyzer: HarshnessAnalyzer,
) -> list[HarshnessBurst]:
    """
    Sustained chatter relative to the run's own harshness distribution.

    Short windows are scored with the harshness analyzer; consecutive windows
    above a p75/p90-derived threshold form a burst. Bursts shorter than
    BURST_MIN_DURATION_MS are discarded, and bursts separated by at most
    BURST_MERGE_GAP_MS are merged keeping the stronger peak.
    """
    if sample_rate_hz <= 0 or len(accel) < HarshnessAnalyzer.MIN_SAMPLES:
        return []

    window_samples = max(int(math.floor(BURST_WINDOW_SEC * sample_rate_hz + 0.5)), BURST_MIN_WINDOW_SAMPLES)
    hop_samples = max(int(math.floor(BURST_HOP_SEC * sample_rate_hz + 0.5)), BURST_MIN_HOP_SAMPLES)
    if window_samples >= len(accel):
        return []

    windows: list[tuple[int, int, float]] = []
    start = 0
    while start + window_samples <= len(accel):
        window = accel.slice(start, start + window_samples)
        rms = analyzer.analyze_window(window, sample_rate_hz)
        if math.isfinite(rms) and rms > 0:
            windows.append((int(window.timestamps_ns[0]), int(window.timestamps_ns[-1]), rms))
        start += hop_samples

    if len(windows) < 3:
        return []

    rms_values = [w[2] for w in windows]
    p75 = nearest_rank_percentile(rms_values, 75)
    p90 = nearest_rank_percentile(rms_values, 90)
    threshold = max(BURST_MIN_THRESHOLD, p75 + (p90 - p75) * 0.65)
    if not math.isfinite(threshold) or threshold <= 0:
        return []

    raw: list[HarshnessBurst] = []
    active: Optional[list] = None  # [start_ns, end_ns, peak_ns, peak_rms]

    def flush():
        if active is None:
            return
        if (active[1] - active[0]) // 1_000_000 >= BURST_MIN_DURATION_MS:
            raw.append(HarshnessBurst(active[0], active[1], active[2], active[3], threshold))

    for start_ns, end_ns, rms in windows:
        center_ns = start_ns + (end_ns - start_ns) // 2
        if rms >= threshold:
            if active is None:
                active = [start_ns, end_ns, center_ns, rms]
            else:
                active[1] = end_ns
                if rms > active[3]:
                    active[2] = center_ns
                    active[3] = rms
        else:
            flush()
            active = None
    flush()

    bursts = _merge_bursts(raw)
    if bursts:
        logger.debug(f"Detected {len(bursts)} harshness bursts (threshold {threshold:.3f})")
    return bursts


def _merge_bursts(bursts: list[HarshnessBurst]) -> list[HarshnessBurst]:
    if not bursts:
        return []
    ordered = sorted(bursts, key=lambda b: b.start_ns)
    gap_ns = BURST_MERGE_GAP_MS * 1_000_000

    merged: list[HarshnessBurst] = []
    current = ordered[0]
    for nxt in ordered[1:]:
        if nxt.start_ns - current.end_ns <= gap_ns:
            stronger = nxt if nxt.peak_rms > current.peak_rms else current
            current = HarshnessBurst(
                start_ns=current.start_ns,
                end_ns=max(current.end_ns, nxt.end_ns),
                peak_ns=stronger.peak_ns,
                peak_rms=stronger.peak_rms,
                threshold=current.threshold,
            )
        else:
            merged.append(current)
            current = nxt
    merged.append(current)
    return merged
