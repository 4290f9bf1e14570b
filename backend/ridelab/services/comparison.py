"""
Multi-run comparison.

Loads N processed runs of one track and derives burden scores, a per-metric
table with best-run selection, a verdict, insight strings and section splits
against a baseline run. Results are computed per request and never stored.
"""

import logging
import math
from typing import Optional, Protocol

import numpy as np

from ridelab.errors import InsufficientRuns, InvalidRunsExcluded, RunNotFound, TrackMismatch
from ridelab.models.comparison import (
    AltitudeComparison,
    AltitudeSection,
    MapComparison,
    MultiMetricComparison,
    MultiRunComparisonResult,
    MultiRunVerdict,
    RunSectionComparison,
    RunWithColor,
    SectionSplit,
)
from ridelab.models.run import ProcessedRun, SeriesType
from ridelab.services.resampler import interpolate_at
from ridelab.services.timing import RunTimingProfile


logger = logging.getLogger(__name__)

RUN_COLORS = [
    0xFF2196F3,  # blue
    0xFFFF5722,  # orange
    0xFF4CAF50,  # green
    0xFF9C27B0,  # purple
    0xFFFFEB3B,  # yellow
    0xFF00BCD4,  # cyan
    0xFFE91E63,  # pink
    0xFF795548,  # brown
]

IMPACT_REF = 25.0
HARSHNESS_REF = 1.2
STABILITY_REF = 0.35

SECTION_BOUNDS = [(0.0, 20.0), (20.0, 40.0), (40.0, 60.0), (60.0, 80.0), (80.0, 100.0)]

CLEAR_WINNER_MIN_WINS = 3
MAX_MIXED_HIGHLIGHTS = 3
MAX_METRIC_INSIGHTS = 5
VARIATION_INSIGHT_PCT = 30.0
SPREAD_INSIGHT_POINTS = 10.0


class RunSource(Protocol):
    """What the engine needs from a run store."""

    def get_run(self, run_id: str) -> Optional[ProcessedRun]:
        ...

    def runs_for_track(self, track_id: str) -> list[ProcessedRun]:
        ...


def normalize_burden(value: Optional[float], reference: float) -> Optional[float]:
    """
    Saturating 0-100 burden score: v / (v + ref) * 100.

    Negative values count as 0; None or non-finite input gives None.
    """
    if value is None or not math.isfinite(value):
        return None
    v = max(value, 0.0)
    if v + reference <= 0:
        return 0.0
    return float(np.clip(v / (v + reference) * 100.0, 0.0, 100.0))


def find_best_index(values: list[Optional[float]], lower_is_better: bool) -> Optional[int]:
    """Index of the unique best value; None on ties or when nothing is available."""
    candidates = [(i, v) for i, v in enumerate(values) if v is not None and math.isfinite(v)]
    if not candidates:
        return None
    best = min(v for _, v in candidates) if lower_is_better else max(v for _, v in candidates)
    winners = [i for i, v in candidates if v == best]
    return winners[0] if len(winners) == 1 else None


def _fastest_index(times: list[Optional[float]]) -> Optional[int]:
    """Minimum time, first index on ties."""
    best = None
    for i, t in enumerate(times):
        if t is not None and (best is None or t < times[best]):
            best = i
    return best


def build_sections(
    processed: list[ProcessedRun],
    profiles: list[RunTimingProfile],
) -> list[SectionSplit]:
    """Five fixed distance bins with times, speeds and deltas vs index 0."""
    sections = []
    for index, (start, end) in enumerate(SECTION_BOUNDS):
        times = [p.section_time_ms(start, end) for p in profiles]
        speeds = []
        for pr, t in zip(processed, times):
            section_m = pr.run.distance_m * (end - start) / 100.0
            speeds.append(section_m / (t / 1000.0) if t is not None and t > 0 else None)

        baseline_time = times[0]
        deltas = [
            (t - baseline_time) if t is not None and baseline_time is not None else None
            for t in times
        ]
        sections.append(
            SectionSplit(
                index=index,
                start_pct=start,
                end_pct=end,
                times_ms=times,
                avg_speeds_mps=speeds,
                deltas_ms=deltas,
                best_run_index=_fastest_index(times),
            )
        )
    return sections


def smooth_altitude(points: list[tuple[float, float]]) -> list[tuple[float, float]]:
    """Centred 3-point moving average; end points average their one neighbour."""
    if len(points) < 3:
        return list(points)
    smoothed = []
    for i, (x, _) in enumerate(points):
        window = points[max(i - 1, 0): i + 2]
        smoothed.append((x, sum(a for _, a in window) / len(window)))
    return smoothed


def section_ascent_descent(
    points: list[tuple[float, float]],
    start_pct: float,
    end_pct: float,
) -> tuple[float, float]:
    arr = np.asarray(points, dtype=np.float64)
    profile = [interpolate_at(arr, start_pct)]
    profile.extend(a for x, a in points if start_pct < x < end_pct)
    profile.append(interpolate_at(arr, end_pct))

    diffs = np.diff(profile)
    ascent = float(np.sum(diffs[diffs > 0]))
    descent = float(-np.sum(diffs[diffs < 0]))
    return ascent, descent


def _altitude_points(processed: ProcessedRun) -> list[tuple[float, float]]:
    if processed.polyline is None:
        return []
    return [(p.dist_pct, p.altitude) for p in processed.polyline.points if p.altitude is not None]


def _has_usable_polyline(processed: ProcessedRun) -> bool:
    return processed.polyline is not None and processed.polyline.is_usable


def _timing_profile(processed: ProcessedRun) -> RunTimingProfile:
    return RunTimingProfile(processed.run, processed.get_series(SeriesType.SPEED_TIME))


class MultiRunComparisonEngine:
    def __init__(self, repository: RunSource):
        self.repository = repository

    def compare(
        self,
        track_id: str,
        run_ids: list[str],
        include_invalid: bool = True,
    ) -> MultiRunComparisonResult:
        """
        Compare runs of one track.

        Raises:
            InsufficientRuns: fewer than two runs could be loaded
            TrackMismatch: a loaded run belongs to another track
            InvalidRunsExcluded: invalid runs present and include_invalid is False
        """
        loaded = self._load(run_ids)
        processed = [p for _, p in loaded]
        if len(processed) < 2:
            raise InsufficientRuns(len(processed))

        mismatched = [p.run.run_id for p in processed if p.run.track_id != track_id]
        if mismatched:
            raise TrackMismatch(track_id, mismatched)

        runs = [
            RunWithColor(run=p.run, color=RUN_COLORS[i % len(RUN_COLORS)], label=f"Run {i + 1}")
            for i, p in loaded
        ]

        invalid_labels = [r.label for r in runs if not r.run.is_valid]
        if invalid_labels and not include_invalid:
            raise InvalidRunsExcluded(invalid_labels)

        burden_scores = {
            "impact": [normalize_burden(r.run.impact_score, IMPACT_REF) for r in runs],
            "harshness": [normalize_burden(r.run.harshness_avg, HARSHNESS_REF) for r in runs],
            "stability": [normalize_burden(r.run.stability_score, STABILITY_REF) for r in runs],
        }
        metrics = self.build_metric_comparisons(runs, burden_scores)
        verdict = self.determine_verdict(runs, metrics)
        insights = self.generate_insights(metrics)
        if invalid_labels:
            insights.append(f"{', '.join(invalid_labels)} marked as invalid")

        map_comparison = self.build_map_comparison(processed)
        if map_comparison is not None:
            insights.extend(self.challenger_insights(runs, map_comparison))

        logger.info(f"Compared {len(runs)} runs on track {track_id}: {verdict.type.value}")
        return MultiRunComparisonResult(
            track_id=track_id,
            runs=runs,
            metric_comparisons=metrics,
            verdict=verdict,
            insights=insights,
            burden_scores=burden_scores,
            map_comparison=map_comparison,
            altitude_comparison=self.build_altitude_comparison(processed),
        )

    def _load(self, run_ids: list[str]) -> list[tuple[int, ProcessedRun]]:
        # (requested position, run) so labels and colours survive skipped ids;
        # all loads finish before any aggregation and repository errors propagate
        loaded = []
        for i, run_id in enumerate(run_ids):
            processed = self.repository.get_run(run_id)
            if processed is None:
                logger.warning(f"Run {run_id} not found, skipping")
                continue
            loaded.append((i, processed))
        return loaded

    def build_metric_comparisons(
        self,
        runs: list[RunWithColor],
        burden_scores: dict[str, list[Optional[float]]],
    ) -> list[MultiMetricComparison]:
        columns = [
            ("Impact", burden_scores["impact"], True),
            ("Harshness", burden_scores["harshness"], True),
            ("Stability", burden_scores["stability"], True),
            ("Landing Quality", [r.run.landing_quality_score for r in runs], True),
            ("Duration", [r.run.duration_ms / 1000.0 for r in runs], True),
            ("Max Speed", [r.run.max_speed for r in runs], False),
        ]
        return [
            MultiMetricComparison(
                metric_name=name,
                values=values,
                best_run_index=find_best_index(values, lower),
                lower_is_better=lower,
            )
            for name, values, lower in columns
        ]

    def determine_verdict(
        self,
        runs: list[RunWithColor],
        metrics: list[MultiMetricComparison],
    ) -> MultiRunVerdict:
        wins = [0] * len(runs)
        for m in metrics:
            if m.best_run_index is not None:
                wins[m.best_run_index] += 1

        max_wins = max(wins) if wins else 0
        if max_wins >= CLEAR_WINNER_MIN_WINS and wins.count(max_wins) == 1:
            best = wins.index(max_wins)
            won = [m for m in metrics if m.best_run_index == best]
            highlights = ". ".join(f"Best {m.metric_name.lower()}" for m in won) + "."
            return MultiRunVerdict.clear_winner(best, runs[best].label, highlights)

        if max_wins > 0:
            lines = [
                f"{runs[m.best_run_index].label} has best {m.metric_name.lower()}"
                for m in metrics
                if m.best_run_index is not None
            ]
            return MultiRunVerdict.mixed(". ".join(lines[:MAX_MIXED_HIGHLIGHTS]) + ".")

        return MultiRunVerdict.similar()

    def generate_insights(self, metrics: list[MultiMetricComparison]) -> list[str]:
        insights = []
        for m in metrics:
            values = [v for v in m.values if v is not None and math.isfinite(v)]
            if len(values) < 2:
                continue
            low, high = min(values), max(values)
            if low > 0:
                variation = (high - low) / low * 100.0
                if variation > VARIATION_INSIGHT_PCT:
                    insights.append(f"{m.metric_name} varies by {int(variation)}% across runs")
            elif low == 0 and high - low >= SPREAD_INSIGHT_POINTS:
                insights.append(f"{m.metric_name} spread is {int(high - low)} points across runs")
        return insights[:MAX_METRIC_INSIGHTS]

    def build_map_comparison(self, processed: list[ProcessedRun]) -> Optional[MapComparison]:
        if sum(1 for p in processed if _has_usable_polyline(p)) < 2:
            return None

        profiles = [_timing_profile(p) for p in processed]
        return MapComparison(
            run_ids=[p.run.run_id for p in processed],
            baseline_index=0,
            sections=build_sections(processed, profiles),
            has_measured_split_timing=all(p.has_measured_timing for p in profiles),
        )

    def challenger_insights(self, runs: list[RunWithColor], comparison: MapComparison) -> list[str]:
        """Where run index 1 gained and lost the most against the baseline."""
        if len(runs) < 2:
            return []
        label = runs[1].label
        deltas = [(s, s.deltas_ms[1]) for s in comparison.sections if s.deltas_ms[1] is not None]
        if not deltas:
            return []

        insights = []
        gain_section, gain = min(deltas, key=lambda d: d[1])
        if gain < 0:
            insights.append(
                f"{label} gained {abs(gain) / 1000.0:.1f}s in section "
                f"{gain_section.index + 1} ({gain_section.label})"
            )
        loss_section, loss = max(deltas, key=lambda d: d[1])
        if loss > 0:
            insights.append(
                f"{label} lost {loss / 1000.0:.1f}s in section "
                f"{loss_section.index + 1} ({loss_section.label})"
            )
        return insights

    def build_altitude_comparison(self, processed: list[ProcessedRun]) -> Optional[AltitudeComparison]:
        with_altitude = [(p, _altitude_points(p)) for p in processed]
        with_altitude = [(p, pts) for p, pts in with_altitude if len(pts) >= 2]
        if len(with_altitude) < 2:
            return None

        smoothed = [smooth_altitude(pts) for _, pts in with_altitude]
        sections = []
        for index, (start, end) in enumerate(SECTION_BOUNDS):
            totals = [section_ascent_descent(pts, start, end) for pts in smoothed]
            sections.append(
                AltitudeSection(
                    index=index,
                    start_pct=start,
                    end_pct=end,
                    ascent_m=[a for a, _ in totals],
                    descent_m=[d for _, d in totals],
                )
            )
        return AltitudeComparison(run_ids=[p.run.run_id for p, _ in with_altitude], sections=sections)

    def compare_run_sections(self, run_id: str) -> Optional[RunSectionComparison]:
        """
        One run's sections against the fastest run on its track.

        Returns None when the track has no other run or either run lacks a
        usable GPS route.
        """
        current = self.repository.get_run(run_id)
        if current is None:
            raise RunNotFound(run_id)

        track_runs = self.repository.runs_for_track(current.run.track_id)
        if not any(p.run.run_id != run_id for p in track_runs):
            return None

        fastest = min(track_runs, key=lambda p: p.run.duration_ms)
        is_fastest = current.run.duration_ms <= fastest.run.duration_ms
        baseline = current if is_fastest else fastest

        if not (_has_usable_polyline(current) and _has_usable_polyline(baseline)):
            return None

        pair = [baseline, current]
        profiles = [_timing_profile(p) for p in pair]
        return RunSectionComparison(
            run_id=run_id,
            baseline_run_id=baseline.run.run_id,
            is_fastest=is_fastest,
            sections=build_sections(pair, profiles),
            has_measured_split_timing=all(p.has_measured_timing for p in profiles),
        )
