"""
Comparison result models.

Computed on demand from N runs on the same track; never persisted.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from ridelab.models.run import Run


@dataclass(frozen=True)
class RunWithColor:
    """A run with an assigned display color (ARGB) and label."""

    run: Run
    color: int
    label: str


@dataclass
class MultiMetricComparison:
    """One metric across runs, one value per run (None if unavailable)."""

    metric_name: str
    values: list[Optional[float]]
    best_run_index: Optional[int]
    lower_is_better: bool


class VerdictType(Enum):
    CLEAR_WINNER = "clear_winner"
    MIXED = "mixed"
    SIMILAR = "similar"


@dataclass(frozen=True)
class MultiRunVerdict:
    type: VerdictType
    title: str
    description: str
    best_run_index: Optional[int] = None
    best_run_label: str = ""

    @classmethod
    def clear_winner(cls, best_index: int, best_label: str, highlights: str) -> "MultiRunVerdict":
        return cls(
            type=VerdictType.CLEAR_WINNER,
            title=f"{best_label} was the smoothest",
            description=highlights,
            best_run_index=best_index,
            best_run_label=best_label,
        )

    @classmethod
    def mixed(cls, highlights: str) -> "MultiRunVerdict":
        return cls(type=VerdictType.MIXED, title="Mixed results", description=highlights)

    @classmethod
    def similar(cls) -> "MultiRunVerdict":
        return cls(
            type=VerdictType.SIMILAR,
            title="Similar performance",
            description="No significant differences detected between runs",
        )


@dataclass
class SectionSplit:
    """Timing of every run across one distance-percent bin."""

    index: int
    start_pct: float
    end_pct: float
    times_ms: list[Optional[float]]
    avg_speeds_mps: list[Optional[float]]
    deltas_ms: list[Optional[float]]  # vs the baseline run
    best_run_index: Optional[int]

    @property
    def label(self) -> str:
        return f"{self.start_pct:.0f}-{self.end_pct:.0f}%"


@dataclass
class MapComparison:
    """Per-section splits for runs that carry a usable GPS route."""

    run_ids: list[str]
    baseline_index: int
    sections: list[SectionSplit]
    has_measured_split_timing: bool


@dataclass
class RunSectionComparison:
    """A single run's sections against the fastest run on its track."""

    run_id: str
    baseline_run_id: str
    is_fastest: bool
    sections: list[SectionSplit]
    has_measured_split_timing: bool


@dataclass
class AltitudeSection:
    index: int
    start_pct: float
    end_pct: float
    ascent_m: list[Optional[float]]
    descent_m: list[Optional[float]]


@dataclass
class AltitudeComparison:
    run_ids: list[str]
    sections: list[AltitudeSection]


@dataclass
class MultiRunComparisonResult:
    track_id: str
    runs: list[RunWithColor]
    metric_comparisons: list[MultiMetricComparison]
    verdict: MultiRunVerdict
    insights: list[str] = field(default_factory=list)
    burden_scores: dict[str, list[Optional[float]]] = field(default_factory=dict)
    map_comparison: Optional[MapComparison] = None
    altitude_comparison: Optional[AltitudeComparison] = None
