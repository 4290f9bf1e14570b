"""
Exception hierarchy for run processing and comparison.

Missing optional data (no GPS, no landings, no timing series) is never an
error; it is represented as None or an empty collection.
"""

from typing import Optional


class RideLabError(Exception):
    """Base error for the telemetry engine."""


class RunNotFound(RideLabError):
    """Requested run id is not known to the repository."""

    def __init__(self, run_id: str):
        self.run_id = run_id
        super().__init__(f"Run not found: {run_id}")


class ComparisonError(RideLabError):
    """Structural precondition of a comparison was violated."""


class InsufficientRuns(ComparisonError):
    def __init__(self, loaded: int, required: int = 2):
        self.loaded = loaded
        self.required = required
        super().__init__(f"Need at least {required} runs to compare, loaded {loaded}")


class TrackMismatch(ComparisonError):
    def __init__(self, track_id: str, offending_run_ids: list[str]):
        self.track_id = track_id
        self.offending_run_ids = offending_run_ids
        super().__init__(
            f"All runs must be from track {track_id}; "
            f"mismatched: {', '.join(offending_run_ids)}"
        )


class InvalidRunsExcluded(ComparisonError):
    def __init__(self, labels: list[str]):
        self.labels = labels
        super().__init__(
            f"Some runs are invalid: {', '.join(labels)}. "
            "Pass include_invalid=True to compare anyway."
        )


class ProcessingFailure(RideLabError):
    """An analyzer raised while a capture was being processed."""

    def __init__(self, stage: str, cause: Optional[BaseException] = None):
        self.stage = stage
        self.cause = cause
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"Processing failed during {stage}{detail}")


class CaptureFormatError(RideLabError):
    """A capture file could not be parsed."""
