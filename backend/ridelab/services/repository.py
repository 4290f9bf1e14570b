"""
Run Repository - manages loading, processing and caching of runs.

Capture CSVs in a folder are indexed on scan and processed lazily on first
access. Processed runs can also be added directly (tests, in-memory use).
"""

import hashlib
import logging
import threading
from pathlib import Path
from typing import Optional

from ridelab.errors import CaptureFormatError, ProcessingFailure
from ridelab.models.run import GpsPolyline, ProcessedRun, RunEvent, RunSeries, RunSummary, SeriesType
from ridelab.services.capture_parser import parse_capture_file
from ridelab.services.pipeline import SignalProcessor


logger = logging.getLogger(__name__)


class RunRepository:
    """
    Repository for processed runs.

    Reads captures from CSV files in a folder and caches the processed
    result in memory.

    Safe to share between request threads: the cache and index are guarded
    by one lock, and processing runs outside it. Two threads loading the
    same run race to publish and both get the first stored result.
    """

    def __init__(
        self,
        data_folder: Optional[Path] = None,
        processor: Optional[SignalProcessor] = None,
    ):
        """
        Initialize the repository.

        Args:
            data_folder: Folder containing capture CSVs. If None, must be set later.
            processor: Signal processor used for captures; defaults to SignalProcessor()
        """
        self._data_folder: Optional[Path] = data_folder
        self._processor = processor or SignalProcessor()
        self._cache: dict[str, ProcessedRun] = {}
        self._index: dict[str, Path] = {}  # id -> filepath mapping
        self._lock = threading.Lock()

        if data_folder is not None:
            self.scan_folder(data_folder)

    @property
    def data_folder(self) -> Optional[Path]:
        return self._data_folder

    @property
    def run_count(self) -> int:
        return len(self._known_ids())

    def set_data_folder(self, folder: Path) -> int:
        """
        Set the data folder and scan for capture files.

        Returns:
            Number of CSV files found
        """
        with self._lock:
            self._data_folder = folder
            self._cache.clear()
            self._index.clear()
        return self.scan_folder(folder)

    def scan_folder(self, folder: Path) -> int:
        if not folder.exists():
            logger.warning(f"Data folder does not exist: {folder}")
            return 0

        found = {}
        for csv_file in sorted(folder.glob("*.csv")):
            if csv_file.is_file():
                run_id = self._filepath_to_id(csv_file)
                found[run_id] = csv_file
                logger.debug(f"Indexed run: {run_id} -> {csv_file.name}")

        with self._lock:
            self._index.update(found)
        count = len(found)
        logger.info(f"Scanned {count} CSV files in {folder}")
        return count

    def add(self, processed: ProcessedRun) -> str:
        """Store an already processed run."""
        run_id = processed.run.run_id
        with self._lock:
            self._cache[run_id] = processed
        return run_id

    def add_capture_file(self, filepath: Path) -> ProcessedRun:
        """Index and process one capture file immediately."""
        run_id = self._filepath_to_id(filepath)
        with self._lock:
            self._index[run_id] = filepath
        return self._load_run(run_id, filepath)

    def list_runs(self) -> list[RunSummary]:
        """Summaries of every known run, newest first; unreadable files are skipped."""
        summaries = []
        for run_id in self._known_ids():
            try:
                processed = self.get_run(run_id)
            except (CaptureFormatError, ProcessingFailure, OSError, ValueError) as e:
                logger.error(f"Failed to load run {run_id}: {e}")
                continue
            if processed is not None:
                summaries.append(RunSummary.from_processed(processed))

        summaries.sort(key=lambda s: (s.started_at, s.id), reverse=True)
        return summaries

    def get_run(self, run_id: str) -> Optional[ProcessedRun]:
        """
        Get a processed run by ID.

        Returns:
            ProcessedRun if known, None otherwise. Parse and processing errors
            propagate.
        """
        with self._lock:
            cached = self._cache.get(run_id)
            filepath = self._index.get(run_id)
        if cached is not None:
            return cached
        if filepath is None:
            return None
        return self._load_run(run_id, filepath)

    def get_series(self, run_id: str, series_type: SeriesType) -> Optional[RunSeries]:
        processed = self.get_run(run_id)
        return processed.get_series(series_type) if processed else None

    def get_all_series(self, run_id: str) -> list[RunSeries]:
        processed = self.get_run(run_id)
        return list(processed.series) if processed else []

    def get_events(self, run_id: str) -> list[RunEvent]:
        processed = self.get_run(run_id)
        return list(processed.events) if processed else []

    def get_polyline(self, run_id: str) -> Optional[GpsPolyline]:
        processed = self.get_run(run_id)
        return processed.polyline if processed else None

    def runs_for_track(self, track_id: str) -> list[ProcessedRun]:
        runs = []
        for run_id in self._known_ids():
            try:
                processed = self.get_run(run_id)
            except (CaptureFormatError, ProcessingFailure, OSError, ValueError) as e:
                logger.error(f"Failed to load run {run_id}: {e}")
                continue
            if processed is not None and processed.run.track_id == track_id:
                runs.append(processed)
        return runs

    def clear_cache(self) -> None:
        """Clear the in-memory cache of file-backed runs."""
        with self._lock:
            for run_id in list(self._cache):
                if run_id in self._index:
                    del self._cache[run_id]
        logger.info("Run cache cleared")

    def _known_ids(self) -> list[str]:
        with self._lock:
            ids = list(self._index)
            ids.extend(run_id for run_id in self._cache if run_id not in self._index)
        return ids

    def _load_run(self, run_id: str, filepath: Path) -> ProcessedRun:
        """Parse, process and cache one capture."""
        capture = parse_capture_file(filepath)
        processed = self._processor.process(capture, run_id=run_id)
        with self._lock:
            processed = self._cache.setdefault(run_id, processed)
        logger.debug(f"Loaded and cached run: {run_id}")
        return processed

    def _filepath_to_id(self, filepath: Path) -> str:
        """Generate a consistent ID from filepath."""
        stat = filepath.stat()
        id_string = f"{filepath.name}_{stat.st_size}_{stat.st_mtime}"
        return hashlib.sha256(id_string.encode()).hexdigest()[:16]


# Global repository instance (set up by app initialization)
_repository: Optional[RunRepository] = None


def get_repository() -> RunRepository:
    """Get the global repository instance."""
    global _repository
    if _repository is None:
        _repository = RunRepository()
    return _repository


def init_repository(data_folder: Path) -> RunRepository:
    """Initialize the global repository with a data folder."""
    global _repository
    _repository = RunRepository(data_folder)
    return _repository
