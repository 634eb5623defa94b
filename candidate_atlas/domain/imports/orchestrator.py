"""
Multi-file ingestion with resume, bounded retries and per-file status tracking.
"""
import logging
import os
import random
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional

from candidate_atlas.domain.candidates.repository import CandidateStore
from candidate_atlas.domain.imports.importer import DEFAULT_BATCH_SIZE, CandidateImporter, ImportResult
from candidate_atlas.domain.imports.status import STATUS_PROCESSED, IngestionStatusTracker
from candidate_atlas.integrations.spreadsheets import SPREADSHEET_EXTENSIONS

logger = logging.getLogger(__name__)

OUTCOME_PROCESSED = "processed"
OUTCOME_FAILED = "failed"
OUTCOME_SKIPPED = "skipped"

MAX_JITTER_MS = 1000


def discover_files(
    files: Optional[Iterable[str]] = None,
    directory: Optional[str] = None,
) -> List[str]:
    """
    Combine explicit files with a recursive scan of directory.

    Explicit files keep their given order; discovered files follow, sorted.
    Duplicates are removed keeping the first occurrence.
    """
    ordered: List[str] = list(files or [])

    if directory:
        discovered = []
        for root, _dirs, names in os.walk(directory):
            for name in names:
                # Lock files Excel leaves next to open workbooks.
                if name.startswith("~$"):
                    continue
                if Path(name).suffix.lower() in SPREADSHEET_EXTENSIONS:
                    discovered.append(os.path.join(root, name))
        ordered.extend(sorted(discovered))

    seen = set()
    unique: List[str] = []
    for file_path in ordered:
        if file_path in seen:
            continue
        seen.add(file_path)
        unique.append(file_path)
    return unique


def compute_backoff_ms(
    attempt: int,
    base_ms: int,
    max_ms: int,
    rand: Callable[[], float] = random.random,
) -> float:
    """Exponential backoff with jitter: min(max, base * 2^(attempt-1) + rand() * min(base, 1000))."""
    exponential = base_ms * (2 ** max(attempt - 1, 0))
    jitter = rand() * min(base_ms, MAX_JITTER_MS)
    return min(max_ms, exponential + jitter)


@dataclass
class FileOutcome:
    file_path: str
    status: str
    attempts: int = 0
    processed_rows: int = 0
    persisted: int = 0
    dropped_rows: int = 0
    conflicts: int = 0
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "file_path": self.file_path,
            "status": self.status,
            "attempts": self.attempts,
            "processed_rows": self.processed_rows,
            "persisted": self.persisted,
            "dropped_rows": self.dropped_rows,
            "conflicts": self.conflicts,
            "error": self.error,
        }


@dataclass
class RunSummary:
    outcomes: List[FileOutcome] = field(default_factory=list)

    def _with_status(self, status: str) -> List[FileOutcome]:
        return [outcome for outcome in self.outcomes if outcome.status == status]

    @property
    def processed(self) -> List[FileOutcome]:
        return self._with_status(OUTCOME_PROCESSED)

    @property
    def failed(self) -> List[FileOutcome]:
        return self._with_status(OUTCOME_FAILED)

    @property
    def skipped(self) -> List[FileOutcome]:
        return self._with_status(OUTCOME_SKIPPED)

    @property
    def total_persisted(self) -> int:
        return sum(outcome.persisted for outcome in self.outcomes)

    @property
    def ok(self) -> bool:
        return not self.failed


class IngestionOrchestrator:
    """
    Runs the importer over many files.

    A file already marked processed is skipped when resuming. Otherwise it gets
    up to max_retries + 1 attempts with exponential backoff between them; a
    file that still fails is marked failed and the run moves on, unless
    fail_fast is set.
    """

    def __init__(
        self,
        importer: CandidateImporter,
        store: CandidateStore,
        tracker: Optional[IngestionStatusTracker] = None,
        resume: bool = True,
        fail_fast: bool = False,
        max_retries: int = 2,
        retry_base_ms: int = 1000,
        retry_max_ms: int = 60000,
        sleep: Callable[[float], None] = time.sleep,
        rand: Callable[[], float] = random.random,
    ):
        if max_retries < 0:
            raise ValueError(f"max_retries must be >= 0, got {max_retries}")
        self.importer = importer
        self.store = store
        self.tracker = tracker
        self.resume = resume
        self.fail_fast = fail_fast
        self.max_retries = max_retries
        self.retry_base_ms = retry_base_ms
        self.retry_max_ms = retry_max_ms
        self._sleep = sleep
        self._rand = rand

    def run(
        self,
        files: Iterable[str],
        sheet_name: Optional[str] = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
    ) -> RunSummary:
        """
        Ingest the files in order.

        Raises:
            StatusTrackerError: The tracker could not be prepared or seeded
            PersistenceError: The candidate store could not be prepared
            Exception: The last error of a failed file when fail_fast is set
        """
        file_paths = list(files)
        summary = RunSummary()

        if self.tracker is not None:
            self.tracker.ensure_ready()
            self.tracker.seed_pending(file_paths)
        self.store.ensure_indexes()

        logger.info(f"Starting ingestion of {len(file_paths)} file(s) (resume={self.resume}, max_retries={self.max_retries})")

        for file_path in file_paths:
            if self.resume and self.tracker is not None and self.tracker.get_status(file_path) == STATUS_PROCESSED:
                logger.info(f"Skipping {file_path}: already processed")
                summary.outcomes.append(FileOutcome(file_path=file_path, status=OUTCOME_SKIPPED))
                continue

            outcome = self._process_file(file_path, sheet_name, batch_size)
            summary.outcomes.append(outcome)

        logger.info(
            f"Ingestion finished: processed={len(summary.processed)} failed={len(summary.failed)} "
            f"skipped={len(summary.skipped)} persisted={summary.total_persisted}"
        )
        return summary

    def _process_file(self, file_path: str, sheet_name: Optional[str], batch_size: int) -> FileOutcome:
        max_attempts = self.max_retries + 1
        last_error: Optional[Exception] = None

        for attempt in range(1, max_attempts + 1):
            if self.tracker is not None:
                self.tracker.mark_processing(file_path)

            try:
                result: ImportResult = self.importer.run(file_path, sheet_name=sheet_name, batch_size=batch_size)
            except Exception as exc:
                last_error = exc
                logger.warning(f"Attempt {attempt}/{max_attempts} for {file_path} failed: {exc}")
                if attempt < max_attempts:
                    delay_ms = compute_backoff_ms(attempt, self.retry_base_ms, self.retry_max_ms, self._rand)
                    logger.info(f"Retrying {file_path} in {delay_ms / 1000:.2f}s")
                    self._sleep(delay_ms / 1000.0)
                continue

            if self.tracker is not None:
                self.tracker.mark_processed(
                    file_path,
                    processed_rows=result.processed_rows,
                    persisted=result.persisted,
                )
            return FileOutcome(
                file_path=file_path,
                status=OUTCOME_PROCESSED,
                attempts=attempt,
                processed_rows=result.processed_rows,
                persisted=result.persisted,
                dropped_rows=result.dropped_rows,
                conflicts=result.conflicts,
            )

        logger.error(f"Giving up on {file_path} after {max_attempts} attempt(s): {last_error}")
        if self.tracker is not None:
            self.tracker.mark_failed(file_path, last_error)
        if self.fail_fast:
            raise last_error

        return FileOutcome(
            file_path=file_path,
            status=OUTCOME_FAILED,
            attempts=max_attempts,
            error=str(last_error),
        )
