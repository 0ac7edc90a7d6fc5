import logging
import os
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, Iterable, List, NamedTuple, Optional, Set

from cerberus import Validator

from index_migrator.exceptions import MigrationError
from index_migrator.models.bulk_copy import BulkCopier, ELASTICDUMP_SCHEMA

logger = logging.getLogger(__name__)

PROGRESS_LOG_FILE = "progress.log"
COMPLETED_LOG_FILE = "completed.txt"
FAILED_LOG_FILE = "failed.txt"
INDICES_FILE = "indices_to_migrate.txt"
DEFAULT_CONCURRENCY = 5

SCHEMA = {
    "transfer": {
        "type": "dict",
        "nullable": True,
        "schema": {
            "concurrency": {"type": "integer", "min": 1, "required": False},
            "log_dir": {"type": "string", "required": False},
            **ELASTICDUMP_SCHEMA
        }
    }
}


class WindowMode(str, Enum):
    SINGLE = "single"
    YEARLY = "yearly"


@dataclass(frozen=True)
class TimeWindow:
    """Half-open range [start, end). A missing bound leaves that side open."""
    start: Optional[str] = None
    end: Optional[str] = None

    def __str__(self) -> str:
        return f"[{self.start or '*'}, {self.end or '*'})"

    def range_query(self, date_field: str) -> Dict:
        bounds = {}
        if self.start:
            bounds["gte"] = self.start
        if self.end:
            bounds["lt"] = self.end
        return {"range": {date_field: bounds}}


@dataclass(frozen=True)
class WindowSpec:
    date_field: Optional[str] = None
    start: Optional[str] = None
    end: Optional[str] = None
    mode: WindowMode = WindowMode.SINGLE
    start_year: Optional[int] = None
    end_year: Optional[int] = None

    def __post_init__(self):
        if self.mode == WindowMode.YEARLY:
            if not self.date_field or self.start_year is None or self.end_year is None:
                raise ValueError("Yearly mode requires a date field, a start year and an end year")
            if self.start_year > self.end_year:
                raise ValueError(f"Start year {self.start_year} is after end year {self.end_year}")

    def windows(self) -> List[Optional[TimeWindow]]:
        """The windows to run, in order. `None` stands for the whole index."""
        if not self.date_field:
            return [None]
        if self.mode == WindowMode.YEARLY:
            return [TimeWindow(f"{year}-01-01", f"{year + 1}-01-01")
                    for year in range(self.start_year, self.end_year + 1)]
        if self.start or self.end:
            return [TimeWindow(self.start, self.end)]
        return [None]

    def search_body(self, window: Optional[TimeWindow]) -> Optional[Dict]:
        if window is None or not self.date_field:
            return None
        return {"query": window.range_query(self.date_field)}


class JobStatus(str, Enum):
    PENDING = "Pending"
    RUNNING = "Running"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"
    SKIPPED = "Skipped"


class JobKey(NamedTuple):
    index: str
    window: Optional[TimeWindow] = None

    def __str__(self) -> str:
        return self.index if self.window is None else f"{self.index} {self.window}"


@dataclass
class TransferJob:
    index: str
    window: Optional[TimeWindow] = None
    attempts: int = 0
    status: JobStatus = JobStatus.PENDING
    started: Optional[float] = None
    finished: Optional[float] = None
    error: Optional[str] = None

    @property
    def key(self) -> JobKey:
        return JobKey(self.index, self.window)

    @property
    def duration(self) -> Optional[float]:
        if self.started is None or self.finished is None:
            return None
        return self.finished - self.started


class EventKind(str, Enum):
    START = "Starting"
    SUCCESS = "Completed"
    FAILURE = "Failed"
    SKIPPED = "Skipped"


@dataclass(frozen=True)
class JobEvent:
    timestamp: datetime
    kind: EventKind
    key: JobKey
    duration: Optional[float] = None
    message: Optional[str] = None

    def __str__(self) -> str:
        line = f"[{self.timestamp.strftime('%Y-%m-%d %H:%M:%S')}] {self.kind.value}: {self.key}"
        if self.duration is not None:
            line += f" ({int(self.duration)}s)"
        if self.message:
            line += f" - {self.message}"
        return line


class EventLog:
    """Append-only record of job events. When a path is given every event is also appended to that file."""

    def __init__(self, path: Optional[str] = None) -> None:
        self.path = path
        self._events: List[JobEvent] = []
        self._lock = threading.Lock()

    def append(self, kind: EventKind, key: JobKey, duration: Optional[float] = None,
               message: Optional[str] = None) -> JobEvent:
        event = JobEvent(datetime.now(), kind, key, duration, message)
        with self._lock:
            self._events.append(event)
            if self.path:
                with open(self.path, "a") as f:
                    f.write(f"{event}\n")
        if kind == EventKind.FAILURE:
            logger.error(str(event))
        else:
            logger.info(str(event))
        return event

    def events(self) -> List[JobEvent]:
        with self._lock:
            return list(self._events)


@dataclass
class TransferResult:
    completed: Set[JobKey] = field(default_factory=set)
    failed: Set[JobKey] = field(default_factory=set)
    skipped: Set[JobKey] = field(default_factory=set)
    errors: Dict[JobKey, str] = field(default_factory=dict)
    cancelled: bool = False

    @property
    def failed_indices(self) -> List[str]:
        return sorted({key.index for key in self.failed})


class _ResultAccumulator:
    """Records exactly one outcome per job; completed, failed and skipped never share a key."""

    def __init__(self, log_dir: Optional[str] = None) -> None:
        self._result = TransferResult()
        self._outcomes: Dict[JobKey, JobStatus] = {}
        self._lock = threading.Lock()
        self._log_dir = log_dir

    def _append_line(self, file_name: str, key: JobKey):
        if self._log_dir:
            with open(os.path.join(self._log_dir, file_name), "a") as f:
                f.write(f"{key}\n")

    def _settle(self, key: JobKey, status: JobStatus):
        previous = self._outcomes.get(key)
        if previous is not None:
            raise RuntimeError(f"Job {key} already finished as {previous.value}, cannot record {status.value}")
        self._outcomes[key] = status

    def record_success(self, key: JobKey):
        with self._lock:
            self._settle(key, JobStatus.SUCCEEDED)
            self._result.completed.add(key)
            self._append_line(COMPLETED_LOG_FILE, key)

    def record_failure(self, key: JobKey, error: str):
        with self._lock:
            self._settle(key, JobStatus.FAILED)
            self._result.failed.add(key)
            self._result.errors[key] = error
            self._append_line(FAILED_LOG_FILE, key)

    def record_skipped(self, key: JobKey):
        with self._lock:
            self._settle(key, JobStatus.SKIPPED)
            self._result.skipped.add(key)

    def result(self, cancelled: bool) -> TransferResult:
        with self._lock:
            self._result.cancelled = cancelled
            return self._result


def validate_transfer_config(config: Optional[Dict]):
    v = Validator(SCHEMA)
    if not v.validate({"transfer": config or {}}):
        raise ValueError("Invalid config file for transfer", v.errors)


class TransferScheduler:
    """
    Runs one copy job per (index, window) on a fixed-size worker pool. Windows run strictly one after the other;
    the indices of a window run concurrently, never more than `concurrency` at a time. A failed job is recorded
    and the batch moves on. `stop()` keeps queued jobs from starting and lets running ones finish.
    """

    def __init__(self, copier: BulkCopier, concurrency: int = DEFAULT_CONCURRENCY,
                 log_dir: Optional[str] = None, event_log: Optional[EventLog] = None) -> None:
        if concurrency < 1:
            raise ValueError(f"Concurrency must be at least 1, got {concurrency}")
        self.copier = copier
        self.concurrency = concurrency
        self.log_dir = log_dir
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        if event_log is None:
            event_log = EventLog(os.path.join(log_dir, PROGRESS_LOG_FILE) if log_dir else None)
        self.event_log = event_log
        self._stop_event = threading.Event()

    def stop(self):
        if not self._stop_event.is_set():
            logger.warning("Stop requested: no new transfer jobs will be started, running jobs will finish")
        self._stop_event.set()

    @property
    def stopped(self) -> bool:
        return self._stop_event.is_set()

    def run(self, indices: Iterable[str], window_spec: Optional[WindowSpec] = None) -> TransferResult:
        indices = list(indices)
        window_spec = window_spec or WindowSpec()
        accumulator = _ResultAccumulator(self.log_dir)
        if self.log_dir:
            with open(os.path.join(self.log_dir, INDICES_FILE), "w") as f:
                f.writelines(f"{index}\n" for index in indices)
        for window in window_spec.windows():
            jobs = [TransferJob(index, window) for index in indices]
            if self.stopped:
                for job in jobs:
                    self._skip(job, accumulator)
                continue
            if window is not None:
                logger.info(f"Migrating window {window} on field '{window_spec.date_field}'")
            self._run_window(jobs, window_spec.search_body(window), accumulator)
        return accumulator.result(cancelled=self.stopped)

    def _run_window(self, jobs: List[TransferJob], search_body: Optional[Dict], accumulator: _ResultAccumulator):
        # Leaving the executor block waits for every job, which is the barrier between windows
        with ThreadPoolExecutor(max_workers=self.concurrency, thread_name_prefix="transfer") as pool:
            futures = [pool.submit(self._execute, job, search_body, accumulator) for job in jobs]
            for future in as_completed(futures):
                future.result()

    def _job_log_file(self, job: TransferJob) -> Optional[str]:
        if not self.log_dir:
            return None
        return os.path.join(self.log_dir, f"{job.index}.log")

    def _skip(self, job: TransferJob, accumulator: _ResultAccumulator):
        job.status = JobStatus.SKIPPED
        accumulator.record_skipped(job.key)
        self.event_log.append(EventKind.SKIPPED, job.key)

    def _fail(self, job: TransferJob, error: str, accumulator: _ResultAccumulator) -> TransferJob:
        job.finished = time.monotonic()
        job.status = JobStatus.FAILED
        job.error = error
        accumulator.record_failure(job.key, error)
        self.event_log.append(EventKind.FAILURE, job.key, job.duration, error)
        return job

    def _execute(self, job: TransferJob, search_body: Optional[Dict],
                 accumulator: _ResultAccumulator) -> TransferJob:
        if self.stopped:
            self._skip(job, accumulator)
            return job
        job.status = JobStatus.RUNNING
        job.attempts += 1
        job.started = time.monotonic()
        self.event_log.append(EventKind.START, job.key)
        try:
            self.copier.copy(job.index, search_body=search_body, log_file=self._job_log_file(job))
        except (MigrationError, OSError) as e:
            return self._fail(job, str(e), accumulator)
        except Exception as e:
            logger.exception(f"Unexpected error while copying {job.key}")
            return self._fail(job, f"{type(e).__name__}: {e}", accumulator)
        job.finished = time.monotonic()
        job.status = JobStatus.SUCCEEDED
        accumulator.record_success(job.key)
        self.event_log.append(EventKind.SUCCESS, job.key, job.duration)
        return job
