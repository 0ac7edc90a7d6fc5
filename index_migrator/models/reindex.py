import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, NamedTuple, Optional

from index_migrator.db.task_db import TaskRecord, TaskState, TaskStore
from index_migrator.exceptions import (AuthError, ConnectivityError, MigrationError, ReindexStartError,
                                       TaskRecordNotFound, TaskUnknown)
from index_migrator.models.cluster import AuthMethod, Cluster, HttpMethod
from index_migrator.models.transfer import TimeWindow

logger = logging.getLogger(__name__)

DEFAULT_DATE_FIELD = "created_at"
# Expired or finished-and-purged tasks answer 404; malformed task ids answer 400
UNKNOWN_TASK_STATUS_CODES = (400, 404)

SCHEMA = {
    "reindex": {
        "type": "dict",
        "nullable": True,
        "schema": {
            "task_file": {"type": "string", "required": False}
        }
    }
}


def build_reindex_request(source: Cluster, index: str, window: Optional[TimeWindow] = None,
                          date_field: str = DEFAULT_DATE_FIELD) -> Dict:
    remote = {"host": source.endpoint}
    if source.auth_type == AuthMethod.BASIC_AUTH:
        details = source.get_basic_auth_details()
        remote["username"] = details.username
        remote["password"] = details.password
    elif source.auth_type == AuthMethod.SIGV4:
        raise NotImplementedError("Remote reindex from a SigV4 source cluster is not supported")
    request_source = {"remote": remote, "index": index}
    if window is not None:
        request_source["query"] = window.range_query(date_field)
    return {
        "source": request_source,
        "dest": {"index": index},
        "conflicts": "proceed"
    }


def start_remote_reindex(source: Cluster, target: Cluster, index: str, window: Optional[TimeWindow] = None,
                         date_field: str = DEFAULT_DATE_FIELD) -> str:
    """
    Asks the target to pull `index` from the source in the background. Returns the task id the target assigned.
    Raises ReindexStartError when the request is refused or the answer carries no task id.
    """
    body = build_reindex_request(source, index, window, date_field)
    try:
        r = target.call_api("/_reindex", method=HttpMethod.POST, json=body,
                            params={"wait_for_completion": "false"}, raise_error=False)
    except ConnectivityError as e:
        raise ReindexStartError(index, str(e)) from e
    try:
        response = r.json()
    except ValueError:
        response = r.text
    if not r.ok:
        raise ReindexStartError(index, f"HTTP {r.status_code}: {response}")
    task_id = response.get("task") if isinstance(response, dict) else None
    if not task_id:
        raise ReindexStartError(index, f"No task in response: {response}")
    logger.info(f"{index} reindex started. Task ID: {task_id}")
    return task_id


@dataclass
class TaskStatus:
    state: TaskState
    success_count: Optional[int] = None
    failure_count: Optional[int] = None
    error: Optional[MigrationError] = None

    @classmethod
    def running(cls) -> "TaskStatus":
        return cls(TaskState.RUNNING)

    @classmethod
    def completed(cls, success_count: int, failure_count: int) -> "TaskStatus":
        return cls(TaskState.COMPLETED, success_count, failure_count)

    @classmethod
    def unknown(cls, error: TaskUnknown) -> "TaskStatus":
        return cls(TaskState.UNKNOWN, error=error)

    def __str__(self) -> str:
        if self.state == TaskState.COMPLETED:
            return f"completed. Success: {self.success_count}, Failures: {self.failure_count}"
        if self.state == TaskState.RUNNING:
            return "still in progress"
        return f"unknown ({self.error})"


class PollResult(NamedTuple):
    index: str
    task_id: str
    status: Optional[TaskStatus]
    error: Optional[MigrationError] = None


class TaskTracker:
    def __init__(self, store: TaskStore, target: Cluster) -> None:
        self.store = store
        self.target = target

    def record(self, index: str, task_id: str) -> TaskRecord:
        now = datetime.now()
        record = TaskRecord(index=index, task_id=task_id, recorded_at=now, updated_at=now)
        self.store.upsert(record)
        return record

    def _fetch_status(self, record: TaskRecord) -> TaskStatus:
        r = self.target.call_api(f"/_tasks/{record.task_id}", raise_error=False)
        if r.status_code in UNKNOWN_TASK_STATUS_CODES:
            return TaskStatus.unknown(TaskUnknown(record.index, record.task_id))
        if not r.ok:
            raise ConnectivityError(self.target.endpoint, f"HTTP {r.status_code} polling task {record.task_id}")
        body = r.json()
        if not body.get("completed"):
            return TaskStatus.running()
        response = body.get("response") or {}
        return TaskStatus.completed(response.get("total", 0), len(response.get("failures") or []))

    def poll(self, index: str) -> TaskStatus:
        """
        Asks the target for the state of the task recorded for `index` and writes it back to the record. A task
        the target no longer knows is reported UNKNOWN, never RUNNING.
        """
        record = self.store.get(index)
        if record is None:
            raise TaskRecordNotFound(index)
        status = self._fetch_status(record)
        record.state = status.state
        record.success_count = status.success_count
        record.failure_count = status.failure_count
        record.updated_at = datetime.now()
        self.store.upsert(record)
        return status

    def poll_all(self) -> List[PollResult]:
        """Polls every recorded task. A record that fails to poll carries its error; the rest are still polled."""
        results = []
        for record in self.store.all():
            try:
                status = self.poll(record.index)
            except AuthError:
                raise
            except MigrationError as e:
                logger.error(f"Failed to poll reindex task {record.task_id} for {record.index}: {e}")
                results.append(PollResult(record.index, record.task_id, None, e))
                continue
            results.append(PollResult(record.index, record.task_id, status))
        return results

    def forget(self, index: str):
        if not self.store.remove(index):
            raise TaskRecordNotFound(index)
        logger.info(f"Forgot reindex task for {index}")


@dataclass
class ReindexStartResult:
    started: Dict[str, str] = field(default_factory=dict)
    failed: Dict[str, ReindexStartError] = field(default_factory=dict)


def start_all(source: Cluster, target: Cluster, indices: Iterable[str], tracker: TaskTracker,
              window: Optional[TimeWindow] = None, date_field: str = DEFAULT_DATE_FIELD) -> ReindexStartResult:
    """Starts a remote reindex per index and records every accepted task. A refused index does not stop the rest."""
    result = ReindexStartResult()
    for index in indices:
        logger.info(f"Starting async reindex for {index}...")
        try:
            task_id = start_remote_reindex(source, target, index, window, date_field)
        except ReindexStartError as e:
            logger.error(f"Failed to start reindex for {index}: {e}")
            result.failed[index] = e
            continue
        tracker.record(index, task_id)
        result.started[index] = task_id
    return result
