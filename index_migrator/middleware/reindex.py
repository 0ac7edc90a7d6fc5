import json
import logging
from typing import Dict, List, Optional

from index_migrator.middleware.error_handler import handle_errors
from index_migrator.models.cluster import Cluster
from index_migrator.models.command_result import CommandResult
from index_migrator.models.reindex import DEFAULT_DATE_FIELD, PollResult, TaskTracker, start_all
from index_migrator.models.transfer import TimeWindow
from index_migrator.models.utils import string_from_set

logger = logging.getLogger(__name__)


@handle_errors("reindex")
def start(source: Cluster, target: Cluster, indices: List[str], tracker: TaskTracker,
          window: Optional[TimeWindow] = None, date_field: str = DEFAULT_DATE_FIELD,
          as_json: bool = False) -> CommandResult:
    if not indices:
        return CommandResult(success=False, value="No indices found to reindex.")
    result = start_all(source, target, indices, tracker, window, date_field)
    if as_json:
        return CommandResult(success=True, value=json.dumps({
            "started": result.started,
            "failed": {index: str(e) for index, e in result.failed.items()},
            "task_file": tracker.store.path
        }))
    lines = [f"{index} reindex started. Task ID: {task_id}" for index, task_id in sorted(result.started.items())]
    if result.failed:
        lines.append(f"Failed to start reindex for: {string_from_set(result.failed)}")
        lines += [f"  {index}: {e}" for index, e in sorted(result.failed.items())]
    lines.append(f"All tasks recorded in {tracker.store.path}")
    return CommandResult(success=True, value="\n".join(lines))


def _status_to_dict(r: PollResult) -> Dict:
    if r.status is None:
        return {"index": r.index, "task_id": r.task_id, "state": "error", "error": str(r.error)}
    return {
        "index": r.index,
        "task_id": r.task_id,
        "state": r.status.state.value,
        "success_count": r.status.success_count,
        "failure_count": r.status.failure_count
    }


def _status_line(r: PollResult) -> str:
    if r.status is None:
        return f"[ERROR] {r.index} reindex status could not be fetched: {r.error}"
    return f"[{r.status.state.name}] {r.index} reindex {r.status}"


@handle_errors("reindex")
def status(tracker: TaskTracker, as_json: bool = False) -> CommandResult:
    if not tracker.store.exists():
        return CommandResult(success=False, value=f"Task file {tracker.store.path} not found!")
    results = tracker.poll_all()
    if as_json:
        return CommandResult(success=True, value=json.dumps([_status_to_dict(r) for r in results]))
    if not results:
        return CommandResult(success=True, value="No reindex tasks recorded.")
    return CommandResult(success=True, value="\n".join(_status_line(r) for r in results))


@handle_errors("reindex")
def forget(tracker: TaskTracker, index: str) -> CommandResult:
    tracker.forget(index)
    return CommandResult(success=True, value=f"Removed reindex task record for {index}.")
