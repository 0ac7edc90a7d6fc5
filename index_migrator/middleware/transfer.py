import json
import logging
import os
from typing import Dict, List, Optional, Tuple

from index_migrator.middleware.error_handler import handle_errors
from index_migrator.models.bulk_copy import ElasticdumpCopier
from index_migrator.models.cluster import Cluster
from index_migrator.models.command_result import CommandResult
from index_migrator.models.transfer import (DEFAULT_CONCURRENCY, TransferResult, TransferScheduler, WindowSpec)
from index_migrator.models.utils import ExitCode, generate_log_dir_name

logger = logging.getLogger(__name__)

DEFAULT_LOG_ROOT = "."
LOG_DIR_TOPIC = "migration_logs"


def resolve_log_dir(transfer_config: Dict, log_dir: Optional[str] = None) -> str:
    """An explicit directory is used as-is; otherwise a timestamped one is created under the configured root."""
    if log_dir:
        return log_dir
    return os.path.join(transfer_config.get("log_dir", DEFAULT_LOG_ROOT), generate_log_dir_name(LOG_DIR_TOPIC))


def create_scheduler(source: Cluster, target: Cluster, transfer_config: Dict, concurrency: Optional[int] = None,
                     log_dir: Optional[str] = None) -> TransferScheduler:
    copier = ElasticdumpCopier(source, target, transfer_config.get("elasticdump"))
    if not copier.is_available():
        raise FileNotFoundError(f"'{copier.command}' was not found on PATH. Install it with: "
                                f"npm install -g elasticdump")
    concurrency = concurrency or transfer_config.get("concurrency", DEFAULT_CONCURRENCY)
    return TransferScheduler(copier, concurrency=concurrency, log_dir=resolve_log_dir(transfer_config, log_dir))


def result_to_dict(result: TransferResult, log_dir: Optional[str] = None) -> Dict:
    return {
        "completed": sorted(str(key) for key in result.completed),
        "failed": {str(key): result.errors.get(key) for key in sorted(result.failed, key=str)},
        "skipped": sorted(str(key) for key in result.skipped),
        "cancelled": result.cancelled,
        "log_dir": log_dir
    }


def format_result(result: TransferResult, log_dir: Optional[str] = None) -> str:
    lines = ["=========================================",
             "Migration Summary",
             "========================================="]
    if result.cancelled:
        lines.append("Migration was stopped before all jobs started")
    lines += [f"Completed: {len(result.completed)}",
              f"Failed: {len(result.failed)}",
              f"Skipped: {len(result.skipped)}"]
    if result.failed:
        lines.append("")
        lines.append("Failed jobs:")
        lines += [f"  - {key}" for key in sorted(result.failed, key=str)]
        lines.append(f"Failed indices: {', '.join(result.failed_indices)}")
        lines.append("Re-run them with: index-migrator transfer run " +
                     " ".join(f"--index {index}" for index in result.failed_indices))
    if log_dir:
        lines.append(f"Logs: {log_dir}")
    return "\n".join(lines)


def _render(value: Tuple[bool, Optional[str], TransferResult]) -> Tuple[ExitCode, str]:
    as_json, log_dir, result = value
    if as_json:
        return ExitCode.SUCCESS, json.dumps(result_to_dict(result, log_dir))
    return ExitCode.SUCCESS, format_result(result, log_dir)


@handle_errors("transfer", on_success=_render)
def run(scheduler: TransferScheduler, indices: List[str], window_spec: Optional[WindowSpec] = None,
        as_json: bool = False) -> CommandResult:
    if not indices:
        return CommandResult(success=False, value="No indices found to migrate.")
    logger.info(f"Migrating {len(indices)} indices with concurrency {scheduler.concurrency}")
    result = scheduler.run(indices, window_spec)
    return CommandResult(success=True, value=(as_json, scheduler.log_dir, result))
