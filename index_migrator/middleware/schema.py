import json
import logging
from typing import List, Tuple

from index_migrator.middleware.error_handler import handle_errors
from index_migrator.models.cluster import Cluster
from index_migrator.models.command_result import CommandResult
from index_migrator.models.schema import SchemaReplicationResult, replicate_all
from index_migrator.models.utils import ExitCode, string_from_set

logger = logging.getLogger(__name__)


def result_to_dict(result: SchemaReplicationResult) -> dict:
    return {
        "created": result.created,
        "already_exists": result.already_exists,
        "failed": {index: str(reason) for index, reason in result.failed.items()}
    }


def format_result(result: SchemaReplicationResult) -> str:
    lines = [f"Created: {len(result.created)} {string_from_set(result.created)}",
             f"Already existing: {len(result.already_exists)} {string_from_set(result.already_exists)}",
             f"Failed: {len(result.failed)} {string_from_set(result.failed)}"]
    for index, reason in sorted(result.failed.items()):
        lines.append(f"  {index}: {reason}")
    return "\n".join(lines)


def _render(value: Tuple[bool, SchemaReplicationResult]) -> Tuple[ExitCode, str]:
    as_json, result = value
    if as_json:
        return ExitCode.SUCCESS, json.dumps(result_to_dict(result))
    return ExitCode.SUCCESS, format_result(result)


@handle_errors("schema", on_success=_render)
def replicate(source: Cluster, target: Cluster, indices: List[str], as_json: bool = False) -> CommandResult:
    if not indices:
        return CommandResult(success=False, value="No indices found to replicate.")
    logger.info(f"Replicating schema for {len(indices)} indices")
    return CommandResult(success=True, value=(as_json, replicate_all(source, target, indices)))
