import json
import logging
from typing import List

from index_migrator.middleware.error_handler import handle_errors
from index_migrator.models.cluster import Cluster
from index_migrator.models.command_result import CommandResult
from index_migrator.models.reconcile import Report, check, format_report

logger = logging.getLogger(__name__)


def render_report(report: Report, source: Cluster, target: Cluster, as_json: bool = False) -> str:
    if as_json:
        return json.dumps(report.to_dict())
    return format_report(report, source, target)


@handle_errors("reconcile")
def check_once(source: Cluster, target: Cluster, indices: List[str], as_json: bool = False) -> CommandResult:
    report = check(source, target, indices)
    return CommandResult(success=True, value=render_report(report, source, target, as_json))
