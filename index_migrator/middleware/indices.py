import json
import logging
from typing import List, Optional, Tuple

from index_migrator.middleware.error_handler import handle_errors
from index_migrator.models.cluster import Cluster
from index_migrator.models.command_result import CommandResult
from index_migrator.models.indices import IndexFilter, classify_indices, list_business_indices
from index_migrator.models.utils import ExitCode

logger = logging.getLogger(__name__)


def selected_index_names(cluster: Cluster, index_filter: IndexFilter,
                         names: Optional[List[str]] = None) -> List[str]:
    """Business indices on the cluster, narrowed to `names` when any are given."""
    if names:
        index_filter = index_filter.with_allowlist(names)
    return [descriptor.name for descriptor in list_business_indices(cluster, index_filter)]


def _render(result: Tuple[bool, List]) -> Tuple[ExitCode, str]:
    as_json, descriptors = result
    if as_json:
        return ExitCode.SUCCESS, json.dumps([{"index": d.name, "classification": d.classification.value}
                                             for d in descriptors])
    if not descriptors:
        return ExitCode.SUCCESS, "No indices found."
    return ExitCode.SUCCESS, "\n".join(f"{d.name:<40} {d.classification.value}" for d in descriptors)


@handle_errors("indices", on_success=_render)
def list_indices(cluster: Cluster, index_filter: IndexFilter, include_system: bool = False,
                 as_json: bool = False) -> CommandResult:
    if include_system:
        descriptors = classify_indices(cluster, index_filter)
    else:
        descriptors = list_business_indices(cluster, index_filter)
    return CommandResult(success=True, value=(as_json, descriptors))
