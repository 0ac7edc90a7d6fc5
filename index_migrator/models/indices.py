import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional

from cerberus import Validator
import requests

from index_migrator.exceptions import ConnectivityError
from index_migrator.models.cluster import Cluster
from index_migrator.models.schema_tools import list_schema, regex_list_schema

logger = logging.getLogger(__name__)

# Names beginning with "." are engine-internal (security, kibana, alerting, tasks, ...)
DEFAULT_EXCLUDE_PATTERNS = [r"^\."]
CAT_INDICES_PATH = "/_cat/indices"

SCHEMA = {
    "index_filter": {
        "type": "dict",
        "nullable": True,
        "schema": {
            "exclude": regex_list_schema(required=False),
            "allowlist": list_schema(required=False)
        }
    }
}


class IndexClassification(str, Enum):
    BUSINESS = "business"
    SYSTEM = "system"


@dataclass(frozen=True)
class IndexDescriptor:
    name: str
    classification: IndexClassification = IndexClassification.BUSINESS

    @property
    def is_business(self) -> bool:
        return self.classification == IndexClassification.BUSINESS


class IndexFilter:
    """
    Decides which indices are migrated. An index is system-classified when its name matches any of the exclude
    patterns. When an allowlist is configured, only the business indices named in it are kept.
    """

    def __init__(self, config: Optional[Dict] = None) -> None:
        config = config or {}
        v = Validator(SCHEMA)
        if not v.validate({"index_filter": config}):
            raise ValueError("Invalid config file for index_filter", v.errors)
        exclude = config.get("exclude")
        self.exclude_patterns: List[str] = list(exclude) if exclude is not None else list(DEFAULT_EXCLUDE_PATTERNS)
        self._compiled = [re.compile(p) for p in self.exclude_patterns]
        self.allowlist: List[str] = list(config.get("allowlist", []))

    def with_allowlist(self, names: List[str]) -> "IndexFilter":
        return IndexFilter({"exclude": self.exclude_patterns, "allowlist": list(names)})

    def classify(self, name: str) -> IndexClassification:
        if any(p.search(name) for p in self._compiled):
            return IndexClassification.SYSTEM
        return IndexClassification.BUSINESS

    def is_selected(self, name: str) -> bool:
        if self.classify(name) != IndexClassification.BUSINESS:
            return False
        return not self.allowlist or name in self.allowlist


def fetch_index_names(cluster: Cluster) -> List[str]:
    try:
        r = cluster.call_api(CAT_INDICES_PATH, params={"format": "json", "h": "index"})
    except requests.HTTPError as e:
        raise ConnectivityError(cluster.endpoint, f"HTTP {e.response.status_code} listing indices") from e
    try:
        return sorted({entry["index"] for entry in r.json()})
    except (ValueError, TypeError, KeyError) as e:
        raise ConnectivityError(cluster.endpoint, f"Unexpected response listing indices: {e}") from e


def classify_indices(cluster: Cluster, index_filter: Optional[IndexFilter] = None) -> List[IndexDescriptor]:
    index_filter = index_filter or IndexFilter()
    return [IndexDescriptor(name, index_filter.classify(name)) for name in fetch_index_names(cluster)]


def list_business_indices(cluster: Cluster, index_filter: Optional[IndexFilter] = None) -> List[IndexDescriptor]:
    """
    Lists the indices to migrate, sorted by name. Raises ConnectivityError if the cluster cannot be reached and
    AuthError if it rejects the credentials.
    """
    index_filter = index_filter or IndexFilter()
    names = fetch_index_names(cluster)
    selected = [IndexDescriptor(name) for name in names if index_filter.is_selected(name)]
    logger.info(f"Found {len(selected)} business indices out of {len(names)} on {cluster.endpoint}")
    if index_filter.allowlist:
        absent = set(index_filter.allowlist) - set(names)
        if absent:
            logger.warning(f"Allowlisted indices not present on {cluster.endpoint}: {sorted(absent)}")
    return selected
