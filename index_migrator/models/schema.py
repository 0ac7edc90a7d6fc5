import copy
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

import requests

from index_migrator.exceptions import (AuthError, ConnectivityError, FetchError, IndexCreationError,
                                       MigrationError, SchemaRejected)
from index_migrator.models.cluster import Cluster, HttpMethod

logger = logging.getLogger(__name__)

SETTINGS_KEY = "settings"
MAPPINGS_KEY = "mappings"
INDEX_KEY = "index"
# Settings the engine assigns itself; supplying them on create is rejected
INTERNAL_SETTINGS_KEYS = ["creation_date", "uuid", "provided_name", "version", "store"]


class SchemaOutcomeStatus(str, Enum):
    CREATED = "created"
    ALREADY_EXISTS = "already_exists"
    FAILED = "failed"


@dataclass(frozen=True)
class SchemaSnapshot:
    settings: Dict[str, Any]
    mappings: Dict[str, Any]


@dataclass
class SchemaOutcome:
    index: str
    status: SchemaOutcomeStatus
    reason: Optional[MigrationError] = None

    @classmethod
    def created(cls, index: str) -> "SchemaOutcome":
        return cls(index, SchemaOutcomeStatus.CREATED)

    @classmethod
    def already_exists(cls, index: str) -> "SchemaOutcome":
        return cls(index, SchemaOutcomeStatus.ALREADY_EXISTS)

    @classmethod
    def failed(cls, index: str, reason: MigrationError) -> "SchemaOutcome":
        return cls(index, SchemaOutcomeStatus.FAILED, reason)


@dataclass
class SchemaReplicationResult:
    created: List[str] = field(default_factory=list)
    already_exists: List[str] = field(default_factory=list)
    failed: Dict[str, MigrationError] = field(default_factory=dict)

    def add(self, outcome: SchemaOutcome):
        if outcome.status == SchemaOutcomeStatus.CREATED:
            self.created.append(outcome.index)
        elif outcome.status == SchemaOutcomeStatus.ALREADY_EXISTS:
            self.already_exists.append(outcome.index)
        else:
            self.failed[outcome.index] = outcome.reason


def _fetch_section(cluster: Cluster, index: str, path_suffix: str, what: str) -> Dict:
    try:
        r = cluster.call_api(f"/{index}/{path_suffix}")
        return r.json()
    except AuthError:
        raise
    except (ConnectivityError, requests.RequestException, ValueError) as e:
        raise FetchError(index, what, str(e)) from e


def fetch_schema(cluster: Cluster, index: str) -> Dict[str, Dict]:
    """Returns the raw `_settings` and `_mapping` responses for the index, keyed by section."""
    return {
        SETTINGS_KEY: _fetch_section(cluster, index, "_settings", SETTINGS_KEY),
        MAPPINGS_KEY: _fetch_section(cluster, index, "_mapping", MAPPINGS_KEY),
    }


def build_snapshot(index: str, raw: Dict[str, Dict]) -> SchemaSnapshot:
    """
    Both responses are keyed by index name. Raises KeyError or TypeError on a malformed shape.
    """
    settings = copy.deepcopy(raw[SETTINGS_KEY][index][SETTINGS_KEY])
    mappings = copy.deepcopy(raw[MAPPINGS_KEY][index][MAPPINGS_KEY])
    index_settings = settings.get(INDEX_KEY)
    if isinstance(index_settings, dict):
        for setting in INTERNAL_SETTINGS_KEYS:
            index_settings.pop(setting, None)
    return SchemaSnapshot(settings=settings, mappings=mappings)


def build_creation_payload(index: str, raw: Dict[str, Dict]) -> Dict:
    try:
        snapshot = build_snapshot(index, raw)
    except (KeyError, TypeError, AttributeError) as e:
        logger.warning(f"Failed to merge settings/mappings for {index} ({e!r}), using minimal settings")
        return {}
    return {SETTINGS_KEY: snapshot.settings, MAPPINGS_KEY: snapshot.mappings}


def _create_index(cluster: Cluster, index: str, payload: Dict) -> SchemaOutcome:
    try:
        r = cluster.call_api(f"/{index}", method=HttpMethod.PUT, json=payload, raise_error=False)
    except ConnectivityError as e:
        return SchemaOutcome.failed(index, e)
    if r.ok:
        return SchemaOutcome.created(index)
    try:
        body = r.json()
        error = body.get("error", body) if isinstance(body, dict) else body
    except ValueError:
        error = r.text
    if 400 <= r.status_code < 500:
        return SchemaOutcome.failed(index, SchemaRejected(index, r.status_code, error))
    return SchemaOutcome.failed(index, IndexCreationError(index, f"HTTP {r.status_code}: {error}"))


def replicate_schema(source: Cluster, target: Cluster, index: str) -> SchemaOutcome:
    """
    Creates `index` on the target with the settings and mappings it has on the source. Safe to re-run: an index
    that already exists on the target is left untouched. AuthError propagates, every other failure is returned
    as a FAILED outcome.
    """
    try:
        raw = fetch_schema(source, index)
    except FetchError as e:
        logger.error(f"Failed to fetch schema for {index}: {e}")
        return SchemaOutcome.failed(index, e)

    try:
        if target.index_exists(index):
            logger.info(f"Index {index} already exists. Skipping creation.")
            return SchemaOutcome.already_exists(index)
    except ConnectivityError as e:
        return SchemaOutcome.failed(index, e)

    outcome = _create_index(target, index, build_creation_payload(index, raw))
    if outcome.status == SchemaOutcomeStatus.CREATED:
        logger.info(f"Index {index} created successfully.")
    else:
        logger.error(f"Index {index} creation failed: {outcome.reason}")
    return outcome


def replicate_all(source: Cluster, target: Cluster, indices: Iterable[str]) -> SchemaReplicationResult:
    result = SchemaReplicationResult()
    for index in indices:
        logger.info(f"==== Processing {index} ====")
        result.add(replicate_schema(source, target, index))
    if result.failed:
        logger.error(f"Failed to create {len(result.failed)} indices: {sorted(result.failed)}")
    return result
