from dataclasses import dataclass
import logging
from typing import Optional

import requests

from index_migrator.exceptions import MigrationError
from index_migrator.models.cluster import Cluster

logger = logging.getLogger(__name__)


@dataclass
class ConnectionResult:
    connection_message: str
    connection_established: bool
    cluster_version: Optional[str]


def connection_check(cluster: Cluster) -> ConnectionResult:
    cluster_details_path = "/"
    try:
        r = cluster.call_api(cluster_details_path, timeout=3)
        version = r.json()['version']['number']
    except (MigrationError, requests.RequestException, ValueError, KeyError, TypeError) as e:
        logger.debug(f"Unable to access cluster: {cluster} with exception: {e}")
        return ConnectionResult(connection_message=f"Unable to connect to cluster with error: {e}",
                                connection_established=False,
                                cluster_version=None)
    return ConnectionResult(connection_message="Successfully connected!",
                            connection_established=True,
                            cluster_version=version)
