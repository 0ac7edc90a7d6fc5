from typing import Dict, Optional

from index_migrator.models.cluster import AuthMethod, Cluster

SOURCE_ENDPOINT = "https://elasticsearch:9200"
TARGET_ENDPOINT = "https://opensearchtarget:9200"


def create_valid_cluster(endpoint: str = TARGET_ENDPOINT,
                         allow_insecure: bool = True,
                         auth_type: AuthMethod = AuthMethod.BASIC_AUTH,
                         details: Optional[Dict] = None):

    if details is None and auth_type == AuthMethod.BASIC_AUTH:
        details = {"username": "admin", "password": "myStrongPassword123!"}

    custom_cluster_config = {
        "endpoint": endpoint,
        "allow_insecure": allow_insecure,
        auth_type.name.lower(): details if details else {}
    }
    return Cluster(custom_cluster_config)


def create_source_and_target():
    source = create_valid_cluster(endpoint=SOURCE_ENDPOINT, details={"username": "elastic", "password": "secret"})
    target = create_valid_cluster(endpoint=TARGET_ENDPOINT)
    return source, target
