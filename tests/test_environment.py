import pathlib

import pytest

from index_migrator.db.task_db import DEFAULT_TASK_FILE
from index_migrator.environment import Environment
from index_migrator.models.cluster import AuthMethod, Cluster
from index_migrator.models.indices import DEFAULT_EXCLUDE_PATTERNS

TEST_DATA_DIRECTORY = pathlib.Path(__file__).parent / "data"
VALID_SERVICES_YAML = TEST_DATA_DIRECTORY / "services.yaml"


def test_get_env_from_valid_yaml():
    env = Environment(config_file=VALID_SERVICES_YAML)
    assert isinstance(env.source_cluster, Cluster)
    assert isinstance(env.target_cluster, Cluster)
    assert env.source_cluster.auth_type == AuthMethod.BASIC_AUTH
    assert env.target_cluster.timeout == (5, 30)
    assert env.index_filter.exclude_patterns == ["^\\.", "^ilm-history"]
    assert env.transfer["concurrency"] == 3
    assert env.transfer["elasticdump"]["limit"] == 5000
    assert env.task_file == "./reindex_tasks.json"
    assert env.client_options.user_agent_extra == "index-migrator/1.0"
    assert env.target_cluster.client_options is env.client_options


def test_minimal_config_uses_defaults():
    env = Environment(config={"source_cluster": {"endpoint": "http://localhost:9200", "no_auth": None}})
    assert env.target_cluster is None
    assert env.index_filter.exclude_patterns == DEFAULT_EXCLUDE_PATTERNS
    assert env.transfer == {}
    assert env.task_file == DEFAULT_TASK_FILE
    assert env.client_options is None


def test_empty_sections_are_accepted():
    env = Environment(config={"index_filter": None, "transfer": None, "reindex": None})
    assert env.transfer == {}
    assert env.task_file == DEFAULT_TASK_FILE


def test_unknown_section_refused():
    with pytest.raises(ValueError) as excinfo:
        Environment(config={"snapshot": {}})
    assert excinfo.value.args[0] == "Invalid config file"


def test_invalid_transfer_config_refused():
    with pytest.raises(ValueError) as excinfo:
        Environment(config={"transfer": {"concurrency": 0}})
    assert "Invalid config file for transfer" in excinfo.value.args[0]


def test_invalid_reindex_config_refused():
    with pytest.raises(ValueError) as excinfo:
        Environment(config={"reindex": {"task_file": 3}})
    assert "Invalid config file for reindex" in excinfo.value.args[0]


def test_invalid_cluster_config_refused():
    with pytest.raises(ValueError) as excinfo:
        Environment(config={"target_cluster": {"endpoint": "http://localhost:9200"}})
    assert "Invalid config file for cluster" in excinfo.value.args[0]


def test_config_or_file_required():
    with pytest.raises(ValueError):
        Environment()


def test_missing_file_raises():
    with pytest.raises(FileNotFoundError):
        Environment(config_file="/non-existent/services.yaml")
