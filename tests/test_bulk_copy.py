import base64
import json
import subprocess

import pytest

from index_migrator.exceptions import TransferFailure
from index_migrator.models.bulk_copy import ElasticdumpCopier
from index_migrator.models.cluster import AuthMethod, Cluster
from tests.utils import create_source_and_target, create_valid_cluster

WINDOW_QUERY = {"query": {"range": {"created_at": {"gte": "2024-01-01", "lt": "2025-01-01"}}}}


@pytest.fixture
def copier():
    source, target = create_source_and_target()
    return ElasticdumpCopier(source, target)


def _arg(command, name):
    return command[command.index(name) + 1]


def test_command_has_no_credentials_in_urls(copier):
    command = copier.build_runner("orders").command
    assert command[0] == "elasticdump"
    assert _arg(command, "--input") == "https://elasticsearch:9200/orders"
    assert _arg(command, "--output") == "https://opensearchtarget:9200/orders"
    assert _arg(command, "--type") == "data"
    assert _arg(command, "--limit") == "10000"
    assert _arg(command, "--scrollTime") == "10m"
    assert _arg(command, "--retryAttempts") == "5"
    assert _arg(command, "--retryDelay") == "5000"
    assert _arg(command, "--maxSockets") == "10"
    assert "--noRefresh" in command
    assert "--searchBody" not in command


def test_basic_auth_passed_as_headers_and_masked(copier):
    runner = copier.build_runner("orders")
    input_headers = json.loads(_arg(runner.command, "--input-headers"))
    expected = base64.b64encode(b"elastic:secret").decode("ascii")
    assert input_headers == {"Authorization": f"Basic {expected}"}

    sanitized = runner.sanitized_command()
    assert _arg(sanitized, "--input-headers") == "********"
    assert _arg(sanitized, "--output-headers") == "********"
    assert not any("secret" in part or expected in part for part in sanitized)


def test_window_query_passed_as_search_body(copier):
    command = copier.build_runner("orders", search_body=WINDOW_QUERY).command
    assert json.loads(_arg(command, "--searchBody")) == WINDOW_QUERY


def test_no_auth_clusters_send_no_headers():
    source = Cluster({"endpoint": "http://localhost:9200", "no_auth": None})
    target = Cluster({"endpoint": "http://localhost:19200", "no_auth": None})
    runner = ElasticdumpCopier(source, target).build_runner("orders")
    assert "--input-headers" not in runner.command
    assert "--output-headers" not in runner.command
    assert runner.env is None


def test_insecure_https_disables_node_certificate_checks(copier):
    runner = copier.build_runner("orders")
    assert runner.env["NODE_TLS_REJECT_UNAUTHORIZED"] == "0"


def test_configured_options_override_defaults():
    source, target = create_source_and_target()
    copier = ElasticdumpCopier(source, target, {"command": "/opt/bin/elasticdump", "limit": 500,
                                                "retry_attempts": 2, "timeout_seconds": 3600})
    runner = copier.build_runner("orders")
    assert runner.command[0] == "/opt/bin/elasticdump"
    assert _arg(runner.command, "--limit") == "500"
    assert _arg(runner.command, "--retryAttempts") == "2"
    assert runner.timeout == 3600


def test_invalid_options_refused():
    source, target = create_source_and_target()
    with pytest.raises(ValueError) as excinfo:
        ElasticdumpCopier(source, target, {"limit": 0})
    assert "Invalid config file for elasticdump" in excinfo.value.args[0]


def test_sigv4_clusters_not_supported():
    source = create_valid_cluster(auth_type=AuthMethod.SIGV4, details={"region": "us-east-1", "service": "es"})
    target = create_valid_cluster()
    with pytest.raises(NotImplementedError):
        ElasticdumpCopier(source, target)


def test_credentials_resolved_once_per_copier(mocker):
    source, target = create_source_and_target()
    lookup = mocker.spy(source, "get_basic_auth_details")
    copier = ElasticdumpCopier(source, target)
    copier.build_runner("orders")
    copier.build_runner("customers")
    assert lookup.call_count == 1


def test_copy_writes_to_log_file(copier, mocker, tmp_path):
    run = mocker.patch("subprocess.run", return_value=subprocess.CompletedProcess([], 0))
    log_file = tmp_path / "orders.log"
    result = copier.copy("orders", log_file=str(log_file))
    assert result.success
    assert run.call_args.args[0][0] == "elasticdump"
    assert log_file.read_text().startswith("$ elasticdump --input https://elasticsearch:9200/orders")
    assert "secret" not in log_file.read_text()


def test_copy_failure_raises_transfer_failure(copier, mocker):
    mocker.patch("subprocess.run", side_effect=subprocess.CalledProcessError(1, ["elasticdump"], stderr="boom"))
    with pytest.raises(TransferFailure) as excinfo:
        copier.copy("orders")
    assert excinfo.value.index == "orders"
    assert "boom" in str(excinfo.value)
    assert "secret" not in str(excinfo.value)


def test_is_available_checks_path(copier, mocker):
    mocker.patch("shutil.which", return_value=None)
    assert not copier.is_available()
    mocker.patch("shutil.which", return_value="/usr/bin/elasticdump")
    assert copier.is_available()
