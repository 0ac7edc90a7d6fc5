import logging

import pytest
import requests

from index_migrator.exceptions import (AuthError, ConnectivityError, FetchError, IndexCreationError,
                                       SchemaRejected)
from index_migrator.models.schema import (SchemaOutcomeStatus, build_creation_payload, build_snapshot,
                                          replicate_all, replicate_schema)
from tests.utils import create_source_and_target

SETTINGS_RESPONSE = {
    "orders": {
        "settings": {
            "index": {
                "number_of_shards": "3",
                "number_of_replicas": "1",
                "uuid": "9a8b7c",
                "creation_date": "1700000000000",
                "provided_name": "orders",
                "version": {"created": "7100299"},
                "analysis": {"analyzer": {"folded": {"type": "custom", "tokenizer": "standard"}}}
            }
        }
    }
}
MAPPING_RESPONSE = {
    "orders": {
        "mappings": {
            "properties": {
                "created_at": {"type": "date"},
                "customer": {"type": "keyword"}
            }
        }
    }
}


@pytest.fixture
def clusters():
    return create_source_and_target()


def mock_source_schema(requests_mock, source, index="orders"):
    requests_mock.get(f"{source.endpoint}/{index}/_settings", json=SETTINGS_RESPONSE)
    requests_mock.get(f"{source.endpoint}/{index}/_mapping", json=MAPPING_RESPONSE)


def test_snapshot_strips_engine_managed_settings():
    snapshot = build_snapshot("orders", {"settings": SETTINGS_RESPONSE, "mappings": MAPPING_RESPONSE})
    assert snapshot.settings["index"] == {
        "number_of_shards": "3",
        "number_of_replicas": "1",
        "analysis": {"analyzer": {"folded": {"type": "custom", "tokenizer": "standard"}}}
    }
    assert snapshot.mappings == MAPPING_RESPONSE["orders"]["mappings"]
    # The raw responses are left untouched
    assert "uuid" in SETTINGS_RESPONSE["orders"]["settings"]["index"]


def test_malformed_schema_falls_back_to_empty_payload(caplog):
    with caplog.at_level(logging.WARNING):
        payload = build_creation_payload("orders", {"settings": {"other": {}}, "mappings": MAPPING_RESPONSE})
    assert payload == {}
    assert "minimal settings" in caplog.text


def test_replicate_schema_creates_index(clusters, requests_mock):
    source, target = clusters
    mock_source_schema(requests_mock, source)
    requests_mock.head(f"{target.endpoint}/orders", status_code=404)
    put = requests_mock.put(f"{target.endpoint}/orders", json={"acknowledged": True})

    outcome = replicate_schema(source, target, "orders")

    assert outcome.status == SchemaOutcomeStatus.CREATED
    assert outcome.reason is None
    body = put.last_request.json()
    assert body["mappings"] == MAPPING_RESPONSE["orders"]["mappings"]
    assert "uuid" not in body["settings"]["index"]
    assert body["settings"]["index"]["number_of_shards"] == "3"


def test_replicate_schema_leaves_existing_index_untouched(clusters, requests_mock):
    source, target = clusters
    mock_source_schema(requests_mock, source)
    requests_mock.head(f"{target.endpoint}/orders", status_code=200)
    put = requests_mock.put(f"{target.endpoint}/orders", json={"acknowledged": True})

    outcome = replicate_schema(source, target, "orders")

    assert outcome.status == SchemaOutcomeStatus.ALREADY_EXISTS
    assert not put.called


def test_fetch_failure_skips_creation(clusters, requests_mock):
    source, target = clusters
    requests_mock.get(f"{source.endpoint}/orders/_settings", status_code=500)
    requests_mock.get(f"{source.endpoint}/orders/_mapping", json=MAPPING_RESPONSE)
    head = requests_mock.head(f"{target.endpoint}/orders", status_code=404)

    outcome = replicate_schema(source, target, "orders")

    assert outcome.status == SchemaOutcomeStatus.FAILED
    assert isinstance(outcome.reason, FetchError)
    assert not head.called


def test_rejected_creation_carries_engine_reason(clusters, requests_mock):
    source, target = clusters
    mock_source_schema(requests_mock, source)
    requests_mock.head(f"{target.endpoint}/orders", status_code=404)
    requests_mock.put(f"{target.endpoint}/orders", status_code=400,
                      json={"error": {"type": "mapper_parsing_exception", "reason": "unknown field type"}})

    outcome = replicate_schema(source, target, "orders")

    assert outcome.status == SchemaOutcomeStatus.FAILED
    assert isinstance(outcome.reason, SchemaRejected)
    assert outcome.reason.status_code == 400
    assert outcome.reason.error["type"] == "mapper_parsing_exception"


def test_server_error_on_creation(clusters, requests_mock):
    source, target = clusters
    mock_source_schema(requests_mock, source)
    requests_mock.head(f"{target.endpoint}/orders", status_code=404)
    requests_mock.put(f"{target.endpoint}/orders", status_code=503, text="unavailable")

    outcome = replicate_schema(source, target, "orders")

    assert isinstance(outcome.reason, IndexCreationError)


def test_unreachable_target_on_creation(clusters, requests_mock):
    source, target = clusters
    mock_source_schema(requests_mock, source)
    requests_mock.head(f"{target.endpoint}/orders", status_code=404)
    requests_mock.put(f"{target.endpoint}/orders", exc=requests.exceptions.ConnectionError)

    outcome = replicate_schema(source, target, "orders")

    assert isinstance(outcome.reason, ConnectivityError)


def test_rejected_source_credentials_propagate(clusters, requests_mock):
    source, target = clusters
    requests_mock.get(f"{source.endpoint}/orders/_settings", status_code=401)
    with pytest.raises(AuthError):
        replicate_schema(source, target, "orders")


def test_replicate_all_continues_past_failures(clusters, requests_mock):
    source, target = clusters
    mock_source_schema(requests_mock, source, "orders")
    requests_mock.get(f"{source.endpoint}/broken/_settings", status_code=500)
    requests_mock.get(f"{source.endpoint}/broken/_mapping", status_code=500)
    mock_source_schema(requests_mock, source, "customers")
    requests_mock.head(f"{target.endpoint}/orders", status_code=404)
    requests_mock.put(f"{target.endpoint}/orders", json={"acknowledged": True})
    requests_mock.head(f"{target.endpoint}/customers", status_code=200)

    result = replicate_all(source, target, ["orders", "broken", "customers"])

    assert result.created == ["orders"]
    assert result.already_exists == ["customers"]
    assert list(result.failed) == ["broken"]
    assert isinstance(result.failed["broken"], FetchError)
