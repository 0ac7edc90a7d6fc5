import logging
import threading
from datetime import datetime

import pytest
import requests

from index_migrator.exceptions import AuthError
from index_migrator.models.reconcile import (ReconciliationRow, Report, RowStatus, check, format_report, percent_of,
                                             watch)
from tests.utils import create_source_and_target


@pytest.fixture
def clusters():
    return create_source_and_target()


def mock_index(requests_mock, source, target, index, source_count, target_count=None, exists=True):
    requests_mock.get(f"{source.endpoint}/{index}/_count", json={"count": source_count})
    if target_count is None:
        requests_mock.get(f"{target.endpoint}/{index}/_count", status_code=404,
                          json={"error": {"type": "index_not_found_exception"}})
    else:
        requests_mock.get(f"{target.endpoint}/{index}/_count", json={"count": target_count})
    requests_mock.head(f"{target.endpoint}/{index}", status_code=200 if exists else 404)


def test_percent_is_floored_and_zero_for_empty_source():
    assert percent_of(750, 1000) == 75
    assert percent_of(2, 3) == 66
    assert percent_of(5, 0) == 0
    assert percent_of(1200, 1000) == 120


def test_matching_counts(clusters, requests_mock):
    source, target = clusters
    mock_index(requests_mock, source, target, "orders", 1000, 1000)
    report = check(source, target, ["orders"])
    row = report.rows[0]
    assert row.status == RowStatus.MATCH
    assert row.difference == 0
    assert report.is_complete
    assert report.overall_percent == 100


def test_partial_transfer_is_a_mismatch(clusters, requests_mock):
    source, target = clusters
    mock_index(requests_mock, source, target, "orders", 1000, 750)
    report = check(source, target, ["orders"])
    row = report.rows[0]
    assert row.status == RowStatus.MISMATCH
    assert row.difference == 250
    assert row.percent == 75
    assert not report.is_complete
    assert report.overall_percent == 75


def test_target_ahead_of_source_gives_negative_difference(clusters, requests_mock):
    source, target = clusters
    mock_index(requests_mock, source, target, "orders", 100, 120)
    row = check(source, target, ["orders"]).rows[0]
    assert row.status == RowStatus.MISMATCH
    assert row.difference == -20
    assert row.percent == 120


def test_missing_index_is_excluded_from_totals(clusters, requests_mock):
    source, target = clusters
    mock_index(requests_mock, source, target, "orders", 1000, 1000)
    mock_index(requests_mock, source, target, "customers", 500, exists=False)
    report = check(source, target, ["orders", "customers"])

    missing = report.rows[1]
    assert missing.status == RowStatus.MISSING
    assert missing.target_count == 0
    assert missing.warnings == []
    assert not any(r.url.endswith("/customers/_count") and r.hostname == "opensearchtarget"
                   for r in requests_mock.request_history)
    assert report.totals == (1000, 1000)
    assert report.counts == {RowStatus.MATCH: 1, RowStatus.MISMATCH: 0, RowStatus.MISSING: 1}
    assert report.overall_percent == 100
    assert not report.is_complete


def test_mixed_cluster_state(clusters, requests_mock):
    source, target = clusters
    mock_index(requests_mock, source, target, "a", 10, 10)
    mock_index(requests_mock, source, target, "b", 200, 100)
    mock_index(requests_mock, source, target, "c", 30, exists=False)
    report = check(source, target, ["a", "b", "c"])
    assert [row.status for row in report.rows] == [RowStatus.MATCH, RowStatus.MISMATCH, RowStatus.MISSING]
    assert report.totals == (210, 110)
    assert report.overall_percent == 52


def test_empty_source_index_that_exists_on_target_matches(clusters, requests_mock):
    source, target = clusters
    mock_index(requests_mock, source, target, "empty", 0, 0)
    report = check(source, target, ["empty"])
    assert report.rows[0].status == RowStatus.MATCH
    assert report.rows[0].percent == 0
    assert report.overall_percent == 0
    assert report.is_complete


def test_failed_count_reported_as_zero_with_warning(clusters, requests_mock, caplog):
    source, target = clusters
    requests_mock.get(f"{source.endpoint}/orders/_count", exc=requests.exceptions.ConnectTimeout)
    requests_mock.get(f"{target.endpoint}/orders/_count", json={"count": 40})
    requests_mock.head(f"{target.endpoint}/orders", status_code=200)
    with caplog.at_level(logging.WARNING):
        row = check(source, target, ["orders"]).rows[0]
    assert row.source_count == 0
    assert row.status == RowStatus.MISMATCH
    assert len(row.warnings) == 1
    assert "Failed to fetch document count for index 'orders'" in caplog.text


def test_failed_existence_probe_treated_as_missing(clusters, requests_mock):
    source, target = clusters
    requests_mock.get(f"{source.endpoint}/orders/_count", json={"count": 5})
    requests_mock.get(f"{target.endpoint}/orders/_count", json={"count": 5})
    requests_mock.head(f"{target.endpoint}/orders", exc=requests.exceptions.ConnectionError)
    row = check(source, target, ["orders"]).rows[0]
    assert row.status == RowStatus.MISSING
    assert any("existence probe" in w for w in row.warnings)


def test_rejected_credentials_propagate(clusters, requests_mock):
    source, target = clusters
    requests_mock.get(f"{source.endpoint}/orders/_count", status_code=403)
    with pytest.raises(AuthError):
        check(source, target, ["orders"])


def test_report_to_dict_keeps_statuses_distinct():
    report = Report([ReconciliationRow("a", 10, 10, RowStatus.MATCH),
                     ReconciliationRow("b", 10, 5, RowStatus.MISMATCH),
                     ReconciliationRow("c", 10, 0, RowStatus.MISSING)])
    as_dict = report.to_dict()
    assert as_dict["counts"] == {"match": 1, "mismatch": 1, "missing": 1}
    assert as_dict["totals"] == {"source_sum": 20, "target_sum": 15}
    assert as_dict["overall_percent"] == 75
    assert as_dict["rows"][1]["difference"] == 5
    assert as_dict["is_complete"] is False


def test_format_report():
    report = Report([ReconciliationRow("orders", 1000, 750, RowStatus.MISMATCH),
                     ReconciliationRow("customers", 500, 0, RowStatus.MISSING)],
                    generated_at=datetime(2024, 5, 1, 12, 0, 0))
    text = format_report(report)
    assert "Time: 2024-05-01 12:00:00" in text
    assert "75%" in text
    assert "MISSING" in text
    assert "Mismatched: 1 indices" in text
    assert "Missing: 1 indices" in text
    assert "Overall Progress: 75% (750 / 1000 documents)" in text
    assert "Migration incomplete or in progress" in text


def test_format_complete_report():
    text = format_report(Report([ReconciliationRow("orders", 3, 3, RowStatus.MATCH)]))
    assert "Migration complete! All indices match." in text


def test_watch_re_enumerates_until_stopped(clusters, requests_mock):
    source, target = clusters
    mock_index(requests_mock, source, target, "orders", 10, 10)
    mock_index(requests_mock, source, target, "customers", 5, 5)
    stop_event = threading.Event()
    enumerations = [["orders"], ["orders", "customers"]]
    reports = []

    def list_indices():
        return enumerations[min(len(reports), 1)]

    def on_report(report):
        reports.append(report)
        if len(reports) == 2:
            stop_event.set()

    last = watch(source, target, list_indices, interval=0.01, on_report=on_report, stop_event=stop_event)

    assert len(reports) == 2
    assert [row.index for row in reports[0].rows] == ["orders"]
    assert [row.index for row in last.rows] == ["orders", "customers"]
