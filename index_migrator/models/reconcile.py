import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional, Tuple

import requests

from index_migrator.exceptions import AuthError, ConnectivityError, CountFetchError
from index_migrator.models.cluster import Cluster

logger = logging.getLogger(__name__)

DEFAULT_WATCH_INTERVAL_SECONDS = 60
ROW_FORMAT = "{:<40} {:>15} {:>15} {:>15} {:>10}"
RULE = "-" * 104


class RowStatus(str, Enum):
    MATCH = "match"
    MISMATCH = "mismatch"
    MISSING = "missing"


def percent_of(part: int, whole: int) -> int:
    """Integer percentage, rounded down. Zero when there is nothing to compare against."""
    if whole == 0:
        return 0
    return (part * 100) // whole


@dataclass
class ReconciliationRow:
    index: str
    source_count: int
    target_count: int
    status: RowStatus
    warnings: List[str] = field(default_factory=list)

    @property
    def difference(self) -> int:
        return self.source_count - self.target_count

    @property
    def percent(self) -> int:
        return percent_of(self.target_count, self.source_count)

    def to_dict(self) -> Dict:
        return {
            "index": self.index,
            "source_count": self.source_count,
            "target_count": self.target_count,
            "status": self.status.value,
            "difference": self.difference,
            "percent": self.percent,
            "warnings": self.warnings
        }


@dataclass
class Report:
    rows: List[ReconciliationRow]
    generated_at: datetime = field(default_factory=datetime.now)

    def _present(self) -> List[ReconciliationRow]:
        return [row for row in self.rows if row.status != RowStatus.MISSING]

    @property
    def totals(self) -> Tuple[int, int]:
        present = self._present()
        return sum(r.source_count for r in present), sum(r.target_count for r in present)

    @property
    def counts(self) -> Dict[RowStatus, int]:
        counts = {status: 0 for status in RowStatus}
        for row in self.rows:
            counts[row.status] += 1
        return counts

    @property
    def overall_percent(self) -> int:
        source_sum, target_sum = self.totals
        return percent_of(target_sum, source_sum)

    @property
    def is_complete(self) -> bool:
        counts = self.counts
        return counts[RowStatus.MISMATCH] == 0 and counts[RowStatus.MISSING] == 0

    def to_dict(self) -> Dict:
        source_sum, target_sum = self.totals
        return {
            "generated_at": self.generated_at.isoformat(),
            "rows": [row.to_dict() for row in self.rows],
            "totals": {"source_sum": source_sum, "target_sum": target_sum},
            "counts": {status.value: count for status, count in self.counts.items()},
            "overall_percent": self.overall_percent,
            "is_complete": self.is_complete
        }


def fetch_count(cluster: Cluster, index: str) -> int:
    try:
        r = cluster.call_api(f"/{index}/_count")
        return int(r.json()["count"])
    except AuthError:
        raise
    except (ConnectivityError, requests.RequestException, ValueError, KeyError, TypeError) as e:
        raise CountFetchError(index, cluster.endpoint, str(e)) from e


def _count_or_zero(cluster: Cluster, index: str, warnings: List[str]) -> int:
    try:
        return fetch_count(cluster, index)
    except CountFetchError as e:
        logger.warning(str(e))
        warnings.append(f"count unavailable on {cluster.endpoint}, reported as 0")
        return 0


def _exists_on_target(target: Cluster, index: str, warnings: List[str]) -> bool:
    try:
        return target.index_exists(index)
    except ConnectivityError as e:
        logger.warning(f"Existence probe for {index} on {target.endpoint} failed: {e}")
        warnings.append(f"existence probe failed on {target.endpoint}, treated as missing")
        return False


def check_index(source: Cluster, target: Cluster, index: str) -> ReconciliationRow:
    warnings: List[str] = []
    source_count = _count_or_zero(source, index, warnings)
    if not _exists_on_target(target, index, warnings):
        return ReconciliationRow(index, source_count, 0, RowStatus.MISSING, warnings)
    target_count = _count_or_zero(target, index, warnings)
    if source_count == target_count:
        status = RowStatus.MATCH
    else:
        status = RowStatus.MISMATCH
    return ReconciliationRow(index, source_count, target_count, status, warnings)


def check(source: Cluster, target: Cluster, indices: Iterable[str]) -> Report:
    """
    Compares document counts of every index on both clusters. A failed count is reported as 0 with a warning on
    the row; an AuthError from either cluster propagates.
    """
    rows = [check_index(source, target, index) for index in indices]
    report = Report(rows)
    logger.info(f"Reconciled {len(rows)} indices, overall progress {report.overall_percent}%")
    return report


def watch(source: Cluster, target: Cluster, list_indices: Callable[[], Iterable[str]],
          interval: float = DEFAULT_WATCH_INTERVAL_SECONDS,
          on_report: Optional[Callable[[Report], None]] = None,
          stop_event: Optional[threading.Event] = None) -> Optional[Report]:
    """
    Re-enumerates the indices and re-checks them every `interval` seconds until `stop_event` is set. Returns the
    last report produced.
    """
    stop_event = stop_event or threading.Event()
    report = None
    while not stop_event.is_set():
        report = check(source, target, list_indices())
        if on_report:
            on_report(report)
        stop_event.wait(interval)
    return report


def _row_line(row: ReconciliationRow) -> str:
    if row.status == RowStatus.MISSING:
        return ROW_FORMAT.format(row.index, row.source_count, "MISSING", "-", "MISSING")
    if row.status == RowStatus.MATCH:
        return ROW_FORMAT.format(row.index, row.source_count, row.target_count, 0, "MATCH")
    return ROW_FORMAT.format(row.index, row.source_count, row.target_count, row.difference, f"{row.percent}%")


def format_report(report: Report, source: Optional[Cluster] = None, target: Optional[Cluster] = None) -> str:
    lines = ["=========================================",
             "Migration Status Check",
             "========================================="]
    if source and target:
        lines += [f"Source: {source.endpoint}", f"Target: {target.endpoint}"]
    lines += [f"Time: {report.generated_at.strftime('%Y-%m-%d %H:%M:%S')}", "",
              ROW_FORMAT.format("INDEX", "SOURCE_DOCS", "TARGET_DOCS", "DIFFERENCE", "STATUS"),
              RULE]
    for row in report.rows:
        lines.append(_row_line(row))
        lines += [f"    warning: {w}" for w in row.warnings]
    source_sum, target_sum = report.totals
    counts = report.counts
    lines += [RULE,
              ROW_FORMAT.format("TOTAL", source_sum, target_sum, source_sum - target_sum, "").rstrip(),
              "",
              f"Matching: {counts[RowStatus.MATCH]} indices",
              f"Mismatched: {counts[RowStatus.MISMATCH]} indices",
              f"Missing: {counts[RowStatus.MISSING]} indices",
              ""]
    if source_sum > 0:
        lines.append(f"Overall Progress: {report.overall_percent}% ({target_sum} / {source_sum} documents)")
    if report.is_complete:
        lines.append("Migration complete! All indices match.")
    else:
        lines.append("Migration incomplete or in progress")
    return "\n".join(lines)
