"""
Execution result fusion.

Manual test-run results and imported automated (JUnit-style) results are
queried separately. This module normalizes both into ExecutionRecord
entries and merges them into one timeline per test case, ordered by
execution time, with no source taking precedence over the other.
"""
import enum
import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from qa_insights.constants import (
    AUTOMATED_STATUS_FALLBACK,
    NEUTRAL_STATUS_COLOR,
)
from qa_insights.utils.helpers import ensure_utc, to_iso_utc

logger = logging.getLogger(__name__)

AUTOMATED_SKIPPED = "SKIPPED"
AUTOMATED_SUCCESS_TYPES = ("PASSED",)
AUTOMATED_FAILURE_TYPES = ("FAILURE", "ERROR")


class ExecutionSource(str, enum.Enum):
    """Provenance of an execution record. Used for filtering only."""
    MANUAL = "manual"
    AUTOMATED = "automated"


@dataclass
class ManualResult:
    """Flattened manual result row (test run result joined with its status)."""
    result_id: int
    test_case_id: int
    executed_at: Optional[datetime]
    is_success: bool
    is_failure: bool
    status_id: Optional[int] = None
    status_name: Optional[str] = None
    status_color: Optional[str] = None
    test_run_id: Optional[int] = None


@dataclass
class AutomatedResult:
    """
    Flattened automated result row.

    ``status_is_success``/``status_is_failure`` are None when the result has
    no explicit status mapping; the declared ``result_type`` decides then.
    """
    result_id: int
    test_case_id: int
    executed_at: Optional[datetime]
    result_type: str
    status_id: Optional[int] = None
    status_name: Optional[str] = None
    status_color: Optional[str] = None
    status_is_success: Optional[bool] = None
    status_is_failure: Optional[bool] = None
    test_run_id: Optional[int] = None


@dataclass
class ExecutionRecord:
    """One entry of a test case's fused execution timeline."""
    test_case_id: int
    executed_at: Optional[datetime]
    is_success: bool
    is_failure: bool
    source: ExecutionSource
    result_id: int = 0
    status_id: Optional[int] = None
    status_name: Optional[str] = None
    status_color: Optional[str] = None
    test_run_id: Optional[int] = None

    @property
    def is_definitive(self) -> bool:
        return self.is_success or self.is_failure

    def to_dict(self) -> dict:
        return {
            "statusId": self.status_id,
            "statusName": self.status_name,
            "statusColor": self.status_color,
            "isSuccess": self.is_success,
            "isFailure": self.is_failure,
            "executedAt": to_iso_utc(self.executed_at),
            "source": self.source.value,
        }


def from_manual(result: ManualResult) -> ExecutionRecord:
    return ExecutionRecord(
        test_case_id=result.test_case_id,
        executed_at=ensure_utc(result.executed_at),
        is_success=bool(result.is_success),
        is_failure=bool(result.is_failure),
        source=ExecutionSource.MANUAL,
        result_id=result.result_id,
        status_id=result.status_id,
        status_name=result.status_name,
        status_color=result.status_color,
        test_run_id=result.test_run_id,
    )


def from_automated(result: AutomatedResult) -> Optional[ExecutionRecord]:
    """
    Normalize an automated result.

    An explicit status mapping wins; otherwise PASSED is a success and
    FAILURE/ERROR are failures. Results without a mapped status get a
    synthetic one (negative id) named after the result type.
    SKIPPED results return None.
    """
    result_type = (result.result_type or "").upper()
    if result_type == AUTOMATED_SKIPPED:
        return None

    is_success = result.status_is_success
    if is_success is None:
        is_success = result_type in AUTOMATED_SUCCESS_TYPES
    is_failure = result.status_is_failure
    if is_failure is None:
        is_failure = result_type in AUTOMATED_FAILURE_TYPES

    status_id = result.status_id
    status_name = result.status_name
    status_color = result.status_color
    if status_id is None:
        status_id, status_color = AUTOMATED_STATUS_FALLBACK.get(
            result_type, (None, NEUTRAL_STATUS_COLOR)
        )
        status_name = result_type

    return ExecutionRecord(
        test_case_id=result.test_case_id,
        executed_at=ensure_utc(result.executed_at),
        is_success=bool(is_success),
        is_failure=bool(is_failure),
        source=ExecutionSource.AUTOMATED,
        result_id=result.result_id,
        status_id=status_id,
        status_name=status_name,
        status_color=status_color,
        test_run_id=result.test_run_id,
    )


def _timeline_key(record: ExecutionRecord):
    # Same-instant records fall back to source then id so output is repeatable.
    return (record.executed_at, record.source.value, record.result_id)


def fuse_execution_history(
    manual: Iterable[ManualResult],
    automated: Iterable[AutomatedResult],
    include_neutral: bool = False
) -> List[ExecutionRecord]:
    """
    Merge both result sources into a single timeline, most recent first.

    Records without ``executed_at`` are not executions and are dropped.
    Neutral records (neither success nor failure, e.g. "untested") are
    dropped too unless ``include_neutral`` is set.

    Args:
        manual: Manual result rows
        automated: Automated result rows
        include_neutral: Keep records with a non-definitive status

    Returns:
        List of ExecutionRecord ordered by executed_at descending
    """
    records: List[ExecutionRecord] = [from_manual(r) for r in manual]
    for result in automated:
        record = from_automated(result)
        if record is not None:
            records.append(record)

    timeline = [
        r for r in records
        if r.executed_at is not None and (include_neutral or r.is_definitive)
    ]
    timeline.sort(key=_timeline_key, reverse=True)
    return timeline


def group_by_test_case(records: Iterable[ExecutionRecord]) -> Dict[int, List[ExecutionRecord]]:
    """
    Split a fused timeline into per-test-case timelines.

    Input order is preserved inside each group, so a timeline sorted by
    recency stays sorted per case.
    """
    grouped: Dict[int, List[ExecutionRecord]] = defaultdict(list)
    for record in records:
        grouped[record.test_case_id].append(record)
    return dict(grouped)


def fuse_by_test_case(
    manual: Iterable[ManualResult],
    automated: Iterable[AutomatedResult],
    include_neutral: bool = False
) -> Dict[int, List[ExecutionRecord]]:
    """Fused timelines keyed by test case id, each most recent first."""
    return group_by_test_case(
        fuse_execution_history(manual, automated, include_neutral=include_neutral)
    )
