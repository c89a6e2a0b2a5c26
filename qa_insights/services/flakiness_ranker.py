"""
Flaky test detection and ranking.

A test is flaky when its recent executions keep flipping between success
and failure. Detection counts flips over the last N runs; ranking then
orders the flaky set by a priority score that blends how often the test
flips with how recently it failed, so the chart shows the most urgent
tests when the set is larger than the display cap.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence

from qa_insights.constants import (
    CONSECUTIVE_RUNS_MIN,
    CONSECUTIVE_RUNS_MAX,
    FLIP_THRESHOLD_MIN,
    RECENCY_DECAY_FACTOR,
    FLIP_WEIGHT,
    RECENCY_WEIGHT,
)
from qa_insights.services.execution_fuser import ExecutionRecord
from qa_insights.utils.helpers import clamp_int, to_iso_utc

logger = logging.getLogger(__name__)


def clamp_consecutive_runs(value: Any, default: int = 10) -> int:
    return clamp_int(value, CONSECUTIVE_RUNS_MIN, CONSECUTIVE_RUNS_MAX, default)


def clamp_flip_threshold(value: Any, consecutive_runs: int, default: int = 5) -> int:
    """Flip threshold is bounded by the run window: 2..(runs - 1)."""
    return clamp_int(value, FLIP_THRESHOLD_MIN, max(consecutive_runs - 1, FLIP_THRESHOLD_MIN), default)


def count_status_flips(executions: Sequence[ExecutionRecord]) -> int:
    """
    Count success <-> failure transitions along a timeline.

    Only definitive results take part; a neutral result between two
    failures does not create a flip.
    """
    flips = 0
    previous: Optional[bool] = None
    for execution in executions:
        if not execution.is_definitive:
            continue
        current = execution.is_success
        if previous is not None and current != previous:
            flips += 1
        previous = current
    return flips


def has_required_flakiness(executions: Iterable[ExecutionRecord]) -> bool:
    """True when the timeline holds at least one success and one failure."""
    has_success = False
    has_failure = False
    for execution in executions:
        has_success = has_success or execution.is_success
        has_failure = has_failure or execution.is_failure
        if has_success and has_failure:
            return True
    return False


def calculate_recency_score(
    executions: Sequence[ExecutionRecord],
    decay: float = RECENCY_DECAY_FACTOR
) -> float:
    """
    Recency-weighted failure score normalized to 0..1.

    Executions must be most recent first. The newest failure weighs 1, the
    one before it ``decay``, then ``decay ** 2`` and so on; the sum is
    divided by the score of an all-failure timeline of the same length.
    """
    score = 0.0
    weight = 1.0
    for execution in executions:
        if execution.is_failure:
            score += weight
        weight *= decay

    n = len(executions)
    max_score = (1 - decay ** n) / (1 - decay) if n > 0 else 1.0
    if max_score == 0:
        return 0.0
    return score / max_score


def calculate_priority_score(
    executions: Sequence[ExecutionRecord],
    flip_count: int,
    consecutive_runs: int
) -> float:
    """Blend of flip frequency and failure recency; meaningful only for ranking."""
    normalized_flips = flip_count / max(consecutive_runs - 1, 1)
    return normalized_flips * FLIP_WEIGHT + calculate_recency_score(executions) * RECENCY_WEIGHT


def calculate_failure_rate(executions: Sequence[ExecutionRecord]) -> float:
    if not executions:
        return 0.0
    return sum(1 for e in executions if e.is_failure) / len(executions)


def most_recent_failure(executions: Iterable[ExecutionRecord]) -> Optional[datetime]:
    failures = [e.executed_at for e in executions if e.is_failure and e.executed_at is not None]
    return max(failures, default=None)


@dataclass
class FlakyTest:
    """A test case whose recent executions flip between outcomes."""
    test_case_id: int
    test_case_name: str
    source: str
    flip_count: int
    executions: List[ExecutionRecord]
    priority_score: float = 0.0
    failure_rate: float = 0.0
    most_recent_failure: Optional[datetime] = None
    project: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        row = {
            "testCaseId": self.test_case_id,
            "testCaseName": self.test_case_name,
            "testCaseSource": self.source,
            "flipCount": self.flip_count,
            "priorityScore": self.priority_score,
            "failureRate": self.failure_rate,
            "mostRecentFailure": to_iso_utc(self.most_recent_failure),
            "executions": [e.to_dict() for e in self.executions],
        }
        if self.project is not None:
            row["project"] = self.project
        return row


def detect_flaky_tests(
    cases: Iterable[Any],
    timelines: Dict[int, List[ExecutionRecord]],
    consecutive_runs: int,
    flip_threshold: int,
    include_project: bool = False
) -> List[FlakyTest]:
    """
    Find flaky tests among the given cases.

    Each timeline is cut to its ``consecutive_runs`` most recent
    executions. Cases with fewer than 2 executions or without both outcomes
    are skipped; the rest are flaky when they flip at least
    ``flip_threshold`` times.

    Args:
        cases: Rows exposing id, name, source, project_id and project_name
        timelines: Fused executions per case id, most recent first
        consecutive_runs: Window size
        flip_threshold: Minimum flips to be reported

    Returns:
        Flaky tests sorted by flip count descending
    """
    flaky = []
    for case in cases:
        window = timelines.get(case.id, [])[:consecutive_runs]
        if len(window) < 2 or not has_required_flakiness(window):
            continue

        flips = count_status_flips(window)
        if flips < flip_threshold:
            continue

        flaky.append(FlakyTest(
            test_case_id=case.id,
            test_case_name=case.name,
            source=case.source,
            flip_count=flips,
            executions=window,
            priority_score=calculate_priority_score(window, flips, consecutive_runs),
            failure_rate=calculate_failure_rate(window),
            most_recent_failure=most_recent_failure(window),
            project={"id": case.project_id, "name": case.project_name} if include_project else None,
        ))

    flaky.sort(key=lambda t: t.flip_count, reverse=True)
    logger.debug(f"Detected {len(flaky)} flaky tests (runs={consecutive_runs}, threshold={flip_threshold})")
    return flaky


def rank_flaky_tests(flaky_tests: Iterable[FlakyTest], limit: Optional[int] = None) -> List[FlakyTest]:
    """Sort by priority score descending and keep the first ``limit`` tests."""
    ranked = sorted(flaky_tests, key=lambda t: t.priority_score, reverse=True)
    if limit is not None:
        ranked = ranked[:limit]
    return ranked
