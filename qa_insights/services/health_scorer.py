"""
Test case health scoring.

Turns a test case's fused execution timeline into HealthMetrics: counts,
pass rate, staleness, a status classification and a 0-100 health score.
Everything here is a pure function of the timeline, the thresholds and an
explicit ``now``.
"""
import enum
import logging
import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from qa_insights.constants import (
    STALE_DAYS_MIN,
    STALE_DAYS_MAX,
    MIN_EXECUTIONS_MIN,
    MIN_EXECUTIONS_MAX,
    LOOKBACK_DAYS_MIN,
    LOOKBACK_DAYS_MAX,
    LOOKBACK_ALL_TIME,
    NEVER_EXECUTED_PENALTY,
    STALENESS_TIERS,
    SUSPICIOUS_PASS_PENALTY,
    BROKEN_TEST_PENALTY,
    LOW_PASS_RATE_PENALTY,
    LOW_PASS_RATE_THRESHOLD,
    LOW_FREQUENCY_EXECUTIONS,
    LOW_FREQUENCY_PENALTY,
)
from qa_insights.services.execution_fuser import ExecutionRecord
from qa_insights.utils.helpers import clamp_int, coerce_number, ensure_utc, percentage, to_iso_utc

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86400


class HealthStatus(str, enum.Enum):
    HEALTHY = "healthy"
    NEVER_EXECUTED = "never_executed"
    ALWAYS_PASSING = "always_passing"
    ALWAYS_FAILING = "always_failing"


# Lower sorts first in the report
STATUS_PRIORITY = {
    HealthStatus.ALWAYS_FAILING: 1,
    HealthStatus.NEVER_EXECUTED: 2,
    HealthStatus.ALWAYS_PASSING: 3,
    HealthStatus.HEALTHY: 4,
}


def clamp_stale_days(value: Any, default: int = 30) -> int:
    return clamp_int(value, STALE_DAYS_MIN, STALE_DAYS_MAX, default)


def clamp_min_executions(value: Any, default: int = 5) -> int:
    return clamp_int(value, MIN_EXECUTIONS_MIN, MIN_EXECUTIONS_MAX, default)


def clamp_lookback_days(value: Any, default: int = 90) -> int:
    """0 means all time and is kept as is; anything else is clamped to 30..365."""
    number = coerce_number(value, default)
    if number == LOOKBACK_ALL_TIME:
        return LOOKBACK_ALL_TIME
    return int(min(max(number, LOOKBACK_DAYS_MIN), LOOKBACK_DAYS_MAX))


def calculate_days_since(last_executed_at: Optional[datetime], now: datetime) -> Optional[int]:
    """Whole days elapsed since the last execution, None if never executed."""
    if last_executed_at is None:
        return None
    delta = ensure_utc(now) - ensure_utc(last_executed_at)
    return math.floor(delta.total_seconds() / SECONDS_PER_DAY)


def calculate_health_status(
    total_executions: int,
    pass_count: int,
    fail_count: int,
    days_since_last_execution: Optional[int],
    min_executions_for_rate: int
) -> HealthStatus:
    """
    Classify a test case.

    Pass/fail patterns are only judged once the case has at least
    ``min_executions_for_rate`` executions; below that it is healthy.
    """
    if total_executions == 0 or days_since_last_execution is None:
        return HealthStatus.NEVER_EXECUTED

    if total_executions >= min_executions_for_rate:
        if pass_count == 0 and fail_count > 0:
            return HealthStatus.ALWAYS_FAILING
        if pass_count == total_executions and fail_count == 0:
            return HealthStatus.ALWAYS_PASSING

    return HealthStatus.HEALTHY


def calculate_is_stale(days_since_last_execution: Optional[int], stale_days_threshold: int) -> bool:
    return days_since_last_execution is not None and days_since_last_execution > stale_days_threshold


def calculate_health_score(
    total_executions: int,
    pass_count: int,
    fail_count: int,
    days_since_last_execution: Optional[int],
    min_executions_for_rate: int
) -> int:
    """
    Compute the 0-100 health score.

    Deductions from 100:
    - never executed: 50, nothing else applies
    - staleness: more than 90 days 40, 60 days 25, 30 days 10 (highest tier only)
    - with enough executions: 100% pass 5, 0% pass 30, under 50% pass 20
    - fewer than 3 executions: 10
    """
    if total_executions == 0 or days_since_last_execution is None:
        return 100 - NEVER_EXECUTED_PENALTY

    score = 100

    for days, deduction in STALENESS_TIERS:
        if days_since_last_execution > days:
            score -= deduction
            break

    if total_executions >= min_executions_for_rate:
        pass_rate = pass_count / total_executions * 100
        if pass_rate == 100:
            score -= SUSPICIOUS_PASS_PENALTY
        elif pass_rate == 0:
            score -= BROKEN_TEST_PENALTY
        elif pass_rate < LOW_PASS_RATE_THRESHOLD:
            score -= LOW_PASS_RATE_PENALTY

    if total_executions < LOW_FREQUENCY_EXECUTIONS:
        score -= LOW_FREQUENCY_PENALTY

    return max(0, min(100, score))


@dataclass
class HealthMetrics:
    """Derived health of one test case for one report invocation."""
    total_executions: int
    pass_count: int
    fail_count: int
    last_executed_at: Optional[datetime]
    days_since_last_execution: Optional[int]
    pass_rate: int
    health_status: HealthStatus
    is_stale: bool
    health_score: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalExecutions": self.total_executions,
            "passCount": self.pass_count,
            "failCount": self.fail_count,
            "lastExecutedAt": to_iso_utc(self.last_executed_at),
            "daysSinceLastExecution": self.days_since_last_execution,
            "passRate": self.pass_rate,
            "healthStatus": self.health_status.value,
            "isStale": self.is_stale,
            "healthScore": self.health_score,
        }


def score_test_case(
    executions: Iterable[ExecutionRecord],
    now: datetime,
    stale_days_threshold: int,
    min_executions_for_rate: int
) -> HealthMetrics:
    """
    Score one test case from its executions inside the lookback window.

    Args:
        executions: Fused executions of the case (any order)
        now: Reference instant for staleness
        stale_days_threshold: Days without execution before a case is stale
        min_executions_for_rate: Executions needed to judge pass patterns

    Returns:
        HealthMetrics for the case
    """
    executed = [e for e in executions if e.executed_at is not None]
    total = len(executed)
    pass_count = sum(1 for e in executed if e.is_success)
    fail_count = sum(1 for e in executed if e.is_failure)
    last_executed_at = max((e.executed_at for e in executed), default=None)
    days = calculate_days_since(last_executed_at, now)

    return HealthMetrics(
        total_executions=total,
        pass_count=pass_count,
        fail_count=fail_count,
        last_executed_at=last_executed_at,
        days_since_last_execution=days,
        pass_rate=percentage(pass_count, total),
        health_status=calculate_health_status(
            total, pass_count, fail_count, days, min_executions_for_rate
        ),
        is_stale=calculate_is_stale(days, stale_days_threshold),
        health_score=calculate_health_score(
            total, pass_count, fail_count, days, min_executions_for_rate
        ),
    )


@dataclass
class TestCaseHealth:
    """Report row: a test case and its health metrics."""
    __test__ = False

    test_case_id: int
    test_case_name: str
    source: str
    automated: bool
    metrics: HealthMetrics
    created_at: Optional[datetime] = None
    project: Optional[Dict[str, Any]] = field(default=None)

    def to_dict(self) -> Dict[str, Any]:
        row = {
            "testCaseId": self.test_case_id,
            "testCaseName": self.test_case_name,
            "testCaseSource": self.source,
            "automated": self.automated,
            "createdAt": to_iso_utc(self.created_at),
        }
        row.update(self.metrics.to_dict())
        if self.project is not None:
            row["project"] = self.project
        return row


def health_sort_key(row: TestCaseHealth):
    metrics = row.metrics
    return (
        STATUS_PRIORITY[metrics.health_status],
        0 if metrics.is_stale else 1,
        metrics.health_score,
    )


def sort_health_rows(rows: Iterable[TestCaseHealth]) -> List[TestCaseHealth]:
    """Order rows by status priority, then stale first, then lowest score first."""
    return sorted(rows, key=health_sort_key)


def build_health_rows(
    cases: Iterable[Any],
    timelines: Dict[int, List[ExecutionRecord]],
    now: datetime,
    stale_days_threshold: int,
    min_executions_for_rate: int,
    include_project: bool = False
) -> List[TestCaseHealth]:
    """
    Score every case and return the sorted report rows.

    ``cases`` are rows exposing id, name, source, automated, created_at,
    project_id and project_name; cases missing from ``timelines`` are
    never executed.
    """
    rows = []
    for case in cases:
        metrics = score_test_case(
            timelines.get(case.id, []), now, stale_days_threshold, min_executions_for_rate
        )
        project = {"id": case.project_id, "name": case.project_name} if include_project else None
        rows.append(TestCaseHealth(
            test_case_id=case.id,
            test_case_name=case.name,
            source=case.source,
            automated=case.automated,
            created_at=case.created_at,
            metrics=metrics,
            project=project,
        ))

    logger.debug(f"Scored health for {len(rows)} test cases")
    return sort_health_rows(rows)
