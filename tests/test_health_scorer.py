"""
Tests for test case health scoring.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional
import pytest

from qa_insights.services.execution_fuser import ExecutionRecord, ExecutionSource
from qa_insights.services.health_scorer import (
    HealthStatus,
    calculate_days_since,
    calculate_health_status,
    calculate_is_stale,
    calculate_health_score,
    clamp_stale_days,
    clamp_min_executions,
    clamp_lookback_days,
    score_test_case,
    build_health_rows,
)

NOW = datetime(2024, 6, 15, 12, 0, tzinfo=timezone.utc)


def execution(days_ago, success=True, case_id=1, result_id=0):
    return ExecutionRecord(
        test_case_id=case_id,
        executed_at=NOW - timedelta(days=days_ago),
        is_success=success,
        is_failure=not success,
        source=ExecutionSource.MANUAL,
        result_id=result_id,
    )


@dataclass
class Case:
    id: int
    name: str
    source: str = "MANUAL"
    automated: bool = False
    project_id: int = 1
    project_name: str = "Alpha"
    created_at: Optional[datetime] = None


class TestHealthStatus:
    """Tests for calculate_health_status."""

    def test_never_executed(self):
        """Zero executions is never executed."""
        assert calculate_health_status(0, 0, 0, None, 5) == HealthStatus.NEVER_EXECUTED

    def test_always_failing(self):
        """Enough executions and no passes is always failing."""
        assert calculate_health_status(5, 0, 5, 1, 5) == HealthStatus.ALWAYS_FAILING

    def test_always_passing(self):
        """Enough executions and only passes is always passing."""
        assert calculate_health_status(10, 10, 0, 5, 5) == HealthStatus.ALWAYS_PASSING

    def test_too_few_executions_is_healthy(self):
        """Below the minimum, patterns are not judged."""
        assert calculate_health_status(2, 0, 2, 1, 5) == HealthStatus.HEALTHY
        assert calculate_health_status(4, 4, 0, 1, 5) == HealthStatus.HEALTHY

    def test_mixed_results_healthy(self):
        """A pass/fail mix is healthy."""
        assert calculate_health_status(6, 3, 3, 1, 5) == HealthStatus.HEALTHY


class TestStaleness:
    """Tests for calculate_is_stale and calculate_days_since."""

    def test_stale_strictly_above_threshold(self):
        """Exactly the threshold is not yet stale."""
        assert not calculate_is_stale(30, 30)
        assert calculate_is_stale(31, 30)

    def test_never_executed_not_stale(self):
        """A case never executed is never stale."""
        assert not calculate_is_stale(None, 7)

    def test_days_since_floors(self):
        """Partial days are floored."""
        assert calculate_days_since(NOW - timedelta(days=2, hours=23), NOW) == 2

    def test_days_since_none(self):
        """No last execution gives None, not 0."""
        assert calculate_days_since(None, NOW) is None


class TestHealthScore:
    """Tests for calculate_health_score."""

    def test_never_executed_is_50(self):
        """Never executed scores 50 and nothing else applies."""
        assert calculate_health_score(0, 0, 0, None, 5) == 50

    def test_suspicious_pass_example(self):
        """10/10 passes, 5 days ago: 100 - 5 = 95."""
        assert calculate_health_score(10, 10, 0, 5, 5) == 95

    def test_broken_test(self):
        """0% pass rate with enough executions loses 30."""
        assert calculate_health_score(5, 0, 5, 1, 5) == 70

    def test_low_pass_rate(self):
        """Pass rate under 50% loses 20."""
        assert calculate_health_score(5, 2, 3, 1, 5) == 80

    def test_pass_rate_exactly_50_not_penalized(self):
        """50% is not below 50%."""
        assert calculate_health_score(6, 3, 3, 1, 5) == 100

    @pytest.mark.parametrize("days,expected", [
        (30, 100), (31, 90), (60, 90), (61, 75), (90, 75), (91, 60), (400, 60),
    ])
    def test_staleness_tiers(self, days, expected):
        """Only the highest matching staleness tier applies."""
        assert calculate_health_score(6, 3, 3, days, 5) == expected

    def test_low_frequency_penalty(self):
        """Fewer than 3 executions loses 10 even without rate deductions."""
        assert calculate_health_score(2, 2, 0, 1, 5) == 90

    def test_all_penalties_floor_at_zero_or_above(self):
        """Combined deductions stay within 0..100."""
        score = calculate_health_score(3, 0, 3, 200, 3)
        assert score == 30
        assert 0 <= score <= 100

    @pytest.mark.parametrize("passes", [0, 2, 3, 5])
    def test_monotonic_in_staleness(self, passes):
        """More days since the last execution never raises the score."""
        scores = [calculate_health_score(5, passes, 5 - passes, d, 5)
                  for d in (0, 30, 31, 60, 61, 90, 91, 365)]
        assert scores == sorted(scores, reverse=True)


class TestClamping:
    """Tests for parameter clamping."""

    def test_stale_days_clamped(self):
        assert clamp_stale_days(1) == 7
        assert clamp_stale_days(500) == 90
        assert clamp_stale_days("45") == 45

    def test_unparseable_falls_back_to_default(self):
        """Garbage input uses the default."""
        assert clamp_stale_days("abc") == 30
        assert clamp_min_executions(None) == 5

    def test_min_executions_clamped(self):
        assert clamp_min_executions(1) == 3
        assert clamp_min_executions(50) == 20

    def test_lookback_zero_is_all_time(self):
        """0 is kept as the all-time sentinel."""
        assert clamp_lookback_days(0) == 0

    def test_lookback_clamped(self):
        assert clamp_lookback_days(5) == 30
        assert clamp_lookback_days(1000) == 365
        assert clamp_lookback_days(None) == 90

    def test_non_finite_values(self):
        """Infinities clamp to the nearest bound, NaN uses the default."""
        assert clamp_stale_days(float("inf")) == 90
        assert clamp_min_executions("-inf") == 3
        assert clamp_lookback_days(float("inf")) == 365
        assert clamp_lookback_days("-Infinity") == 30
        assert clamp_lookback_days(float("nan")) == 90


class TestScoreTestCase:
    """Tests for score_test_case."""

    def test_end_to_end_always_passing(self):
        """Ten passes, newest five days ago."""
        executions = [execution(days) for days in range(5, 15)]
        metrics = score_test_case(executions, NOW, 30, 5)
        assert metrics.total_executions == 10
        assert metrics.pass_count == 10
        assert metrics.health_status == HealthStatus.ALWAYS_PASSING
        assert metrics.is_stale is False
        assert metrics.health_score == 95
        assert metrics.pass_rate == 100
        assert metrics.days_since_last_execution == 5

    def test_never_executed_exclusive(self):
        """No executions: never executed, not stale, no days, score 50."""
        metrics = score_test_case([], NOW, 30, 5)
        assert metrics.health_status == HealthStatus.NEVER_EXECUTED
        assert metrics.is_stale is False
        assert metrics.days_since_last_execution is None
        assert metrics.health_score == 50
        assert metrics.pass_rate == 0
        assert metrics.last_executed_at is None

    def test_pass_rate_rounds_half_up(self):
        """1 of 8 passes is 12.5% and displays as 13."""
        executions = [execution(1)] + [execution(d, success=False) for d in range(2, 9)]
        assert score_test_case(executions, NOW, 30, 5).pass_rate == 13

    def test_stale_case(self):
        """A single execution 45 days ago is stale and low-frequency."""
        metrics = score_test_case([execution(45)], NOW, 30, 5)
        assert metrics.is_stale is True
        assert metrics.health_status == HealthStatus.HEALTHY
        assert metrics.health_score == 80

    def test_idempotent(self):
        """Same input, same output."""
        executions = [execution(d, success=d % 2 == 0) for d in range(1, 8)]
        assert score_test_case(executions, NOW, 30, 5) == score_test_case(executions, NOW, 30, 5)

    def test_to_dict_keys(self):
        """Serialized metrics use camelCase keys."""
        data = score_test_case([execution(1)], NOW, 30, 5).to_dict()
        assert data["healthStatus"] == "healthy"
        assert data["lastExecutedAt"] == "2024-06-14T12:00:00.000Z"
        assert data["daysSinceLastExecution"] == 1


class TestBuildHealthRows:
    """Tests for build_health_rows ordering."""

    def test_sort_order(self):
        """Status priority, then stale first, then lowest score."""
        cases = [
            Case(1, "healthy fresh"),
            Case(2, "never"),
            Case(3, "failing"),
            Case(4, "passing"),
            Case(5, "healthy stale"),
        ]
        timelines = {
            1: [execution(d, success=d % 2 == 0) for d in range(1, 7)],
            3: [execution(d, success=False) for d in range(1, 6)],
            4: [execution(d) for d in range(1, 6)],
            5: [execution(45)],
        }
        rows = build_health_rows(cases, timelines, NOW, 30, 5)
        assert [r.test_case_id for r in rows] == [3, 2, 4, 5, 1]

    def test_empty_cases(self):
        """No cases yields no rows."""
        assert build_health_rows([], {}, NOW, 30, 5) == []

    def test_project_dimension(self):
        """Project info is attached only when requested."""
        rows = build_health_rows([Case(1, "a")], {}, NOW, 30, 5, include_project=True)
        assert rows[0].to_dict()["project"] == {"id": 1, "name": "Alpha"}
        rows = build_health_rows([Case(1, "a")], {}, NOW, 30, 5)
        assert "project" not in rows[0].to_dict()

    def test_created_at_serialized(self):
        """Case creation time is reported in ISO UTC, null when unknown."""
        created = Case(1, "a", created_at=datetime(2024, 6, 3, 9, 0, tzinfo=timezone.utc))
        rows = build_health_rows([created, Case(2, "b")], {}, NOW, 30, 5)
        by_id = {row.test_case_id: row.to_dict() for row in rows}
        assert by_id[1]["createdAt"] == "2024-06-03T09:00:00.000Z"
        assert by_id[2]["createdAt"] is None
