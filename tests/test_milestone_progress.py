"""
Tests for milestone progress aggregation.
"""
import pytest

from qa_insights.services.milestone_progress import (
    RunCaseRow,
    SessionRow,
    MilestoneIssue,
    build_test_run_segments,
    build_session_segment,
    calculate_completion_rate,
    summarize_milestone,
    calculate_segment_widths,
)


def run_case(run_case_id, status_id=None, run_id=1, elapsed=0, estimate=None, completed=None):
    return RunCaseRow(
        test_run_id=run_id,
        test_run_name=f"Run {run_id}",
        run_case_id=run_case_id,
        status_id=status_id,
        status_name={1: "Passed", 2: "Failed"}.get(status_id),
        status_color={1: "#22c55e", 2: "#ef4444"}.get(status_id),
        status_is_completed=completed if completed is not None else status_id is not None,
        estimate=estimate,
        elapsed=elapsed,
        has_result=status_id is not None,
    )


class TestBuildTestRunSegments:
    """Tests for build_test_run_segments."""

    def test_groups_by_run_and_status(self):
        segments = build_test_run_segments([
            run_case(1, status_id=1, elapsed=60),
            run_case(2, status_id=1, elapsed=40),
            run_case(3, status_id=2, elapsed=10),
            run_case(4, estimate=120),
        ])
        assert [s.id for s in segments] == ["test-run-1-1", "test-run-1-2", "test-run-1-null"]
        passed = segments[0]
        assert passed.item_count == 2
        assert passed.elapsed == 100
        assert passed.estimate == 0
        assert passed.is_pending is False

    def test_unstarted_cases_are_pending_with_estimate(self):
        """Cases without results contribute estimates and the untested status."""
        segment = build_test_run_segments([run_case(1, estimate=30), run_case(2, estimate=None)])[0]
        assert segment.is_pending is True
        assert segment.estimate == 30
        assert segment.status_name == "Untested"
        assert segment.status_color == "#9ca3af"

    def test_ordered_by_run_then_status_nulls_last(self):
        segments = build_test_run_segments([
            run_case(1, run_id=2),
            run_case(2, status_id=2, run_id=2),
            run_case(3, status_id=1, run_id=1),
        ])
        assert [s.id for s in segments] == ["test-run-1-1", "test-run-2-2", "test-run-2-null"]


class TestSessionSegment:
    def test_pending_session_uses_estimate(self):
        segment = build_session_segment(SessionRow(session_id=4, session_name="Explore", session_estimate=300))
        assert segment.id == "session-4"
        assert segment.is_pending is True
        assert segment.estimate == 300
        assert segment.elapsed is None

    def test_session_with_result_uses_elapsed(self):
        segment = build_session_segment(SessionRow(
            session_id=4, session_name="Explore", session_estimate=300,
            result_id=9, result_elapsed=45, status_id=1, status_name="Passed", status_color="#22c55e",
        ))
        assert segment.is_pending is False
        assert segment.elapsed == 45
        assert segment.estimate is None
        assert segment.to_dict()["colorValue"] == "#22c55e"


class TestCompletionRate:
    def test_share_of_completed_cases(self):
        cases = [run_case(1, status_id=1), run_case(2, status_id=2, completed=False), run_case(3)]
        assert calculate_completion_rate(cases) == pytest.approx(100 / 3)

    def test_no_cases(self):
        assert calculate_completion_rate([]) == 0


class TestSummarizeMilestone:
    """Tests for summarize_milestone and segment widths."""

    def test_totals(self):
        summary = summarize_milestone(
            7,
            [run_case(1, status_id=1, elapsed=150), run_case(2, estimate=120)],
            [
                SessionRow(session_id=9, session_name="B", result_id=1, result_elapsed=50),
                SessionRow(session_id=3, session_name="A", session_estimate=300),
            ],
        )
        assert summary.total_items == 4
        assert summary.completion_rate == 50
        assert summary.total_elapsed == 200
        assert summary.total_estimate == 420
        assert [s.id for s in summary.segments] == [
            "test-run-1-1", "test-run-1-null", "session-3", "session-9",
        ]
        assert summary.to_dict()["milestoneId"] == 7

    def test_widths_by_elapsed_with_floor(self):
        summary = summarize_milestone(
            1,
            [run_case(1, status_id=1, elapsed=150), run_case(2, estimate=120)],
            [SessionRow(session_id=3, session_name="A", result_id=1, result_elapsed=50)],
        )
        widths = calculate_segment_widths(summary)
        assert widths == pytest.approx([75.0, 3, 25.0])

    def test_widths_by_items_without_elapsed(self):
        """Nothing recorded yet: widths follow item counts."""
        summary = summarize_milestone(1, [run_case(1), run_case(2), run_case(3, run_id=2)], [])
        assert calculate_segment_widths(summary) == pytest.approx([200 / 3, 100 / 3])

    def test_empty_milestone(self):
        summary = summarize_milestone(1, [], [])
        assert summary.total_items == 0
        assert summary.completion_rate == 0
        assert summary.segments == []
        assert calculate_segment_widths(summary) == []
        assert summary.to_dict()["issues"] == []

    def test_issues_serialized(self):
        issue = MilestoneIssue(id=4, name="BETA-1", project_id=2, title="Crash",
                               status="Open", external_key="BETA-1")
        summary = summarize_milestone(1, [], [], [issue])
        assert summary.to_dict()["issues"] == [{
            "id": 4,
            "name": "BETA-1",
            "title": "Crash",
            "externalKey": "BETA-1",
            "externalUrl": None,
            "externalStatus": "Open",
            "projectIds": [2],
        }]
