"""
Milestone progress aggregation.

Combines the test-run cases and sessions of a milestone into the segments
of a progress bar: one segment per (test run, status) group and one per
session, plus overall totals and the completion rate.
"""
import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from qa_insights.constants import (
    UNTESTED_STATUS_NAME,
    UNTESTED_STATUS_COLOR,
    MIN_SEGMENT_WIDTH_PERCENT,
)

logger = logging.getLogger(__name__)

SEGMENT_TEST_RUN = "test-run"
SEGMENT_SESSION = "session"


@dataclass
class RunCaseRow:
    """
    A test-run case of the milestone.

    ``elapsed`` is the summed elapsed time of the case's non-deleted results
    and their step results; ``has_result`` is False while nothing was
    recorded for the case.
    """
    test_run_id: int
    test_run_name: str
    run_case_id: int
    status_id: Optional[int] = None
    status_name: Optional[str] = None
    status_color: Optional[str] = None
    status_is_completed: bool = False
    estimate: Optional[int] = None
    elapsed: int = 0
    has_result: bool = False


@dataclass
class SessionRow:
    """A session of the milestone joined with its latest non-deleted result."""
    session_id: int
    session_name: str
    session_estimate: Optional[int] = None
    result_id: Optional[int] = None
    result_elapsed: Optional[int] = None
    status_id: Optional[int] = None
    status_name: Optional[str] = None
    status_color: Optional[str] = None


@dataclass
class MilestoneIssue:
    """An issue linked to a run, session or session result of the milestone."""
    id: int
    name: str
    project_id: int
    title: Optional[str] = None
    status: Optional[str] = None
    external_key: Optional[str] = None
    external_url: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "title": self.title,
            "externalKey": self.external_key,
            "externalUrl": self.external_url,
            "externalStatus": self.status,
            "projectIds": [self.project_id],
        }


@dataclass
class MilestoneSegment:
    type: str
    source_id: int
    source_name: str
    status_id: Optional[int]
    status_name: str
    status_color: str
    elapsed: Optional[int]
    estimate: Optional[int]
    is_pending: bool
    item_count: int = 1

    @property
    def id(self) -> str:
        if self.type == SEGMENT_SESSION:
            return f"session-{self.source_id}"
        status = self.status_id if self.status_id is not None else "null"
        return f"test-run-{self.source_id}-{status}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "sourceId": self.source_id,
            "sourceName": self.source_name,
            "statusId": self.status_id,
            "statusName": self.status_name,
            "colorValue": self.status_color,
            "elapsed": self.elapsed,
            "estimate": self.estimate,
            "isPending": self.is_pending,
            "itemCount": self.item_count,
        }


@dataclass
class MilestoneSummary:
    milestone_id: int
    total_items: int
    completion_rate: float
    total_elapsed: int
    total_estimate: int
    segments: List[MilestoneSegment] = field(default_factory=list)
    issues: List[MilestoneIssue] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "milestoneId": self.milestone_id,
            "totalItems": self.total_items,
            "completionRate": self.completion_rate,
            "totalElapsed": self.total_elapsed,
            "totalEstimate": self.total_estimate,
            "segments": [s.to_dict() for s in self.segments],
            "issues": [i.to_dict() for i in self.issues],
        }


def build_test_run_segments(cases: Iterable[RunCaseRow]) -> List[MilestoneSegment]:
    """
    One segment per (test run, status) group.

    Elapsed time comes from recorded results; estimates only from cases
    still without a result, which also mark the segment pending. Segments
    are ordered by run id, then status id with cases lacking a status last.
    """
    groups: Dict[tuple, MilestoneSegment] = OrderedDict()
    for case in cases:
        key = (case.test_run_id, case.status_id)
        segment = groups.get(key)
        if segment is None:
            segment = MilestoneSegment(
                type=SEGMENT_TEST_RUN,
                source_id=case.test_run_id,
                source_name=case.test_run_name,
                status_id=case.status_id,
                status_name=case.status_name or UNTESTED_STATUS_NAME,
                status_color=case.status_color or UNTESTED_STATUS_COLOR,
                elapsed=0,
                estimate=0,
                is_pending=False,
                item_count=0,
            )
            groups[key] = segment

        segment.item_count += 1
        if case.has_result:
            segment.elapsed += case.elapsed or 0
        else:
            segment.is_pending = True
            segment.estimate += case.estimate or 0

    def order(segment: MilestoneSegment):
        return (
            segment.source_id,
            segment.status_id is None,
            segment.status_id if segment.status_id is not None else 0,
        )

    return sorted(groups.values(), key=order)


def build_session_segment(session: SessionRow) -> MilestoneSegment:
    pending = session.result_id is None
    return MilestoneSegment(
        type=SEGMENT_SESSION,
        source_id=session.session_id,
        source_name=session.session_name,
        status_id=session.status_id,
        status_name=session.status_name or UNTESTED_STATUS_NAME,
        status_color=session.status_color or UNTESTED_STATUS_COLOR,
        elapsed=session.result_elapsed,
        estimate=session.session_estimate if pending else None,
        is_pending=pending,
        item_count=1,
    )


def calculate_completion_rate(cases: Iterable[RunCaseRow]) -> float:
    """Share of test-run cases whose current status is a completed one, capped at 100."""
    cases = list(cases)
    if not cases:
        return 0
    completed = sum(1 for c in cases if c.status_is_completed)
    return min(completed / len(cases) * 100, 100)


def summarize_milestone(
    milestone_id: int,
    cases: List[RunCaseRow],
    sessions: List[SessionRow],
    issues: Optional[List[MilestoneIssue]] = None
) -> MilestoneSummary:
    """
    Build the milestone progress summary.

    Args:
        milestone_id: Milestone being summarized
        cases: Test-run cases of the milestone's non-deleted runs
        sessions: Non-deleted sessions of the milestone, each with its latest result
        issues: Live issues linked to those runs, sessions or session results

    Returns:
        MilestoneSummary with test-run segments first, then sessions by id
    """
    run_segments = build_test_run_segments(cases)
    session_segments = [
        build_session_segment(s) for s in sorted(sessions, key=lambda s: s.session_id)
    ]
    segments = run_segments + session_segments

    summary = MilestoneSummary(
        milestone_id=milestone_id,
        total_items=sum(s.item_count for s in run_segments) + len(session_segments),
        completion_rate=calculate_completion_rate(cases),
        total_elapsed=sum(s.elapsed or 0 for s in segments),
        total_estimate=sum(s.estimate or 0 for s in segments),
        segments=segments,
        issues=list(issues or []),
    )
    logger.debug(
        f"Milestone {milestone_id}: {len(segments)} segments, "
        f"{summary.total_items} items, {summary.completion_rate:.1f}% complete"
    )
    return summary


def calculate_segment_widths(summary: MilestoneSummary) -> List[float]:
    """
    Percentage width of each segment in the progress bar.

    With recorded elapsed time, completed segments are sized by their share
    of it and pending segments get the minimum width. Without any elapsed
    time, segments are sized by their share of items. No segment is
    narrower than the minimum width.
    """
    widths = []
    for segment in summary.segments:
        if summary.total_elapsed > 0:
            if segment.is_pending:
                width = MIN_SEGMENT_WIDTH_PERCENT
            else:
                width = (segment.elapsed or 0) / summary.total_elapsed * 100
        elif summary.total_items > 0:
            width = segment.item_count / summary.total_items * 100
        else:
            width = 0
        widths.append(max(width, MIN_SEGMENT_WIDTH_PERCENT))
    return widths
