"""
Data service layer for database queries.

Runs the coarse SQL stage of every report (project scope, soft deletes,
lookback and date windows, source and template/state filters) and returns
flattened dataclass rows for the analytics services. No metric is computed
here.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional, Sequence, Tuple

from sqlalchemy import and_, or_, select
from sqlalchemy.orm import Session, joinedload, selectinload

from qa_insights.constants import (
    AUTOMATED_SOURCES,
    MANUAL_SOURCES,
    LOOKBACK_ALL_TIME,
)
from qa_insights.models.db_models import (
    Project, Status, RepositoryCase, Milestone, TestRun,
    TestRunCase, TestRunResult, JUnitTestSuite, JUnitTestResult, Issue,
    TestSession, SessionResult, CaseSourceEnum, JUnitResultTypeEnum, issue_cases,
    issue_test_runs, issue_sessions, issue_session_results
)
from qa_insights.services.execution_fuser import ManualResult, AutomatedResult
from qa_insights.services.coverage_aggregator import IssueLinkRow
from qa_insights.services.trend_pivoter import CaseTrendRow
from qa_insights.services.milestone_progress import RunCaseRow, SessionRow, MilestoneIssue
from qa_insights.utils.helpers import ensure_utc

logger = logging.getLogger(__name__)

# System statuses that never count as an execution in the health report
NON_EXECUTION_STATUSES = ("untested", "skipped")

AUTOMATED_FILTER_ALL = "all"
AUTOMATED_FILTER_AUTOMATED = "automated"
AUTOMATED_FILTER_MANUAL = "manual"


@dataclass
class CaseRow:
    """A repository case in report scope."""
    id: int
    name: str
    source: str
    automated: bool
    project_id: int
    project_name: str
    created_at: Optional[datetime] = None


# ============================================================================
# Helper Functions
# ============================================================================

def source_filter_values(automated_filter: Optional[str]) -> Optional[Tuple[str, ...]]:
    """
    Case sources matching an ``automatedFilter`` value.

    Returns None when no source filter applies.

    Example:
        >>> source_filter_values("manual")
        ('MANUAL', 'API')
    """
    if automated_filter == AUTOMATED_FILTER_AUTOMATED:
        return AUTOMATED_SOURCES
    if automated_filter == AUTOMATED_FILTER_MANUAL:
        return MANUAL_SOURCES
    return None


def lookback_cutoff(now: datetime, lookback_days: int) -> Optional[datetime]:
    """Earliest execution instant inside the lookback window, None for all time."""
    if lookback_days == LOOKBACK_ALL_TIME:
        return None
    return ensure_utc(now) - timedelta(days=lookback_days)


def _case_scope(query, project_ids: Optional[Sequence[int]], automated_filter: Optional[str] = None):
    """Restrict a query joined to RepositoryCase to live cases of the given projects."""
    query = query.filter(
        RepositoryCase.is_deleted == False,  # noqa: E712
        RepositoryCase.is_archived == False,  # noqa: E712
    )
    if project_ids:
        query = query.filter(RepositoryCase.project_id.in_(list(project_ids)))
    sources = source_filter_values(automated_filter)
    if sources:
        query = query.filter(RepositoryCase.source.in_([CaseSourceEnum(s) for s in sources]))
    return query


# ============================================================================
# Cases and Execution Results
# ============================================================================

def get_report_cases(
    db: Session,
    project_ids: Optional[Sequence[int]],
    automated_filter: Optional[str] = None
) -> List[CaseRow]:
    """
    Get live repository cases for a report.

    Args:
        db: Database session
        project_ids: Projects in scope; None or empty means every project
        automated_filter: "all", "automated" or "manual"

    Returns:
        List of CaseRow ordered by case id
    """
    query = db.query(RepositoryCase, Project.name).join(
        Project, RepositoryCase.project_id == Project.id
    ).filter(Project.is_deleted == False)  # noqa: E712
    query = _case_scope(query, project_ids, automated_filter)

    return [
        CaseRow(
            id=case.id,
            name=case.name,
            source=case.source.value,
            automated=case.automated,
            project_id=case.project_id,
            project_name=project_name,
            created_at=ensure_utc(case.created_at),
        )
        for case, project_name in query.order_by(RepositoryCase.id).all()
    ]


def get_manual_results(
    db: Session,
    project_ids: Optional[Sequence[int]] = None,
    case_ids: Optional[Sequence[int]] = None,
    since: Optional[datetime] = None,
    until: Optional[datetime] = None,
    automated_filter: Optional[str] = None,
    exclude_system_statuses: Sequence[str] = NON_EXECUTION_STATUSES
) -> List[ManualResult]:
    """
    Get executed manual results joined with their status.

    Only non-deleted results of non-deleted runs with an execution time are
    returned.

    Args:
        db: Database session
        project_ids: Projects in scope (None = all)
        case_ids: Restrict to these repository cases
        since: Lower bound on executed_at (None = all time)
        until: Upper bound on executed_at
        automated_filter: Case source filter
        exclude_system_statuses: Status system names to leave out
    """
    query = db.query(TestRunResult, TestRunCase, Status).join(
        TestRunCase, TestRunResult.test_run_case_id == TestRunCase.id
    ).join(
        TestRun, TestRunCase.test_run_id == TestRun.id
    ).join(
        RepositoryCase, TestRunCase.repository_case_id == RepositoryCase.id
    ).join(
        Status, TestRunResult.status_id == Status.id
    ).filter(
        TestRunResult.is_deleted == False,  # noqa: E712
        TestRun.is_deleted == False,  # noqa: E712
        TestRunResult.executed_at.isnot(None),
    )
    query = _case_scope(query, project_ids, automated_filter)

    if case_ids is not None:
        query = query.filter(TestRunCase.repository_case_id.in_(list(case_ids)))
    if since is not None:
        query = query.filter(TestRunResult.executed_at >= since)
    if until is not None:
        query = query.filter(TestRunResult.executed_at <= until)
    if exclude_system_statuses:
        query = query.filter(Status.system_name.notin_(list(exclude_system_statuses)))

    return [
        ManualResult(
            result_id=result.id,
            test_case_id=run_case.repository_case_id,
            executed_at=ensure_utc(result.executed_at),
            is_success=status.is_success,
            is_failure=status.is_failure,
            status_id=status.id,
            status_name=status.name,
            status_color=status.color,
            test_run_id=run_case.test_run_id,
        )
        for result, run_case, status in query.all()
    ]


def get_automated_results(
    db: Session,
    project_ids: Optional[Sequence[int]] = None,
    case_ids: Optional[Sequence[int]] = None,
    since: Optional[datetime] = None,
    until: Optional[datetime] = None,
    automated_filter: Optional[str] = None
) -> List[AutomatedResult]:
    """
    Get executed, non-skipped automated results.

    The explicit status, when mapped, is attached so the fuser can prefer
    it over the declared result type.
    """
    query = db.query(JUnitTestResult, JUnitTestSuite.test_run_id, Status).join(
        JUnitTestSuite, JUnitTestResult.test_suite_id == JUnitTestSuite.id
    ).join(
        TestRun, JUnitTestSuite.test_run_id == TestRun.id
    ).join(
        RepositoryCase, JUnitTestResult.repository_case_id == RepositoryCase.id
    ).outerjoin(
        Status, JUnitTestResult.status_id == Status.id
    ).filter(
        TestRun.is_deleted == False,  # noqa: E712
        JUnitTestResult.type != JUnitResultTypeEnum.SKIPPED,
        JUnitTestResult.executed_at.isnot(None),
    )
    query = _case_scope(query, project_ids, automated_filter)

    if case_ids is not None:
        query = query.filter(JUnitTestResult.repository_case_id.in_(list(case_ids)))
    if since is not None:
        query = query.filter(JUnitTestResult.executed_at >= since)
    if until is not None:
        query = query.filter(JUnitTestResult.executed_at <= until)

    return [
        AutomatedResult(
            result_id=result.id,
            test_case_id=result.repository_case_id,
            executed_at=ensure_utc(result.executed_at),
            result_type=result.type.value,
            status_id=status.id if status else None,
            status_name=status.name if status else None,
            status_color=status.color if status else None,
            status_is_success=status.is_success if status else None,
            status_is_failure=status.is_failure if status else None,
            test_run_id=test_run_id,
        )
        for result, test_run_id, status in query.all()
    ]


# ============================================================================
# Issue Coverage
# ============================================================================

def get_issue_links(
    db: Session,
    project_ids: Optional[Sequence[int]]
) -> List[IssueLinkRow]:
    """
    Get one row per live issue x live test case link.

    Issues are scoped by their own project. A linked case may belong to
    another project and still counts toward the issue's coverage.
    Rows come back ordered by issue id then case id; the latest execution
    is attached later by the caller.
    """
    query = db.query(Issue, RepositoryCase, Project.name).join(
        Project, Issue.project_id == Project.id
    ).join(
        issue_cases, issue_cases.c.issue_id == Issue.id
    ).join(
        RepositoryCase, issue_cases.c.repository_case_id == RepositoryCase.id
    ).filter(
        Issue.is_deleted == False,  # noqa: E712
    )
    if project_ids:
        query = query.filter(Issue.project_id.in_(list(project_ids)))
    query = _case_scope(query, None)

    return [
        IssueLinkRow(
            issue_id=issue.id,
            issue_name=issue.name,
            test_case_id=case.id,
            test_case_name=case.name,
            issue_title=issue.title,
            issue_status=issue.status,
            issue_priority=issue.priority,
            issue_type_name=issue.issue_type_name,
            external_key=issue.external_key,
            external_url=issue.external_url,
            project_id=issue.project_id,
            project_name=project_name,
            test_case_source=case.source.value,
        )
        for issue, case, project_name in query.order_by(Issue.id, RepositoryCase.id).all()
    ]


# ============================================================================
# Automation Trends
# ============================================================================

def get_trend_cases(
    db: Session,
    project_ids: Optional[Sequence[int]],
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    template_ids: Optional[Sequence[int]] = None,
    state_ids: Optional[Sequence[int]] = None,
    automated_values: Optional[Sequence[int]] = None,
    field_ids: Optional[Sequence[int]] = None
) -> List[CaseTrendRow]:
    """
    Get non-deleted cases for the automation trend report.

    ``automated_values`` holds 1 (automated) and/or 0 (manual); selecting
    both is the same as selecting neither. Custom field values are loaded
    only for ``field_ids`` so the in-process filter stage can match them.

    Returns:
        List of CaseTrendRow ordered by creation time
    """
    query = db.query(RepositoryCase, Project.name).join(
        Project, RepositoryCase.project_id == Project.id
    ).filter(
        RepositoryCase.is_deleted == False,  # noqa: E712
    )

    if project_ids:
        query = query.filter(RepositoryCase.project_id.in_(list(project_ids)))
    if start_date is not None:
        query = query.filter(RepositoryCase.created_at >= start_date)
    if end_date is not None:
        query = query.filter(RepositoryCase.created_at <= end_date)
    if template_ids:
        query = query.filter(RepositoryCase.template_id.in_(list(template_ids)))
    if state_ids:
        query = query.filter(RepositoryCase.state_id.in_(list(state_ids)))
    if automated_values:
        flags = {int(v) == 1 for v in automated_values}
        if len(flags) == 1:
            query = query.filter(RepositoryCase.automated == flags.pop())

    if field_ids:
        query = query.options(selectinload(RepositoryCase.field_values))

    rows = []
    for case, project_name in query.order_by(RepositoryCase.created_at, RepositoryCase.id).all():
        field_values = {}
        if field_ids:
            wanted = set(field_ids)
            field_values = {
                fv.field_id: fv.value for fv in case.field_values if fv.field_id in wanted
            }
        rows.append(CaseTrendRow(
            case_id=case.id,
            project_id=case.project_id,
            project_name=project_name,
            automated=case.automated,
            created_at=ensure_utc(case.created_at),
            is_deleted=case.is_deleted,
            field_values=field_values,
        ))
    return rows


# ============================================================================
# Milestones
# ============================================================================

def get_milestone(db: Session, milestone_id: int) -> Optional[Milestone]:
    """Get a non-deleted milestone by id."""
    return db.query(Milestone).filter(
        and_(Milestone.id == milestone_id, Milestone.is_deleted == False)  # noqa: E712
    ).first()


def get_milestone_run_cases(db: Session, milestone_id: int) -> List[RunCaseRow]:
    """
    Get the test-run cases of a milestone's non-deleted runs.

    Elapsed time is the sum over the case's non-deleted results and their
    step results.
    """
    run_cases = db.query(TestRunCase).join(
        TestRun, TestRunCase.test_run_id == TestRun.id
    ).filter(
        TestRun.milestone_id == milestone_id,
        TestRun.is_deleted == False,  # noqa: E712
    ).options(
        joinedload(TestRunCase.test_run),
        joinedload(TestRunCase.status),
        joinedload(TestRunCase.repository_case),
        selectinload(TestRunCase.results).selectinload(TestRunResult.step_results),
    ).order_by(TestRunCase.test_run_id, TestRunCase.id).all()

    rows = []
    for run_case in run_cases:
        results = [r for r in run_case.results if not r.is_deleted]
        elapsed = sum(
            (r.elapsed or 0) + sum(step.elapsed or 0 for step in r.step_results)
            for r in results
        )
        status = run_case.status
        rows.append(RunCaseRow(
            test_run_id=run_case.test_run_id,
            test_run_name=run_case.test_run.name,
            run_case_id=run_case.id,
            status_id=run_case.status_id,
            status_name=status.name if status else None,
            status_color=status.color if status else None,
            status_is_completed=bool(status and status.is_completed),
            estimate=run_case.repository_case.estimate,
            elapsed=elapsed,
            has_result=bool(results),
        ))
    return rows


def get_milestone_sessions(db: Session, milestone_id: int) -> List[SessionRow]:
    """Get non-deleted sessions of a milestone with their most recent non-deleted result."""
    sessions = db.query(TestSession).filter(
        TestSession.milestone_id == milestone_id,
        TestSession.is_deleted == False,  # noqa: E712
    ).options(
        selectinload(TestSession.results).joinedload(SessionResult.status)
    ).order_by(TestSession.id).all()

    rows = []
    for session in sessions:
        results = [r for r in session.results if not r.is_deleted]
        latest = max(results, key=lambda r: (ensure_utc(r.created_at), r.id), default=None)
        status = latest.status if latest else None
        rows.append(SessionRow(
            session_id=session.id,
            session_name=session.name,
            session_estimate=session.estimate,
            result_id=latest.id if latest else None,
            result_elapsed=latest.elapsed if latest else None,
            status_id=latest.status_id if latest else None,
            status_name=status.name if status else None,
            status_color=status.color if status else None,
        ))
    return rows


def get_milestone_issues(
    db: Session,
    test_run_ids: Sequence[int],
    session_ids: Sequence[int]
) -> List[MilestoneIssue]:
    """
    Get live issues linked to the given runs, sessions or their live session results.

    Each issue is returned once, ordered by id.
    """
    links = []
    if test_run_ids:
        links.append(Issue.id.in_(
            select(issue_test_runs.c.issue_id).where(
                issue_test_runs.c.test_run_id.in_(list(test_run_ids))
            )
        ))
    if session_ids:
        links.append(Issue.id.in_(
            select(issue_sessions.c.issue_id).where(
                issue_sessions.c.session_id.in_(list(session_ids))
            )
        ))
        links.append(Issue.id.in_(
            select(issue_session_results.c.issue_id).join(
                SessionResult, issue_session_results.c.session_result_id == SessionResult.id
            ).where(
                SessionResult.session_id.in_(list(session_ids)),
                SessionResult.is_deleted == False,  # noqa: E712
            )
        ))
    if not links:
        return []

    issues = db.query(Issue).filter(
        Issue.is_deleted == False,  # noqa: E712
        or_(*links),
    ).order_by(Issue.id).all()

    return [
        MilestoneIssue(
            id=issue.id,
            name=issue.name,
            project_id=issue.project_id,
            title=issue.title,
            status=issue.status,
            external_key=issue.external_key,
            external_url=issue.external_url,
        )
        for issue in issues
    ]
