"""
Report orchestration.

Each report runs the same two stages: data_service fetches the coarse row
set, then the analytics modules compute the derived rows. Project-scoped
and cross-project endpoints share these functions and differ only in the
project ids they pass.
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from qa_insights.config import get_settings
from qa_insights.models.schemas import (
    TestCaseHealthRequest,
    FlakyTestsRequest,
    IssueCoverageRequest,
    AutomationTrendsRequest,
)
from qa_insights.services import data_service
from qa_insights.services.execution_fuser import fuse_by_test_case
from qa_insights.services.health_scorer import build_health_rows
from qa_insights.services.flakiness_ranker import detect_flaky_tests, rank_flaky_tests
from qa_insights.services.coverage_aggregator import (
    aggregate_issue_coverage, sort_issue_coverage, flatten_coverage_rows
)
from qa_insights.services.trend_pivoter import build_automation_trends
from qa_insights.services.milestone_progress import summarize_milestone, calculate_segment_widths
from qa_insights.utils.filters import apply_predicate, build_custom_field_predicate
from qa_insights.utils.helpers import paginate, not_found_error

logger = logging.getLogger(__name__)

FLAKY_EXCLUDED_STATUSES = ("untested",)


def case_health_report(
    db: Session,
    request: TestCaseHealthRequest,
    project_ids: Optional[List[int]],
    now: datetime,
    include_project: bool = False
) -> Dict[str, Any]:
    """
    Score the health of every live test case in scope.

    Executions count when they fall inside the lookback window; cases with
    none are reported as never executed.
    """
    since = data_service.lookback_cutoff(now, request.lookback_days)
    cases = data_service.get_report_cases(db, project_ids, request.automated_filter)
    manual = data_service.get_manual_results(
        db, project_ids, since=since, automated_filter=request.automated_filter
    )
    automated = data_service.get_automated_results(
        db, project_ids, since=since, automated_filter=request.automated_filter
    )

    timelines = fuse_by_test_case(manual, automated)
    rows = build_health_rows(
        cases,
        timelines,
        now,
        request.stale_days_threshold,
        request.min_executions_for_rate,
        include_project=include_project,
    )
    page_rows, total = paginate(rows, request.page, request.page_size)

    logger.info(
        f"Test case health: {total} cases, {len(manual)} manual and "
        f"{len(automated)} automated results (lookback={request.lookback_days})"
    )
    return {
        "data": [row.to_dict() for row in page_rows],
        "total": total,
        "stale_days_threshold": request.stale_days_threshold,
        "min_executions_for_rate": request.min_executions_for_rate,
        "lookback_days": request.lookback_days,
    }


def flaky_tests_report(
    db: Session,
    request: FlakyTestsRequest,
    project_ids: Optional[List[int]],
    include_project: bool = False
) -> Dict[str, Any]:
    """
    Detect flaky tests and rank them for charting.

    ``total`` counts every flaky test; ``data`` holds the highest-priority
    ones up to the configured display limit (or the requested page).
    """
    cases = data_service.get_report_cases(db, project_ids, request.automated_filter)
    manual = data_service.get_manual_results(
        db, project_ids,
        since=request.start_date,
        until=request.end_date,
        automated_filter=request.automated_filter,
        exclude_system_statuses=FLAKY_EXCLUDED_STATUSES,
    )
    automated = data_service.get_automated_results(
        db, project_ids,
        since=request.start_date,
        until=request.end_date,
        automated_filter=request.automated_filter,
    )

    timelines = fuse_by_test_case(manual, automated, include_neutral=True)
    flaky = detect_flaky_tests(
        cases, timelines, request.consecutive_runs, request.flip_threshold,
        include_project=include_project,
    )
    ranked = rank_flaky_tests(flaky, limit=get_settings().FLAKY_CHART_DISPLAY_LIMIT)
    page_rows, _ = paginate(ranked, request.page, request.page_size)

    logger.info(
        f"Flaky tests: {len(flaky)} of {len(cases)} cases flaky "
        f"(runs={request.consecutive_runs}, threshold={request.flip_threshold})"
    )
    return {
        "data": [test.to_dict() for test in page_rows],
        "total": len(flaky),
        "consecutive_runs": request.consecutive_runs,
        "flip_threshold": request.flip_threshold,
    }


def issue_coverage_report(
    db: Session,
    request: IssueCoverageRequest,
    project_ids: Optional[List[int]],
    include_project: bool = False
) -> Dict[str, Any]:
    """
    Coverage of issues by their linked test cases.

    The latest result of a linked case may have any status, neutral ones
    included, so an "untested" latest result leaves the case untested.
    Results are looked up by case id alone since a linked case may live in
    another project than its issue.
    """
    links = data_service.get_issue_links(db, project_ids)
    case_ids = sorted({link.test_case_id for link in links})

    timelines = {}
    if case_ids:
        manual = data_service.get_manual_results(
            db, None, case_ids=case_ids, exclude_system_statuses=()
        )
        automated = data_service.get_automated_results(db, None, case_ids=case_ids)
        timelines = fuse_by_test_case(manual, automated, include_neutral=True)

    for link in links:
        timeline = timelines.get(link.test_case_id)
        link.latest_execution = timeline[0] if timeline else None

    coverage = sort_issue_coverage(aggregate_issue_coverage(links))
    flat = flatten_coverage_rows(coverage, include_project)
    page_rows, total = paginate(flat, request.page, request.page_size)

    logger.info(f"Issue coverage: {len(coverage)} issues, {total} links")
    return {
        "data": page_rows,
        "total": total,
        "summaries": [entry.to_dict(include_project) for entry in coverage],
    }


def automation_trends_report(
    db: Session,
    request: AutomationTrendsRequest,
    project_ids: Optional[List[int]]
) -> Dict[str, Any]:
    """
    Cumulative automated/manual case counts per period and project.

    The SQL stage applies the standard filters; custom field filters run
    afterwards as a predicate over the fetched rows.
    """
    field_ids = [int(field_id) for field_id in request.dynamic_field_filters]
    rows = data_service.get_trend_cases(
        db,
        project_ids,
        start_date=request.start_date,
        end_date=request.end_date,
        template_ids=request.template_ids,
        state_ids=request.state_ids,
        automated_values=request.automated,
        field_ids=field_ids,
    )
    if request.dynamic_field_filters:
        rows = apply_predicate(rows, build_custom_field_predicate(request.dynamic_field_filters))

    periods, dimensions = build_automation_trends(
        rows, request.date_grouping, request.sort_column, request.sort_direction
    )

    logger.info(
        f"Automation trends: {len(rows)} cases, {len(periods)} "
        f"{request.date_grouping.value} periods"
    )
    return {
        "data": periods,
        "total": len(periods),
        "page": 1,
        "page_size": len(periods),
        "projects": [d.to_dict() for d in dimensions],
        "date_grouping": request.date_grouping,
    }


def milestone_summary(db: Session, milestone_id: int) -> Dict[str, Any]:
    """
    Progress summary of a milestone with rendered segment widths.

    Raises:
        HTTPException: 404 if the milestone does not exist
    """
    milestone = data_service.get_milestone(db, milestone_id)
    if milestone is None:
        raise not_found_error("Milestone", str(milestone_id))

    cases = data_service.get_milestone_run_cases(db, milestone_id)
    sessions = data_service.get_milestone_sessions(db, milestone_id)
    issues = data_service.get_milestone_issues(
        db,
        sorted({case.test_run_id for case in cases}),
        [session.session_id for session in sessions],
    )
    summary = summarize_milestone(milestone_id, cases, sessions, issues)
    widths = calculate_segment_widths(summary)

    result = summary.to_dict()
    for segment, width in zip(result["segments"], widths):
        segment["widthPercent"] = width
    return result
