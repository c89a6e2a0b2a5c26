"""
Reports API router.

Project-scoped report endpoints live on ``router`` and require a
``projectId``; cross-project variants live on ``admin_router`` and accept
an optional ``projectIds`` list.
"""
import logging
from datetime import datetime, timezone
from typing import List, Optional
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from qa_insights.database import get_db
from qa_insights.services import report_service
from qa_insights.models.schemas import (
    ReportRequest,
    TestCaseHealthRequest,
    FlakyTestsRequest,
    IssueCoverageRequest,
    AutomationTrendsRequest,
    HealthReportResponse,
    FlakyTestsResponse,
    IssueCoverageResponse,
    AutomationTrendsResponse,
)
from qa_insights.utils.helpers import validation_error

logger = logging.getLogger(__name__)
router = APIRouter()
admin_router = APIRouter()


def get_now() -> datetime:
    """Reference instant for time-relative metrics (overridden in tests)."""
    return datetime.now(timezone.utc)


def require_project(request: ReportRequest) -> List[int]:
    """Project scope of a project-scoped report; 400 when projectId is missing."""
    if not request.project_id:
        raise validation_error("Project ID is required")
    return [request.project_id]


def cross_project_scope(request: ReportRequest) -> Optional[List[int]]:
    """Project scope of a cross-project report; None means every project."""
    return list(request.project_ids) or None


# ============================================================================
# Project-scoped reports
# ============================================================================

@router.post("/test-case-health", response_model=HealthReportResponse)
async def get_test_case_health(
    request: TestCaseHealthRequest,
    db: Session = Depends(get_db),
    now: datetime = Depends(get_now)
):
    """
    Health of every test case in a project.

    Rows are ordered by status (always failing, never executed, always
    passing, healthy), then stale cases first, then lowest score first.
    """
    project_ids = require_project(request)
    return report_service.case_health_report(db, request, project_ids, now)


@router.post("/flaky-tests", response_model=FlakyTestsResponse)
async def flaky_tests(
    request: FlakyTestsRequest,
    db: Session = Depends(get_db)
):
    """Tests of a project whose recent results keep flipping between pass and fail."""
    project_ids = require_project(request)
    return report_service.flaky_tests_report(db, request, project_ids)


@router.post("/issue-coverage", response_model=IssueCoverageResponse)
async def issue_coverage(
    request: IssueCoverageRequest,
    db: Session = Depends(get_db)
):
    """Linked / passed / failed / untested test cases per issue of a project."""
    project_ids = require_project(request)
    return report_service.issue_coverage_report(
        db, request, project_ids, include_project=request.include_project_dimension
    )


@router.post("/automation-trends", response_model=AutomationTrendsResponse)
async def automation_trends(
    request: AutomationTrendsRequest,
    db: Session = Depends(get_db)
):
    """Cumulative automated vs manual case counts of a project per period."""
    project_ids = require_project(request)
    return report_service.automation_trends_report(db, request, project_ids)


# ============================================================================
# Cross-project reports
# ============================================================================

@admin_router.post("/test-case-health", response_model=HealthReportResponse)
async def cross_project_test_case_health(
    request: TestCaseHealthRequest,
    db: Session = Depends(get_db),
    now: datetime = Depends(get_now)
):
    """Test case health across projects; ``dimensions: ["project"]`` adds the project to each row."""
    return report_service.case_health_report(
        db, request, cross_project_scope(request), now,
        include_project=request.include_project_dimension,
    )


@admin_router.post("/flaky-tests", response_model=FlakyTestsResponse)
async def cross_project_flaky_tests(
    request: FlakyTestsRequest,
    db: Session = Depends(get_db)
):
    return report_service.flaky_tests_report(
        db, request, cross_project_scope(request),
        include_project=request.include_project_dimension,
    )


@admin_router.post("/issue-coverage", response_model=IssueCoverageResponse)
async def cross_project_issue_coverage(
    request: IssueCoverageRequest,
    db: Session = Depends(get_db)
):
    return report_service.issue_coverage_report(
        db, request, cross_project_scope(request), include_project=request.include_project_dimension
    )


@admin_router.post("/automation-trends", response_model=AutomationTrendsResponse)
async def cross_project_automation_trends(
    request: AutomationTrendsRequest,
    db: Session = Depends(get_db)
):
    """Automation trends with one column group per project."""
    return report_service.automation_trends_report(db, request, cross_project_scope(request))
