"""
Pydantic schemas for API request/response validation.

Request bodies arrive with camelCase keys. Numeric report parameters are
clamped into their valid ranges instead of being rejected, and values that
can't be parsed fall back to the configured defaults.
"""
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional, Union
from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator
from pydantic.alias_generators import to_camel

from qa_insights.config import get_settings
from qa_insights.constants import PAGE_SIZE_ALL
from qa_insights.services.period_bucketer import DateGrouping
from qa_insights.services.health_scorer import (
    clamp_stale_days, clamp_min_executions, clamp_lookback_days
)
from qa_insights.services.flakiness_ranker import clamp_consecutive_runs, clamp_flip_threshold
from qa_insights.utils.helpers import parse_iso_datetime


class CamelModel(BaseModel):
    """Base model reading and writing camelCase keys."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# Request Schemas

class ReportRequest(CamelModel):
    """Parameters shared by every report."""
    project_id: Optional[int] = None
    project_ids: List[int] = []
    dimensions: List[str] = []
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    automated_filter: Literal["all", "automated", "manual"] = Field(default="all", validate_default=True)
    page: int = 1
    page_size: Union[int, str] = PAGE_SIZE_ALL
    sort_column: Optional[str] = None
    sort_direction: Literal["asc", "desc"] = "desc"

    @field_validator('automated_filter', mode='before')
    @classmethod
    def normalize_automated_filter(cls, v):
        """Unknown filter values mean no filter."""
        if isinstance(v, str) and v.lower() in ("automated", "manual"):
            return v.lower()
        return "all"

    @field_validator('start_date', 'end_date', mode='before')
    @classmethod
    def parse_dates(cls, v):
        if isinstance(v, str):
            return parse_iso_datetime(v)
        return v

    @field_validator('page_size', mode='before')
    @classmethod
    def validate_page_size(cls, v):
        """Accept a positive integer or the "All" sentinel."""
        if v is None or v == PAGE_SIZE_ALL:
            return PAGE_SIZE_ALL
        try:
            size = int(v)
        except (TypeError, ValueError, OverflowError):
            raise ValueError(f'pageSize must be a positive integer or "{PAGE_SIZE_ALL}"')
        if size < 1:
            raise ValueError('pageSize must be at least 1')
        return size

    @field_validator('page', mode='before')
    @classmethod
    def validate_page(cls, v):
        try:
            return max(int(v), 1)
        except (TypeError, ValueError, OverflowError):
            return 1

    @property
    def include_project_dimension(self) -> bool:
        return "project" in self.dimensions


class TestCaseHealthRequest(ReportRequest):
    """Parameters of the test case health report."""
    __test__ = False

    stale_days_threshold: Optional[int] = Field(default=None, validate_default=True)
    min_executions_for_rate: Optional[int] = Field(default=None, validate_default=True)
    lookback_days: Optional[int] = Field(default=None, validate_default=True)

    @field_validator('stale_days_threshold', mode='before')
    @classmethod
    def clamp_stale_days_threshold(cls, v):
        return clamp_stale_days(v, get_settings().DEFAULT_STALE_DAYS_THRESHOLD)

    @field_validator('min_executions_for_rate', mode='before')
    @classmethod
    def clamp_min_executions_for_rate(cls, v):
        return clamp_min_executions(v, get_settings().DEFAULT_MIN_EXECUTIONS_FOR_RATE)

    @field_validator('lookback_days', mode='before')
    @classmethod
    def clamp_lookback(cls, v):
        return clamp_lookback_days(v, get_settings().DEFAULT_LOOKBACK_DAYS)


class FlakyTestsRequest(ReportRequest):
    """Parameters of the flaky tests report."""
    consecutive_runs: Optional[int] = Field(default=None, validate_default=True)
    flip_threshold: Optional[int] = Field(default=None, validate_default=True)

    @field_validator('consecutive_runs', mode='before')
    @classmethod
    def clamp_runs(cls, v):
        return clamp_consecutive_runs(v, get_settings().DEFAULT_CONSECUTIVE_RUNS)

    @field_validator('flip_threshold', mode='before')
    @classmethod
    def clamp_threshold(cls, v, info: ValidationInfo):
        """Bounded by the (already clamped) run window."""
        settings = get_settings()
        runs = info.data.get('consecutive_runs', settings.DEFAULT_CONSECUTIVE_RUNS)
        return clamp_flip_threshold(v, runs, settings.DEFAULT_FLIP_THRESHOLD)


class IssueCoverageRequest(ReportRequest):
    """Parameters of the issue test coverage report."""
    pass


class AutomationTrendsRequest(ReportRequest):
    """Parameters of the automation trends report."""
    date_grouping: DateGrouping = Field(default=DateGrouping.WEEKLY, validate_default=True)
    template_ids: List[int] = []
    state_ids: List[int] = []
    automated: List[int] = []  # 1 = automated, 0 = manual
    dynamic_field_filters: Dict[str, List[Any]] = {}

    @field_validator('date_grouping', mode='before')
    @classmethod
    def parse_date_grouping(cls, v):
        return DateGrouping.parse(v)


# Response Schemas

class ReportResponse(CamelModel):
    """Rows of a report plus the total row count."""
    data: List[Dict[str, Any]]
    total: int


class HealthReportResponse(ReportResponse):
    stale_days_threshold: int
    min_executions_for_rate: int
    lookback_days: int


class FlakyTestsResponse(ReportResponse):
    consecutive_runs: int
    flip_threshold: int


class IssueCoverageResponse(ReportResponse):
    summaries: List[Dict[str, Any]] = []


class ProjectRef(CamelModel):
    id: int
    name: str


class AutomationTrendsResponse(ReportResponse):
    page: int = 1
    page_size: int
    projects: List[ProjectRef] = []
    date_grouping: DateGrouping


class MilestoneSegmentSchema(CamelModel):
    id: str
    type: Literal["test-run", "session"]
    source_id: int
    source_name: str
    status_id: Optional[int] = None
    status_name: str
    color_value: str
    elapsed: Optional[int] = None
    estimate: Optional[int] = None
    is_pending: bool
    item_count: int
    width_percent: float


class MilestoneIssueSchema(CamelModel):
    id: int
    name: str
    title: Optional[str] = None
    external_key: Optional[str] = None
    external_url: Optional[str] = None
    external_status: Optional[str] = None
    project_ids: List[int] = []


class MilestoneSummaryResponse(CamelModel):
    milestone_id: int
    total_items: int
    completion_rate: float
    total_elapsed: int
    total_estimate: int
    segments: List[MilestoneSegmentSchema] = []
    issues: List[MilestoneIssueSchema] = []
