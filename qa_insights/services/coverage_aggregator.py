"""
Issue test coverage aggregation.

Each input row links one issue to one test case together with the case's
latest fused execution. Rows are rolled up into one summary per issue
(linked / passed / failed / untested counts and pass rate over tested
cases) and re-emitted as flat rows carrying their issue's summary.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from qa_insights.services.execution_fuser import ExecutionRecord
from qa_insights.utils.helpers import percentage

logger = logging.getLogger(__name__)


@dataclass
class IssueLinkRow:
    """One issue x test case link, as fetched by the data service."""
    issue_id: int
    issue_name: str
    test_case_id: int
    test_case_name: str
    issue_title: Optional[str] = None
    issue_status: Optional[str] = None
    issue_priority: Optional[str] = None
    issue_type_name: Optional[str] = None
    external_key: Optional[str] = None
    external_url: Optional[str] = None
    project_id: Optional[int] = None
    project_name: Optional[str] = None
    test_case_source: Optional[str] = None
    latest_execution: Optional[ExecutionRecord] = None


@dataclass
class IssueCoverageSummary:
    issue_id: int
    linked_test_cases: int = 0
    passed_test_cases: int = 0
    failed_test_cases: int = 0
    untested_test_cases: int = 0
    pass_rate: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "linkedTestCases": self.linked_test_cases,
            "passedTestCases": self.passed_test_cases,
            "failedTestCases": self.failed_test_cases,
            "untestedTestCases": self.untested_test_cases,
            "passRate": self.pass_rate,
        }


@dataclass
class IssueCoverage:
    """An issue, its coverage summary and the link rows it was built from."""
    issue: IssueLinkRow
    summary: IssueCoverageSummary
    links: List[IssueLinkRow] = field(default_factory=list)

    def issue_dict(self, include_project: bool = False) -> Dict[str, Any]:
        issue = self.issue
        data = {
            "issueId": issue.issue_id,
            "issueName": issue.issue_name,
            "issueTitle": issue.issue_title,
            "issueStatus": issue.issue_status,
            "issuePriority": issue.issue_priority,
            "issueTypeName": issue.issue_type_name,
            "issueExternalKey": issue.external_key,
            "issueExternalUrl": issue.external_url,
        }
        if include_project and issue.project_id is not None:
            data["project"] = {"id": issue.project_id, "name": issue.project_name}
        return data

    def to_dict(self, include_project: bool = False) -> Dict[str, Any]:
        data = self.issue_dict(include_project)
        data.update(self.summary.to_dict())
        return data


def classify_link(latest: Optional[ExecutionRecord]) -> str:
    """'passed', 'failed' or 'untested' from a case's latest execution."""
    if latest is None:
        return "untested"
    if latest.is_success:
        return "passed"
    if latest.is_failure:
        return "failed"
    return "untested"


def aggregate_issue_coverage(rows: Iterable[IssueLinkRow]) -> List[IssueCoverage]:
    """
    Roll link rows up into one coverage entry per issue.

    Pass 1 counts and classifies the linked cases; pass 2 computes the pass
    rate over tested cases only (0 when nothing was tested). Issues keep
    the order in which they first appear.
    """
    coverage: Dict[int, IssueCoverage] = {}

    for row in rows:
        entry = coverage.get(row.issue_id)
        if entry is None:
            entry = IssueCoverage(issue=row, summary=IssueCoverageSummary(issue_id=row.issue_id))
            coverage[row.issue_id] = entry

        entry.links.append(row)
        summary = entry.summary
        summary.linked_test_cases += 1
        outcome = classify_link(row.latest_execution)
        if outcome == "passed":
            summary.passed_test_cases += 1
        elif outcome == "failed":
            summary.failed_test_cases += 1
        else:
            summary.untested_test_cases += 1

    for entry in coverage.values():
        summary = entry.summary
        tested = summary.passed_test_cases + summary.failed_test_cases
        summary.pass_rate = percentage(summary.passed_test_cases, tested)

    return list(coverage.values())


def coverage_sort_key(summary: IssueCoverageSummary):
    return (-summary.failed_test_cases, summary.pass_rate, -summary.linked_test_cases)


def sort_issue_coverage(entries: Iterable[IssueCoverage]) -> List[IssueCoverage]:
    """Most failed cases first, then lowest pass rate, then most linked cases."""
    return sorted(entries, key=lambda entry: coverage_sort_key(entry.summary))


def flatten_coverage_rows(
    entries: Iterable[IssueCoverage],
    include_project: bool = False
) -> List[Dict[str, Any]]:
    """
    One row per issue x test case link, each repeating its issue summary.
    The issue's project is added only when ``include_project`` is set.

    The issue order of ``entries`` is kept, so sorting the entries first
    gives flat rows in display order.
    """
    flat = []
    for entry in entries:
        issue_data = entry.to_dict(include_project)
        for link in entry.links:
            row = dict(issue_data)
            row.update({
                "testCaseId": link.test_case_id,
                "testCaseName": link.test_case_name,
                "testCaseSource": link.test_case_source,
                "lastStatus": link.latest_execution.to_dict() if link.latest_execution else None,
            })
            flat.append(row)
    return flat
