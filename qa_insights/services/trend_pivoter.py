"""
Automation trend pivoting.

Test cases are bucketed into calendar periods by creation date and counted
cumulatively per dimension (project): a case counts in every period ending
on or after its creation, unless it is deleted. Counts stay in typed
DimensionCounts objects per period and are only flattened into
``{Dimension}_automated`` style columns for the response.
"""
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from functools import cmp_to_key
from typing import Any, Dict, Iterable, List, Optional, Tuple

from qa_insights.services.period_bucketer import DateGrouping, PeriodBucket, unique_periods
from qa_insights.utils.helpers import ensure_utc, round_half_up

logger = logging.getLogger(__name__)

WHITESPACE = re.compile(r"\s+")


@dataclass
class CaseTrendRow:
    """A repository case as needed for trend counting."""
    case_id: int
    project_id: int
    project_name: str
    automated: bool
    created_at: datetime
    is_deleted: bool = False
    field_values: Dict[int, Any] = field(default_factory=dict)


@dataclass
class Dimension:
    """A pivot dimension value and the column prefix it is flattened under."""
    id: int
    name: str
    key: str

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name}


@dataclass
class DimensionCounts:
    automated: int = 0
    manual: int = 0
    automated_change: Optional[int] = None
    manual_change: Optional[int] = None

    @property
    def total(self) -> int:
        return self.automated + self.manual

    @property
    def percent_automated(self) -> float:
        if self.total == 0:
            return 0
        return round_half_up(self.automated / self.total * 100, 2)


@dataclass
class TrendPeriod:
    bucket: PeriodBucket
    counts: Dict[int, DimensionCounts] = field(default_factory=dict)


def column_prefix(name: str) -> str:
    """Dimension name with all whitespace removed."""
    return WHITESPACE.sub("", name or "")


def collect_dimensions(rows: Iterable[CaseTrendRow]) -> List[Dimension]:
    """
    Distinct projects in order of first appearance, with unique column keys.

    Names that collapse to the same key once whitespace is stripped
    ("QA Team" and "QATeam") would overwrite each other's columns, so every
    colliding key gets the project id appended ("QATeam_3", "QATeam_7").
    """
    seen: Dict[int, str] = {}
    for row in rows:
        if row.project_id not in seen:
            seen[row.project_id] = row.project_name

    prefixes: Dict[str, List[int]] = {}
    for project_id, name in seen.items():
        prefixes.setdefault(column_prefix(name), []).append(project_id)

    dimensions = []
    for project_id, name in seen.items():
        prefix = column_prefix(name)
        if len(prefixes[prefix]) > 1:
            key = f"{prefix}_{project_id}"
        else:
            key = prefix
        dimensions.append(Dimension(id=project_id, name=name, key=key))

    for prefix, ids in prefixes.items():
        if len(ids) > 1:
            logger.warning(
                f"Trend column prefix '{prefix}' is shared by projects {ids}; "
                f"suffixing project ids to keep columns apart"
            )
    return dimensions


def pivot_trends(
    rows: List[CaseTrendRow],
    grouping: DateGrouping
) -> Tuple[List[TrendPeriod], List[Dimension]]:
    """
    Count cases per period and dimension, cumulatively.

    Periods are the distinct buckets of the case creation dates, ascending.
    The first period carries no change values; each later period's
    changes are against the period right before it.
    """
    dimensions = collect_dimensions(rows)
    buckets = unique_periods((row.created_at for row in rows), grouping)

    periods = []
    for bucket in buckets:
        period = TrendPeriod(bucket=bucket)
        for dimension in dimensions:
            period.counts[dimension.id] = DimensionCounts()
        for row in rows:
            if row.is_deleted or ensure_utc(row.created_at) > bucket.end:
                continue
            counts = period.counts[row.project_id]
            if row.automated:
                counts.automated += 1
            else:
                counts.manual += 1
        periods.append(period)

    for previous, current in zip(periods, periods[1:]):
        for dimension_id, counts in current.counts.items():
            before = previous.counts[dimension_id]
            counts.automated_change = counts.automated - before.automated
            counts.manual_change = counts.manual - before.manual

    return periods, dimensions


def flatten_period(period: TrendPeriod, dimensions: List[Dimension]) -> Dict[str, Any]:
    """Serialize one period into the flat column layout of the trend table."""
    row: Dict[str, Any] = period.bucket.to_dict()
    for dimension in dimensions:
        counts = period.counts[dimension.id]
        key = dimension.key
        row[f"{key}_automated"] = counts.automated
        row[f"{key}_manual"] = counts.manual
        row[f"{key}_total"] = counts.total
        row[f"{key}_percentAutomated"] = counts.percent_automated
        if counts.automated_change is not None:
            row[f"{key}_automatedChange"] = counts.automated_change
            row[f"{key}_manualChange"] = counts.manual_change
    return row


def _numeric(value: Any) -> float:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return value
    return 0


def sort_trend_rows(
    rows: List[Dict[str, Any]],
    sort_column: Optional[str] = None,
    sort_direction: str = "desc"
) -> List[Dict[str, Any]]:
    """
    Order flattened rows.

    Without a sort column rows are chronological. With one, two string
    values compare as text and anything else compares as a number, with
    missing or non-numeric values counting as 0.
    """
    if not sort_column:
        return sorted(rows, key=lambda row: row["periodStart"])

    descending = sort_direction != "asc"

    def compare(a: Dict[str, Any], b: Dict[str, Any]) -> int:
        a_val = a.get(sort_column)
        b_val = b.get(sort_column)
        if isinstance(a_val, str) and isinstance(b_val, str):
            result = (a_val > b_val) - (a_val < b_val)
        else:
            a_num, b_num = _numeric(a_val), _numeric(b_val)
            result = (a_num > b_num) - (a_num < b_num)
        return -result if descending else result

    return sorted(rows, key=cmp_to_key(compare))


def build_automation_trends(
    rows: List[CaseTrendRow],
    grouping: DateGrouping,
    sort_column: Optional[str] = None,
    sort_direction: str = "desc"
) -> Tuple[List[Dict[str, Any]], List[Dimension]]:
    """
    Full trend computation: pivot, flatten and sort.

    Returns:
        Tuple of (flat period rows, dimensions in column order)
    """
    periods, dimensions = pivot_trends(rows, grouping)
    flat = [flatten_period(period, dimensions) for period in periods]
    logger.debug(
        f"Pivoted {len(rows)} cases into {len(flat)} {grouping.value} periods "
        f"across {len(dimensions)} projects"
    )
    return sort_trend_rows(flat, sort_column, sort_direction), dimensions
