"""Helper utilities for the application."""
import math
from typing import Optional, Dict, Any, List, Tuple, TypeVar, Union
from datetime import datetime, timezone
from fastapi import HTTPException

from qa_insights.constants import PAGE_SIZE_ALL

T = TypeVar('T')


def not_found_error(
    resource_type: str,
    resource_id: str,
    parent: Optional[Dict[str, str]] = None
) -> HTTPException:
    """
    Create a standardized 404 error response.

    Args:
        resource_type: Type of resource (e.g., "Milestone")
        resource_id: ID of the resource
        parent: Optional parent resource info {"type": "Project", "id": "3"}

    Returns:
        HTTPException with standardized error message
    """
    detail = f"{resource_type} '{resource_id}' not found"
    if parent:
        detail += f" in {parent['type']} '{parent['id']}'"
    return HTTPException(status_code=404, detail=detail)


def validation_error(detail: str) -> HTTPException:
    """
    Create a standardized 400 validation error response.

    Args:
        detail: Error detail message

    Returns:
        HTTPException with validation error
    """
    return HTTPException(status_code=400, detail=detail)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """
    Normalize a datetime to an aware UTC datetime.

    Naive values are interpreted as UTC (SQLite hands back naive datetimes).
    None stays None; it never becomes a sentinel date.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_iso_utc(value: Optional[datetime]) -> Optional[str]:
    """
    Format a datetime as ISO-8601 UTC with millisecond precision.

    Example:
        >>> to_iso_utc(datetime(2024, 12, 31, 23, 59, 59, 999000, tzinfo=timezone.utc))
        '2024-12-31T23:59:59.999Z'
    """
    value = ensure_utc(value)
    if value is None:
        return None
    return value.isoformat(timespec='milliseconds').replace('+00:00', 'Z')


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 string (a trailing 'Z' is accepted) into aware UTC."""
    if not value:
        return None
    return ensure_utc(datetime.fromisoformat(value.replace('Z', '+00:00')))


def round_half_up(value: float, digits: int = 0) -> float:
    """
    Round with halves going up, the way report percentages are displayed.

    Python's built-in round() rounds halves to even, so 12.5 would become 12.
    """
    factor = 10 ** digits
    return math.floor(value * factor + 0.5) / factor


def percentage(numerator: int, denominator: int) -> int:
    """Whole-number percentage, 0 when the denominator is 0."""
    if denominator <= 0:
        return 0
    return int(round_half_up(numerator / denominator * 100))


def coerce_number(value: Any, default: int) -> float:
    """
    Read a loosely-typed request value as a number.

    Finite values are truncated toward zero. Infinities are returned as is
    so callers can clamp them; NaN and unparseable values give the default.
    """
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if math.isnan(number):
        return default
    if math.isinf(number):
        return number
    return int(number)


def clamp_int(
    value: Any,
    minimum: int,
    maximum: int,
    default: int
) -> int:
    """
    Coerce a loosely-typed request value to an int within [minimum, maximum].

    Out-of-range values (infinities included) are clamped and unparseable
    ones fall back to the default, so bad client state degrades a report
    instead of failing it.
    """
    number = coerce_number(value, default)
    return int(min(max(number, minimum), maximum))


def paginate(
    items: List[T],
    page: int = 1,
    page_size: Optional[Union[int, str]] = None
) -> Tuple[List[T], int]:
    """
    Slice a row list for one page.

    Args:
        items: Full list of rows
        page: 1-based page number (values below 1 are treated as 1)
        page_size: Rows per page; None or "All" returns every row

    Returns:
        Tuple of (rows for the page, total row count)
    """
    total = len(items)
    if page_size is None or page_size == PAGE_SIZE_ALL:
        return list(items), total

    size = max(int(page_size), 1)
    start = (max(page, 1) - 1) * size
    return items[start:start + size], total
