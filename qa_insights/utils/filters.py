"""
Row predicates for the in-process filtering stage.

The SQL stage in data_service does the coarse filtering (project, dates,
template, state, automated flag). Custom field values are stored as JSON,
which the query layer can't match with IN semantics, so those filters are
composed here into a single predicate and applied to the fetched rows.
"""
import logging
from typing import Any, Callable, Dict, Iterable, List, Mapping, Sequence, TypeVar

logger = logging.getLogger(__name__)

Row = TypeVar('Row')
Predicate = Callable[[Row], bool]


def always_true(row: Any) -> bool:
    return True


def all_of(predicates: Sequence[Predicate]) -> Predicate:
    """Compose predicates with AND semantics. An empty sequence accepts every row."""
    if not predicates:
        return always_true

    def combined(row):
        return all(predicate(row) for predicate in predicates)

    return combined


def field_value_matches(value: Any, accepted: Sequence[Any]) -> bool:
    """
    Check a stored custom field value against the requested values.

    Multi-select fields store a list and match when any requested value is
    selected; single-value fields must equal one of the requested values.
    A missing value never matches.
    """
    if value is None:
        return False
    if isinstance(value, list):
        return any(v in value for v in accepted)
    return value in accepted


def custom_field_predicate(field_id: int, accepted: Sequence[Any]) -> Predicate:
    """Predicate over rows exposing ``field_values: Dict[int, Any]``."""
    def matches(row) -> bool:
        return field_value_matches(row.field_values.get(field_id), accepted)
    return matches


def build_custom_field_predicate(field_filters: Mapping[Any, Sequence[Any]]) -> Predicate:
    """
    Build the predicate for a ``dynamicFieldFilters`` request mapping.

    Keys are field ids (ints or numeric strings, as they arrive in JSON);
    a row must satisfy every field filter.

    Example:
        >>> predicate = build_custom_field_predicate({"4": ["High"], 7: [1, 2]})
    """
    predicates = [
        custom_field_predicate(int(field_id), list(values))
        for field_id, values in field_filters.items()
    ]
    return all_of(predicates)


def apply_predicate(rows: Iterable[Row], predicate: Predicate) -> List[Row]:
    """Apply a predicate to fetched rows, keeping their order."""
    rows = list(rows)
    kept = [row for row in rows if predicate(row)]
    if len(kept) != len(rows):
        logger.debug(f"Row predicate kept {len(kept)} of {len(rows)} rows")
    return kept
