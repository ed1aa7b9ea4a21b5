# Copyright (c) PhiTable Contributors. All rights reserved.
# Licensed under the MIT License.
"""
Search and Column Filters

Free-text search matches a record when any visible, filterable, unmasked
column contains the text case-insensitively. Masked columns never take
part, so redacted values cannot be discovered through match results.

Column filters are ANDed. A filter value may be a callable predicate, a
``FilterCondition`` or a plain value; ``None`` and ``""`` are inactive.
"""

from __future__ import annotations

import re
from enum import Enum
from typing import Any, Callable, Iterable, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field

from phitable.columns import Column, RenderKind
from phitable.exceptions import AccessDenied, InvalidFilterState
from phitable.records import Record
from phitable.rendering import searchable_text

IsMasked = Callable[[Column], bool]


class FilterOperator(str, Enum):
    """Comparison operators for column filter conditions."""

    eq = "eq"
    ne = "ne"
    gt = "gt"
    gte = "gte"
    lt = "lt"
    lte = "lte"
    in_ = "in"
    not_in = "not_in"
    contains = "contains"
    matches = "matches"


class FilterCondition(BaseModel):
    """A single operator/value test against a column value."""

    model_config = ConfigDict(frozen=True)

    operator: FilterOperator = Field(..., description="Comparison operator")
    value: Any = Field(..., description="Value to compare against")

    def evaluate(self, actual: Any) -> bool:
        """Apply the operator; a missing value never matches."""
        if actual is None:
            return False

        op = self.operator
        expected = self.value
        try:
            if op == FilterOperator.eq:
                return actual == expected
            elif op == FilterOperator.ne:
                return actual != expected
            elif op == FilterOperator.gt:
                return actual > expected
            elif op == FilterOperator.gte:
                return actual >= expected
            elif op == FilterOperator.lt:
                return actual < expected
            elif op == FilterOperator.lte:
                return actual <= expected
            elif op == FilterOperator.in_:
                return actual in expected
            elif op == FilterOperator.not_in:
                return actual not in expected
            elif op == FilterOperator.contains:
                return str(expected).lower() in str(actual).lower()
            elif op == FilterOperator.matches:
                return bool(re.search(str(expected), str(actual)))
        except TypeError as exc:
            raise InvalidFilterState(
                f"Cannot apply '{op.value}' to {type(actual).__name__} "
                f"and {type(expected).__name__}"
            ) from exc
        return False


class FilterState(BaseModel):
    """Search text plus per-column filter values."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    search_text: str = ""
    column_filters: dict[str, Any] = Field(default_factory=dict)

    def with_search(self, text: str) -> "FilterState":
        return self.model_copy(update={"search_text": text})

    def with_filter(self, key: str, value: Any) -> "FilterState":
        filters = dict(self.column_filters)
        if is_inactive(value):
            filters.pop(key, None)
        else:
            filters[key] = value
        return self.model_copy(update={"column_filters": filters})

    def cleared(self) -> "FilterState":
        return self.model_copy(update={"column_filters": {}})


def is_inactive(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value == "")


def validate_filters(
    filter_state: FilterState,
    columns: Sequence[Column],
    visible: Sequence[Column],
    is_masked: IsMasked,
) -> list[tuple[Column, Any]]:
    """Check every filter key before any record is touched.

    Returns:
        ``(column, value)`` pairs for the active filters, in key order of
        the filter map.

    Raises:
        InvalidFilterState: Unknown, non-filterable or masked column.
        AccessDenied: Column exists but is not visible to the principal.
    """
    by_key = {c.key: c for c in columns}
    visible_keys = {c.key for c in visible}
    active = []
    for key, value in filter_state.column_filters.items():
        column = by_key.get(key)
        if column is None:
            raise InvalidFilterState(f"Filter references unknown column '{key}'")
        if not column.filterable:
            raise InvalidFilterState(f"Column '{key}' is not filterable")
        if key not in visible_keys:
            raise AccessDenied(key)
        if is_inactive(value):
            continue
        if is_masked(column):
            raise InvalidFilterState(
                f"Column '{key}' is masked; reveal it before filtering on it"
            )
        active.append((column, value))
    return active


def matches_filter(column: Column, value: Any, actual: Any) -> bool:
    """Test one record value against one filter value."""
    if callable(value) and not isinstance(value, FilterCondition):
        return bool(value(actual))
    if isinstance(value, FilterCondition):
        return value.evaluate(actual)
    if actual is None:
        return False
    if column.render_kind == RenderKind.TEXT and isinstance(value, str):
        return value.lower() in str(actual).lower()
    return actual == value


def apply_filters(records: Iterable[Record], active: list[tuple[Column, Any]]) -> list[Record]:
    if not active:
        return list(records)
    return [
        r for r in records
        if all(matches_filter(column, value, r.get(column.key)) for column, value in active)
    ]


def search_columns(visible: Sequence[Column], is_masked: IsMasked) -> list[Column]:
    """Columns that take part in free-text search."""
    return [c for c in visible if c.filterable and not is_masked(c)]


def apply_search(
    records: Iterable[Record],
    search_text: str,
    columns: Sequence[Column],
) -> list[Record]:
    """Keep records where any of ``columns`` contains ``search_text``."""
    needle = (search_text or "").lower()
    if not needle.strip():
        return list(records)

    def _matches(record: Record) -> bool:
        for column in columns:
            text: Optional[str] = searchable_text(column, record.get(column.key))
            if text is not None and needle in text.lower():
                return True
        return False

    return [r for r in records if _matches(r)]
