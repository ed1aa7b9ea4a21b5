# Copyright (c) PhiTable Contributors. All rights reserved.
# Licensed under the MIT License.
"""
Stable single-key sort.

Missing values always sort after present ones, whatever the direction.
Ties keep their incoming order, which is the filtered input order.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Callable, Optional, Sequence

from pydantic import BaseModel, ConfigDict

from phitable.columns import Column, RenderKind
from phitable.exceptions import InvalidSortColumn
from phitable.records import Record
from phitable.rendering import render_value

logger = logging.getLogger(__name__)


class SortDirection(str, Enum):
    ASC = "asc"
    DESC = "desc"

    @classmethod
    def parse(cls, value: "SortDirection | str") -> "SortDirection":
        if isinstance(value, cls):
            return value
        text = str(value).strip().lower()
        aliases = {"ascending": "asc", "descending": "desc"}
        try:
            return cls(aliases.get(text, text))
        except ValueError:
            raise InvalidSortColumn(f"Unknown sort direction '{value}'") from None


class SortDescriptor(BaseModel):
    """Column and direction to sort by."""

    model_config = ConfigDict(frozen=True)

    column_key: str
    direction: SortDirection = SortDirection.ASC

    @classmethod
    def parse(cls, text: str) -> "SortDescriptor":
        """Parse ``key`` or ``key:asc`` / ``key:desc``."""
        key, _, direction = text.partition(":")
        if not key:
            raise InvalidSortColumn("Empty sort key")
        return cls(column_key=key, direction=SortDirection.parse(direction or "asc"))


def resolve_sort_column(
    sort: SortDescriptor,
    columns: Sequence[Column],
    visible: Sequence[Column],
    is_masked: Optional[Callable[[Column], bool]] = None,
) -> Column:
    """Validate a sort descriptor against the table.

    Raises:
        InvalidSortColumn: Unknown, invisible, non-sortable or masked column.
    """
    by_key = {c.key: c for c in columns}
    column = by_key.get(sort.column_key)
    if column is None:
        raise InvalidSortColumn(f"Cannot sort by unknown column '{sort.column_key}'")
    if not column.sortable:
        raise InvalidSortColumn(f"Column '{sort.column_key}' is not sortable")
    if column.key not in {c.key for c in visible}:
        raise InvalidSortColumn(f"Column '{sort.column_key}' is not visible")
    # Masked columns never drive row order
    if is_masked is not None and is_masked(column):
        raise InvalidSortColumn(
            f"Column '{sort.column_key}' is masked; reveal it before sorting on it"
        )
    return column


def _sort_key(column: Column, value: Any) -> Any:
    if column.render_kind == RenderKind.CUSTOM:
        return render_value(column, value)
    if column.render_kind == RenderKind.TEXT and isinstance(value, str):
        return value.casefold()
    return value


def sort_records(
    records: Sequence[Record],
    column: Column,
    direction: SortDirection,
) -> list[Record]:
    """Stable sort of ``records`` by ``column``; None values last."""
    present = [r for r in records if r.get(column.key) is not None]
    missing = [r for r in records if r.get(column.key) is None]

    def key(record: Record) -> Any:
        return _sort_key(column, record.get(column.key))

    try:
        # sorted(reverse=True) keeps equal elements in their original order
        ordered = sorted(present, key=key, reverse=direction == SortDirection.DESC)
    except TypeError:
        logger.debug(
            "Mixed value types in column %s; sorting by rendered text instead", column.key
        )
        ordered = sorted(
            present,
            key=lambda r: render_value(column, r.get(column.key)),
            reverse=direction == SortDirection.DESC,
        )
    return ordered + missing


def apply_sort(
    records: Sequence[Record],
    sort: Optional[SortDescriptor],
    column: Optional[Column],
) -> list[Record]:
    if sort is None or column is None:
        return list(records)
    return sort_records(records, column, sort.direction)
