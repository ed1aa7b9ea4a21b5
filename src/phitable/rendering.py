# Copyright (c) PhiTable Contributors. All rights reserved.
# Licensed under the MIT License.
"""
Cell Rendering

One handler per RenderKind. The table below must cover the enum exactly;
adding a kind without a handler fails at import time.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Callable

from phitable.columns import Column, RenderKind
from phitable.constants import BOOLEAN_LABELS, EMPTY_CELL, MASK_PLACEHOLDER


def _render_text(column: Column, value: Any) -> str:
    return str(value)


def _render_boolean(column: Column, value: Any) -> str:
    yes, no = BOOLEAN_LABELS
    return yes if bool(value) else no


def _render_date(column: Column, value: Any) -> str:
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return str(value)


def _render_custom(column: Column, value: Any) -> str:
    if column.formatter is not None:
        return str(column.formatter(value))
    return str(value)


RENDER_HANDLERS: dict[RenderKind, Callable[[Column, Any], str]] = {
    RenderKind.TEXT: _render_text,
    RenderKind.BOOLEAN: _render_boolean,
    RenderKind.DATE: _render_date,
    RenderKind.CUSTOM: _render_custom,
}

_missing = set(RenderKind) - set(RENDER_HANDLERS)
if _missing:
    raise RuntimeError(f"No render handler for: {sorted(k.value for k in _missing)}")


def render_value(column: Column, value: Any) -> str:
    """String representation of an unmasked cell."""
    if value is None:
        return EMPTY_CELL
    return RENDER_HANDLERS[column.render_kind](column, value)


def render_cell(
    column: Column,
    value: Any,
    masked: bool,
    placeholder: str = MASK_PLACEHOLDER,
) -> str:
    """Render a cell, substituting the mask placeholder for redacted values."""
    if masked:
        return placeholder
    return render_value(column, value)


def searchable_text(column: Column, value: Any) -> str | None:
    """Text used for free-text search; None never matches."""
    if value is None:
        return None
    return render_value(column, value)
