# Copyright (c) PhiTable Contributors. All rights reserved.
# Licensed under the MIT License.
"""Centralized exception hierarchy for PhiTable.

All PhiTable exceptions inherit from PhiTableError so the rendering layer
can catch engine failures in one place. Nothing in the engine logs and
swallows these: an access-control failure must always reach the caller.
"""

from __future__ import annotations

from typing import Optional


class PhiTableError(Exception):
    """Base exception for all PhiTable errors."""


class AccessDenied(PhiTableError):
    """A column was read or revealed without sufficient clearance.

    Reaching this at all means the caller skipped ``visible_columns``.
    """

    def __init__(self, column_key: str, message: Optional[str] = None):
        self.column_key = column_key
        super().__init__(message or f"Access denied to column '{column_key}'")


class UsageError(PhiTableError):
    """Caller supplied an invalid request; nothing was executed."""


class InvalidFilterState(UsageError):
    """Search, filter or pagination parameters are invalid."""


class InvalidSortColumn(UsageError):
    """Sort descriptor references an unknown or non-sortable column."""


class InvalidColumn(UsageError):
    """Column declaration or column reference is invalid."""


class ExportTooLarge(PhiTableError):
    """Export request exceeds the configured row limit."""

    def __init__(self, requested: int, limit: int):
        self.requested = requested
        self.limit = limit
        super().__init__(
            f"Export of {requested} records exceeds the limit of {limit}; "
            "narrow the selection or export page by page"
        )


class AuditSinkUnavailable(PhiTableError):
    """The audit sink rejected an event for a disclosure-relevant action.

    The disclosing action was aborted: protected data cannot be displayed
    right now.
    """

    def __init__(self, action: str, message: Optional[str] = None):
        self.action = action
        super().__init__(
            message or f"Audit sink unavailable; '{action}' was not performed"
        )


class ConfigurationError(PhiTableError):
    """Engine configuration could not be loaded or is inconsistent."""


__all__ = [
    "PhiTableError",
    "AccessDenied",
    "UsageError",
    "InvalidFilterState",
    "InvalidSortColumn",
    "InvalidColumn",
    "ExportTooLarge",
    "AuditSinkUnavailable",
    "ConfigurationError",
]
