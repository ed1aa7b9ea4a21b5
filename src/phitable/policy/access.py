# Copyright (c) PhiTable Contributors. All rights reserved.
# Licensed under the MIT License.
"""
Access Policy Evaluator

Ranks a principal's effective clearance against each column's required
clearance. Visibility depends only on those two tiers, never on record
content. Everything here is pure and deterministic.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Iterable, Optional, Protocol

from phitable.exceptions import AccessDenied
from phitable.policy.clearance import ClearanceTier, Principal

if TYPE_CHECKING:
    from phitable.columns import Column
    from phitable.records import Record


class EmergencyView(Protocol):
    """Anything exposing the process-wide emergency flag."""

    @property
    def active(self) -> bool: ...


def effective_clearance(
    principal: Principal,
    emergency_state: Optional[EmergencyView] = None,
) -> ClearanceTier:
    """Clearance used for a request: ``emergency`` while emergency mode is active."""
    if emergency_state is not None and emergency_state.active:
        return ClearanceTier.EMERGENCY
    return principal.granted_clearance


def visible_columns(
    columns: Iterable["Column"],
    principal: Principal,
    emergency_state: Optional[EmergencyView] = None,
) -> list["Column"]:
    """Columns the principal may see, in declaration order."""
    clearance = effective_clearance(principal, emergency_state)
    return [c for c in columns if clearance.satisfies(c.required_clearance)]


def relies_on_emergency(
    column: "Column",
    principal: Principal,
    emergency_state: Optional[EmergencyView] = None,
) -> bool:
    """True when ``column`` is visible only because emergency mode is active."""
    if emergency_state is None or not emergency_state.active:
        return False
    return not principal.granted_clearance.satisfies(column.required_clearance)


def read_cell(record: "Record", column_key: str, visible: Iterable["Column"]) -> Any:
    """Read a cell value, refusing columns outside the visible set.

    Raises:
        AccessDenied: If ``column_key`` is not among ``visible``.
    """
    if not any(c.key == column_key for c in visible):
        raise AccessDenied(column_key)
    return record.get(column_key)


class AccessPolicyEvaluator:
    """
    Visibility decisions for one principal under one emergency snapshot.

    Holds no mutable state; construct a fresh evaluator per request.
    """

    def __init__(
        self,
        principal: Principal,
        emergency_state: Optional[EmergencyView] = None,
    ) -> None:
        self.principal = principal
        self.emergency_state = emergency_state
        self.clearance = effective_clearance(principal, emergency_state)

    def can_see(self, column: "Column") -> bool:
        return self.clearance.satisfies(column.required_clearance)

    def visible(self, columns: Iterable["Column"]) -> list["Column"]:
        return [c for c in columns if self.can_see(c)]

    def require(self, column: "Column") -> None:
        """Raise AccessDenied unless ``column`` is visible."""
        if not self.can_see(column):
            raise AccessDenied(
                column.key,
                f"Column '{column.key}' requires {column.required_clearance.value} "
                f"clearance; effective clearance is {self.clearance.value}",
            )

    def is_override(self, column: "Column") -> bool:
        return relies_on_emergency(column, self.principal, self.emergency_state)

    def read(self, record: "Record", column: "Column") -> Any:
        self.require(column)
        return record.get(column.key)
