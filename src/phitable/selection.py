# Copyright (c) PhiTable Contributors. All rights reserved.
# Licensed under the MIT License.
"""
Selection

A selection is ``none``, ``all`` or an explicit set of record ids.
``all`` is symbolic: it means every record currently matching the filter
state, so it follows later filter changes instead of freezing a snapshot.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Iterable, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field

from phitable.audit.emitter import AuditEmitter
from phitable.audit.events import AuditAction
from phitable.constants import CTX_TABLE_ID
from phitable.exceptions import UsageError
from phitable.policy.access import EmergencyView
from phitable.policy.clearance import Principal
from phitable.records import Record, RecordId

logger = logging.getLogger(__name__)


class SelectionMode(str, Enum):
    NONE = "none"
    ALL = "all"
    EXPLICIT = "explicit"


class Selection(BaseModel):
    """Immutable selection value."""

    model_config = ConfigDict(frozen=True)

    mode: SelectionMode = SelectionMode.NONE
    record_ids: frozenset[RecordId] = Field(default_factory=frozenset)

    @classmethod
    def none(cls) -> "Selection":
        return cls()

    @classmethod
    def all(cls) -> "Selection":
        return cls(mode=SelectionMode.ALL)

    @classmethod
    def of(cls, record_ids: Iterable[RecordId]) -> "Selection":
        ids = frozenset(record_ids)
        if not ids:
            return cls()
        return cls(mode=SelectionMode.EXPLICIT, record_ids=ids)

    @property
    def selected_only(self) -> bool:
        """True when an export should be limited to explicitly chosen rows."""
        return self.mode == SelectionMode.EXPLICIT

    def contains(self, record_id: RecordId) -> bool:
        if self.mode == SelectionMode.ALL:
            return True
        return record_id in self.record_ids

    def resolve(self, matching: Sequence[Record]) -> list[Record]:
        """Records this selection covers within the current matching set.

        ``none`` and ``all`` both resolve to the whole matching set (an
        export with nothing selected exports everything that matches).
        Explicit ids keep the matching set's order; ids that no longer
        match are dropped.
        """
        if self.mode != SelectionMode.EXPLICIT:
            return list(matching)
        return [r for r in matching if r.record_id in self.record_ids]


class SelectionController:
    """Session-owned selection with audited transitions."""

    def __init__(self, emitter: AuditEmitter, table_id: Optional[str] = None) -> None:
        self._emitter = emitter
        self._table_id = table_id
        self._selection = Selection.none()

    @property
    def selection(self) -> Selection:
        return self._selection

    def is_selected(
        self,
        record_id: RecordId,
        matching_ids: Optional[Iterable[RecordId]] = None,
    ) -> bool:
        """Whether a row shows as selected; under ``all`` only matching rows do."""
        if self._selection.mode == SelectionMode.ALL and matching_ids is not None:
            return record_id in set(matching_ids)
        return self._selection.contains(record_id)

    def resolve(self, matching: Sequence[Record]) -> list[Record]:
        return self._selection.resolve(matching)

    def toggle_selection(
        self,
        record_id: RecordId,
        principal: Principal,
        emergency_state: Optional[EmergencyView] = None,
        matching_ids: Optional[Iterable[RecordId]] = None,
    ) -> Selection:
        """Add or remove one record.

        Toggling while ``all`` is selected turns the selection into the
        explicit matching set minus ``record_id``, which needs
        ``matching_ids``.

        Raises:
            UsageError: ``all`` is selected and ``matching_ids`` is missing.
        """
        current = self._selection
        if current.mode == SelectionMode.ALL:
            if matching_ids is None:
                raise UsageError(
                    "Deselecting one record from 'all' needs the current matching ids"
                )
            ids = set(matching_ids)
            ids.discard(record_id)
        else:
            ids = set(current.record_ids)
            if record_id in ids:
                ids.remove(record_id)
            else:
                ids.add(record_id)
        return self._change(
            Selection.of(ids), principal, emergency_state, {"record_id": record_id}
        )

    def select_all(
        self,
        principal: Principal,
        emergency_state: Optional[EmergencyView] = None,
    ) -> Selection:
        return self._change(Selection.all(), principal, emergency_state)

    def clear_selection(
        self,
        principal: Principal,
        emergency_state: Optional[EmergencyView] = None,
    ) -> Selection:
        return self._change(Selection.none(), principal, emergency_state)

    def _change(
        self,
        selection: Selection,
        principal: Principal,
        emergency_state: Optional[EmergencyView],
        extra: Optional[dict[str, Any]] = None,
    ) -> Selection:
        context: dict[str, Any] = {
            "mode": selection.mode.value,
            "selected_count": len(selection.record_ids),
            **(extra or {}),
        }
        if self._table_id is not None:
            context[CTX_TABLE_ID] = self._table_id
        self._emitter.emit(AuditAction.SELECTION_CHANGE, principal, context, emergency_state)
        self._selection = selection
        logger.debug("Selection is now %s (%d ids)", selection.mode.value, len(selection.record_ids))
        return selection
