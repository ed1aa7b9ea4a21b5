# Copyright (c) PhiTable Contributors. All rights reserved.
# Licensed under the MIT License.
"""
Audit Events

Append-only records of every state change and disclosure in a table
session. Events are created once by the emitter and never mutated.
"""

from __future__ import annotations

import hashlib
import json
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from phitable.policy.clearance import ClearanceTier


class AuditAction(str, Enum):
    """Actions that produce audit events."""

    REVEAL = "reveal"
    HIDE = "hide"
    AUTO_HIDE = "auto_hide"
    SORT_CHANGE = "sort_change"
    SEARCH = "search"
    FILTER_CHANGE = "filter_change"
    PAGE_CHANGE = "page_change"
    SELECTION_CHANGE = "selection_change"
    EXPORT = "export"
    ROW_VIEW = "row_view"
    ROW_ACTION = "row_action"
    EMERGENCY_MODE_CHANGED = "emergency_mode_changed"


class ActionClass(str, Enum):
    """Delivery policy for an action's audit event.

    DISCLOSURE events are fail-closed: the action is aborted when the sink
    is down. NAVIGATIONAL events are fail-open with a bounded retry.
    """

    DISCLOSURE = "disclosure"
    NAVIGATIONAL = "navigational"


DISCLOSURE_ACTIONS = frozenset({
    AuditAction.REVEAL,
    AuditAction.EXPORT,
    AuditAction.ROW_VIEW,
    AuditAction.EMERGENCY_MODE_CHANGED,
})


def classify(action: AuditAction) -> ActionClass:
    """Default class of an action; callers may escalate navigational ones."""
    if action in DISCLOSURE_ACTIONS:
        return ActionClass.DISCLOSURE
    return ActionClass.NAVIGATIONAL


class AuditEvent(BaseModel):
    """
    Single audit event.

    ``emergency_override`` is true when the action was authorized only
    because emergency mode elevated the principal's clearance.
    """

    model_config = ConfigDict(frozen=True)

    event_id: str = Field(default_factory=lambda: f"audit_{uuid.uuid4().hex[:16]}")
    action: AuditAction
    principal_id: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    compliance_tier: Optional[ClearanceTier] = None
    emergency_override: bool = False
    action_class: ActionClass = ActionClass.NAVIGATIONAL
    context: dict[str, Any] = Field(default_factory=dict)

    def canonical_json(self) -> str:
        """Stable JSON used for hashing and JSON-lines export."""
        return json.dumps(self.model_dump(mode="json"), sort_keys=True, default=str)

    def compute_hash(self, previous_hash: str = "") -> str:
        """SHA-256 over the canonical form chained to ``previous_hash``."""
        payload = previous_hash + self.canonical_json()
        return hashlib.sha256(payload.encode()).hexdigest()

    # ── CloudEvents v1.0 ──────────────────────────────────

    def to_cloudevent(self, source: str = "phitable") -> dict[str, Any]:
        """
        Serialize this event as a CloudEvents v1.0 JSON envelope.

        The action becomes the type suffix (``io.phitable.audit.reveal``).
        """
        return {
            "specversion": "1.0",
            "id": self.event_id,
            "type": f"io.phitable.audit.{self.action.value}",
            "source": source,
            "subject": self.principal_id,
            "time": self.timestamp.isoformat(),
            "datacontenttype": "application/json",
            "data": {
                "action": self.action.value,
                "action_class": self.action_class.value,
                "compliance_tier": (
                    self.compliance_tier.value if self.compliance_tier else None
                ),
                "emergency_override": self.emergency_override,
                **self.context,
            },
        }
