# Copyright (c) PhiTable Contributors. All rights reserved.
# Licensed under the MIT License.
"""
Audit emission: events, sinks and the fail-open/fail-closed emitter.
"""

from .events import (
    ActionClass,
    AuditAction,
    AuditEvent,
    DISCLOSURE_ACTIONS,
    classify,
)
from .sink import (
    AuditSink,
    CallbackAuditSink,
    ChainedEvent,
    InMemoryAuditSink,
    JsonLinesAuditSink,
)
from .emitter import AuditEmitter, AuditReceipt

__all__ = [
    "ActionClass",
    "AuditAction",
    "AuditEvent",
    "DISCLOSURE_ACTIONS",
    "classify",
    "AuditSink",
    "CallbackAuditSink",
    "ChainedEvent",
    "InMemoryAuditSink",
    "JsonLinesAuditSink",
    "AuditEmitter",
    "AuditReceipt",
]
