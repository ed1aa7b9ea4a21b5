# Copyright (c) PhiTable Contributors. All rights reserved.
# Licensed under the MIT License.
"""
PhiTable - Clearance-aware tabular data engine for healthcare records

Access · Masking · Query · Audit · Export · Emergency

PhiTable decides which columns a principal may see, keeps sensitive
columns masked until an audited reveal, answers search/filter/sort/page
queries over the visible data, and records every disclosure in an audit
trail that fails closed.

Version: 1.0.0
"""

__version__ = "1.0.0"

# Access policy
from .policy import (
    AccessPolicyEvaluator,
    ClearanceTier,
    ComplianceFramework,
    Principal,
    effective_clearance,
    read_cell,
    visible_columns,
)

# Column model and records
from .columns import Column, ColumnCapability, ColumnSet, RenderKind
from .records import Record, records_from_dicts

# Audit
from .audit import (
    ActionClass,
    AuditAction,
    AuditEmitter,
    AuditEvent,
    AuditSink,
    InMemoryAuditSink,
    JsonLinesAuditSink,
)

# Masking, emergency and query
from .masking import MaskingState, ThreadingScheduler
from .emergency import EmergencyModeCoordinator, EmergencyState
from .query import (
    FilterCondition,
    FilterOperator,
    FilterState,
    Page,
    PageRequest,
    SortDescriptor,
    SortDirection,
    query,
)

# Selection and export
from .selection import Selection, SelectionController, SelectionMode
from .export import ExportFormat, ExportPayload, export_job

# Session, config and errors
from .session import TableSession
from .config import TableEngineConfig
from .exceptions import (
    AccessDenied,
    AuditSinkUnavailable,
    ConfigurationError,
    ExportTooLarge,
    InvalidColumn,
    InvalidFilterState,
    InvalidSortColumn,
    PhiTableError,
    UsageError,
)

__all__ = [
    "__version__",
    # Access policy
    "AccessPolicyEvaluator",
    "ClearanceTier",
    "ComplianceFramework",
    "Principal",
    "effective_clearance",
    "read_cell",
    "visible_columns",
    # Columns and records
    "Column",
    "ColumnCapability",
    "ColumnSet",
    "RenderKind",
    "Record",
    "records_from_dicts",
    # Audit
    "ActionClass",
    "AuditAction",
    "AuditEmitter",
    "AuditEvent",
    "AuditSink",
    "InMemoryAuditSink",
    "JsonLinesAuditSink",
    # Masking, emergency and query
    "MaskingState",
    "ThreadingScheduler",
    "EmergencyModeCoordinator",
    "EmergencyState",
    "FilterCondition",
    "FilterOperator",
    "FilterState",
    "Page",
    "PageRequest",
    "SortDescriptor",
    "SortDirection",
    "query",
    # Selection and export
    "Selection",
    "SelectionController",
    "SelectionMode",
    "ExportFormat",
    "ExportPayload",
    "export_job",
    # Session, config and errors
    "TableSession",
    "TableEngineConfig",
    "AccessDenied",
    "AuditSinkUnavailable",
    "ConfigurationError",
    "ExportTooLarge",
    "InvalidColumn",
    "InvalidFilterState",
    "InvalidSortColumn",
    "PhiTableError",
    "UsageError",
]
