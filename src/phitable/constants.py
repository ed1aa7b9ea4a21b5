# Copyright (c) PhiTable Contributors. All rights reserved.
# Licensed under the MIT License.
"""Shared defaults for the table engine."""

# Pagination
DEFAULT_PAGE_SIZE = 25
MAX_PAGE_SIZE = 500

# Export
DEFAULT_MAX_EXPORT_ROWS = 10_000

# Audit delivery: extra attempts for navigational (fail-open) events
DEFAULT_AUDIT_RETRY_ATTEMPTS = 1
MAX_AUDIT_RETRY_ATTEMPTS = 5

# Rendering
MASK_PLACEHOLDER = "•••••"
EMPTY_CELL = "—"
BOOLEAN_LABELS = ("Yes", "No")

# Environment variable prefix for TableEngineConfig.from_env
ENV_PREFIX = "PHITABLE_"

# Audit context keys the downstream audit consumers rely on
CTX_RECORD_COUNT = "record_count"
CTX_SELECTED_ONLY = "selected_only"
CTX_TABLE_ID = "table_id"
CTX_COMPLIANCE_FRAMEWORK = "compliance_framework"
CTX_IS_EMERGENCY = "is_emergency"
