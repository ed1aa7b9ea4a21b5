# Copyright (c) PhiTable Contributors. All rights reserved.
# Licensed under the MIT License.
"""
Query pipeline: search, column filters, stable sort and pagination.
"""

from .filters import FilterCondition, FilterOperator, FilterState
from .sorting import SortDescriptor, SortDirection
from .pagination import PageRequest, page_count
from .pipeline import MaskingView, Page, RenderedRow, match_records, query, redact_record, render_row

__all__ = [
    "FilterCondition",
    "FilterOperator",
    "FilterState",
    "SortDescriptor",
    "SortDirection",
    "PageRequest",
    "page_count",
    "MaskingView",
    "Page",
    "RenderedRow",
    "match_records",
    "query",
    "redact_record",
    "render_row",
]
