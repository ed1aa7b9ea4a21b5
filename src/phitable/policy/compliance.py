# Copyright (c) PhiTable Contributors. All rights reserved.
# Licensed under the MIT License.
"""Privacy regimes a column or table can be tagged with for audit context."""

from enum import Enum


class ComplianceFramework(str, Enum):
    """Supported privacy frameworks."""
    HIPAA = "hipaa"
    LAW25 = "law25"
    PIPEDA = "pipeda"
