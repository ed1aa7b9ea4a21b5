# Copyright (c) PhiTable Contributors. All rights reserved.
# Licensed under the MIT License.
"""
Access policy: clearance tiers, principals and column visibility.
"""

from .clearance import ClearanceTier, Principal, highest
from .compliance import ComplianceFramework
from .access import (
    AccessPolicyEvaluator,
    effective_clearance,
    visible_columns,
    read_cell,
    relies_on_emergency,
)

__all__ = [
    "ClearanceTier",
    "Principal",
    "highest",
    "ComplianceFramework",
    "AccessPolicyEvaluator",
    "effective_clearance",
    "visible_columns",
    "read_cell",
    "relies_on_emergency",
]
