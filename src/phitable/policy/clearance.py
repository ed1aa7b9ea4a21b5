# Copyright (c) PhiTable Contributors. All rights reserved.
# Licensed under the MIT License.
"""
Clearance Tiers

Totally ordered sensitivity levels used both as a column's requirement
and as a principal's grant:

    public < restricted < confidential < emergency
"""

from __future__ import annotations

from enum import Enum
from typing import Iterable, Optional

from pydantic import BaseModel, ConfigDict, Field


class ClearanceTier(str, Enum):
    """Ordered clearance tier.

    Comparison operators use rank order, not the alphabetical order the
    ``str`` mixin would otherwise give.
    """

    PUBLIC = "public"
    RESTRICTED = "restricted"
    CONFIDENTIAL = "confidential"
    EMERGENCY = "emergency"

    @property
    def rank(self) -> int:
        return _RANKS[self.value]

    def satisfies(self, required: "ClearanceTier") -> bool:
        """Return True if this grant meets ``required``."""
        return self.rank >= required.rank

    @classmethod
    def parse(cls, value: "ClearanceTier | str") -> "ClearanceTier":
        """Parse a tier name case-insensitively."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            valid = ", ".join(t.value for t in cls)
            raise ValueError(
                f"Unknown clearance tier '{value}' (expected one of: {valid})"
            ) from None

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, ClearanceTier):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other: object) -> bool:
        if not isinstance(other, ClearanceTier):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other: object) -> bool:
        if not isinstance(other, ClearanceTier):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other: object) -> bool:
        if not isinstance(other, ClearanceTier):
            return NotImplemented
        return self.rank >= other.rank


_RANKS = {tier.value: i for i, tier in enumerate(ClearanceTier)}


def highest(tiers: Iterable[ClearanceTier]) -> Optional[ClearanceTier]:
    """Highest tier in an iterable, or None when empty."""
    tiers = list(tiers)
    if not tiers:
        return None
    return max(tiers, key=lambda t: t.rank)


class Principal(BaseModel):
    """The requesting user, as supplied by the auth collaborator.

    The engine never mutates a principal; elevation during emergency mode
    is computed separately as the *effective* clearance.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1, description="Stable principal identifier")
    granted_clearance: ClearanceTier = Field(default=ClearanceTier.PUBLIC)
    display_name: Optional[str] = Field(default=None)
