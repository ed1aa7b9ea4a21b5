# Copyright (c) PhiTable Contributors. All rights reserved.
# Licensed under the MIT License.
"""Zero-based page slicing. Out-of-range pages are empty, never an error."""

from __future__ import annotations

import math
from typing import Optional, Sequence, TypeVar

from pydantic import BaseModel, ConfigDict

from phitable.constants import DEFAULT_PAGE_SIZE
from phitable.exceptions import InvalidFilterState

T = TypeVar("T")


class PageRequest(BaseModel):
    """Zero-based page index and page size."""

    model_config = ConfigDict(frozen=True)

    index: int = 0
    size: int = DEFAULT_PAGE_SIZE

    def validate_bounds(self, max_size: Optional[int] = None) -> None:
        """Raise InvalidFilterState for a negative index or a size below 1."""
        if self.size < 1:
            raise InvalidFilterState(f"Page size must be at least 1 (got {self.size})")
        if max_size is not None and self.size > max_size:
            raise InvalidFilterState(f"Page size {self.size} exceeds the maximum of {max_size}")
        if self.index < 0:
            raise InvalidFilterState(f"Page index must not be negative (got {self.index})")

    @property
    def start(self) -> int:
        return self.index * self.size

    @property
    def stop(self) -> int:
        return self.start + self.size


def page_count(total: int, size: int) -> int:
    return math.ceil(total / size) if total > 0 else 0


def paginate(items: Sequence[T], page: PageRequest) -> list[T]:
    """Slice ``[index*size, index*size + size)``."""
    page.validate_bounds()
    return list(items[page.start:page.stop])
