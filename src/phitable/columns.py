# Copyright (c) PhiTable Contributors. All rights reserved.
# Licensed under the MIT License.
"""
Column Declarations

A column is a key, a label, a render kind, a required clearance and a set
of capabilities. Capabilities compose: a column claims only what it
supports (sortable, filterable, sensitive) instead of inheriting a preset.

Columns are immutable once a table session starts.
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Any, Callable, Iterable, Iterator, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from phitable.exceptions import ConfigurationError, InvalidColumn
from phitable.policy.clearance import ClearanceTier
from phitable.policy.compliance import ComplianceFramework


class ColumnCapability(str, Enum):
    """Optional behaviours a column can claim."""

    SORTABLE = "sortable"
    FILTERABLE = "filterable"
    SENSITIVE = "sensitive"


class RenderKind(str, Enum):
    """Closed set of cell kinds; see ``phitable.rendering`` for handlers."""

    TEXT = "text"
    BOOLEAN = "boolean"
    DATE = "date"
    CUSTOM = "custom"


# Boolean shorthands accepted in declarations, folded into capabilities.
_FLAG_CAPABILITIES = {
    "sortable": ColumnCapability.SORTABLE,
    "filterable": ColumnCapability.FILTERABLE,
    "contains_sensitive_data": ColumnCapability.SENSITIVE,
    "sensitive": ColumnCapability.SENSITIVE,
}


class Column(BaseModel):
    """
    A single table column.

    Declarations may list ``capabilities`` directly or use the boolean
    shorthands ``sortable``, ``filterable`` and ``contains_sensitive_data``:

        Column(key="medical_id", label="Medical ID",
               filterable=True, contains_sensitive_data=True,
               required_clearance="confidential")
    """

    model_config = ConfigDict(frozen=True)

    key: str = Field(..., min_length=1, description="Unique within a table")
    label: str = Field(default="")
    render_kind: RenderKind = Field(default=RenderKind.TEXT)
    required_clearance: ClearanceTier = Field(default=ClearanceTier.PUBLIC)
    capabilities: frozenset[ColumnCapability] = Field(default_factory=frozenset)

    compliance_framework: Optional[ComplianceFramework] = None
    description: Optional[str] = None

    # Only consulted for RenderKind.CUSTOM
    formatter: Optional[Callable[[Any], str]] = Field(default=None, exclude=True)

    @model_validator(mode="before")
    @classmethod
    def _fold_capability_flags(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        caps = set(data.get("capabilities") or ())
        for flag, capability in _FLAG_CAPABILITIES.items():
            if flag in data:
                if data.pop(flag):
                    caps.add(capability)
                else:
                    caps.discard(capability)
        data["capabilities"] = frozenset(ColumnCapability(c) for c in caps)
        if not data.get("label"):
            data["label"] = str(data.get("key", "")).replace("_", " ").title()
        if "required_clearance" in data and isinstance(data["required_clearance"], str):
            data["required_clearance"] = ClearanceTier.parse(data["required_clearance"])
        return data

    @property
    def sortable(self) -> bool:
        return ColumnCapability.SORTABLE in self.capabilities

    @property
    def filterable(self) -> bool:
        return ColumnCapability.FILTERABLE in self.capabilities

    @property
    def contains_sensitive_data(self) -> bool:
        return ColumnCapability.SENSITIVE in self.capabilities

    def has(self, capability: ColumnCapability) -> bool:
        return capability in self.capabilities

    # ── Convenience constructors ──────────────────────────

    @classmethod
    def text(
        cls,
        key: str,
        label: str = "",
        *,
        sortable: bool = True,
        filterable: bool = True,
        clearance: ClearanceTier = ClearanceTier.PUBLIC,
        **kwargs: Any,
    ) -> "Column":
        """Plain, non-sensitive text column (sortable and filterable by default)."""
        return cls(
            key=key,
            label=label,
            render_kind=RenderKind.TEXT,
            sortable=sortable,
            filterable=filterable,
            required_clearance=clearance,
            **kwargs,
        )

    @classmethod
    def sensitive(
        cls,
        key: str,
        label: str = "",
        *,
        clearance: ClearanceTier = ClearanceTier.CONFIDENTIAL,
        render_kind: RenderKind = RenderKind.TEXT,
        sortable: bool = False,
        filterable: bool = True,
        **kwargs: Any,
    ) -> "Column":
        """PHI column: masked until revealed, confidential by default."""
        return cls(
            key=key,
            label=label,
            render_kind=render_kind,
            sortable=sortable,
            filterable=filterable,
            contains_sensitive_data=True,
            required_clearance=clearance,
            **kwargs,
        )

    @classmethod
    def flag(cls, key: str, label: str = "", **kwargs: Any) -> "Column":
        """Yes/No column."""
        kwargs.setdefault("sortable", True)
        kwargs.setdefault("filterable", True)
        return cls(key=key, label=label, render_kind=RenderKind.BOOLEAN, **kwargs)

    @classmethod
    def date(cls, key: str, label: str = "", **kwargs: Any) -> "Column":
        """Date column, sortable by default."""
        kwargs.setdefault("sortable", True)
        return cls(key=key, label=label, render_kind=RenderKind.DATE, **kwargs)


class ColumnSet:
    """Ordered, immutable collection of columns with unique keys."""

    def __init__(self, columns: Iterable[Column]):
        self._columns: tuple[Column, ...] = tuple(columns)
        self._by_key: dict[str, Column] = {}
        for column in self._columns:
            if column.key in self._by_key:
                raise InvalidColumn(f"Duplicate column key '{column.key}'")
            self._by_key[column.key] = column

    def __iter__(self) -> Iterator[Column]:
        return iter(self._columns)

    def __len__(self) -> int:
        return len(self._columns)

    def __contains__(self, key: object) -> bool:
        return key in self._by_key

    def __getitem__(self, key: str) -> Column:
        return self.get(key)

    def get(self, key: str) -> Column:
        """Look up a column by key.

        Raises:
            InvalidColumn: If no column has that key.
        """
        try:
            return self._by_key[key]
        except KeyError:
            raise InvalidColumn(f"Unknown column '{key}'") from None

    def keys(self) -> list[str]:
        return [c.key for c in self._columns]

    def sensitive(self) -> list[Column]:
        return [c for c in self._columns if c.contains_sensitive_data]

    @classmethod
    def from_dicts(cls, items: Iterable[dict]) -> "ColumnSet":
        try:
            return cls(Column(**item) for item in items)
        except ValidationError as exc:
            raise ConfigurationError(f"Invalid column declaration: {exc}") from exc

    @classmethod
    def from_yaml(cls, path: str | Path) -> "ColumnSet":
        """Load column declarations from a YAML file.

        The file holds either a list of column mappings or a mapping with a
        ``columns`` list.
        """
        path = Path(path)
        with open(path, "r") as f:
            data = yaml.safe_load(f)
        if isinstance(data, dict):
            data = data.get("columns", [])
        if not isinstance(data, list):
            raise ConfigurationError(f"{path}: expected a list of columns")
        return cls.from_dicts(data)


def as_column_set(columns: "ColumnSet | Iterable[Column]") -> ColumnSet:
    """Accept either a ColumnSet or any iterable of columns."""
    if isinstance(columns, ColumnSet):
        return columns
    return ColumnSet(columns)
