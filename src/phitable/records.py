# Copyright (c) PhiTable Contributors. All rights reserved.
# Licensed under the MIT License.
"""
Records

A record maps column keys to values and carries a stable identity used
for selection and as the final sort tie-breaker. Record sets are supplied
fresh per query by the record source; the engine never mutates them.
"""

from __future__ import annotations

from typing import Any, Iterable, Union

from pydantic import BaseModel, ConfigDict, Field

RecordId = Union[int, str]


class Record(BaseModel):
    """An immutable row."""

    model_config = ConfigDict(frozen=True)

    record_id: RecordId
    values: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def of(cls, record_id: RecordId, **values: Any) -> "Record":
        return cls(record_id=record_id, values=values)

    def get(self, key: str, default: Any = None) -> Any:
        return self.values.get(key, default)

    def project(self, keys: Iterable[str]) -> "Record":
        """Copy of this record restricted to ``keys``."""
        return Record(
            record_id=self.record_id,
            values={k: self.values.get(k) for k in keys},
        )


def records_from_dicts(rows: Iterable[dict], id_field: str = "id") -> list[Record]:
    """Build records from plain mappings, taking identity from ``id_field``.

    Raises:
        ValueError: If a row has no identity.
    """
    records = []
    for i, row in enumerate(rows):
        if id_field not in row or row[id_field] is None:
            raise ValueError(f"Row {i} has no '{id_field}' field")
        records.append(Record(record_id=row[id_field], values=dict(row)))
    return records
