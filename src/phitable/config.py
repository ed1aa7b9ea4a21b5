# Copyright (c) PhiTable Contributors. All rights reserved.
# Licensed under the MIT License.
"""
Engine Configuration

Limits and timing knobs for table sessions. Loadable from YAML or from
``PHITABLE_*`` environment variables.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Mapping, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, model_validator

from phitable.constants import (
    DEFAULT_AUDIT_RETRY_ATTEMPTS,
    DEFAULT_MAX_EXPORT_ROWS,
    DEFAULT_PAGE_SIZE,
    ENV_PREFIX,
    MASK_PLACEHOLDER,
    MAX_AUDIT_RETRY_ATTEMPTS,
    MAX_PAGE_SIZE,
)
from phitable.exceptions import ConfigurationError
from phitable.policy.compliance import ComplianceFramework


class TableEngineConfig(BaseModel):
    """Configuration for table sessions."""

    default_page_size: int = Field(default=DEFAULT_PAGE_SIZE, ge=1, description="Rows per page")
    max_page_size: int = Field(default=MAX_PAGE_SIZE, ge=1, description="Largest page a caller may request")
    max_export_rows: int = Field(default=DEFAULT_MAX_EXPORT_ROWS, ge=1, description="Export row limit")

    # None disables automatic re-masking
    reveal_idle_timeout_seconds: Optional[float] = Field(
        default=None, gt=0, description="Seconds of inactivity before a revealed column is hidden"
    )

    audit_retry_attempts: int = Field(
        default=DEFAULT_AUDIT_RETRY_ATTEMPTS,
        ge=0,
        le=MAX_AUDIT_RETRY_ATTEMPTS,
        description="Extra delivery attempts for navigational audit events",
    )

    compliance_framework: Optional[ComplianceFramework] = Field(
        default=None, description="Framework stamped on every audit event"
    )
    mask_placeholder: str = Field(default=MASK_PLACEHOLDER, min_length=1)

    @model_validator(mode="after")
    def _check_page_sizes(self) -> "TableEngineConfig":
        if self.default_page_size > self.max_page_size:
            raise ValueError(
                f"default_page_size ({self.default_page_size}) exceeds "
                f"max_page_size ({self.max_page_size})"
            )
        return self

    @classmethod
    def from_yaml(cls, path: str | Path) -> "TableEngineConfig":
        """Load configuration from a YAML file (top-level or under ``phitable:``)."""
        path = Path(path)
        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}
        if "phitable" in data:
            data = data["phitable"] or {}
        try:
            return cls(**data)
        except ValidationError as exc:
            raise ConfigurationError(f"{path}: {exc}") from exc

    def to_yaml(self, path: str | Path) -> None:
        path = Path(path)
        data = self.model_dump(mode="json")
        with open(path, "w") as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)

    @classmethod
    def from_env(
        cls,
        environ: Optional[Mapping[str, str]] = None,
        prefix: str = ENV_PREFIX,
    ) -> "TableEngineConfig":
        """Build a config from ``PHITABLE_<FIELD>`` variables.

        Unset variables keep their defaults; an empty value for
        ``REVEAL_IDLE_TIMEOUT_SECONDS`` disables the timeout.
        """
        environ = os.environ if environ is None else environ
        data: dict[str, object] = {}
        for name in cls.model_fields:
            raw = environ.get(f"{prefix}{name.upper()}")
            if raw is None:
                continue
            data[name] = raw if raw != "" else None
        try:
            return cls(**data)
        except ValidationError as exc:
            raise ConfigurationError(f"Invalid {prefix}* environment: {exc}") from exc
