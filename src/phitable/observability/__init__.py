# Copyright (c) PhiTable Contributors. All rights reserved.
# Licensed under the MIT License.
"""Observability helpers."""

from .metrics import MetricsCollector

__all__ = ["MetricsCollector"]
