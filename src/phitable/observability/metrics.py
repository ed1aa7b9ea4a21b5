# Copyright (c) PhiTable Contributors. All rights reserved.
# Licensed under the MIT License.
"""
Prometheus Metrics Integration.

Counters for audit delivery, reveals, exports and access denials, plus an
emergency-mode gauge. Metrics are disabled when ``prometheus_client`` is
not installed.
"""

from typing import Optional


class MetricsCollector:
    """
    Prometheus metrics collector for PhiTable.

    Exposes metrics:
    - phitable_audit_events_total{action="...", outcome="delivered|dropped|failed"}
    - phitable_reveals_total{column="..."}
    - phitable_exports_total{format="..."}
    - phitable_access_denied_total
    - phitable_emergency_active
    """

    def __init__(self, registry=None):
        """Initialize metrics collector.

        Args:
            registry: Prometheus ``CollectorRegistry``; a private registry
                is created when omitted so collectors can coexist.
        """
        try:
            from prometheus_client import CollectorRegistry, Counter, Gauge
        except ImportError:
            # Prometheus client not installed
            self._enabled = False
            self.registry = None
            return

        self.registry = registry if registry is not None else CollectorRegistry()

        self.audit_events_total = Counter(
            "phitable_audit_events_total",
            "Audit events by action and delivery outcome",
            ["action", "outcome"],
            registry=self.registry,
        )
        self.reveals_total = Counter(
            "phitable_reveals_total",
            "Sensitive column reveals",
            ["column"],
            registry=self.registry,
        )
        self.exports_total = Counter(
            "phitable_exports_total",
            "Completed exports",
            ["format"],
            registry=self.registry,
        )
        self.access_denied_total = Counter(
            "phitable_access_denied_total",
            "Operations rejected for insufficient clearance",
            registry=self.registry,
        )
        self.emergency_active = Gauge(
            "phitable_emergency_active",
            "1 while emergency mode is active",
            registry=self.registry,
        )
        self._enabled = True

    @property
    def enabled(self) -> bool:
        """Check if metrics are enabled."""
        return self._enabled

    def record_audit_event(self, action: str, outcome: str):
        if not self._enabled:
            return
        self.audit_events_total.labels(action=action, outcome=outcome).inc()

    def record_reveal(self, column: str):
        if not self._enabled:
            return
        self.reveals_total.labels(column=column).inc()

    def record_export(self, export_format: str):
        if not self._enabled:
            return
        self.exports_total.labels(format=export_format).inc()

    def record_access_denied(self):
        if not self._enabled:
            return
        self.access_denied_total.inc()

    def set_emergency_active(self, active: bool):
        if not self._enabled:
            return
        self.emergency_active.set(1 if active else 0)

    def sample(self, name: str, labels: Optional[dict] = None) -> Optional[float]:
        """Current value of a sample, for tests and health checks."""
        if not self._enabled:
            return None
        return self.registry.get_sample_value(name, labels or {})
