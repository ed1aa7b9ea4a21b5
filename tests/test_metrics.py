"""Tests for the Prometheus metrics collector."""

import pytest

pytest.importorskip("prometheus_client")

from phitable.audit import AuditAction, AuditEmitter, AuditEvent, InMemoryAuditSink  # noqa: E402
from phitable.audit.sink import AuditSink  # noqa: E402
from phitable.columns import Column, ColumnSet  # noqa: E402
from phitable.emergency import EmergencyModeCoordinator, EmergencyState  # noqa: E402
from phitable.exceptions import AccessDenied  # noqa: E402
from phitable.export import export_job  # noqa: E402
from phitable.masking import MaskingState  # noqa: E402
from phitable.observability import MetricsCollector  # noqa: E402
from phitable.policy import ClearanceTier, Principal  # noqa: E402
from phitable.records import Record  # noqa: E402

COLUMNS = ColumnSet([Column.text("name"), Column.sensitive("medical_id")])
NURSE = Principal(id="nurse-1", granted_clearance=ClearanceTier.CONFIDENTIAL)
CLERK = Principal(id="clerk-1")


class DownSink(AuditSink):
    def append(self, event: AuditEvent) -> None:
        raise ConnectionError("sink down")


@pytest.fixture
def metrics():
    return MetricsCollector()


class TestMetricsCollector:
    """Counters and gauges."""

    def test_enabled(self, metrics):
        assert metrics.enabled
        assert metrics.registry is not None

    def test_collectors_are_isolated(self):
        a, b = MetricsCollector(), MetricsCollector()
        a.record_access_denied()
        assert a.sample("phitable_access_denied_total") == 1.0
        assert b.sample("phitable_access_denied_total") == 0.0

    def test_audit_outcomes(self, metrics):
        emitter = AuditEmitter(InMemoryAuditSink(), metrics=metrics)
        masking = MaskingState(COLUMNS, emitter, metrics=metrics)
        masking.reveal("medical_id", NURSE)
        assert metrics.sample(
            "phitable_audit_events_total", {"action": "reveal", "outcome": "delivered"}
        ) == 1.0
        assert metrics.sample("phitable_reveals_total", {"column": "medical_id"}) == 1.0

    def test_dropped_navigational(self, metrics):
        emitter = AuditEmitter(DownSink(), metrics=metrics)
        emitter.emit(AuditAction.SEARCH, NURSE)
        assert metrics.sample(
            "phitable_audit_events_total", {"action": "search", "outcome": "dropped"}
        ) == 1.0

    def test_access_denied_counted(self, metrics):
        masking = MaskingState(COLUMNS, AuditEmitter(InMemoryAuditSink()), metrics=metrics)
        with pytest.raises(AccessDenied):
            masking.reveal("medical_id", CLERK)
        assert metrics.sample("phitable_access_denied_total") == 1.0

    def test_exports_counted(self, metrics):
        export_job([Record.of(1, name="A")], COLUMNS, NURSE, EmergencyState(), None, "csv",
                   emitter=AuditEmitter(InMemoryAuditSink()), metrics=metrics)
        assert metrics.sample("phitable_exports_total", {"format": "csv"}) == 1.0

    def test_emergency_gauge(self, metrics):
        coordinator = EmergencyModeCoordinator(AuditEmitter(InMemoryAuditSink()), metrics=metrics)
        coordinator.activate(NURSE)
        assert metrics.sample("phitable_emergency_active") == 1.0
        coordinator.deactivate(NURSE)
        assert metrics.sample("phitable_emergency_active") == 0.0
