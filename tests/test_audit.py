"""Tests for audit events, sinks and the fail-open/fail-closed emitter."""

from datetime import datetime, timezone

import pytest

from phitable.audit import (
    ActionClass,
    AuditAction,
    AuditEmitter,
    AuditEvent,
    CallbackAuditSink,
    InMemoryAuditSink,
    JsonLinesAuditSink,
    classify,
)
from phitable.audit.sink import AuditSink
from phitable.config import TableEngineConfig
from phitable.emergency import EmergencyState
from phitable.exceptions import AuditSinkUnavailable
from phitable.policy import ClearanceTier, Principal

FIXED_TIME = datetime(2026, 3, 1, 8, 30, tzinfo=timezone.utc)


class FlakySink(AuditSink):
    """Fails the first ``failures`` appends, then stores."""

    def __init__(self, failures: int):
        self.failures = failures
        self.calls = 0
        self.stored: list[AuditEvent] = []

    def append(self, event: AuditEvent) -> None:
        self.calls += 1
        if self.calls <= self.failures:
            raise ConnectionError("sink down")
        self.stored.append(event)


@pytest.fixture
def principal():
    return Principal(id="nurse-7", granted_clearance=ClearanceTier.RESTRICTED)


class TestClassification:
    """Default action classes."""

    @pytest.mark.parametrize("action", [
        AuditAction.REVEAL, AuditAction.EXPORT, AuditAction.ROW_VIEW, AuditAction.EMERGENCY_MODE_CHANGED,
    ])
    def test_disclosure(self, action):
        assert classify(action) is ActionClass.DISCLOSURE

    @pytest.mark.parametrize("action", [
        AuditAction.SORT_CHANGE, AuditAction.SEARCH, AuditAction.PAGE_CHANGE,
        AuditAction.SELECTION_CHANGE, AuditAction.HIDE, AuditAction.FILTER_CHANGE,
    ])
    def test_navigational(self, action):
        assert classify(action) is ActionClass.NAVIGATIONAL


class TestAuditEvent:
    """Event serialization."""

    def test_event_id_format(self):
        event = AuditEvent(action=AuditAction.SEARCH, principal_id="u")
        assert event.event_id.startswith("audit_")
        assert len(event.event_id) == len("audit_") + 16

    def test_cloudevent(self):
        event = AuditEvent(
            action=AuditAction.REVEAL,
            principal_id="u",
            timestamp=FIXED_TIME,
            compliance_tier=ClearanceTier.CONFIDENTIAL,
            action_class=ActionClass.DISCLOSURE,
            context={"column": "medical_id"},
        )
        envelope = event.to_cloudevent()
        assert envelope["specversion"] == "1.0"
        assert envelope["type"] == "io.phitable.audit.reveal"
        assert envelope["subject"] == "u"
        assert envelope["data"]["compliance_tier"] == "confidential"
        assert envelope["data"]["column"] == "medical_id"

    def test_hash_depends_on_previous(self):
        event = AuditEvent(action=AuditAction.SEARCH, principal_id="u", timestamp=FIXED_TIME)
        assert event.compute_hash("") != event.compute_hash("abc")


class TestInMemoryAuditSink:
    """Hash-chained sink."""

    def _filled(self):
        sink = InMemoryAuditSink()
        for action in (AuditAction.SEARCH, AuditAction.REVEAL, AuditAction.EXPORT):
            sink.append(AuditEvent(action=action, principal_id="u", timestamp=FIXED_TIME))
        return sink

    def test_chain_verifies(self):
        sink = self._filled()
        assert len(sink) == 3
        assert sink.verify_chain() == (True, None)
        assert sink.head_hash is not None

    def test_tampering_detected(self):
        sink = self._filled()
        entry = sink._entries[1]
        tampered = entry.event.model_copy(update={"principal_id": "someone-else"})
        sink._entries[1] = type(entry)(
            event=tampered, previous_hash=entry.previous_hash, entry_hash=entry.entry_hash,
        )
        valid, message = sink.verify_chain()
        assert not valid
        assert "Entry 1" in message

    def test_query(self):
        sink = self._filled()
        assert [e.action for e in sink.query(action=AuditAction.REVEAL)] == [AuditAction.REVEAL]
        assert len(sink.query(principal_id="u", limit=2)) == 2
        assert sink.query(principal_id="other") == []

    def test_empty_chain(self):
        assert InMemoryAuditSink().verify_chain() == (True, None)


class TestOtherSinks:
    """Callback and JSON-lines sinks."""

    def test_callback(self):
        received = []
        sink = CallbackAuditSink(received.append)
        event = AuditEvent(action=AuditAction.SEARCH, principal_id="u")
        sink.append(event)
        assert received == [event]

    def test_json_lines(self, tmp_path):
        sink = JsonLinesAuditSink(tmp_path / "audit.jsonl")
        assert sink.read() == []
        sink.append(AuditEvent(action=AuditAction.EXPORT, principal_id="u", context={"record_count": 2}))
        rows = sink.read()
        assert len(rows) == 1
        assert rows[0]["action"] == "export"
        assert rows[0]["context"]["record_count"] == 2


class TestAuditEmitter:
    """Delivery policy per action class."""

    def test_emit_builds_event(self, principal):
        sink = InMemoryAuditSink()
        emitter = AuditEmitter(sink, clock=lambda: FIXED_TIME)
        receipt = emitter.emit(
            AuditAction.REVEAL, principal, {"column": "medical_id"},
            compliance_tier=ClearanceTier.CONFIDENTIAL,
        )
        assert receipt.delivered and receipt.attempts == 1
        event = sink.events[0]
        assert event.timestamp == FIXED_TIME
        assert event.principal_id == "nurse-7"
        assert event.action_class is ActionClass.DISCLOSURE
        assert event.context == {"column": "medical_id", "is_emergency": False}

    def test_context_carries_emergency_and_framework(self, principal):
        sink = InMemoryAuditSink()
        emitter = AuditEmitter(sink, TableEngineConfig(compliance_framework="hipaa"))
        emitter.emit(AuditAction.SEARCH, principal, {}, EmergencyState(active=True))
        context = sink.events[0].context
        assert context["is_emergency"] is True
        assert context["compliance_framework"] == "hipaa"

    def test_disclosure_fails_closed(self, principal):
        sink = FlakySink(failures=1)
        emitter = AuditEmitter(sink)
        with pytest.raises(AuditSinkUnavailable) as exc_info:
            emitter.emit(AuditAction.EXPORT, principal, {"record_count": 3})
        assert exc_info.value.action == "export"
        assert isinstance(exc_info.value.__cause__, ConnectionError)
        assert sink.calls == 1

    def test_navigational_retries_once(self, principal):
        sink = FlakySink(failures=1)
        emitter = AuditEmitter(sink)
        receipt = emitter.emit(AuditAction.SORT_CHANGE, principal, {"column": "name"})
        assert receipt.delivered
        assert receipt.attempts == 2
        assert len(sink.stored) == 1

    def test_navigational_dropped_after_retries(self, principal, caplog):
        sink = FlakySink(failures=10)
        emitter = AuditEmitter(sink, TableEngineConfig(audit_retry_attempts=2))
        with caplog.at_level("WARNING", logger="phitable.audit.emitter"):
            receipt = emitter.emit(AuditAction.PAGE_CHANGE, principal)
        assert not receipt.delivered
        assert receipt.attempts == 3
        assert sink.calls == 3
        assert "Dropped navigational audit event" in caplog.text

    def test_escalated_navigational_fails_closed(self, principal):
        emitter = AuditEmitter(FlakySink(failures=1))
        with pytest.raises(AuditSinkUnavailable):
            emitter.emit(AuditAction.FILTER_CHANGE, principal, {"column": "medical_id"}, disclosure=True)
