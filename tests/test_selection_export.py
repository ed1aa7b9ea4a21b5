"""Tests for selection and export."""

import csv
import io
from datetime import datetime, timezone

import pytest

from phitable.audit import AuditAction, AuditEmitter, AuditEvent, InMemoryAuditSink
from phitable.audit.sink import AuditSink
from phitable.columns import Column, ColumnSet
from phitable.config import TableEngineConfig
from phitable.emergency import EmergencyState
from phitable.exceptions import AuditSinkUnavailable, ExportTooLarge, UsageError
from phitable.export import ExportFormat, export_job
from phitable.masking import MaskingState
from phitable.policy import ClearanceTier, Principal
from phitable.query import FilterState
from phitable.records import Record
from phitable.selection import Selection, SelectionController, SelectionMode

FIXED_TIME = datetime(2026, 3, 1, 8, 30, tzinfo=timezone.utc)

COLUMNS = ColumnSet([
    Column.text("name", "Name"),
    Column.text("status", "Status"),
    Column.flag("consent", "Consent"),
    Column.sensitive("medical_id", "Medical ID"),
    Column.text("ward", "Ward", clearance=ClearanceTier.RESTRICTED),
])

NURSE = Principal(id="nurse-1", granted_clearance=ClearanceTier.CONFIDENTIAL)
CLERK = Principal(id="clerk-1")
INACTIVE = EmergencyState()


class DownSink(AuditSink):
    def append(self, event: AuditEvent) -> None:
        raise ConnectionError("sink down")


def _records(n=5):
    return [
        Record.of(i, name=f"Patient {i}", status="admitted" if i % 2 else "discharged",
                  consent=bool(i % 2), medical_id=f"MRN-{i:04d}", ward="A")
        for i in range(1, n + 1)
    ]


@pytest.fixture
def sink():
    return InMemoryAuditSink()


@pytest.fixture
def emitter(sink):
    return AuditEmitter(sink, clock=lambda: FIXED_TIME)


class TestSelection:
    """Selection values."""

    def test_of_empty_is_none(self):
        assert Selection.of([]).mode is SelectionMode.NONE

    def test_selected_only(self):
        assert Selection.of([1]).selected_only
        assert not Selection.all().selected_only
        assert not Selection.none().selected_only

    def test_resolve_explicit_keeps_matching_order(self):
        records = _records()
        chosen = Selection.of([4, 2, 99]).resolve(records)
        assert [r.record_id for r in chosen] == [2, 4]

    def test_resolve_all_and_none(self):
        records = _records()
        assert Selection.all().resolve(records) == records
        assert Selection.none().resolve(records) == records

    def test_contains(self):
        assert Selection.all().contains(42)
        assert Selection.of([1]).contains(1)
        assert not Selection.of([1]).contains(2)


class TestSelectionController:
    """Audited selection transitions."""

    def test_toggle(self, emitter, sink):
        controller = SelectionController(emitter, table_id="patients")
        controller.toggle_selection(1, NURSE)
        controller.toggle_selection(3, NURSE)
        assert controller.selection.record_ids == frozenset({1, 3})
        controller.toggle_selection(1, NURSE)
        assert controller.selection.record_ids == frozenset({3})
        events = sink.query(action=AuditAction.SELECTION_CHANGE)
        assert len(events) == 3
        assert events[-1].context["selected_count"] == 1
        assert events[-1].context["table_id"] == "patients"

    def test_toggle_last_id_returns_to_none(self, emitter):
        controller = SelectionController(emitter)
        controller.toggle_selection(1, NURSE)
        controller.toggle_selection(1, NURSE)
        assert controller.selection.mode is SelectionMode.NONE

    def test_toggle_from_all(self, emitter):
        controller = SelectionController(emitter)
        controller.select_all(NURSE)
        controller.toggle_selection(2, NURSE, matching_ids=[1, 2, 3])
        assert controller.selection.mode is SelectionMode.EXPLICIT
        assert controller.selection.record_ids == frozenset({1, 3})

    def test_toggle_from_all_needs_matching_ids(self, emitter):
        controller = SelectionController(emitter)
        controller.select_all(NURSE)
        with pytest.raises(UsageError):
            controller.toggle_selection(2, NURSE)

    def test_clear(self, emitter):
        controller = SelectionController(emitter)
        controller.toggle_selection(1, NURSE)
        controller.clear_selection(NURSE)
        assert controller.selection == Selection.none()

    def test_is_selected_and_resolve(self, emitter):
        controller = SelectionController(emitter)
        controller.select_all(NURSE)
        assert controller.is_selected(2, matching_ids=[1, 2])
        assert not controller.is_selected(9, matching_ids=[1, 2])
        controller.clear_selection(NURSE)
        controller.toggle_selection(2, NURSE)
        assert controller.is_selected(2)
        assert [r.record_id for r in controller.resolve(_records())] == [2]

    def test_navigational_failure_does_not_block(self):
        controller = SelectionController(AuditEmitter(DownSink()))
        controller.select_all(NURSE)
        assert controller.selection.mode is SelectionMode.ALL


class TestExportScoping:
    """Exports cover only the selected, matching records."""

    def test_selected_only_export(self, emitter, sink):
        controller = SelectionController(emitter)
        controller.toggle_selection(1, NURSE)
        controller.toggle_selection(3, NURSE)
        records = _records()

        payload = export_job(records, COLUMNS, NURSE, INACTIVE, controller.selection, "csv",
                             emitter=emitter, clock=lambda: FIXED_TIME)

        assert [r.record_id for r in payload.rows] == [1, 3]
        assert payload.metadata.record_count == 2
        assert payload.metadata.selected_only is True
        assert payload.metadata.generated_at == FIXED_TIME
        exports = sink.query(action=AuditAction.EXPORT)
        assert len(exports) == 1
        assert exports[0].context["record_count"] == 2
        assert exports[0].context["selected_only"] is True

    def test_no_selection_exports_all_matching(self, emitter, sink):
        state = FilterState(column_filters={"status": "admitted"})
        payload = export_job(_records(), COLUMNS, NURSE, INACTIVE, None, ExportFormat.CSV,
                             emitter=emitter, filter_state=state)
        assert [r.record_id for r in payload.rows] == [1, 3, 5]
        assert payload.metadata.selected_only is False

    def test_select_all_follows_filter_changes(self, emitter):
        records = _records()
        selection = Selection.all()
        admitted = export_job(records, COLUMNS, NURSE, INACTIVE, selection, "csv", emitter=emitter,
                              filter_state=FilterState(column_filters={"status": "admitted"}))
        discharged = export_job(records, COLUMNS, NURSE, INACTIVE, selection, "csv", emitter=emitter,
                                filter_state=FilterState(column_filters={"status": "discharged"}))
        assert [r.record_id for r in admitted.rows] == [1, 3, 5]
        assert [r.record_id for r in discharged.rows] == [2, 4]

    def test_selected_records_outside_filter_dropped(self, emitter):
        payload = export_job(_records(), COLUMNS, NURSE, INACTIVE, Selection.of([1, 2]), "csv",
                             emitter=emitter, filter_state=FilterState(column_filters={"status": "admitted"}))
        assert [r.record_id for r in payload.rows] == [1]

    def test_invisible_columns_never_exported(self, emitter):
        payload = export_job(_records(), COLUMNS, CLERK, INACTIVE, None, "csv", emitter=emitter)
        keys = [c.key for c in payload.columns]
        assert keys == ["name", "status", "consent"]
        assert all("medical_id" not in r.values and "ward" not in r.values for r in payload.rows)


class TestExportMasking:
    """Masked cells stay redacted in exports."""

    def test_masked_by_default(self, emitter, sink):
        payload = export_job(_records(2), COLUMNS, NURSE, INACTIVE, None, "csv", emitter=emitter)
        assert {r.get("medical_id") for r in payload.rows} == {"•••••"}
        assert payload.masked_columns == frozenset({"medical_id"})
        assert sink.events[-1].context["masked_columns"] == ["medical_id"]

    def test_revealed_exported(self, emitter):
        masking = MaskingState(COLUMNS, emitter)
        masking.reveal("medical_id", NURSE)
        payload = export_job(_records(2), COLUMNS, NURSE, INACTIVE, None, "csv",
                             emitter=emitter, masking=masking)
        assert [r.get("medical_id") for r in payload.rows] == ["MRN-0001", "MRN-0002"]
        assert payload.masked_columns == frozenset()

    def test_compliance_tier_is_highest_exported(self, emitter, sink):
        export_job(_records(1), COLUMNS, NURSE, INACTIVE, None, "csv", emitter=emitter)
        assert sink.events[-1].compliance_tier is ClearanceTier.CONFIDENTIAL
        export_job(_records(1), COLUMNS, CLERK, INACTIVE, None, "csv", emitter=emitter)
        assert sink.events[-1].compliance_tier is ClearanceTier.PUBLIC

    def test_emergency_override_flagged(self, emitter, sink):
        export_job(_records(1), COLUMNS, CLERK, EmergencyState(active=True), None, "csv", emitter=emitter)
        assert sink.events[-1].emergency_override is True


class TestExportLimits:
    """Size limits and audit failure."""

    def test_too_large_before_audit(self, emitter, sink):
        config = TableEngineConfig(max_export_rows=3)
        with pytest.raises(ExportTooLarge) as exc_info:
            export_job(_records(5), COLUMNS, NURSE, INACTIVE, None, "csv", emitter=emitter, config=config)
        assert exc_info.value.requested == 5
        assert exc_info.value.limit == 3
        assert len(sink) == 0

    def test_at_limit_allowed(self, emitter):
        config = TableEngineConfig(max_export_rows=5)
        payload = export_job(_records(5), COLUMNS, NURSE, INACTIVE, None, "csv", emitter=emitter, config=config)
        assert payload.metadata.record_count == 5

    def test_sink_down_aborts(self):
        with pytest.raises(AuditSinkUnavailable):
            export_job(_records(2), COLUMNS, NURSE, INACTIVE, None, "csv", emitter=AuditEmitter(DownSink()))

    def test_unknown_format(self, emitter):
        with pytest.raises(UsageError):
            export_job(_records(2), COLUMNS, NURSE, INACTIVE, None, "docx", emitter=emitter)


class TestCsv:
    """CSV rendering of payloads."""

    def test_to_csv(self, emitter):
        payload = export_job(_records(2), COLUMNS, NURSE, INACTIVE, None, "csv", emitter=emitter)
        rows = list(csv.reader(io.StringIO(payload.to_csv())))
        assert rows[0] == ["Name", "Status", "Consent", "Medical ID", "Ward"]
        assert rows[1] == ["Patient 1", "admitted", "Yes", "•••••", "A"]
        assert rows[2] == ["Patient 2", "discharged", "No", "•••••", "A"]

    def test_masked_boolean_stays_placeholder(self, emitter):
        columns = ColumnSet([Column.text("name"), Column.sensitive("hiv_status", render_kind="boolean")])
        records = [Record.of(1, name="A", hiv_status=True)]
        payload = export_job(records, columns, NURSE, INACTIVE, None, "csv", emitter=emitter)
        assert payload.to_csv().splitlines()[1] == "A,•••••"
