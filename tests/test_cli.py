"""Tests for the PhiTable CLI."""

import json

import pytest
from click.testing import CliRunner

from phitable import __version__
from phitable.cli.main import app

COLUMNS_YAML = """\
columns:
  - key: name
    label: Name
    sortable: true
    filterable: true
  - key: status
    label: Status
    sortable: true
    filterable: true
  - key: medical_id
    label: Medical ID
    filterable: true
    contains_sensitive_data: true
    required_clearance: confidential
"""

RECORDS = [
    {"id": 1, "name": "Tremblay", "status": "admitted", "medical_id": "MRN-0001"},
    {"id": 2, "name": "Gagnon", "status": "discharged", "medical_id": "MRN-0002"},
    {"id": 3, "name": "Roy", "status": "admitted", "medical_id": "MRN-0003"},
]


@pytest.fixture
def runner():
    """Create a Click CLI test runner."""
    return CliRunner()


@pytest.fixture
def files(tmp_path):
    columns = tmp_path / "columns.yaml"
    columns.write_text(COLUMNS_YAML)
    records = tmp_path / "records.json"
    records.write_text(json.dumps(RECORDS))
    return str(records), str(columns)


class TestApp:
    def test_version(self, runner):
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.output

    def test_help_lists_commands(self, runner):
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        for name in ("columns", "query", "export"):
            assert name in result.output


class TestColumnsCommand:
    def test_public_json(self, runner, files):
        _, columns = files
        result = runner.invoke(app, ["columns", columns, "--clearance", "public", "--json"])
        assert result.exit_code == 0
        data = {row["key"]: row for row in json.loads(result.output)}
        assert data["name"]["visible"] is True
        assert data["medical_id"]["visible"] is False
        assert data["medical_id"]["sensitive"] is True

    def test_emergency_sees_all(self, runner, files):
        _, columns = files
        result = runner.invoke(app, ["columns", columns, "--emergency", "--json"])
        assert result.exit_code == 0
        assert all(row["visible"] for row in json.loads(result.output))

    def test_table_output(self, runner, files):
        _, columns = files
        result = runner.invoke(app, ["columns", columns, "--clearance", "confidential"])
        assert result.exit_code == 0
        assert "Visible: 3 of 3" in result.output


class TestQueryCommand:
    def _query(self, runner, files, *args):
        records, columns = files
        return runner.invoke(app, ["query", records, columns, "--clearance", "confidential", "--json", *args])

    def test_masked_by_default(self, runner, files):
        result = self._query(runner, files)
        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["columns"] == ["name", "status", "medical_id"]
        assert data["rows"][0]["medical_id"] == "•••••"
        assert data["total_matched"] == 3

    def test_search_sort_page(self, runner, files):
        result = self._query(runner, files, "--filter", "status=admitted", "--sort", "name:desc",
                             "--page", "1", "--size", "1")
        assert result.exit_code == 0
        data = json.loads(result.output)
        assert [row["id"] for row in data["rows"]] == [1]
        assert data["page_count"] == 2

    def test_reveal(self, runner, files):
        result = self._query(runner, files, "--reveal", "medical_id", "--search", "0002")
        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["rows"] == [{"id": 2, "name": "Gagnon", "status": "discharged", "medical_id": "MRN-0002"}]

    def test_filter_on_masked_column_fails(self, runner, files):
        result = self._query(runner, files, "--filter", "medical_id=0002")
        assert result.exit_code == 1
        assert "masked" in result.output

    def test_reveal_without_clearance_fails(self, runner, files):
        records, columns = files
        result = runner.invoke(app, ["query", records, columns, "--reveal", "medical_id"])
        assert result.exit_code == 1
        assert "requires confidential" in result.output

    def test_bad_filter_syntax(self, runner, files):
        result = self._query(runner, files, "--filter", "status")
        assert result.exit_code == 2

    def test_table_output(self, runner, files):
        records, columns = files
        result = runner.invoke(app, ["query", records, columns])
        assert result.exit_code == 0
        assert "3 matched" in result.output


class TestExportCommand:
    def test_export_selected(self, runner, files, tmp_path):
        records, columns = files
        audit_log = tmp_path / "audit.jsonl"
        result = runner.invoke(app, [
            "--audit-log", str(audit_log), "--principal", "dr-9",
            "export", records, columns, "--clearance", "confidential",
            "--select", "1", "--select", "3",
        ])
        assert result.exit_code == 0
        lines = result.output.splitlines()
        assert lines[0] == "Name,Status,Medical ID"
        assert lines[1:] == ["Tremblay,admitted,•••••", "Roy,admitted,•••••"]

        events = [json.loads(line) for line in audit_log.read_text().splitlines()]
        export = [e for e in events if e["action"] == "export"]
        assert len(export) == 1
        assert export[0]["principal_id"] == "dr-9"
        assert export[0]["context"]["record_count"] == 2
        assert export[0]["context"]["selected_only"] is True

    def test_export_too_large(self, runner, files):
        records, columns = files
        result = runner.invoke(app, ["export", records, columns, "--max-rows", "2"])
        assert result.exit_code == 1
        assert "exceeds the limit of 2" in result.output

    def test_unknown_selection(self, runner, files):
        records, columns = files
        result = runner.invoke(app, ["export", records, columns, "--select", "42"])
        assert result.exit_code == 1
        assert "Unknown record id" in result.output

    def test_config_file(self, runner, files, tmp_path):
        records, columns = files
        config = tmp_path / "phitable.yaml"
        config.write_text("mask_placeholder: '[redacted]'\n")
        result = runner.invoke(app, [
            "--config", str(config), "export", records, columns, "--clearance", "confidential",
        ])
        assert result.exit_code == 0
        assert "Tremblay,admitted,[redacted]" in result.output
