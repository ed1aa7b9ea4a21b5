# Copyright (c) PhiTable Contributors. All rights reserved.
# Licensed under the MIT License.
"""
PhiTable CLI

Commands for running the table engine over local files:
- columns: Show which columns a clearance tier can see
- query: Search, filter, sort and page a record file
- export: Export the matching (or selected) records as CSV

Every command builds a one-shot table session; ``--audit-log`` appends
the audit events it emits to a JSON-lines file.
"""

import json
import logging
from contextlib import contextmanager
from typing import Iterator, Optional

import click
from rich import box
from rich.console import Console
from rich.table import Table

from phitable import __version__
from phitable.audit import AuditEmitter, AuditSink, InMemoryAuditSink, JsonLinesAuditSink
from phitable.columns import ColumnSet
from phitable.config import TableEngineConfig
from phitable.emergency import EmergencyModeCoordinator, EmergencyState
from phitable.exceptions import PhiTableError
from phitable.policy import AccessPolicyEvaluator, ClearanceTier, Principal
from phitable.query import SortDescriptor
from phitable.records import Record, records_from_dicts
from phitable.session import TableSession

console = Console()

_CLEARANCE_CHOICES = [tier.value for tier in ClearanceTier]

_TIER_STYLES = {
    "public": "green",
    "restricted": "yellow",
    "confidential": "red",
    "emergency": "bold red",
}


def _fail(message: str) -> None:
    click.echo(f"Error: {message}", err=True)
    raise SystemExit(1)


def _load_columns(path: str) -> ColumnSet:
    try:
        return ColumnSet.from_yaml(path)
    except PhiTableError as exc:
        _fail(str(exc))


def _load_records(path: str, id_field: str) -> list[Record]:
    """Load records from a JSON list (or ``{"records": [...]}``)."""
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    if isinstance(data, dict):
        data = data.get("records", [])
    if not isinstance(data, list):
        _fail(f"{path}: expected a list of records")
    try:
        return records_from_dicts(data, id_field=id_field)
    except ValueError as exc:
        _fail(f"{path}: {exc}")


def _parse_filter(text: str) -> tuple[str, str]:
    key, sep, value = text.partition("=")
    if not sep or not key:
        raise click.BadParameter(f"expected key=value, got '{text}'", param_hint="--filter")
    return key.strip(), value


def _config(ctx: click.Context, max_rows: Optional[int] = None) -> TableEngineConfig:
    config = ctx.obj["config"]
    if max_rows is not None:
        config = config.model_copy(update={"max_export_rows": max_rows})
    return config


@contextmanager
def _session(
    ctx: click.Context,
    columns: ColumnSet,
    clearance: str,
    emergency: bool,
    config: TableEngineConfig,
) -> Iterator[TableSession]:
    """Build a one-shot session for ``principal`` at ``clearance``."""
    sink: AuditSink = (
        JsonLinesAuditSink(ctx.obj["audit_log"]) if ctx.obj["audit_log"] else InMemoryAuditSink()
    )
    emitter = AuditEmitter(sink, config)
    coordinator = EmergencyModeCoordinator(emitter)
    principal = Principal(
        id=ctx.obj["principal"],
        granted_clearance=ClearanceTier.parse(clearance),
    )
    if emergency:
        coordinator.activate(principal, reason="cli --emergency")
    session = TableSession("cli", columns, principal, coordinator, emitter, config)
    try:
        yield session
    finally:
        session.close()


@click.group()
@click.version_option(__version__, prog_name="phitable")
@click.option(
    "--config", "config_path",
    type=click.Path(exists=True, dir_okay=False),
    default=None,
    help="YAML engine config (defaults to PHITABLE_* environment variables).",
)
@click.option(
    "--audit-log",
    type=click.Path(dir_okay=False),
    default=None,
    help="Append emitted audit events to this JSON-lines file.",
)
@click.option("--principal", default="cli", show_default=True, help="Principal id recorded in audit events.")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging.")
@click.pass_context
def app(ctx: click.Context, config_path: Optional[str], audit_log: Optional[str],
        principal: str, verbose: bool):
    """PhiTable - clearance-aware healthcare table engine."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        config = TableEngineConfig.from_yaml(config_path) if config_path else TableEngineConfig.from_env()
    except PhiTableError as exc:
        _fail(str(exc))
    ctx.ensure_object(dict)
    ctx.obj.update(config=config, audit_log=audit_log, principal=principal)


@app.command()
@click.argument("columns_yaml", type=click.Path(exists=True, dir_okay=False))
@click.option("--clearance", type=click.Choice(_CLEARANCE_CHOICES), default="public", show_default=True)
@click.option("--emergency", is_flag=True, help="Evaluate with emergency mode active.")
@click.option("--json", "json_flag", is_flag=True, help="Output as JSON.")
def columns(columns_yaml: str, clearance: str, emergency: bool, json_flag: bool):
    """Show which columns CLEARANCE can see.

    COLUMNS_YAML is a column declaration file.
    """
    column_set = _load_columns(columns_yaml)
    principal = Principal(id="cli", granted_clearance=ClearanceTier.parse(clearance))
    evaluator = AccessPolicyEvaluator(principal, EmergencyState(active=emergency))

    data = [
        {
            "key": c.key,
            "label": c.label,
            "render_kind": c.render_kind.value,
            "required_clearance": c.required_clearance.value,
            "sensitive": c.contains_sensitive_data,
            "sortable": c.sortable,
            "filterable": c.filterable,
            "visible": evaluator.can_see(c),
        }
        for c in column_set
    ]
    if json_flag:
        click.echo(json.dumps(data, indent=2))
        return

    title = f"Columns for clearance '{clearance}'" + (" (emergency)" if emergency else "")
    console.print(f"\n[bold blue]{title}[/bold blue]\n")
    table = Table(box=box.ROUNDED)
    table.add_column("Key", style="cyan", no_wrap=True)
    table.add_column("Label")
    table.add_column("Kind")
    table.add_column("Requires")
    table.add_column("Sensitive")
    table.add_column("Visible")
    for row in data:
        style = _TIER_STYLES.get(row["required_clearance"], "white")
        table.add_row(
            row["key"],
            row["label"],
            row["render_kind"],
            f"[{style}]{row['required_clearance']}[/{style}]",
            "[yellow]yes[/yellow]" if row["sensitive"] else "no",
            "[green]✓[/green]" if row["visible"] else "[red]✗[/red]",
        )
    console.print(table)
    visible_count = sum(1 for row in data if row["visible"])
    console.print(f"\n  Visible: {visible_count} of {len(data)}\n")


_query_options = [
    click.argument("records_json", type=click.Path(exists=True, dir_okay=False)),
    click.argument("columns_yaml", type=click.Path(exists=True, dir_okay=False)),
    click.option("--clearance", type=click.Choice(_CLEARANCE_CHOICES), default="public", show_default=True),
    click.option("--emergency", is_flag=True, help="Activate emergency mode for this run."),
    click.option("--id-field", default="id", show_default=True, help="Record id field in RECORDS_JSON."),
    click.option("--search", default="", help="Free-text search over visible, unmasked columns."),
    click.option("--filter", "filters", multiple=True, help="Column filter as key=value (repeatable)."),
    click.option("--sort", default=None, help="Sort as key[:asc|desc]."),
    click.option("--reveal", "reveals", multiple=True, help="Reveal a sensitive column (repeatable)."),
]


def _with_query_options(func):
    for option in reversed(_query_options):
        func = option(func)
    return func


def _apply_state(session: TableSession, search: str, filters: tuple[str, ...],
                 sort: Optional[str], reveals: tuple[str, ...]) -> None:
    for key in reveals:
        session.reveal(key)
    if search:
        session.set_search(search)
    for text in filters:
        key, value = _parse_filter(text)
        session.set_filter(key, value)
    if sort:
        descriptor = SortDescriptor.parse(sort)
        session.set_sort(descriptor.column_key, descriptor.direction)


@app.command()
@_with_query_options
@click.option("--page", type=click.IntRange(min=1), default=1, show_default=True, help="Page number (1-based).")
@click.option("--size", type=click.IntRange(min=1), default=None, help="Page size.")
@click.option("--json", "json_flag", is_flag=True, help="Output as JSON.")
@click.pass_context
def query(ctx: click.Context, records_json: str, columns_yaml: str, clearance: str, emergency: bool,
          id_field: str, search: str, filters: tuple[str, ...], sort: Optional[str],
          reveals: tuple[str, ...], page: int, size: Optional[int], json_flag: bool):
    """Run a query and print one page.

    RECORDS_JSON holds the records, COLUMNS_YAML the column declarations.
    """
    column_set = _load_columns(columns_yaml)
    records = _load_records(records_json, id_field)
    config = _config(ctx)

    try:
        with _session(ctx, column_set, clearance, emergency, config) as session:
            _apply_state(session, search, filters, sort, reveals)
            session.set_page(page - 1, size)
            result = session.query(records)
    except PhiTableError as exc:
        _fail(str(exc))

    if json_flag:
        click.echo(json.dumps({
            "columns": [c.key for c in result.columns],
            "rows": [{"id": r.record_id, **r.cells} for r in result.rows],
            "total_matched": result.total_matched,
            "page": result.page_index + 1,
            "page_count": result.page_count,
        }, indent=2, default=str))
        return

    table = Table(box=box.ROUNDED)
    table.add_column("ID", style="cyan", no_wrap=True)
    for column in result.columns:
        table.add_column(column.label)
    for row in result.rows:
        cells = [
            f"[dim]{row.cells[c.key]}[/dim]" if c.key in row.masked else row.cells[c.key]
            for c in result.columns
        ]
        table.add_row(str(row.record_id), *cells)
    console.print(table)
    console.print(
        f"\n  Page {result.page_index + 1} of {max(result.page_count, 1)}"
        f" · {result.total_matched} matched\n"
    )


@app.command()
@_with_query_options
@click.option("--select", "selected", multiple=True, help="Export only these record ids (repeatable).")
@click.option("--format", "fmt", type=click.Choice(["csv"]), default="csv", show_default=True)
@click.option("--max-rows", type=click.IntRange(min=1), default=None, help="Override max_export_rows.")
@click.pass_context
def export(ctx: click.Context, records_json: str, columns_yaml: str, clearance: str, emergency: bool,
           id_field: str, search: str, filters: tuple[str, ...], sort: Optional[str],
           reveals: tuple[str, ...], selected: tuple[str, ...], fmt: str, max_rows: Optional[int]):
    """Export matching records as CSV on stdout.

    With no --select every matching record is exported.
    """
    column_set = _load_columns(columns_yaml)
    records = _load_records(records_json, id_field)
    config = _config(ctx, max_rows)
    ids_by_text = {str(r.record_id): r.record_id for r in records}

    try:
        with _session(ctx, column_set, clearance, emergency, config) as session:
            _apply_state(session, search, filters, sort, reveals)
            for text in selected:
                if text not in ids_by_text:
                    _fail(f"Unknown record id '{text}'")
                session.toggle_selection(ids_by_text[text])
            payload = session.export(records, fmt)
    except PhiTableError as exc:
        _fail(str(exc))

    click.echo(payload.to_csv(), nl=False)


def main():
    """Console script entry point."""
    app(obj={})


if __name__ == "__main__":
    main()
