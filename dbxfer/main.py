"""
dbxfer command line.

Connections come from DBXFER_SOURCE_* / DBXFER_DESTINATION_* environment
variables (or .env files); the connection options override them.

    dbxfer tables Sales --side source
    dbxfer preview Sales --table dbo.Customers --rows 5
    dbxfer transfer --source-db Sales --table dbo.Customers --destination-db Archive --replace
"""

import json
import signal
from enum import Enum
from typing import Optional

import typer

from dbxfer.core.config import connection_params_from_env, get_settings
from dbxfer.core.errors import DbxferError
from dbxfer.core.models import ConnectionParams, TransferAction, TransferMode, TransferProgress, TransferRequest
from dbxfer.tools import catalog
from dbxfer.tools.transfer import CancellationToken, transfer as run_transfer


app = typer.Typer(help="Move tables and query results between database servers.", no_args_is_help=True)

EXIT_FAILURE = 1
EXIT_CANCELLED = 130


class Side(str, Enum):
    source = "source"
    destination = "destination"


def _params(side: Side, dialect: Optional[str], server: Optional[str], port: Optional[int],
            user: Optional[str], password: Optional[str]) -> ConnectionParams:
    overrides = {"dialect": dialect, "server": server, "port": port, "username": user, "password": password}
    try:
        return connection_params_from_env(f"DBXFER_{side.value.upper()}", **overrides)
    except ValueError as e:
        typer.echo(f"Invalid {side.value} connection settings: {e}", err=True)
        raise typer.Exit(code=EXIT_FAILURE)


def _fail(error: Exception) -> None:
    typer.echo(f"Error: {error}", err=True)
    raise typer.Exit(code=EXIT_FAILURE)


def _source_expression(table: Optional[str], query: Optional[str]):
    if bool(table) == bool(query):
        typer.echo("Give exactly one of --table or --query", err=True)
        raise typer.Exit(code=EXIT_FAILURE)
    return (query, True) if query else (table, False)


SideOption = typer.Option(Side.source, "--side", "-s", help="Which configured server to use")
DialectOption = typer.Option(None, "--dialect", help="mssql, postgres or sqlite")
ServerOption = typer.Option(None, "--server", help="Server host (directory for sqlite)")
PortOption = typer.Option(None, "--port", help="Server port")
UserOption = typer.Option(None, "--user", "-u", help="User name")
PasswordOption = typer.Option(None, "--password", help="Password")


@app.command("test-connection")
def test_connection_cmd(
    side: Side = SideOption,
    dialect: Optional[str] = DialectOption,
    server: Optional[str] = ServerOption,
    port: Optional[int] = PortOption,
    user: Optional[str] = UserOption,
    password: Optional[str] = PasswordOption,
):
    """Check that the server accepts a connection."""
    params = _params(side, dialect, server, port, user, password)
    if catalog.test_connection(params):
        typer.echo(f"Connected to {params.dialect}://{params.server or '<local>'}")
        return
    typer.echo(f"Could not connect to {params.dialect}://{params.server or '<local>'}", err=True)
    raise typer.Exit(code=EXIT_FAILURE)


@app.command("databases")
def databases_cmd(
    side: Side = SideOption,
    dialect: Optional[str] = DialectOption,
    server: Optional[str] = ServerOption,
    port: Optional[int] = PortOption,
    user: Optional[str] = UserOption,
    password: Optional[str] = PasswordOption,
):
    """List user databases."""
    params = _params(side, dialect, server, port, user, password)
    try:
        databases = catalog.list_databases(params)
    except DbxferError as e:
        _fail(e)
    for db in databases:
        typer.echo(f"{db.name:<40} {db.size_formatted:>12}  {db.status:<10} last backup: {db.last_backup_formatted}")


@app.command("tables")
def tables_cmd(
    database: str = typer.Argument(..., help="Database to list"),
    side: Side = SideOption,
    dialect: Optional[str] = DialectOption,
    server: Optional[str] = ServerOption,
    port: Optional[int] = PortOption,
    user: Optional[str] = UserOption,
    password: Optional[str] = PasswordOption,
):
    """List base tables with their column counts."""
    params = _params(side, dialect, server, port, user, password)
    try:
        tables = catalog.list_tables(params, database)
    except DbxferError as e:
        _fail(e)
    for table in tables:
        typer.echo(f"{table.full_name:<60} {table.column_count:>4} columns")


@app.command("count")
def count_cmd(
    database: str = typer.Argument(..., help="Source database"),
    table: Optional[str] = typer.Option(None, "--table", "-t", help="Source table"),
    query: Optional[str] = typer.Option(None, "--query", "-q", help="Source query"),
    side: Side = SideOption,
    dialect: Optional[str] = DialectOption,
    server: Optional[str] = ServerOption,
    port: Optional[int] = PortOption,
    user: Optional[str] = UserOption,
    password: Optional[str] = PasswordOption,
):
    """Count the rows of a table or query."""
    expression, is_query = _source_expression(table, query)
    params = _params(side, dialect, server, port, user, password)
    try:
        typer.echo(str(catalog.row_count(params, database, expression, is_query)))
    except DbxferError as e:
        _fail(e)


@app.command("preview")
def preview_cmd(
    database: str = typer.Argument(..., help="Source database"),
    table: Optional[str] = typer.Option(None, "--table", "-t", help="Source table"),
    query: Optional[str] = typer.Option(None, "--query", "-q", help="Source query"),
    rows: Optional[int] = typer.Option(None, "--rows", "-n", min=1, help="Maximum rows (DBXFER_PREVIEW_ROWS)"),
    side: Side = SideOption,
    dialect: Optional[str] = DialectOption,
    server: Optional[str] = ServerOption,
    port: Optional[int] = PortOption,
    user: Optional[str] = UserOption,
    password: Optional[str] = PasswordOption,
):
    """Show the first rows of a table or query as JSON lines."""
    expression, is_query = _source_expression(table, query)
    params = _params(side, dialect, server, port, user, password)
    try:
        result = catalog.preview(params, database, expression, is_query, rows or get_settings().preview_rows)
    except DbxferError as e:
        _fail(e)
    for row in result.as_dicts():
        typer.echo(json.dumps(row, default=str, ensure_ascii=False))
    typer.echo(f"({result.row_count} row(s))")


@app.command("types")
def types_cmd():
    """List the supported column data types."""
    for data_type in catalog.list_data_types():
        modifiers = []
        if data_type.requires_length:
            modifiers.append("length")
        if data_type.requires_precision:
            modifiers.append("precision")
        typer.echo(f"{data_type.name:<18} {data_type.description or '':<28} {', '.join(modifiers)}")


def _print_progress(progress: TransferProgress) -> None:
    line = (
        f"[{progress.state.value:>20}] {progress.percentage:>3}% "
        f"{progress.transferred_rows:,}/{progress.total_rows:,}  {progress.status_message}"
    )
    typer.echo(line, err=progress.error_message is not None)


@app.command("transfer")
def transfer_cmd(
    source_db: str = typer.Option(..., "--source-db", help="Source database"),
    destination_db: str = typer.Option(..., "--destination-db", help="Destination database"),
    table: Optional[str] = typer.Option(None, "--table", "-t", help="Source table (table mode)"),
    query: Optional[str] = typer.Option(None, "--query", "-q", help="Source query (query mode)"),
    destination_table: Optional[str] = typer.Option(
        None, "--destination-table", "-d", help="Destination table (defaults to --table in table mode)"
    ),
    replace: bool = typer.Option(False, "--replace/--append", help="Replace destination rows instead of appending"),
    preserve_identity: bool = typer.Option(False, "--preserve-identity", help="Keep source identity values"),
    batch_size: Optional[int] = typer.Option(None, "--batch-size", min=1, help="Rows per batch (DBXFER_BATCH_SIZE)"),
):
    """Copy a table or query result from the source server to the destination server."""
    expression, is_query = _source_expression(table, query)
    if is_query and not destination_table:
        typer.echo("--destination-table is required with --query", err=True)
        raise typer.Exit(code=EXIT_FAILURE)

    source = _params(Side.source, None, None, None, None, None)
    destination = _params(Side.destination, None, None, None, None, None)
    request = TransferRequest(
        source_database=source_db,
        mode=TransferMode.QUERY if is_query else TransferMode.TABLE,
        source_table="" if is_query else expression,
        source_query=expression if is_query else "",
        destination_database=destination_db,
        destination_table=destination_table or expression,
        action=TransferAction.REPLACE if replace else TransferAction.APPEND,
        preserve_identity=preserve_identity,
    )
    settings = get_settings()
    if batch_size:
        settings = settings.model_copy(update={"batch_size": batch_size})

    token = CancellationToken()

    def _on_interrupt(signum, frame):
        typer.echo("Cancelling at the next batch boundary...", err=True)
        token.cancel("interrupted")

    previous = signal.signal(signal.SIGINT, _on_interrupt)
    try:
        result = run_transfer(source, destination, request, progress=_print_progress, cancel=token, settings=settings)
    finally:
        signal.signal(signal.SIGINT, previous)

    if result.success:
        typer.echo(f"{result.message} in {result.duration_s:.1f}s")
        return
    if result.cancelled:
        typer.echo(result.message, err=True)
        raise typer.Exit(code=EXIT_CANCELLED)
    typer.echo(f"Transfer failed ({result.error.kind.value}): {result.message}", err=True)
    raise typer.Exit(code=EXIT_FAILURE)


if __name__ == "__main__":
    app()
