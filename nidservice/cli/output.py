"""Output formatting for nid-service commands.

- json: machine-readable JSON (default, for piping)
- pretty: indented JSON
- table: rich table for list data
"""

import json
from enum import Enum
from typing import Any, Optional, Sequence

import typer
from rich.console import Console
from rich.table import Table

EXIT_FAILURE = 1
EXIT_UNAVAILABLE = 2


class OutputFormat(str, Enum):
    json = "json"
    pretty = "pretty"
    table = "table"


def output_json(data: Any, pretty: bool = False) -> None:
    indent = 2 if pretty else None
    try:
        typer.echo(json.dumps(data, indent=indent, default=str))
    except TypeError as e:
        typer.echo(f"Error serializing output: {e}", err=True)
        raise typer.Exit(EXIT_FAILURE) from e


def output_table(
    data: Sequence[dict[str, Any]],
    columns: Optional[list[str]] = None,
    title: Optional[str] = None,
) -> None:
    if not data:
        typer.echo("No data to display.", err=True)
        return

    if columns is None:
        columns = list(data[0].keys())

    table = Table(title=title, show_header=True, header_style="bold")
    for col in columns:
        table.add_column(col)
    for row in data:
        table.add_row(*[str(row.get(col, "")) for col in columns])

    Console().print(table)


def output(
    data: Any,
    format: OutputFormat = OutputFormat.json,
    table_columns: Optional[list[str]] = None,
    table_title: Optional[str] = None,
) -> None:
    """Write *data* to stdout in the requested format."""
    if format == OutputFormat.json:
        output_json(data)
    elif format == OutputFormat.pretty:
        output_json(data, pretty=True)
    elif isinstance(data, list):
        output_table(data, columns=table_columns, title=table_title)
    elif isinstance(data, dict):
        items = [{"key": k, "value": str(v)} for k, v in data.items()]
        output_table(items, columns=["key", "value"], title=table_title)
    else:
        output_json(data, pretty=True)


def output_error(
    code: str,
    message: str,
    details: Optional[dict[str, Any]] = None,
    exit_code: int = EXIT_FAILURE,
) -> None:
    """Write a JSON error to stderr and exit."""
    error_data: dict[str, Any] = {
        "error": True,
        "code": code,
        "message": message,
    }
    if details:
        error_data["details"] = details

    typer.echo(json.dumps(error_data), err=True)
    raise typer.Exit(exit_code)
