"""
Supamock - CLI Entry Point.

Usage:
    supamock query FIXTURE "GET /rest/v1/posts?id=eq.1"    Run one request
    supamock tables FIXTURE                                List seeded tables
    supamock version                                       Show version
"""

import json
import logging
from pathlib import Path

import httpx
import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

app = typer.Typer(
    name="supamock",
    help="Supamock - In-memory PostgREST backend for tests.",
    add_completion=False,
)
console = Console()

BASE_URL = "http://supamock.local"


def _setup_logging() -> None:
    from supamock.config import settings

    logging.basicConfig(
        level=getattr(logging, settings.log_level),
        format="%(levelname)s %(name)s: %(message)s",
    )


def _load_fixture(path: Path) -> dict[str, list[dict]]:
    """Read a `{"schema.table": [rows]}` JSON fixture."""
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        console.print(f"[red]❌ Could not load fixture {path}: {e}[/red]")
        raise typer.Exit(1)

    if not isinstance(data, dict) or not all(isinstance(rows, list) for rows in data.values()):
        console.print('[red]❌ Fixture must be an object of {"schema.table": [rows]}[/red]')
        raise typer.Exit(1)
    return data


def _parse_headers(raw: list[str]) -> dict[str, str]:
    headers: dict[str, str] = {}
    for item in raw:
        name, sep, value = item.partition(":")
        if not sep:
            console.print(f"[red]❌ Invalid header (expected 'Name: value'): {item}[/red]")
            raise typer.Exit(1)
        headers[name.strip()] = value.strip()
    return headers


@app.command()
def query(
    fixture: Path = typer.Argument(..., help="JSON fixture to seed the store with"),
    request: str = typer.Argument(..., help='Request line, e.g. "GET /rest/v1/posts?select=id"'),
    header: list[str] = typer.Option([], "--header", "-H", help="Extra header 'Name: value' (repeatable)"),
    data: str | None = typer.Option(None, "--data", "-d", help="JSON request body"),
) -> None:
    """Run one request against a freshly seeded mock backend."""
    from supamock.server import MockPostgrest, MockTransport

    _setup_logging()

    method, _, target = request.strip().partition(" ")
    if not target:
        console.print('[red]❌ Request must look like "METHOD /path?query"[/red]')
        raise typer.Exit(1)

    engine = MockPostgrest(tables=_load_fixture(fixture))
    with httpx.Client(transport=MockTransport(engine), base_url=BASE_URL) as client:
        response = client.request(
            method.upper(),
            target.strip(),
            headers=_parse_headers(header),
            content=data.encode("utf-8") if data is not None else None,
        )

    color = "green" if response.is_success else "red"
    console.print(f"[bold {color}]{response.status_code} {response.reason_phrase}[/bold {color}]")
    for name, value in response.headers.items():
        console.print(f"[dim]{escape(name)}: {escape(value)}[/dim]")

    if not response.content:
        return
    if "json" in response.headers.get("content-type", ""):
        console.print_json(response.text)
    else:
        console.print(response.text, markup=False)


@app.command()
def tables(
    fixture: Path = typer.Argument(..., help="JSON fixture to inspect"),
) -> None:
    """List the tables a fixture seeds, with row counts."""
    from supamock.db import RelationalStore

    store = RelationalStore(_load_fixture(fixture))

    table = Table(title=f"Tables in {fixture.name}")
    table.add_column("Table", style="cyan")
    table.add_column("Rows", justify="right")
    for name in sorted(store):
        table.add_row(name, str(len(store[name])))
    console.print(table)


@app.command()
def version() -> None:
    """Show version information."""
    from supamock import __version__

    console.print(f"Supamock v{__version__}")


if __name__ == "__main__":
    app()
