"""deepread query: verbatim snippet extraction over cached sources.

Usage:
  deepread query "how is the method validated?"
  deepread query "funding sources" -s <source-id> -s <source-id> --json
"""

from __future__ import annotations

import asyncio
import json
from typing import Annotated, Any

import typer
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn

from deepread.cli.context import (
    DEFAULT_USER,
    DbOption,
    ProjectOption,
    UserOption,
    default_project,
    open_project,
)
from deepread.cli.errors import err_from_response

console = Console()

SourceOption = Annotated[
    list[str] | None,
    typer.Option("--source", "-s", help="Restrict to this source id (repeatable)."),
]


def query_cmd(
    text: Annotated[str, typer.Argument(help="Natural-language query.")],
    source: SourceOption = None,
    as_json: Annotated[bool, typer.Option("--json", help="Print the raw JSON result.")] = False,
    user: UserOption = DEFAULT_USER,
    project: ProjectOption = None,
    db: DbOption = None,
) -> None:
    """Find verbatim passages in the project's sources that answer a query."""
    payload: dict[str, Any] = {"query": text}
    if source:
        payload["sourceIds"] = list(source)

    ctx = open_project(db)
    try:
        api = ctx.api()
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            transient=True,
            console=console,
        ) as prog:
            prog.add_task("Searching sources…", total=None)
            response = asyncio.run(api.query(user, project or default_project(), payload))
    finally:
        ctx.close()

    if response.status_code != 200:
        console.print(err_from_response(response.body))
        raise typer.Exit(1)

    if as_json:
        typer.echo(json.dumps(response.body, indent=2, ensure_ascii=False))
        return
    render_result(response.body)
    console.print(f"\n[dim]query {response.body['queryId']} · {response.body['processingTimeMs']} ms[/]")


def render_result(body: dict[str, Any]) -> None:
    """Print a ``{snippets, summary, noResults}`` result."""
    if body.get("noResults") or not body.get("snippets"):
        console.print("[yellow]No matching passages found.[/]")
        if body.get("summary"):
            console.print(escape(body["summary"]))
        return

    for i, snippet in enumerate(body["snippets"], 1):
        location = snippet.get("sourceLocation") or ""
        title = f"[bold]{i}. {snippet.get('sourceTitle') or snippet['sourceId']}[/]"
        if location:
            title += f" [dim]({location})[/]"
        lines = [escape(snippet["content"])]
        if snippet.get("relevance"):
            lines += ["", f"[dim]{escape(snippet['relevance'])}[/]"]
        console.print(Panel("\n".join(lines), title=title, title_align="left", expand=False))

    if body.get("summary"):
        console.print(f"\n[bold]Summary:[/] {escape(body['summary'])}")
