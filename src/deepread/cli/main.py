"""deepread CLI entry point."""

from __future__ import annotations

import importlib.metadata
import logging
from typing import Annotated

import typer
from rich.logging import RichHandler

from deepread.cli.analyze import analyze_cmd, analyze_source_cmd
from deepread.cli.init import init_cmd
from deepread.cli.jobs import jobs_app
from deepread.cli.query import query_cmd
from deepread.cli.sources import sources_app


def _version_callback(value: bool) -> None:
    if value:
        try:
            ver = importlib.metadata.version("deepread")
        except importlib.metadata.PackageNotFoundError:
            ver = "dev"
        typer.echo(f"deepread {ver}")
        raise typer.Exit()


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=verbose, show_path=False)],
        force=True,
    )
    # LiteLLM logs every request at DEBUG.
    logging.getLogger("LiteLLM").setLevel(logging.WARNING)


app = typer.Typer(
    name="deepread",
    help=(
        "deepread: research queries and deep analysis over cached sources.\n\n"
        "  deepread query    Verbatim passages that answer a question.\n"
        "  deepread analyze  Inline analysis, or a map-reduce job for large corpora."
    ),
    add_completion=False,
)


@app.callback()
def main_callback(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            callback=_version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = False,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable debug logging."),
    ] = False,
) -> None:
    """deepread: research queries and deep analysis over cached sources."""
    _configure_logging(verbose)


app.command("init")(init_cmd)
app.command("query")(query_cmd)
app.command("analyze")(analyze_cmd)
app.command("analyze-source")(analyze_source_cmd)
app.add_typer(sources_app, name="sources")
app.add_typer(jobs_app, name="jobs")


@app.command("version")
def version_cmd() -> None:
    """Show the installed deepread version."""
    try:
        ver = importlib.metadata.version("deepread")
    except importlib.metadata.PackageNotFoundError:
        ver = "dev"
    typer.echo(f"deepread {ver}")


if __name__ == "__main__":
    app()
