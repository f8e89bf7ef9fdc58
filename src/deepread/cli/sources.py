"""deepread sources CLI commands.

Commands:
  deepread sources add <file>      cache a file's content as a project source
  deepread sources list            show the project's active sources
  deepread sources archive <id>    exclude a source from queries and jobs

MIME type is detected by extension unless ``--mime`` is given:
  .html .htm .xhtml  → text/html
  .md .markdown      → text/markdown
  anything else      → text/plain
"""

from __future__ import annotations

import uuid
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

from deepread.cli.context import (
    DEFAULT_USER,
    DbOption,
    ProjectOption,
    UserOption,
    default_project,
    open_project,
)
from deepread.cli.errors import err_source_not_found
from deepread.db.content_store import default_content_key
from deepread.db.models import Source
from deepread.ingest import chunk
from deepread.rag.tokens import count_words, estimate_tokens_for_words

console = Console()

sources_app = typer.Typer(
    name="sources",
    help="Manage project sources (add, list, archive).",
    add_completion=False,
)

_HTML_EXTS = {".html", ".htm", ".xhtml"}
_MD_EXTS = {".md", ".markdown"}


def detect_mime_type(path: Path) -> str:
    ext = path.suffix.lower()
    if ext in _HTML_EXTS:
        return "text/html"
    if ext in _MD_EXTS:
        return "text/markdown"
    return "text/plain"


@sources_app.command("add")
def sources_add_cmd(
    file: Annotated[Path, typer.Argument(help="File whose content becomes the source.")],
    title: Annotated[
        str | None, typer.Option("--title", "-t", help="Source title (default: file name).")
    ] = None,
    mime: Annotated[
        str | None, typer.Option("--mime", help="MIME type (default: detected by extension).")
    ] = None,
    user: UserOption = DEFAULT_USER,
    project: ProjectOption = None,
    db: DbOption = None,
) -> None:
    """Add a file as a source and cache its content."""
    if not file.is_file():
        console.print(f"[red]Error:[/] File not found: '{file}'")
        raise typer.Exit(1)

    raw = file.read_bytes()
    text = raw.decode("utf-8", errors="replace")
    mime_type = mime or detect_mime_type(file)
    source_id = str(uuid.uuid4())
    source_title = title or file.name

    chunks = chunk(source_id, source_title, text, mime_type)
    word_count = sum(count_words(c.text) for c in chunks)
    if word_count == 0:
        console.print(f"[yellow]⚠[/] No text extracted from '{file}'; size will be unknown.")

    ctx = open_project(db)
    try:
        key = default_content_key(source_id)
        ctx.store.put(key, raw, {"mime_type": mime_type, "filename": file.name})
        ctx.repo.add_source(
            Source(
                id=source_id,
                project_id=project or default_project(),
                user_id=user,
                title=source_title,
                mime_type=mime_type,
            )
        )
        ctx.repo.mark_source_cached(source_id, key, word_count)
    finally:
        ctx.close()

    console.print(f"[green]✓[/] Added [bold]{source_title}[/] ({source_id})")
    console.print(
        f"  {len(chunks)} chunks  |  {word_count:,} words  |  "
        f"~{estimate_tokens_for_words(word_count):,} tokens"
    )


@sources_app.command("list")
def sources_list_cmd(
    user: UserOption = DEFAULT_USER,
    project: ProjectOption = None,
    db: DbOption = None,
) -> None:
    """List the project's active sources."""
    ctx = open_project(db)
    try:
        sources = ctx.repo.list_sources(user, project or default_project())
    finally:
        ctx.close()

    if not sources:
        console.print("[yellow]No sources yet.[/]\n  Run:  deepread sources add <file>")
        raise typer.Exit(0)

    table = Table(title="Sources", show_header=True, header_style="bold")
    table.add_column("ID", style="dim", no_wrap=True)
    table.add_column("Title", style="bold")
    table.add_column("Type")
    table.add_column("Words", justify="right")
    table.add_column("Cached")
    for s in sources:
        cached = "[green]✓[/]" if s.has_cached_content else "[yellow]✗[/]"
        words = f"{s.word_count:,}" if s.word_count else "unknown"
        table.add_row(s.id, s.title, s.mime_type, words, cached)
    console.print(table)

    total_tokens = sum(estimate_tokens_for_words(s.word_count) for s in sources)
    console.print(f"\n  {len(sources)} sources  |  ~{total_tokens:,} tokens")


@sources_app.command("archive")
def sources_archive_cmd(
    source_id: Annotated[str, typer.Argument(help="Source id to archive.")],
    user: UserOption = DEFAULT_USER,
    project: ProjectOption = None,
    db: DbOption = None,
) -> None:
    """Archive a source; it is no longer used by queries or analysis."""
    ctx = open_project(db)
    try:
        if not ctx.repo.list_sources(user, project or default_project(), [source_id]):
            console.print(err_source_not_found(source_id))
            raise typer.Exit(1)
        ctx.repo.archive_source(source_id)
    finally:
        ctx.close()
    console.print(f"[green]✓[/] Archived {source_id}")
