"""deepread init: project scaffold.

Creates:
  .deepread.db             database with schema
  .deepread/content/       cached source content
  deepread.yaml            project config template
  ~/.deepread/config.yaml  global model config (created once, mode 0o600)
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console

from deepread.config import PROJECT_CONFIG_NAME, DeepreadConfig, ensure_global_config
from deepread.db.connection import Database
from deepread.db.schema import initialize

console = Console()

_DEFAULT_PROJECT_DIR = Path(".")


def init_cmd(
    project_dir: Annotated[
        Path,
        typer.Argument(help="Directory to initialize. Defaults to current directory."),
    ] = _DEFAULT_PROJECT_DIR,
    skip_global: Annotated[
        bool,
        typer.Option("--skip-global", hidden=True, help="Do not touch ~/.deepread (for testing)."),
    ] = False,
) -> None:
    """Initialize a deepread project: database, content store and config."""
    project_dir = project_dir.resolve()
    project_dir.mkdir(parents=True, exist_ok=True)
    defaults = DeepreadConfig()

    db_path = project_dir / defaults.storage.db_path
    if db_path.exists():
        console.print(f"[yellow]⚠[/]  {db_path} already exists. Existing data is preserved.")

    console.print(f"\n[bold]Creating scaffold in {project_dir} …[/]\n")

    _create_database(db_path)
    (project_dir / defaults.storage.content_dir).mkdir(parents=True, exist_ok=True)
    console.print(f"  [green]✓[/] {defaults.storage.content_dir}/")
    _create_project_yaml(project_dir)
    _update_gitignore(project_dir, [defaults.storage.db_path, ".deepread/"])

    if not skip_global:
        cfg_path = ensure_global_config()
        console.print(f"  [green]✓[/] {cfg_path} (global config)")

    console.print("\n[bold green]✓ Project initialized.[/]")
    console.print("\nNext steps:")
    console.print("  1. deepread sources add <file>              (cache source content)")
    console.print('  2. deepread query "what does X say?"        (verbatim snippets)')
    console.print('  3. deepread analyze "summarize..." -s <id>  (deep analysis)')


def _create_database(db_path: Path) -> None:
    with Database(db_path) as conn:
        initialize(conn)
    console.print(f"  [green]✓[/] {db_path.name}")


def _create_project_yaml(project_dir: Path) -> None:
    target = project_dir / PROJECT_CONFIG_NAME
    if target.exists():
        console.print(f"  [dim]↷ {PROJECT_CONFIG_NAME} exists, left unchanged[/]")
        return
    defaults = DeepreadConfig()
    content = (
        "# deepread project configuration. API keys belong in environment variables.\n"
        "llm:\n"
        f"  model: {defaults.llm.model}\n"
        f"  # token_estimator: {defaults.llm.token_estimator}   # or litellm\n"
        "\n"
        "# query:\n"
        f"#   max_chunks_per_query: {defaults.query.max_chunks_per_query}\n"
        f"#   max_snippets: {defaults.query.max_snippets}\n"
        "\n"
        "# jobs:\n"
        f"#   token_threshold: {defaults.jobs.token_threshold}\n"
        f"#   batch_token_budget: {defaults.jobs.batch_token_budget}\n"
        f"#   max_concurrent_batches: {defaults.jobs.max_concurrent_batches}\n"
    )
    target.write_text(content, encoding="utf-8")
    console.print(f"  [green]✓[/] {PROJECT_CONFIG_NAME}")


def _update_gitignore(project_dir: Path, entries: list[str]) -> None:
    """Add deepread entries to .gitignore if it already exists."""
    gitignore = project_dir / ".gitignore"
    if not gitignore.exists():
        return
    existing = gitignore.read_text(encoding="utf-8")
    to_add = [e for e in entries if e not in existing]
    if to_add:
        with gitignore.open("a", encoding="utf-8") as f:
            f.write("\n# deepread\n")
            for entry in to_add:
                f.write(f"{entry}\n")
        console.print("  [green]✓[/] .gitignore (updated with deepread entries)")
