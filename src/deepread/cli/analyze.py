"""deepread analyze commands.

  deepread analyze "instruction" -s <id> [-s <id> …] [--wait/--no-wait]
      Below the token threshold: an inline research query, answered at once.
      Above it (or with any source of unknown size): a deep analysis job.
      ``--wait`` runs the job in a background thread and polls it;
      ``--no-wait`` leaves it pending for ``deepread jobs run``.

  deepread analyze-source <source-id> "instruction"
      Streams a model's analysis of one source to the terminal.
"""

from __future__ import annotations

import asyncio
import json
from typing import Annotated, Any

import typer
from rich.console import Console

from deepread.cli.context import (
    DEFAULT_USER,
    DbOption,
    ProjectOption,
    UserOption,
    default_project,
    open_project,
)
from deepread.cli.errors import err_from_response, err_no_api_key, err_no_sources, err_validation
from deepread.cli.jobs import poll_job, render_job
from deepread.cli.query import render_result
from deepread.errors import NoSourcesError, ValidationError
from deepread.jobs.runner import JobRunner
from deepread.rag.analysis import SourceAnalysisService

console = Console()


def analyze_cmd(
    instruction: Annotated[str, typer.Argument(help="What to do with the sources.")],
    source: Annotated[
        list[str],
        typer.Option("--source", "-s", help="Source id to analyze (repeatable)."),
    ],
    wait: Annotated[
        bool,
        typer.Option("--wait/--no-wait", help="Wait for a deep analysis job to finish."),
    ] = True,
    as_json: Annotated[bool, typer.Option("--json", help="Print the raw JSON response.")] = False,
    user: UserOption = DEFAULT_USER,
    project: ProjectOption = None,
    db: DbOption = None,
) -> None:
    """Analyze sources: inline for small corpora, map-reduce job for large ones."""
    project_id = project or default_project()
    payload: dict[str, Any] = {"instruction": instruction, "sourceIds": list(source)}

    ctx = open_project(db)
    runner = JobRunner(ctx.deep_service()) if wait else None
    try:
        response = asyncio.run(ctx.api(runner).analyze(user, project_id, payload))
        if response.status_code not in (200, 201):
            console.print(err_from_response(response.body))
            raise typer.Exit(1)

        if response.status_code == 200:
            if as_json:
                typer.echo(json.dumps(response.body, indent=2, ensure_ascii=False))
            else:
                render_result(response.body)
            return

        job_id = response.body["jobId"]
        if not wait:
            if as_json:
                typer.echo(json.dumps(response.body, indent=2))
                return
            console.print(
                f"[green]✓[/] Deep analysis job [bold]{job_id}[/] created "
                f"({response.body['totalBatches']} batches, "
                f"~{response.body['estimatedTokens']:,} tokens)."
            )
            console.print(f"  Run it:    deepread jobs run {job_id}")
            console.print(f"  Check it:  deepread jobs status {job_id}")
            return

        console.print(
            f"[dim]Large corpus (~{response.body['estimatedTokens']:,} tokens): "
            f"deep analysis job {job_id}, {response.body['totalBatches']} batches[/]"
        )
        job = poll_job(ctx, user, project_id, job_id)
        status = job.to_status_dict()
        if as_json:
            typer.echo(json.dumps(status, indent=2, ensure_ascii=False))
        else:
            render_job(status)
        if job.status == "failed":
            raise typer.Exit(1)
    finally:
        if runner is not None:
            runner.shutdown(wait=False)
        ctx.close()


def analyze_source_cmd(
    source_id: Annotated[str, typer.Argument(help="Source id to analyze.")],
    instruction: Annotated[str, typer.Argument(help="What to do with the source.")],
    user: UserOption = DEFAULT_USER,
    project: ProjectOption = None,
    db: DbOption = None,
) -> None:
    """Stream an analysis of a single source."""
    ctx = open_project(db)
    try:
        try:
            provider = ctx.provider()
        except EnvironmentError:
            model = ctx.config.llm.model
            console.print(err_no_api_key(model.split("/")[0] if "/" in model else "openai"))
            raise typer.Exit(1)
        service = SourceAnalysisService(ctx.repo, ctx.store, provider, ctx.config)
        try:
            failed = asyncio.run(
                _stream(service, user, project or default_project(), source_id, instruction)
            )
        except ValidationError as exc:
            console.print(err_validation(str(exc)))
            raise typer.Exit(1)
        except NoSourcesError:
            console.print(err_no_sources())
            raise typer.Exit(1)
    finally:
        ctx.close()

    if failed:
        raise typer.Exit(1)


async def _stream(
    service: SourceAnalysisService,
    user: str,
    project: str,
    source_id: str,
    instruction: str,
) -> bool:
    """Write token events to the terminal; return True if the stream errored."""
    async for event in service.stream_analysis(user, project, source_id, instruction):
        if event.type == "token":
            console.out(event.text, end="", highlight=False)
        elif event.type == "error":
            console.print(f"\n[red]Error:[/] {event.message}")
            return True
    console.out("")
    return False
