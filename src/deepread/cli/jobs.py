"""deepread jobs CLI commands.

Commands:
  deepread jobs status <id>   one job's state
  deepread jobs latest        the project's most recent unexpired job
  deepread jobs run <id>      process a pending job in this process
  deepread jobs wait <id>     poll until the job is completed or failed

``deepread analyze --no-wait`` leaves its job pending; ``jobs run`` picks it up.
"""

from __future__ import annotations

import asyncio
import json
from typing import Annotated, Any

import typer
from rich.console import Console
from rich.markdown import Markdown
from rich.progress import BarColumn, Progress, SpinnerColumn, TaskProgressColumn, TextColumn

from deepread.cli.context import (
    DEFAULT_USER,
    DbOption,
    ProjectContext,
    ProjectOption,
    UserOption,
    default_project,
    open_project,
)
from deepread.cli.errors import err_job_not_found, err_job_timeout
from deepread.db.models import AnalysisJob
from deepread.jobs.engine import DeepAnalysisService
from deepread.jobs.polling import PollTimeoutError, wait_for_job

console = Console()

jobs_app = typer.Typer(
    name="jobs",
    help="Inspect and run deep analysis jobs.",
    add_completion=False,
)

JobIdArgument = Annotated[str, typer.Argument(help="Analysis job id.")]
JsonOption = Annotated[bool, typer.Option("--json", help="Print the raw JSON status.")]

_STATUS_STYLE = {
    "pending": "[yellow]pending[/]",
    "processing": "[cyan]processing[/]",
    "completed": "[green]completed[/]",
    "failed": "[red]failed[/]",
}


# ---------------------------------------------------------------------------
# Shared rendering and polling
# ---------------------------------------------------------------------------


def render_job(status: dict[str, Any]) -> None:
    """Print a job status payload; the result text is rendered as markdown."""
    console.print(
        f"Job [bold]{status['jobId']}[/]  {_STATUS_STYLE.get(status['status'], status['status'])}"
        f"  ({status['completedBatches']}/{status['totalBatches']} batches)"
    )
    if status["status"] == "completed" and status.get("resultText"):
        console.print()
        console.print(Markdown(status["resultText"]))
    elif status["status"] == "failed":
        console.print(f"[red]Error:[/] {status.get('errorMessage') or 'Unknown error'}")


def poll_job(ctx: ProjectContext, user: str, project: str, job_id: str) -> AnalysisJob:
    """Poll *job_id* with a progress bar; exits on disappearance or timeout."""
    jobs_cfg = ctx.config.jobs

    def fetch() -> AnalysisJob | None:
        return DeepAnalysisService.get_job_status(ctx.repo, user, project, job_id)

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        transient=True,
        console=console,
    ) as prog:
        task = prog.add_task("Waiting for job…", total=None)

        def on_update(job: AnalysisJob) -> None:
            prog.update(
                task,
                description=f"Analyzing ({job.status})…",
                total=job.total_batches or None,
                completed=job.completed_batches,
            )

        try:
            job = wait_for_job(
                fetch,
                interval=jobs_cfg.poll_interval_seconds,
                max_timeout_minutes=jobs_cfg.max_poll_timeout_minutes,
                on_update=on_update,
            )
        except PollTimeoutError as exc:
            prog.stop()
            job_now = fetch()
            console.print(err_job_timeout(job_id, exc.minutes))
            if job_now is not None:
                render_job(job_now.to_status_dict())
            raise typer.Exit(1)

    if job is None:
        console.print(err_job_not_found(job_id))
        raise typer.Exit(1)
    return job


def _finish(job: AnalysisJob, as_json: bool) -> None:
    status = job.to_status_dict()
    if as_json:
        typer.echo(json.dumps(status, indent=2, ensure_ascii=False))
    else:
        render_job(status)
    if job.status == "failed":
        raise typer.Exit(1)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@jobs_app.command("status")
def jobs_status_cmd(
    job_id: JobIdArgument,
    as_json: JsonOption = False,
    user: UserOption = DEFAULT_USER,
    project: ProjectOption = None,
    db: DbOption = None,
) -> None:
    """Show one job's status."""
    ctx = open_project(db)
    try:
        response = ctx.api().get_job(user, project or default_project(), job_id)
    finally:
        ctx.close()

    if response.status_code == 404:
        console.print(err_job_not_found(job_id))
        raise typer.Exit(1)
    if as_json:
        typer.echo(json.dumps(response.body, indent=2, ensure_ascii=False))
    else:
        render_job(response.body)


@jobs_app.command("latest")
def jobs_latest_cmd(
    as_json: JsonOption = False,
    user: UserOption = DEFAULT_USER,
    project: ProjectOption = None,
    db: DbOption = None,
) -> None:
    """Show the project's most recent unexpired job."""
    ctx = open_project(db)
    try:
        response = ctx.api().get_latest_job(user, project or default_project())
    finally:
        ctx.close()

    if as_json:
        typer.echo(json.dumps(response.body, indent=2, ensure_ascii=False))
        return
    if response.body is None:
        console.print("[yellow]No analysis jobs in this project.[/]")
        return
    render_job(response.body)


@jobs_app.command("run")
def jobs_run_cmd(
    job_id: JobIdArgument,
    as_json: JsonOption = False,
    user: UserOption = DEFAULT_USER,
    project: ProjectOption = None,
    db: DbOption = None,
) -> None:
    """Process a pending job to completion in this process."""
    ctx = open_project(db)
    try:
        project_id = project or default_project()
        deep = ctx.deep_service()
        job = DeepAnalysisService.get_job_status(ctx.repo, user, project_id, job_id)
        if job is None:
            console.print(err_job_not_found(job_id))
            raise typer.Exit(1)
        if job.status != "pending":
            console.print(f"[dim]↷ Job is already {job.status}; nothing to run.[/]")
        else:
            with Progress(
                SpinnerColumn(),
                TextColumn("[progress.description]{task.description}"),
                transient=True,
                console=console,
            ) as prog:
                prog.add_task("Running deep analysis…", total=None)
                asyncio.run(deep.process_job(job_id))
        job = DeepAnalysisService.get_job_status(ctx.repo, user, project_id, job_id)
    finally:
        ctx.close()

    if job is None:
        console.print(err_job_not_found(job_id))
        raise typer.Exit(1)
    _finish(job, as_json)


@jobs_app.command("wait")
def jobs_wait_cmd(
    job_id: JobIdArgument,
    as_json: JsonOption = False,
    user: UserOption = DEFAULT_USER,
    project: ProjectOption = None,
    db: DbOption = None,
) -> None:
    """Poll a job until it is completed or failed."""
    ctx = open_project(db)
    try:
        job = poll_job(ctx, user, project or default_project(), job_id)
    finally:
        ctx.close()
    _finish(job, as_json)
