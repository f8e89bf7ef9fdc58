"""Tests for deepread jobs status / latest / run / wait."""

from __future__ import annotations

import json

import pytest
from typer.testing import CliRunner

from deepread.cli.main import app

runner = CliRunner()


@pytest.fixture
def pending_job(cli_project, cli_source, cli_provider, deep_mode) -> str:
    """Id of a job created with ``analyze --no-wait``."""
    source = cli_source()
    result = runner.invoke(app, ["analyze", "Find the themes", "-s", source.id, "--no-wait", "--json"])
    assert result.exit_code == 0, result.output
    return json.loads(result.output)["jobId"]


# ---------------------------------------------------------------------------
# status
# ---------------------------------------------------------------------------


def test_status_unknown_job(cli_project):
    result = runner.invoke(app, ["jobs", "status", "nope"])
    assert result.exit_code == 1
    assert "Job not found" in result.output


def test_status_pending_job(pending_job):
    result = runner.invoke(app, ["jobs", "status", pending_job])
    assert result.exit_code == 0, result.output
    assert "pending" in result.output


def test_status_json(pending_job):
    result = runner.invoke(app, ["jobs", "status", pending_job, "--json"])

    assert result.exit_code == 0, result.output
    body = json.loads(result.output)
    assert body["jobId"] == pending_job
    assert body["status"] == "pending"
    assert body["resultText"] is None


def test_status_is_scoped_to_project(pending_job):
    result = runner.invoke(app, ["jobs", "status", pending_job, "--project", "elsewhere"])
    assert result.exit_code == 1


# ---------------------------------------------------------------------------
# latest
# ---------------------------------------------------------------------------


def test_latest_without_jobs(cli_project):
    result = runner.invoke(app, ["jobs", "latest"])
    assert result.exit_code == 0
    assert "No analysis jobs in this project." in result.output


def test_latest_json_without_jobs(cli_project):
    result = runner.invoke(app, ["jobs", "latest", "--json"])
    assert result.exit_code == 0
    assert json.loads(result.output) is None


def test_latest_returns_newest_job(pending_job):
    result = runner.invoke(app, ["jobs", "latest", "--json"])
    assert result.exit_code == 0, result.output
    assert json.loads(result.output)["jobId"] == pending_job


# ---------------------------------------------------------------------------
# run / wait
# ---------------------------------------------------------------------------


def test_run_processes_pending_job(pending_job, cli_provider):
    cli_provider.default = "The theme is **flooding**."

    result = runner.invoke(app, ["jobs", "run", pending_job, "--json"])

    assert result.exit_code == 0, result.output
    body = json.loads(result.output)
    assert body["status"] == "completed"
    assert body["resultText"] == "The theme is **flooding**."
    # one map call, one reduce call
    assert len(cli_provider.calls) == 2


def test_run_twice_does_not_reprocess(pending_job, cli_provider):
    cli_provider.default = "Done."
    runner.invoke(app, ["jobs", "run", pending_job])
    calls = len(cli_provider.calls)

    result = runner.invoke(app, ["jobs", "run", pending_job])

    assert result.exit_code == 0, result.output
    assert "already completed" in result.output
    assert len(cli_provider.calls) == calls


def test_run_failing_job_exits_nonzero(pending_job, cli_provider):
    cli_provider.responses = [RuntimeError("boom")] * 3

    result = runner.invoke(app, ["jobs", "run", pending_job])

    assert result.exit_code == 1
    assert "boom" in result.output


def test_run_unknown_job(cli_project, cli_provider):
    result = runner.invoke(app, ["jobs", "run", "nope"])
    assert result.exit_code == 1
    assert "Job not found" in result.output


def test_wait_on_finished_job(pending_job, cli_provider):
    cli_provider.default = "Summary of themes."
    runner.invoke(app, ["jobs", "run", pending_job])

    result = runner.invoke(app, ["jobs", "wait", pending_job])

    assert result.exit_code == 0, result.output
    assert "completed" in result.output
    assert "Summary of themes." in result.output


def test_wait_unknown_job(cli_project):
    result = runner.invoke(app, ["jobs", "wait", "nope"])
    assert result.exit_code == 1
    assert "Job not found" in result.output
