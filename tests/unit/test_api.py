"""Tests for the request/response layer."""

from __future__ import annotations

import json
from datetime import timedelta
from unittest.mock import MagicMock

import pytest
from conftest import PROJECT, USER, FakeProvider

from deepread.api import Api, error_response
from deepread.db.models import AnalysisJob, now_ts
from deepread.errors import (
    AIUnavailableError,
    DeepreadError,
    NoSourcesError,
    QueryFailedError,
    ValidationError,
)
from deepread.jobs.engine import DeepAnalysisService


def _answer(source_id: str) -> str:
    return json.dumps(
        {
            "snippets": [{"content": "Rivers flood.", "sourceId": source_id, "sourceTitle": "Rivers"}],
            "summary": "Rivers flood in spring.",
            "noResults": False,
        }
    )


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def deep(database, store, config, provider):
    return DeepAnalysisService(database, store, lambda: provider, config)


@pytest.fixture
def api(repo, store, config, provider, deep):
    return Api(repo, store, config, lambda: provider, deep)


# ------------------------------------------------------------------
# error_response
# ------------------------------------------------------------------


@pytest.mark.parametrize(
    "exc,status,code",
    [
        (ValidationError("bad"), 400, "VALIDATION_ERROR"),
        (NoSourcesError(), 422, "NO_SOURCES"),
        (AIUnavailableError(), 502, "AI_UNAVAILABLE"),
        (QueryFailedError("unparseable"), 500, "QUERY_FAILED"),
        (DeepreadError("other"), 500, "INTERNAL_ERROR"),
    ],
)
def test_error_response_mapping(exc, status, code):
    response = error_response(exc)
    assert response.status_code == status
    assert response.body == {"error": str(exc), "code": code}


# ------------------------------------------------------------------
# query
# ------------------------------------------------------------------


@pytest.mark.asyncio
async def test_query_success(api, provider, add_source):
    source = add_source("Rivers", text="Rivers flood in spring.")
    provider.responses = [_answer(source.id)]

    response = await api.query(USER, PROJECT, {"query": "when do rivers flood?"})

    assert response.status_code == 200
    assert response.body["snippets"][0]["sourceId"] == source.id
    assert response.body["noResults"] is False
    assert response.body["queryId"]
    assert isinstance(response.body["processingTimeMs"], int)


@pytest.mark.asyncio
async def test_query_uses_configured_estimator(repo, store, config, provider, deep, add_source):
    source = add_source("Rivers", text="Rivers flood in spring.")
    provider.responses = [_answer(source.id)]
    seen: list[str] = []

    def estimator(text: str) -> int:
        seen.append(text)
        return 1

    api = Api(repo, store, config, lambda: provider, deep, estimator=estimator)
    response = await api.query(USER, PROJECT, {"query": "when do rivers flood?"})

    assert response.status_code == 200
    assert any("Rivers flood in spring." in text for text in seen)

@pytest.mark.asyncio
async def test_query_missing_text_is_400(api):
    response = await api.query(USER, PROJECT, {})
    assert response.status_code == 400
    assert response.body["code"] == "VALIDATION_ERROR"


@pytest.mark.asyncio
async def test_query_without_cached_sources_is_422(api, add_source):
    add_source("Empty", text=None)
    response = await api.query(USER, PROJECT, {"query": "anything"})
    assert response.status_code == 422
    assert response.body["code"] == "NO_SOURCES"


@pytest.mark.asyncio
async def test_query_provider_failure_is_502(api, provider, add_source):
    add_source("Rivers")
    provider.responses = [RuntimeError("upstream down")]
    response = await api.query(USER, PROJECT, {"query": "rivers"})
    assert response.status_code == 502


@pytest.mark.asyncio
async def test_query_missing_api_key_is_502(repo, store, config, deep, add_source):
    add_source("Rivers")

    def no_key():
        raise EnvironmentError("API key not found")

    response = await Api(repo, store, config, no_key, deep).query(USER, PROJECT, {"query": "rivers"})
    assert response.status_code == 502
    assert "API key" in response.body["error"]


@pytest.mark.asyncio
async def test_query_unparseable_response_is_500(api, provider, add_source):
    add_source("Rivers")
    provider.responses = ["not json at all"]
    response = await api.query(USER, PROJECT, {"query": "rivers"})
    assert response.status_code == 500
    assert response.body["code"] == "QUERY_FAILED"


# ------------------------------------------------------------------
# analyze
# ------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "payload",
    [
        {"sourceIds": ["x"]},
        {"instruction": "hey", "sourceIds": ["x"]},
        {"instruction": "Summarize everything"},
        {"instruction": "Summarize everything", "sourceIds": []},
        {"instruction": "Summarize everything", "sourceIds": "x"},
        {"instruction": "Summarize everything", "sourceIds": ["unknown"]},
    ],
)
async def test_analyze_validation_errors(api, payload):
    response = await api.analyze(USER, PROJECT, payload)
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_analyze_small_corpus_runs_inline(api, provider, repo, add_source):
    source = add_source("Rivers", text="Rivers flood in spring.", word_count=5_000)
    provider.responses = [_answer(source.id)]

    response = await api.analyze(
        USER, PROJECT, {"instruction": "Summarize flooding", "sourceIds": [source.id]}
    )

    assert response.status_code == 200
    assert response.body["summary"] == "Rivers flood in spring."
    assert provider.calls[0]["user"].startswith("## Research Query\n\nSummarize flooding")
    assert repo.get_latest_job(USER, PROJECT, now_ts()) is None


@pytest.mark.asyncio
async def test_analyze_single_source_id(api, provider, add_source):
    source = add_source("Rivers", text="Rivers flood in spring.", word_count=10)
    provider.responses = [_answer(source.id)]

    response = await api.analyze(USER, PROJECT, {"instruction": "Summarize flooding", "sourceId": source.id})

    assert response.status_code == 200


@pytest.mark.asyncio
async def test_analyze_large_corpus_creates_job(api, repo, provider, add_source):
    sources = [add_source(t, word_count=31_000) for t in ("A", "B")]
    runner = MagicMock()
    api.runner = runner

    response = await api.analyze(
        USER, PROJECT, {"instruction": "Find the themes", "sourceIds": [s.id for s in sources]}
    )

    assert response.status_code == 201
    assert response.body["totalBatches"] == 2
    assert response.body["estimatedTokens"] == 2 * 41_230
    job_id = response.body["jobId"]
    runner.submit.assert_called_once_with(job_id)
    assert repo.get_job(job_id).status == "pending"
    assert provider.calls == []


@pytest.mark.asyncio
async def test_analyze_unknown_size_routes_to_job(api, add_source):
    source = add_source("Unsized", word_count=0)
    response = await api.analyze(USER, PROJECT, {"instruction": "Find the themes", "sourceIds": [source.id]})

    assert response.status_code == 201
    assert response.body["totalBatches"] == 1


@pytest.mark.asyncio
async def test_analyze_without_runner_leaves_job_pending(api, repo, add_source):
    source = add_source("Big", word_count=40_000)
    response = await api.analyze(USER, PROJECT, {"instruction": "Find the themes", "sourceIds": [source.id]})

    assert response.status_code == 201
    assert repo.get_job(response.body["jobId"]).status == "pending"


# ------------------------------------------------------------------
# job status
# ------------------------------------------------------------------


def _add_job(repo, job_id="job-1", status="pending", user=USER):
    now = now_ts()
    repo.add_job(
        AnalysisJob(
            id=job_id,
            project_id=PROJECT,
            user_id=user,
            instruction="Summarize",
            status=status,
            created_at=now,
            updated_at=now,
            expires_at=now_ts(timedelta(hours=1)),
        )
    )


def test_get_job(api, repo):
    _add_job(repo)
    response = api.get_job(USER, PROJECT, "job-1")

    assert response.status_code == 200
    assert response.body["jobId"] == "job-1"
    assert response.body["status"] == "pending"


def test_get_job_not_found(api):
    response = api.get_job(USER, PROJECT, "missing")
    assert response.status_code == 404
    assert response.body["code"] == "NOT_FOUND"


def test_get_job_other_user_is_not_found(api, repo):
    _add_job(repo, user="someone-else")
    assert api.get_job(USER, PROJECT, "job-1").status_code == 404


def test_get_latest_job(api, repo):
    assert api.get_latest_job(USER, PROJECT).body is None
    _add_job(repo)
    response = api.get_latest_job(USER, PROJECT)
    assert response.status_code == 200
    assert response.body["jobId"] == "job-1"
