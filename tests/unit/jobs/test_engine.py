"""Tests for the map-reduce deep analysis engine."""

from __future__ import annotations

from datetime import timedelta

import pytest
from conftest import PROJECT, USER, FakeProvider

from deepread.db.models import AnalysisJob, now_ts
from deepread.jobs.engine import DeepAnalysisService
from deepread.rag.prompts import MAP_SYSTEM_PROMPT, REDUCE_SYSTEM_PROMPT

# 50K words ≈ 66.5K tokens: two never share an 80K batch
LARGE = 50_000


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


def _map_then_reduce(map_text="Intermediate findings.", reduce_text="# Final synthesis"):
    def respond(system: str, user: str):
        return reduce_text if system == REDUCE_SYSTEM_PROMPT else map_text

    return respond


def _reduce_calls(provider: FakeProvider) -> list[dict]:
    return [c for c in provider.calls if c["system"] == REDUCE_SYSTEM_PROMPT]


def _map_calls(provider: FakeProvider) -> list[dict]:
    return [c for c in provider.calls if c["system"] == MAP_SYSTEM_PROMPT]


@pytest.fixture
def sleeper():
    return RecordingSleep()


@pytest.fixture
def make_service(database, store, config, sleeper):
    def _make(provider: FakeProvider) -> DeepAnalysisService:
        return DeepAnalysisService(database, store, lambda: provider, config, sleep=sleeper)

    return _make


def _create(service, repo, source_ids, instruction="Identify the recurring themes"):
    return service.create_job(repo, USER, PROJECT, [s.id for s in source_ids], instruction)


# ------------------------------------------------------------------
# Routing
# ------------------------------------------------------------------


def test_estimate_source_tokens(repo, add_source):
    a = add_source("A", word_count=30_000)
    b = add_source("B", word_count=100)
    estimate = DeepAnalysisService.estimate_source_tokens(repo, USER, PROJECT, [a.id, b.id, "ghost"])

    assert estimate.total == 39_900 + 133
    assert estimate.has_unknown is False


def test_estimate_flags_unknown_size(repo, add_source):
    a = add_source("A", word_count=0)
    assert DeepAnalysisService.estimate_source_tokens(repo, USER, PROJECT, [a.id]).has_unknown is True


@pytest.mark.parametrize(
    "total,unknown,expected",
    [(39_999, False, False), (40_000, False, True), (90_000, False, True), (10, True, True)],
)
def test_should_use_deep_analysis(total, unknown, expected):
    assert DeepAnalysisService.should_use_deep_analysis(total, unknown, 40_000) is expected


# ------------------------------------------------------------------
# Job creation
# ------------------------------------------------------------------


def test_create_job_is_pending_with_ttl(repo, make_service, add_source):
    source = add_source("A")
    job_id = _create(make_service(FakeProvider()), repo, [source])
    job = repo.get_job(job_id)

    assert job.status == "pending"
    assert job.source_ids == [source.id]
    assert job.instruction == "Identify the recurring themes"
    assert now_ts(timedelta(hours=23)) < job.expires_at <= now_ts(timedelta(hours=24))


# ------------------------------------------------------------------
# process_job: success
# ------------------------------------------------------------------


@pytest.mark.asyncio
async def test_job_completes_with_reduce_output(repo, make_service, add_source):
    sources = [add_source(t, text=f"{t} text.", word_count=LARGE) for t in ("A", "B")]
    provider = FakeProvider(responder=_map_then_reduce())
    service = make_service(provider)
    job_id = _create(service, repo, sources)

    await service.process_job(job_id)

    job = repo.get_job(job_id)
    assert job.status == "completed"
    assert job.result_text == "# Final synthesis"
    assert job.total_batches == 2
    assert job.completed_batches == 2
    assert job.error_message is None
    assert len(_map_calls(provider)) == 2
    [reduce] = _reduce_calls(provider)
    assert reduce["max_tokens"] == 8192
    assert "### Batch 2 Summary" in reduce["user"]


@pytest.mark.asyncio
async def test_map_prompt_contains_source_text_and_instruction(repo, make_service, add_source):
    source = add_source("Field Notes", text="The harvest failed in 1931.")
    provider = FakeProvider(responder=_map_then_reduce())
    service = make_service(provider)

    await service.process_job(_create(service, repo, [source]))

    [map_call] = _map_calls(provider)
    assert '## Source: "Field Notes"' in map_call["user"]
    assert "The harvest failed in 1931." in map_call["user"]
    assert map_call["user"].endswith("## Instruction\n\nIdentify the recurring themes")
    assert map_call["max_tokens"] == 4096


@pytest.mark.asyncio
async def test_map_retries_then_succeeds(repo, make_service, add_source, config, sleeper):
    config.jobs.retry_base_delay = 1.0
    source = add_source("A")
    provider = FakeProvider(
        [RuntimeError("rate limited"), RuntimeError("rate limited"), "Intermediate.", "Final."]
    )
    service = make_service(provider)
    job_id = _create(service, repo, [source])

    await service.process_job(job_id)

    job = repo.get_job(job_id)
    assert job.status == "completed"
    assert job.result_text == "Final."
    assert sleeper.delays == [1.0, 2.0]


@pytest.mark.asyncio
async def test_progress_is_persisted_per_group_and_monotonic(repo, make_service, add_source, config):
    config.jobs.max_concurrent_batches = 3
    sources = [add_source(f"S{i}", word_count=LARGE) for i in range(4)]
    observed: list[int] = []
    job_ids: list[str] = []

    def respond(system: str, user: str) -> str:
        observed.append(repo.get_job(job_ids[0]).completed_batches)
        return "# Final" if system == REDUCE_SYSTEM_PROMPT else "Intermediate."

    service = make_service(FakeProvider(responder=respond))
    job_ids.append(_create(service, repo, sources))

    await service.process_job(job_ids[0])

    # Three map calls in the first group, one in the second, then reduce
    assert observed == [0, 0, 0, 3, 4]
    assert repo.get_job(job_ids[0]).completed_batches == 4


# ------------------------------------------------------------------
# process_job: failures
# ------------------------------------------------------------------


@pytest.mark.asyncio
async def test_exhausted_retries_fail_job_without_reduce(repo, make_service, add_source, config):
    sources = [add_source(t, word_count=LARGE) for t in ("A", "B")]
    provider = FakeProvider(default="unused", responder=None)
    provider.responses = [RuntimeError(f"rate limited #{i}") for i in range(6)]
    service = make_service(provider)
    job_id = _create(service, repo, sources)

    await service.process_job(job_id)

    job = repo.get_job(job_id)
    assert job.status == "failed"
    assert job.error_message.startswith("rate limited #")
    assert job.result_text is None
    assert len(_map_calls(provider)) == 2 * config.jobs.batch_max_retries
    assert _reduce_calls(provider) == []


@pytest.mark.asyncio
async def test_empty_map_response_is_retried_and_fails(repo, make_service, add_source, config):
    source = add_source("A")
    provider = FakeProvider(default="   ")
    service = make_service(provider)
    job_id = _create(service, repo, [source])

    await service.process_job(job_id)

    job = repo.get_job(job_id)
    assert job.status == "failed"
    assert job.error_message == "Empty response from AI provider"
    assert len(provider.calls) == config.jobs.batch_max_retries


@pytest.mark.asyncio
async def test_reduce_failure_is_not_retried(repo, make_service, add_source):
    source = add_source("A")

    def respond(system: str, user: str):
        if system == REDUCE_SYSTEM_PROMPT:
            return RuntimeError("synthesis timed out")
        return "Intermediate."

    provider = FakeProvider(responder=respond)
    service = make_service(provider)
    job_id = _create(service, repo, [source])

    await service.process_job(job_id)

    job = repo.get_job(job_id)
    assert job.status == "failed"
    assert job.error_message == "synthesis timed out"
    assert len(_reduce_calls(provider)) == 1


@pytest.mark.asyncio
async def test_job_without_resolvable_sources_fails_from_pending(repo, make_service):
    provider = FakeProvider()
    service = make_service(provider)
    job_id = service.create_job(repo, USER, PROJECT, ["ghost"], "Identify the themes")

    await service.process_job(job_id)

    job = repo.get_job(job_id)
    assert job.status == "failed"
    assert "sources" in job.error_message
    assert provider.calls == []


@pytest.mark.asyncio
async def test_uncached_sources_fail_the_batch(repo, make_service, add_source, config, sleeper):
    config.jobs.retry_base_delay = 1.0
    source = add_source("Not yet cached", text=None, word_count=None)
    provider = FakeProvider(default="never used")
    service = make_service(provider)
    job_id = _create(service, repo, [source])

    await service.process_job(job_id)

    job = repo.get_job(job_id)
    assert job.status == "failed"
    assert "No cached content" in job.error_message
    # missing content is not retried
    assert sleeper.delays == []
    assert provider.calls == []


# ------------------------------------------------------------------
# process_job: idempotence and terminal states
# ------------------------------------------------------------------


@pytest.mark.asyncio
async def test_completed_job_is_not_reprocessed(repo, make_service, add_source):
    source = add_source("A")
    provider = FakeProvider(responder=_map_then_reduce())
    service = make_service(provider)
    job_id = _create(service, repo, [source])

    await service.process_job(job_id)
    calls_after_first = len(provider.calls)
    await service.process_job(job_id)

    assert len(provider.calls) == calls_after_first
    assert repo.get_job(job_id).status == "completed"


@pytest.mark.asyncio
async def test_job_already_processing_is_skipped(repo, make_service, add_source):
    source = add_source("A")
    provider = FakeProvider(responder=_map_then_reduce())
    service = make_service(provider)
    job_id = _create(service, repo, [source])
    repo.start_job(job_id, 1, now_ts())

    await service.process_job(job_id)

    assert provider.calls == []
    assert repo.get_job(job_id).status == "processing"


@pytest.mark.asyncio
async def test_unknown_job_id_is_ignored(make_service):
    await make_service(FakeProvider()).process_job("no-such-job")


# ------------------------------------------------------------------
# Status reads
# ------------------------------------------------------------------


def _stored_job(repo, job_id: str, expires_in: timedelta, created_at: str | None = None) -> None:
    now = now_ts()
    repo.add_job(
        AnalysisJob(
            id=job_id,
            project_id=PROJECT,
            user_id=USER,
            instruction="Summarize",
            created_at=created_at or now,
            updated_at=now,
            expires_at=now_ts(expires_in),
        )
    )


def test_get_job_status_deletes_expired(repo):
    _stored_job(repo, "stale", timedelta(seconds=-5))

    assert DeepAnalysisService.get_job_status(repo, USER, PROJECT, "stale") is None
    assert repo.get_job("stale") is None


def test_get_job_status_scoped_to_caller(repo):
    _stored_job(repo, "mine", timedelta(hours=1))

    assert DeepAnalysisService.get_job_status(repo, USER, PROJECT, "mine").id == "mine"
    assert DeepAnalysisService.get_job_status(repo, "other-user", PROJECT, "mine") is None


def test_get_latest_job(repo):
    _stored_job(repo, "first", timedelta(hours=1), created_at="2026-01-01T00:00:00.000000Z")
    _stored_job(repo, "second", timedelta(hours=1), created_at="2026-01-02T00:00:00.000000Z")
    _stored_job(repo, "expired", timedelta(seconds=-1), created_at="2026-01-03T00:00:00.000000Z")

    assert DeepAnalysisService.get_latest_job(repo, USER, PROJECT).id == "second"
    assert repo.get_job("expired") is None
