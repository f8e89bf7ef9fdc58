"""Shared pytest fixtures."""

from __future__ import annotations

import uuid
from collections.abc import AsyncIterator, Callable

import pytest

from deepread.config import DeepreadConfig
from deepread.db.connection import Database
from deepread.db.content_store import FileContentStore, default_content_key
from deepread.db.models import Source
from deepread.db.repository import Repository
from deepread.db.schema import initialize
from deepread.rag.llm_client import Completion, CompletionProvider, StreamEvent

USER = "user-1"
PROJECT = "project-1"


class FakeProvider(CompletionProvider):
    """Scripted completion provider.

    ``responses`` items are consumed in call order: a string becomes the
    completion text, an exception is raised. Once exhausted, ``default`` is
    returned. ``responder(system, user)`` overrides both when given.
    """

    def __init__(
        self,
        responses: list | None = None,
        *,
        default: str = "",
        responder: Callable[[str, str], str] | None = None,
        stream_events: list | None = None,
        model: str = "fake/model",
    ) -> None:
        self.model = model
        self.responses = list(responses or [])
        self.default = default
        self.responder = responder
        self.stream_events = list(stream_events or [])
        self.calls: list[dict] = []

    async def complete(
        self,
        system: str,
        user: str,
        max_tokens: int = 4096,
        json_mode: bool = False,
    ) -> Completion:
        self.calls.append(
            {"system": system, "user": user, "max_tokens": max_tokens, "json_mode": json_mode}
        )
        if self.responder is not None:
            item = self.responder(system, user)
        elif self.responses:
            item = self.responses.pop(0)
        else:
            item = self.default
        if isinstance(item, BaseException):
            raise item
        return Completion(text=item, model=self.model, input_tokens=100, output_tokens=20)

    async def stream_complete(
        self,
        system: str,
        user: str,
        max_tokens: int = 4096,
    ) -> AsyncIterator[StreamEvent]:
        self.calls.append({"system": system, "user": user, "max_tokens": max_tokens})
        for event in self.stream_events:
            yield event


@pytest.fixture
def tmp_db(tmp_path):
    """File-based DB in tmp_path with schema initialized, closed after test."""
    db = Database(tmp_path / ".deepread.db")
    conn = db.connect()
    initialize(conn)
    yield conn
    conn.close()


@pytest.fixture
def database(tmp_path, tmp_db) -> Database:
    """Handle on the same file as ``tmp_db``, for code that opens its own connections."""
    return Database(tmp_path / ".deepread.db")


@pytest.fixture
def repo(tmp_db) -> Repository:
    return Repository(tmp_db)


@pytest.fixture
def store(tmp_path) -> FileContentStore:
    return FileContentStore(tmp_path / "content")


@pytest.fixture
def config() -> DeepreadConfig:
    cfg = DeepreadConfig()
    cfg.jobs.retry_base_delay = 0.0
    return cfg


@pytest.fixture
def add_source(repo, store):
    """Create a source; cached unless *text* is None.

    Returns a function ``add_source(title, text=..., word_count=None, ...) -> Source``.
    ``word_count`` defaults to the text's word count.
    """

    def _add(
        title: str = "Doc",
        text: str | None = "Some cached text.",
        *,
        word_count: int | None = None,
        mime_type: str = "text/plain",
        user_id: str = USER,
        project_id: str = PROJECT,
    ) -> Source:
        source = Source(
            id=f"src-{uuid.uuid4().hex[:8]}",
            project_id=project_id,
            user_id=user_id,
            title=title,
            mime_type=mime_type,
        )
        repo.add_source(source)
        if text is not None:
            key = default_content_key(source.id)
            store.put(key, text.encode("utf-8"))
            words = len(text.split()) if word_count is None else word_count
            repo.mark_source_cached(source.id, key, words)
        return repo.get_source(source.id)

    return _add


# ------------------------------------------------------------------
# CLI
# ------------------------------------------------------------------

_CLI_CONFIG = """\
llm:
  model: openai/gpt-4o
jobs:
  poll_interval_seconds: 0.05
  retry_base_delay: 0
"""


@pytest.fixture
def cli_project(tmp_path, monkeypatch):
    """Initialized project directory as the CWD, isolated from ~/.deepread.

    The project id defaults to the directory name, so commands run without
    ``--project`` address ``tmp_path.name``.
    """
    from typer.testing import CliRunner

    from deepread.cli.main import app

    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr("deepread.config._GLOBAL_CONFIG_PATH", tmp_path / "no-global.yaml")
    for var in ("DEEPREAD_MODEL", "DEEPREAD_DEEP_ANALYSIS_TOKEN_THRESHOLD", "DEEPREAD_USER", "DEEPREAD_PROJECT"):
        monkeypatch.delenv(var, raising=False)

    result = CliRunner().invoke(app, ["init", "--skip-global"])
    assert result.exit_code == 0, result.output
    (tmp_path / "deepread.yaml").write_text(_CLI_CONFIG, encoding="utf-8")
    return tmp_path


@pytest.fixture
def cli_provider(monkeypatch) -> FakeProvider:
    """FakeProvider handed to every CLI command instead of a LiteLLM client."""
    provider = FakeProvider()
    monkeypatch.setattr("deepread.cli.context.get_provider", lambda config: provider)
    return provider


@pytest.fixture
def cli_source(cli_project):
    """Add a file through ``deepread sources add`` and return the new Source."""
    from typer.testing import CliRunner

    from deepread.cli.main import app

    def _add(filename: str = "notes.txt", text: str = "Rivers flood every spring.") -> Source:
        path = cli_project / filename
        path.write_text(text, encoding="utf-8")
        result = CliRunner().invoke(app, ["sources", "add", str(path)])
        assert result.exit_code == 0, result.output
        with Database(cli_project / ".deepread.db") as conn:
            sources = Repository(conn).list_sources("local", cli_project.name)
        return next(s for s in reversed(sources) if s.title == filename)

    return _add


@pytest.fixture
def deep_mode(monkeypatch):
    """Route every CLI analysis to a map-reduce job."""
    monkeypatch.setenv("DEEPREAD_DEEP_ANALYSIS_TOKEN_THRESHOLD", "1")
