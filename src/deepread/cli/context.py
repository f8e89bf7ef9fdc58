"""Shared wiring for CLI commands: config, database, content store, services."""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console

from deepread.api import Api
from deepread.cli.errors import err_config, err_no_db
from deepread.config import DeepreadConfig, load_config
from deepread.db.connection import Database
from deepread.db.content_store import FileContentStore
from deepread.db.repository import Repository
from deepread.db.schema import initialize
from deepread.errors import ConfigError
from deepread.jobs.engine import DeepAnalysisService
from deepread.jobs.runner import JobRunner
from deepread.rag.llm_client import CompletionProvider, get_provider
from deepread.rag.tokens import TokenEstimator, get_estimator

console = Console()

DEFAULT_USER = "local"

UserOption = Annotated[
    str, typer.Option("--user", envvar="DEEPREAD_USER", help="User id owning the project.")
]
ProjectOption = Annotated[
    str | None,
    typer.Option("--project", envvar="DEEPREAD_PROJECT", help="Project id (default: directory name)."),
]
DbOption = Annotated[Path | None, typer.Option("--db", help="Path to the project database.")]


def default_project() -> str:
    return Path.cwd().name or "default"


@dataclass
class ProjectContext:
    config: DeepreadConfig
    database: Database
    conn: sqlite3.Connection
    repo: Repository
    store: FileContentStore

    def provider(self) -> CompletionProvider:
        return get_provider(self.config)

    def estimator(self) -> TokenEstimator:
        return get_estimator(self.config.llm.token_estimator, self.config.llm.model)

    def deep_service(self) -> DeepAnalysisService:
        return DeepAnalysisService(
            self.database, self.store, self.provider, self.config, estimator=self.estimator()
        )

    def api(self, runner: JobRunner | None = None) -> Api:
        return Api(
            self.repo,
            self.store,
            self.config,
            self.provider,
            self.deep_service(),
            runner=runner,
            estimator=self.estimator(),
        )

    def close(self) -> None:
        self.conn.close()


def open_project(db: Path | None = None, *, create: bool = False) -> ProjectContext:
    """Load config and open the project database, exiting with a message on failure."""
    try:
        config = load_config()
    except ConfigError as exc:
        console.print(err_config(str(exc)))
        raise typer.Exit(1)

    db_path = db if db is not None else Path(config.storage.db_path)
    if not create and not db_path.exists():
        console.print(err_no_db(str(db_path)))
        raise typer.Exit(1)

    database = Database(db_path)
    conn = database.connect()
    initialize(conn)
    return ProjectContext(
        config=config,
        database=database,
        conn=conn,
        repo=Repository(conn),
        store=FileContentStore(config.storage.content_dir),
    )
