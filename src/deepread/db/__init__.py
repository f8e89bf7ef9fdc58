"""deepread database layer."""

from deepread.db.connection import Database
from deepread.db.content_store import ContentStore, FileContentStore, default_content_key
from deepread.db.migrations import MIGRATIONS, run_migrations
from deepread.db.repository import Repository
from deepread.db.schema import initialize

__all__ = [
    "ContentStore",
    "Database",
    "FileContentStore",
    "MIGRATIONS",
    "Repository",
    "default_content_key",
    "initialize",
    "run_migrations",
]
