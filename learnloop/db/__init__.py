"""
Persistence for learner state.

Components:
- Store protocols: what the engine needs from persistence
- InMemoryStore: dict-backed store for tests and offline sessions
- SqlStore: SQLAlchemy async store (PostgreSQL via asyncpg, SQLite via aiosqlite)
"""

from .database import create_engine, create_session_factory, get_async_url, init_db, session_scope
from .sql_store import SqlStore
from .stores import (
    AttemptStore,
    ConflictPolicy,
    InMemoryStore,
    LectureStore,
    PracticeStore,
    ProgressStore,
    RemediationStore,
    ReviewStore,
    StatsStore,
    reconcile_progress,
)

__all__ = [
    # Protocols
    "ProgressStore",
    "ReviewStore",
    "AttemptStore",
    "RemediationStore",
    "StatsStore",
    "LectureStore",
    "PracticeStore",
    "ConflictPolicy",
    "reconcile_progress",
    # Implementations
    "InMemoryStore",
    "SqlStore",
    # Engine
    "create_engine",
    "create_session_factory",
    "get_async_url",
    "init_db",
    "session_scope",
]
