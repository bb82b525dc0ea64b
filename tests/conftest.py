"""
Pytest fixtures - file-backed SQLite store, sample table, repositories.
Challenge: Each repository call opens its own connection, so the store must outlive
a single connection (in-memory SQLite would vanish between calls).
"""

from collections.abc import Generator

import pytest
import pytest_asyncio
from sqlalchemy import Engine, create_engine, text

from sqlrepo.config import get_settings
from sqlrepo.db.repositories import RemoveRangeStrategy

from sample_repo import (
    CREATE_SAMPLE_TABLE_SQL,
    CREATE_TAG_TABLE_SQL,
    DROP_SAMPLE_TABLE_SQL,
    DROP_TAG_TABLE_SQL,
    SampleRecordRepository,
    TagRepository,
)


@pytest.fixture(autouse=True)
def _fresh_settings(monkeypatch) -> Generator[None, None, None]:
    """Isolate tests from SQLREPO_* variables of the host environment."""
    for name in (
        "SQLREPO_REMOVE_RANGE_STRATEGY",
        "SQLREPO_REMOVE_RANGE_MAX_CONCURRENCY",
        "SQLREPO_DEFAULT_SCHEMA",
        "SQLREPO_DEFAULT_ID_COLUMN",
        "SQLREPO_POOL_CONNECTIONS",
        "SQLREPO_DEBUG",
        "SQLREPO_LOG_LEVEL",
        "SQLREPO_DATABASE_URL",
    ):
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def database_url(tmp_path) -> str:
    return f"sqlite:///{tmp_path / 'repository_test.db'}"


@pytest.fixture
def db_engine(database_url) -> Generator[Engine, None, None]:
    """Engine for arranging and checking table contents outside the repository."""
    engine = create_engine(database_url)
    with engine.begin() as conn:
        conn.execute(text(DROP_SAMPLE_TABLE_SQL))
        conn.execute(text(CREATE_SAMPLE_TABLE_SQL))
    yield engine
    with engine.begin() as conn:
        conn.execute(text(DROP_SAMPLE_TABLE_SQL))
    engine.dispose()


@pytest_asyncio.fixture
async def repository(database_url, db_engine):
    repo = SampleRecordRepository(database_url)
    yield repo
    repo.connections.dispose()
    await repo.connections.dispose_async()


@pytest_asyncio.fixture
async def fan_out_repository(database_url, db_engine):
    repo = SampleRecordRepository(
        database_url,
        remove_range_strategy=RemoveRangeStrategy.FAN_OUT,
        max_concurrency=2,
    )
    yield repo
    repo.connections.dispose()
    await repo.connections.dispose_async()


@pytest.fixture
def tag_table(db_engine) -> Generator[Engine, None, None]:
    """String-keyed table next to the sample one."""
    with db_engine.begin() as conn:
        conn.execute(text(DROP_TAG_TABLE_SQL))
        conn.execute(text(CREATE_TAG_TABLE_SQL))
    yield db_engine
    with db_engine.begin() as conn:
        conn.execute(text(DROP_TAG_TABLE_SQL))


@pytest_asyncio.fixture
async def tag_repository(database_url, tag_table):
    repo = TagRepository(database_url)
    yield repo
    repo.connections.dispose()
    await repo.connections.dispose_async()
