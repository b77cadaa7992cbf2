from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import asyncpg  # type: ignore[import-untyped]
import pytest
from asyncpg import exceptions as pg_exc

from hiring_notifications.services.repository import (
    PostgresRepository,
    RepositoryUnavailableError,
    is_uuid,
    resolve_career_name_column,
)


def test_resolve_career_name_column_prefers_name() -> None:
    assert resolve_career_name_column(["career_name", "name"]) == "name"
    assert resolve_career_name_column(["id", "Career_Name "]) == "career_name"
    assert resolve_career_name_column(["id", "title"]) is None


def test_configured_career_name_column_is_validated_without_probe() -> None:
    repository = PostgresRepository(None, 1, 1, career_name_column="career_name")
    assert asyncio.run(repository.get_career_name_column()) == "career_name"

    fallback = PostgresRepository(None, 1, 1, career_name_column="title; drop table careers")
    assert asyncio.run(fallback.get_career_name_column()) == "name"


def test_unconfigured_database_is_unavailable() -> None:
    repository = PostgresRepository(None, 1, 1)

    with pytest.raises(RepositoryUnavailableError, match="HN_DATABASE_URL"):
        asyncio.run(repository.ping())


def test_is_uuid() -> None:
    assert is_uuid("11111111-1111-1111-1111-111111111111")
    assert not is_uuid("not-a-uuid")
    assert not is_uuid(None)


def test_coerce_career_ids_accepts_json_and_lists() -> None:
    coerce = PostgresRepository._coerce_career_ids

    assert coerce("[5, 6, 5]") == [5, 6]
    assert coerce([5, "7", True, None, "x"]) == [5, 7]
    assert coerce("not json") == []
    assert coerce({"5": 1}) == []


class FakeConnection:
    def __init__(self, events: list[str]) -> None:
        self.events = events

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        self.events.append("begin")
        yield


class FakePool:
    def __init__(self, *, rows: list[dict[str, Any]] | None = None, error: Exception | None = None) -> None:
        self.rows = rows or []
        self.error = error
        self.events: list[str] = []

    async def fetch(self, query: str, *args: Any) -> list[dict[str, Any]]:
        self.events.append("probe")
        if self.error is not None:
            raise self.error
        return self.rows

    @asynccontextmanager
    async def acquire(self) -> AsyncIterator[FakeConnection]:
        self.events.append("acquire")
        yield FakeConnection(self.events)


def _repository_with_pool(pool: FakePool) -> PostgresRepository:
    repository = PostgresRepository("postgresql://localhost/hiring", 1, 1)
    repository._pool = pool
    return repository


def test_career_name_column_probe_finds_known_column() -> None:
    pool = FakePool(rows=[{"column_name": "career_name"}])
    repository = _repository_with_pool(pool)

    assert asyncio.run(repository.get_career_name_column()) == "career_name"
    assert asyncio.run(repository.get_career_name_column()) == "career_name"
    assert pool.events == ["probe"]


def test_career_name_column_falls_back_when_no_known_column(caplog: pytest.LogCaptureFixture) -> None:
    repository = _repository_with_pool(FakePool(rows=[]))

    with caplog.at_level(logging.WARNING):
        assert asyncio.run(repository.get_career_name_column()) == "name"

    assert "no known name column" in caplog.text


def test_career_name_column_falls_back_when_probe_fails(caplog: pytest.LogCaptureFixture) -> None:
    repository = _repository_with_pool(FakePool(error=pg_exc.InsufficientPrivilegeError("permission denied")))

    with caplog.at_level(logging.WARNING):
        assert asyncio.run(repository.get_career_name_column()) == "name"

    assert "career name column probe failed" in caplog.text


def test_transaction_resolves_career_name_column_before_acquiring() -> None:
    pool = FakePool(rows=[{"column_name": "name"}])
    repository = _repository_with_pool(pool)

    async def _use_transaction() -> None:
        async with repository.transaction():
            pool.events.append("body")

    asyncio.run(_use_transaction())

    assert pool.events == ["probe", "acquire", "begin", "body"]


@pytest.mark.parametrize(
    "error",
    [
        asyncio.TimeoutError(),
        OSError("connection reset"),
        asyncpg.InterfaceError("connection is closed"),
    ],
)
def test_transaction_maps_connection_faults_to_unavailable(error: Exception) -> None:
    repository = _repository_with_pool(FakePool(rows=[{"column_name": "name"}]))

    async def _fail_inside_transaction() -> None:
        async with repository.transaction():
            raise error

    with pytest.raises(RepositoryUnavailableError):
        asyncio.run(_fail_inside_transaction())
