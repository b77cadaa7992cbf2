from __future__ import annotations

import asyncio
import os
from collections.abc import Coroutine
from pathlib import Path
from typing import Any, TypeVar

import asyncpg  # type: ignore[import-untyped]
import pytest

from hiring_notifications.services.cache import InMemoryReadCache
from hiring_notifications.services.notifications import NotificationService
from hiring_notifications.services.repository import PostgresRepository, PostingDraft

SCHEMA_PATH = Path(__file__).resolve().parents[1] / "db" / "schema.sql"

STUDENT_S = "00000000-0000-0000-0000-0000000000a1"
STUDENT_T = "00000000-0000-0000-0000-0000000000a2"
STUDENT_U = "00000000-0000-0000-0000-0000000000a3"
STUDENT_V = "00000000-0000-0000-0000-0000000000a4"
COMPANY_USER = "00000000-0000-0000-0000-0000000000c1"

T = TypeVar("T")


@pytest.fixture(scope="session")
def database_url() -> str:
    url = os.getenv("HN_DATABASE_URL") or os.getenv("DATABASE_URL")
    if not url:
        pytest.skip("integration tests require HN_DATABASE_URL or DATABASE_URL")
    _run(_apply_schema(url))
    return url


@pytest.fixture(autouse=True)
def reset_tables(database_url: str) -> None:
    _run(_truncate_integration_tables(database_url))


def test_publish_backfill_and_read_flow(database_url: str) -> None:
    _run(_publish_backfill_and_read_flow(database_url))


def test_publisher_views_and_career_stats(database_url: str) -> None:
    _run(_publisher_views_and_career_stats(database_url))


async def _publish_backfill_and_read_flow(database_url: str) -> None:
    repository = PostgresRepository(database_url, 1, 2)
    service = NotificationService(
        repository=repository,
        cache=InMemoryReadCache(),
        reconcile_cooldown_seconds=0,
    )
    try:
        company_id = await _seed_catalog_and_company(database_url)
        await _select_career(database_url, STUDENT_S, 5, "Data Science", days_ago=0)
        assert await repository.get_career_name_column() == "name"

        posting = await service.publish(
            publisher_id=company_id,
            draft=PostingDraft(title="Data Engineer Intern", position="Intern", target_career_ids=[5]),
        )
        async with repository.transaction() as conn:
            repeated = await repository.insert_deliveries(
                conn=conn,
                posting_id=posting["id"],
                subscriber_ids=[STUDENT_S],
            )
        assert repeated == []

        assert await service.unread_count(STUDENT_S) == 1
        assert await service.mark_read(subscriber_id=STUDENT_S, posting_id=posting["id"]) == "marked"
        assert await service.mark_read(subscriber_id=STUDENT_S, posting_id=posting["id"]) == "already_read"
        assert await service.mark_read(subscriber_id=STUDENT_S, posting_id="not-a-uuid") == "not_found"
        assert await service.unread_count(STUDENT_S) == 0

        await _age_posting(database_url, posting["id"], days=10)
        await _select_career(database_url, STUDENT_T, None, " data science ", days_ago=9)
        await _select_career(database_url, STUDENT_U, 5, "Data Science", days_ago=0)
        await _set_profile_career(database_url, STUDENT_V, "DATA SCIENCE")

        t_rows = await service.list_for_subscriber(STUDENT_T)
        assert [row["posting_id"] for row in t_rows] == [posting["id"]]
        assert t_rows[0]["company_name"] == "Acme"
        assert t_rows[0]["has_applied"] is False
        assert await service.list_for_subscriber(STUDENT_U) == []
        assert await service.unread_count(STUDENT_V) == 1

        assert await service.deactivate(posting_id=posting["id"], publisher_id=company_id) is True
        assert await service.unread_count(STUDENT_T) == 0
        assert await service.list_for_subscriber(STUDENT_V) == []
    finally:
        await repository.close()


async def _publisher_views_and_career_stats(database_url: str) -> None:
    repository = PostgresRepository(database_url, 1, 2)
    service = NotificationService(repository=repository, cache=InMemoryReadCache())
    try:
        company_id = await _seed_catalog_and_company(database_url)
        await _select_career(database_url, STUDENT_S, 5, "Data Science", days_ago=0)
        await _set_profile_career(database_url, STUDENT_T, "Data Science")

        publisher = await service.publisher_for_user(COMPANY_USER)
        assert publisher is not None
        assert publisher.id == company_id

        posting = await service.publish(
            publisher_id=company_id,
            draft=PostingDraft(title="Analyst", position="Junior", target_career_ids=[5, 6]),
        )
        updated = await service.update(
            posting_id=posting["id"],
            publisher_id=company_id,
            draft=PostingDraft(title="Senior Analyst", position="Junior", target_career_ids=[6]),
        )
        assert updated is not None
        assert updated["title"] == "Senior Analyst"
        assert updated["target_career_ids"] == [6]

        rows = await service.list_publisher_postings(publisher_id=company_id)
        assert len(rows) == 1
        assert rows[0]["target_student_count"] == 2
        assert rows[0]["application_count"] == 0

        counts = await service.career_student_counts()
        assert counts[0] == {"career_id": 5, "career_name": "Data Science", "student_count": 2}
        assert counts[1]["student_count"] == 0
    finally:
        await repository.close()


def _run(coro: Coroutine[Any, Any, T]) -> T:
    return asyncio.run(coro)


async def _apply_schema(database_url: str) -> None:
    conn = await asyncpg.connect(database_url)
    try:
        await conn.execute(SCHEMA_PATH.read_text())
    finally:
        await conn.close()


async def _truncate_integration_tables(database_url: str) -> None:
    conn = await asyncpg.connect(database_url)
    try:
        await conn.execute(
            """
            truncate table
              job_applications,
              student_notifications,
              hiring_notifications,
              company_users,
              companies,
              user_career_progress,
              user_profiles,
              careers
            restart identity cascade
            """
        )
    finally:
        await conn.close()


async def _seed_catalog_and_company(database_url: str) -> str:
    conn = await asyncpg.connect(database_url)
    try:
        await conn.execute(
            """
            insert into careers (id, name)
            values (5, 'Data Science'), (6, 'Product Design')
            """
        )
        company_id = await conn.fetchval(
            """
            insert into companies (name, is_approved)
            values ('Acme', true)
            returning id::text
            """
        )
        await conn.execute(
            "insert into company_users (user_id, company_id) values ($1::uuid, $2::uuid)",
            COMPANY_USER,
            company_id,
        )
        return company_id
    finally:
        await conn.close()


async def _select_career(
    database_url: str,
    subscriber_id: str,
    career_id: int | None,
    career_name: str,
    *,
    days_ago: int,
) -> None:
    conn = await asyncpg.connect(database_url)
    try:
        await conn.execute(
            """
            insert into user_career_progress (user_id, career_id, career_name, selected_at)
            values ($1::uuid, $2, $3, now() - make_interval(days => $4))
            """,
            subscriber_id,
            career_id,
            career_name,
            days_ago,
        )
    finally:
        await conn.close()


async def _set_profile_career(database_url: str, subscriber_id: str, career_path: str) -> None:
    conn = await asyncpg.connect(database_url)
    try:
        await conn.execute(
            """
            insert into user_profiles (user_id, career_path)
            values ($1::uuid, $2)
            on conflict (user_id) do update set career_path = excluded.career_path
            """,
            subscriber_id,
            career_path,
        )
    finally:
        await conn.close()


async def _age_posting(database_url: str, posting_id: str, *, days: int) -> None:
    conn = await asyncpg.connect(database_url)
    try:
        await conn.execute(
            "update hiring_notifications set created_at = now() - make_interval(days => $2) where id = $1::uuid",
            posting_id,
            days,
        )
    finally:
        await conn.close()
