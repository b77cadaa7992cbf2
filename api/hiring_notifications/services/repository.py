from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import date, datetime
from functools import lru_cache
from typing import Any, Literal
from uuid import UUID

import asyncpg  # type: ignore[import-untyped]
from asyncpg import exceptions as pg_exc

from hiring_notifications.core.config import get_settings
from hiring_notifications.services.enrollment import Career

logger = logging.getLogger(__name__)

CAREER_NAME_COLUMNS = ("name", "career_name")
DEFAULT_CAREER_NAME_COLUMN = "name"

MarkReadResult = Literal["marked", "already_read", "not_found"]


class RepositoryError(Exception):
    """Base repository error."""


class RepositoryUnavailableError(RepositoryError):
    """Raised when the database is unavailable or not configured."""


class RepositoryForbiddenError(RepositoryError):
    """Raised when an operation is not permitted for the actor."""


class RepositoryValidationError(RepositoryError):
    """Raised when payload validation fails before persistence."""


@dataclass(slots=True)
class PublisherRecord:
    id: str
    name: str
    is_approved: bool


@dataclass(slots=True)
class PostingDraft:
    title: str
    position: str
    target_career_ids: list[int]
    description: str | None = None
    location: str | None = None
    salary_range: str | None = None
    requirements: str | None = None
    application_deadline: date | None = None


_POSTING_COLUMNS = """
  hn.id::text as id,
  hn.company_id::text as publisher_id,
  hn.title,
  hn.description,
  hn.position,
  hn.location,
  hn.salary_range,
  hn.requirements,
  hn.target_career_ids,
  hn.application_deadline,
  hn.is_active,
  hn.created_at,
  hn.updated_at
"""


def is_uuid(value: Any) -> bool:
    if not isinstance(value, str):
        return False
    try:
        UUID(value)
    except ValueError:
        return False
    return True


def resolve_career_name_column(candidates: list[str] | tuple[str, ...]) -> str | None:
    """Pick the catalog display-name column from the columns that actually exist."""
    present = {candidate.strip().lower() for candidate in candidates if isinstance(candidate, str)}
    for column in CAREER_NAME_COLUMNS:
        if column in present:
            return column
    return None


class PostgresRepository:
    def __init__(
        self,
        database_url: str | None,
        min_pool_size: int,
        max_pool_size: int,
        career_name_column: str | None = None,
    ) -> None:
        self.database_url = database_url
        self.min_pool_size = min_pool_size
        self.max_pool_size = max_pool_size
        self.configured_career_name_column = career_name_column
        self._career_name_column: str | None = None
        self._pool: asyncpg.Pool | None = None

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    async def ping(self) -> None:
        pool = await self._get_pool()
        try:
            await pool.fetchval("select 1")
        except (asyncpg.PostgresError, OSError) as exc:
            raise RepositoryUnavailableError("database unavailable") from exc

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[asyncpg.Connection]:
        pool = await self._get_pool()
        # Resolved before acquiring, so the probe never runs inside the unit of work.
        await self.get_career_name_column()
        try:
            async with pool.acquire() as conn:
                async with conn.transaction():
                    yield conn
        except asyncpg.PostgresError as exc:
            raise RepositoryError(f"transaction rolled back: {exc}") from exc
        except (asyncpg.InterfaceError, asyncio.TimeoutError, OSError) as exc:
            raise RepositoryUnavailableError(f"database unavailable: {exc}") from exc

    async def get_career_name_column(self) -> str:
        if self._career_name_column is not None:
            return self._career_name_column

        configured = self.configured_career_name_column
        if configured:
            column = resolve_career_name_column([configured])
            if column is None:
                logger.warning(
                    "unsupported career name column configured=%s; falling back to %s",
                    configured,
                    DEFAULT_CAREER_NAME_COLUMN,
                )
                column = DEFAULT_CAREER_NAME_COLUMN
            self._career_name_column = column
            return column

        pool = await self._get_pool()
        try:
            rows = await pool.fetch(
                """
                select column_name::text as column_name
                from information_schema.columns
                where table_schema = any(current_schemas(false))
                  and table_name = 'careers'
                  and column_name = any($1::text[])
                """,
                list(CAREER_NAME_COLUMNS),
            )
        except asyncpg.PostgresError as exc:
            logger.warning("career name column probe failed: %s; falling back to %s", exc, DEFAULT_CAREER_NAME_COLUMN)
            rows = []
        except (asyncpg.InterfaceError, asyncio.TimeoutError, OSError) as exc:
            raise RepositoryUnavailableError(f"database unavailable: {exc}") from exc

        column = resolve_career_name_column([row["column_name"] for row in rows])
        if column is None:
            logger.warning("careers table has no known name column; falling back to %s", DEFAULT_CAREER_NAME_COLUMN)
            column = DEFAULT_CAREER_NAME_COLUMN
        else:
            logger.info("resolved career name column=%s", column)
        self._career_name_column = column
        return column

    async def get_publisher(self, *, publisher_id: str) -> PublisherRecord | None:
        pool = await self._get_pool()
        try:
            row = await pool.fetchrow(
                """
                select id::text as id, name, is_approved
                from companies
                where id = $1::uuid
                """,
                publisher_id,
            )
        except (pg_exc.InvalidTextRepresentationError, asyncpg.DataError):
            return None
        return self._publisher_row_to_record(row) if row else None

    async def get_publisher_for_user(self, *, user_id: str) -> PublisherRecord | None:
        pool = await self._get_pool()
        try:
            row = await pool.fetchrow(
                """
                select c.id::text as id, c.name, c.is_approved
                from company_users cu
                join companies c on c.id = cu.company_id
                where cu.user_id = $1::uuid
                order by cu.created_at asc
                limit 1
                """,
                user_id,
            )
        except (pg_exc.InvalidTextRepresentationError, asyncpg.DataError):
            return None
        return self._publisher_row_to_record(row) if row else None

    async def list_careers(self, *, conn: Any | None = None, career_ids: list[int] | None = None) -> list[Career]:
        executor = conn or await self._get_pool()
        name_column = await self.get_career_name_column()
        # name_column is one of CAREER_NAME_COLUMNS, never caller input.
        if career_ids is None:
            rows = await executor.fetch(f"select id, {name_column}::text as name from careers order by id")
        else:
            rows = await executor.fetch(
                f"select id, {name_column}::text as name from careers where id = any($1::int[]) order by id",
                list(career_ids),
            )
        return [Career(id=int(row["id"]), name=row["name"] or "") for row in rows]

    async def fetch_active_selections(
        self,
        *,
        conn: Any | None = None,
        subscriber_id: str | None = None,
        career_ids: list[int] | None = None,
        career_names: list[str] | None = None,
    ) -> list[dict[str, Any]]:
        executor = conn or await self._get_pool()
        conditions = ["ucp.is_active = true"]
        params: list[Any] = []

        def bind(value: Any) -> str:
            params.append(value)
            return f"${len(params)}"

        if subscriber_id is not None:
            conditions.append(f"ucp.user_id = {bind(subscriber_id)}::uuid")
        if career_ids is not None or career_names is not None:
            ids_token = bind(list(career_ids or []))
            names_token = bind(list(career_names or []))
            conditions.append(
                f"(ucp.career_id = any({ids_token}::int[]) or lower(trim(ucp.career_name)) = any({names_token}::text[]))"
            )

        rows = await executor.fetch(
            f"""
            select
              ucp.user_id::text as subscriber_id,
              ucp.career_id,
              ucp.career_name,
              ucp.selected_at
            from user_career_progress ucp
            where {" and ".join(conditions)}
            order by ucp.selected_at asc, ucp.id asc
            """,
            *params,
        )
        return [dict(row) for row in rows]

    async def fetch_profile_careers(
        self,
        *,
        conn: Any | None = None,
        subscriber_id: str | None = None,
        career_names: list[str] | None = None,
    ) -> list[dict[str, Any]]:
        executor = conn or await self._get_pool()
        conditions = ["up.career_path is not null", "trim(up.career_path) <> ''"]
        params: list[Any] = []

        if subscriber_id is not None:
            params.append(subscriber_id)
            conditions.append(f"up.user_id = ${len(params)}::uuid")
        if career_names is not None:
            params.append(list(career_names))
            conditions.append(f"lower(trim(up.career_path)) = any(${len(params)}::text[])")

        rows = await executor.fetch(
            f"""
            select up.user_id::text as subscriber_id, up.career_path as career_name
            from user_profiles up
            where {" and ".join(conditions)}
            """,
            *params,
        )
        return [dict(row) for row in rows]

    async def insert_posting(self, *, conn: asyncpg.Connection, publisher_id: str, draft: PostingDraft) -> dict[str, Any]:
        row = await conn.fetchrow(
            f"""
            with hn as (
              insert into hiring_notifications (
                company_id,
                title,
                description,
                position,
                location,
                salary_range,
                requirements,
                target_career_ids,
                application_deadline
              )
              values ($1::uuid, $2, $3, $4, $5, $6, $7, $8::jsonb, $9)
              returning *
            )
            select {_POSTING_COLUMNS}
            from hn
            """,
            publisher_id,
            draft.title,
            draft.description,
            draft.position,
            draft.location,
            draft.salary_range,
            draft.requirements,
            json.dumps(list(draft.target_career_ids)),
            draft.application_deadline,
        )
        return self._posting_row_to_dict(row)

    async def insert_deliveries(
        self,
        *,
        conn: asyncpg.Connection,
        posting_id: str,
        subscriber_ids: list[str],
    ) -> list[str]:
        """Fan one posting out to many subscribers; existing pairs are skipped."""
        if not subscriber_ids:
            return []
        rows = await conn.fetch(
            """
            insert into student_notifications (user_id, hiring_notification_id)
            select target.subscriber_id::uuid, $2::uuid
            from unnest($1::text[]) as target(subscriber_id)
            on conflict (user_id, hiring_notification_id) do nothing
            returning user_id::text as subscriber_id
            """,
            list(subscriber_ids),
            posting_id,
        )
        return [row["subscriber_id"] for row in rows]

    async def insert_subscriber_deliveries(
        self,
        *,
        conn: asyncpg.Connection,
        subscriber_id: str,
        posting_ids: list[str],
    ) -> list[str]:
        """Deliver many postings to one subscriber; existing pairs are skipped."""
        if not posting_ids:
            return []
        rows = await conn.fetch(
            """
            insert into student_notifications (user_id, hiring_notification_id)
            select $1::uuid, target.posting_id::uuid
            from unnest($2::text[]) as target(posting_id)
            on conflict (user_id, hiring_notification_id) do nothing
            returning hiring_notification_id::text as posting_id
            """,
            subscriber_id,
            list(posting_ids),
        )
        return [row["posting_id"] for row in rows]

    async def list_backfill_candidates(
        self,
        *,
        conn: asyncpg.Connection,
        subscriber_id: str,
        career_ids: list[int],
        created_since: datetime | None,
    ) -> list[dict[str, Any]]:
        """Active, approved postings targeting any of career_ids and not yet delivered."""
        if not career_ids:
            return []
        rows = await conn.fetch(
            """
            select
              hn.id::text as id,
              hn.target_career_ids,
              hn.created_at
            from hiring_notifications hn
            join companies c on c.id = hn.company_id and c.is_approved = true
            where hn.is_active = true
              and ($3::timestamptz is null or hn.created_at >= $3::timestamptz)
              and exists (
                select 1
                from jsonb_array_elements_text(hn.target_career_ids) as target(career_id)
                where target.career_id::int = any($2::int[])
              )
              and not exists (
                select 1
                from student_notifications sn
                where sn.user_id = $1::uuid
                  and sn.hiring_notification_id = hn.id
              )
            order by hn.created_at desc, hn.id asc
            """,
            subscriber_id,
            list(career_ids),
            created_since,
        )
        return [
            {
                "id": row["id"],
                "target_career_ids": self._coerce_career_ids(row["target_career_ids"]),
                "created_at": row["created_at"],
            }
            for row in rows
        ]

    async def list_subscriber_deliveries(self, *, subscriber_id: str) -> list[dict[str, Any]]:
        pool = await self._get_pool()
        rows = await pool.fetch(
            """
            select
              sn.id::text as id,
              sn.user_id::text as subscriber_id,
              sn.hiring_notification_id::text as posting_id,
              sn.is_read,
              sn.read_at,
              sn.created_at,
              hn.title,
              hn.description,
              hn.position,
              hn.location,
              hn.salary_range,
              hn.requirements,
              hn.application_deadline,
              c.name as company_name,
              c.logo_url as company_logo,
              c.website as company_website,
              exists (
                select 1
                from job_applications ja
                where ja.hiring_notification_id = hn.id
                  and ja.user_id = sn.user_id
              ) as has_applied
            from student_notifications sn
            join hiring_notifications hn on hn.id = sn.hiring_notification_id
            join companies c on c.id = hn.company_id
            where sn.user_id = $1::uuid
              and hn.is_active = true
            order by sn.is_read asc, sn.created_at desc, sn.id asc
            """,
            subscriber_id,
        )
        return [self._delivery_row_to_dict(row) for row in rows]

    async def count_unread_deliveries(self, *, subscriber_id: str) -> int:
        pool = await self._get_pool()
        value = await pool.fetchval(
            """
            select count(*)
            from student_notifications sn
            join hiring_notifications hn on hn.id = sn.hiring_notification_id
            where sn.user_id = $1::uuid
              and sn.is_read = false
              and hn.is_active = true
            """,
            subscriber_id,
        )
        return int(value or 0)

    async def mark_delivery_read(self, *, subscriber_id: str, posting_id: str) -> MarkReadResult:
        pool = await self._get_pool()
        try:
            row = await pool.fetchrow(
                """
                with target as (
                  select id, is_read
                  from student_notifications
                  where user_id = $1::uuid
                    and hiring_notification_id = $2::uuid
                ),
                updated as (
                  update student_notifications sn
                  set is_read = true, read_at = now()
                  from target
                  where sn.id = target.id
                    and target.is_read = false
                  returning sn.id
                )
                select
                  (select count(*) from target) as matched,
                  (select count(*) from updated) as updated
                """,
                subscriber_id,
                posting_id,
            )
        except (pg_exc.InvalidTextRepresentationError, asyncpg.DataError):
            return "not_found"
        if not row or int(row["matched"]) == 0:
            return "not_found"
        if int(row["updated"]) > 0:
            return "marked"
        return "already_read"

    async def deactivate_posting(self, *, posting_id: str, publisher_id: str) -> list[str] | None:
        """Returns subscribers holding a delivery of the posting, or None if not owned."""
        if not is_uuid(posting_id) or not is_uuid(publisher_id):
            return None
        async with self.transaction() as conn:
            row = await conn.fetchrow(
                """
                update hiring_notifications
                set is_active = false, updated_at = now()
                where id = $1::uuid
                  and company_id = $2::uuid
                returning id::text as id
                """,
                posting_id,
                publisher_id,
            )
            if not row:
                return None
            rows = await conn.fetch(
                """
                select user_id::text as subscriber_id
                from student_notifications
                where hiring_notification_id = $1::uuid
                """,
                posting_id,
            )
        return [row["subscriber_id"] for row in rows]

    async def update_posting(self, *, posting_id: str, publisher_id: str, draft: PostingDraft) -> dict[str, Any] | None:
        pool = await self._get_pool()
        try:
            row = await pool.fetchrow(
                f"""
                with hn as (
                  update hiring_notifications
                  set
                    title = $3,
                    description = $4,
                    position = $5,
                    location = $6,
                    salary_range = $7,
                    requirements = $8,
                    target_career_ids = $9::jsonb,
                    application_deadline = $10,
                    updated_at = now()
                  where id = $1::uuid
                    and company_id = $2::uuid
                  returning *
                )
                select {_POSTING_COLUMNS}
                from hn
                """,
                posting_id,
                publisher_id,
                draft.title,
                draft.description,
                draft.position,
                draft.location,
                draft.salary_range,
                draft.requirements,
                json.dumps(list(draft.target_career_ids)),
                draft.application_deadline,
            )
        except (pg_exc.InvalidTextRepresentationError, asyncpg.DataError):
            return None
        return self._posting_row_to_dict(row) if row else None

    async def list_publisher_postings(self, *, publisher_id: str) -> list[dict[str, Any]]:
        pool = await self._get_pool()
        rows = await pool.fetch(
            f"""
            select
              {_POSTING_COLUMNS},
              c.name as company_name,
              c.logo_url as company_logo,
              (
                select count(*)
                from job_applications ja
                where ja.hiring_notification_id = hn.id
              ) as application_count,
              (
                select count(*)
                from student_notifications sn
                where sn.hiring_notification_id = hn.id
              ) as target_student_count
            from hiring_notifications hn
            join companies c on c.id = hn.company_id
            where hn.company_id = $1::uuid
            order by hn.created_at desc, hn.id asc
            """,
            publisher_id,
        )
        postings: list[dict[str, Any]] = []
        for row in rows:
            posting = self._posting_row_to_dict(row)
            posting["company_name"] = row["company_name"]
            posting["company_logo"] = row["company_logo"]
            posting["application_count"] = int(row["application_count"] or 0)
            posting["target_student_count"] = int(row["target_student_count"] or 0)
            postings.append(posting)
        return postings

    async def _get_pool(self) -> asyncpg.Pool:
        if not self.database_url:
            raise RepositoryUnavailableError("HN_DATABASE_URL is required")

        if self._pool is not None:
            return self._pool

        try:
            self._pool = await asyncpg.create_pool(
                dsn=self.database_url,
                min_size=self.min_pool_size,
                max_size=self.max_pool_size,
                command_timeout=15,
            )
            return self._pool
        except Exception as exc:  # pragma: no cover - depends on environment
            raise RepositoryUnavailableError("database unavailable") from exc

    @staticmethod
    def _publisher_row_to_record(row: asyncpg.Record) -> PublisherRecord:
        return PublisherRecord(id=row["id"], name=row["name"], is_approved=bool(row["is_approved"]))

    def _posting_row_to_dict(self, row: asyncpg.Record) -> dict[str, Any]:
        return {
            "id": row["id"],
            "publisher_id": row["publisher_id"],
            "title": row["title"],
            "description": row["description"],
            "position": row["position"],
            "location": row["location"],
            "salary_range": row["salary_range"],
            "requirements": row["requirements"],
            "target_career_ids": self._coerce_career_ids(row["target_career_ids"]),
            "application_deadline": row["application_deadline"],
            "is_active": bool(row["is_active"]),
            "created_at": row["created_at"],
            "updated_at": row["updated_at"],
        }

    @staticmethod
    def _delivery_row_to_dict(row: asyncpg.Record) -> dict[str, Any]:
        return {
            "id": row["id"],
            "subscriber_id": row["subscriber_id"],
            "posting_id": row["posting_id"],
            "is_read": bool(row["is_read"]),
            "read_at": row["read_at"],
            "created_at": row["created_at"],
            "title": row["title"],
            "description": row["description"],
            "position": row["position"],
            "location": row["location"],
            "salary_range": row["salary_range"],
            "requirements": row["requirements"],
            "application_deadline": row["application_deadline"],
            "company_name": row["company_name"],
            "company_logo": row["company_logo"],
            "company_website": row["company_website"],
            "has_applied": bool(row["has_applied"]),
        }

    @staticmethod
    def _coerce_career_ids(value: Any) -> list[int]:
        if isinstance(value, str):
            try:
                value = json.loads(value)
            except json.JSONDecodeError:
                return []
        if not isinstance(value, list):
            return []
        career_ids: list[int] = []
        for item in value:
            if isinstance(item, bool):
                continue
            try:
                career_id = int(item)
            except (TypeError, ValueError):
                continue
            if career_id not in career_ids:
                career_ids.append(career_id)
        return career_ids


@lru_cache
def get_repository() -> PostgresRepository:
    settings = get_settings()
    return PostgresRepository(
        database_url=settings.database_url,
        min_pool_size=settings.database_pool_min_size,
        max_pool_size=settings.database_pool_max_size,
        career_name_column=settings.career_name_column,
    )
