from __future__ import annotations

import asyncio
import logging
from functools import lru_cache
from typing import Any

from hiring_notifications.core.config import get_settings
from hiring_notifications.services.backfill import BackfillSynchronizer
from hiring_notifications.services.cache import InMemoryReadCache, ListKey, ReadCache, UnreadCountKey, read_keys
from hiring_notifications.services.enrollment import CareerTargets, EnrollmentProvider, build_enrollment_provider
from hiring_notifications.services.publisher import Publisher, validate_posting_draft
from hiring_notifications.services.repository import (
    MarkReadResult,
    PostingDraft,
    PublisherRecord,
    RepositoryError,
    get_repository,
)

logger = logging.getLogger(__name__)


class NotificationService:
    """Entry point for hiring notification fan-out, delivery reads and read state."""

    def __init__(
        self,
        *,
        repository: Any,
        cache: ReadCache,
        enrollment_provider: EnrollmentProvider | None = None,
        backfill_lookback_days: int = 3,
        reconcile_cooldown_seconds: int = 300,
        list_cache_ttl_seconds: int = 120,
        unread_count_cache_ttl_seconds: int = 120,
    ) -> None:
        self.repository = repository
        self.cache = cache
        self.enrollment_provider = enrollment_provider or build_enrollment_provider(repository)
        self.list_cache_ttl_seconds = list_cache_ttl_seconds
        self.unread_count_cache_ttl_seconds = unread_count_cache_ttl_seconds
        self.publisher = Publisher(
            repository=repository,
            enrollment_provider=self.enrollment_provider,
            cache=cache,
        )
        self.backfill = BackfillSynchronizer(
            repository=repository,
            enrollment_provider=self.enrollment_provider,
            cache=cache,
            lookback_days=backfill_lookback_days,
            cooldown_seconds=reconcile_cooldown_seconds,
        )

    async def publisher_for_user(self, user_id: str) -> PublisherRecord | None:
        return await self.repository.get_publisher_for_user(user_id=user_id)

    async def publish(self, *, publisher_id: str, draft: PostingDraft) -> dict[str, Any]:
        return await self.publisher.publish(publisher_id=publisher_id, draft=draft)

    async def list_for_subscriber(self, subscriber_id: str) -> list[dict[str, Any]]:
        await self._reconcile(subscriber_id)
        key = ListKey(subscriber_id)
        cached = self.cache.get(key)
        if cached is not None:
            return [dict(row) for row in cached]
        rows = await self.repository.list_subscriber_deliveries(subscriber_id=subscriber_id)
        self.cache.set(key, tuple(dict(row) for row in rows), ttl_seconds=self.list_cache_ttl_seconds)
        return rows

    async def unread_count(self, subscriber_id: str) -> int:
        await self._reconcile(subscriber_id)
        key = UnreadCountKey(subscriber_id)
        cached = self.cache.get(key)
        if cached is not None:
            return int(cached)
        count = await self.repository.count_unread_deliveries(subscriber_id=subscriber_id)
        self.cache.set(key, count, ttl_seconds=self.unread_count_cache_ttl_seconds)
        return count

    async def mark_read(self, *, subscriber_id: str, posting_id: str) -> MarkReadResult:
        result = await self.repository.mark_delivery_read(subscriber_id=subscriber_id, posting_id=posting_id)
        # Invalidated after the store commit and before returning.
        self.cache.delete(*read_keys(subscriber_id))
        return result

    async def deactivate(self, *, posting_id: str, publisher_id: str) -> bool:
        subscriber_ids = await self.repository.deactivate_posting(posting_id=posting_id, publisher_id=publisher_id)
        if subscriber_ids is None:
            return False
        for subscriber_id in subscriber_ids:
            self.cache.delete(*read_keys(subscriber_id))
        logger.info("deactivated posting id=%s publisher_id=%s", posting_id, publisher_id)
        return True

    async def update(self, *, posting_id: str, publisher_id: str, draft: PostingDraft) -> dict[str, Any] | None:
        """Rewrites the posting only; existing deliveries are left as they are."""
        normalized = validate_posting_draft(draft)
        return await self.repository.update_posting(posting_id=posting_id, publisher_id=publisher_id, draft=normalized)

    async def list_publisher_postings(self, *, publisher_id: str) -> list[dict[str, Any]]:
        return await self.repository.list_publisher_postings(publisher_id=publisher_id)

    async def career_student_counts(self) -> list[dict[str, Any]]:
        catalog = await self.repository.list_careers()
        targets = CareerTargets.from_catalog(catalog)
        enrollments = await self.enrollment_provider.for_targets(targets)

        subscribers_by_career: dict[int, set[str]] = {career.id: set() for career in catalog}
        for enrollment in enrollments:
            for career_id in targets.matched_career_ids(enrollment):
                subscribers_by_career[career_id].add(enrollment.subscriber_id)

        counts = [
            {
                "career_id": career.id,
                "career_name": career.name,
                "student_count": len(subscribers_by_career[career.id]),
            }
            for career in catalog
        ]
        counts.sort(key=lambda row: (-row["student_count"], row["career_name"].lower()))
        return counts

    async def _reconcile(self, subscriber_id: str) -> None:
        try:
            await self.backfill.reconcile(subscriber_id)
        except (RepositoryError, asyncio.TimeoutError, OSError) as exc:
            logger.warning("reconcile failed for subscriber_id=%s: %s", subscriber_id, exc)


@lru_cache
def get_notification_service() -> NotificationService:
    settings = get_settings()
    return NotificationService(
        repository=get_repository(),
        cache=InMemoryReadCache(max_entries=settings.read_cache_max_entries),
        backfill_lookback_days=settings.backfill_lookback_days,
        reconcile_cooldown_seconds=settings.reconcile_cooldown_seconds,
        list_cache_ttl_seconds=settings.list_cache_ttl_seconds,
        unread_count_cache_ttl_seconds=settings.unread_count_cache_ttl_seconds,
    )
