from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import datetime, timedelta
from typing import Any

from opentelemetry import trace

from hiring_notifications.services.cache import CooldownKey, ReadCache, read_keys
from hiring_notifications.services.enrollment import Career, CareerTargets, Enrollment, EnrollmentProvider

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


def enrollment_targets(enrollments: Sequence[Enrollment], catalog: Sequence[Career]) -> CareerTargets:
    """Targets covering the whole catalog plus any ids the enrollments carry directly."""
    career_ids = {career.id for career in catalog}
    career_ids.update(enrollment.career_id for enrollment in enrollments if enrollment.career_id is not None)
    return CareerTargets(career_ids, catalog)


def earliest_window_start(enrollments: Sequence[Enrollment], lookback: timedelta) -> datetime | None:
    """Lower bound on posting creation time, or None when some enrollment has no window."""
    starts: list[datetime] = []
    for enrollment in enrollments:
        if enrollment.selected_at is None:
            return None
        starts.append(enrollment.selected_at - lookback)
    return min(starts) if starts else None


def select_backfill_postings(
    *,
    enrollments: Sequence[Enrollment],
    targets: CareerTargets,
    candidates: Sequence[dict[str, Any]],
    lookback: timedelta,
) -> list[str]:
    """Pick the candidate postings at least one enrollment is eligible for.

    An enrollment is eligible for a posting when it resolves to one of the posting's
    target careers and the posting was created no earlier than ``lookback`` before
    the enrollment was selected. Enrollments without a selection time are always
    inside the window.
    """
    matched_ids = [(enrollment, targets.matched_career_ids(enrollment)) for enrollment in enrollments]
    selected: list[str] = []
    for posting in candidates:
        posting_targets = set(posting["target_career_ids"])
        for enrollment, career_ids in matched_ids:
            if not career_ids & posting_targets:
                continue
            if enrollment.selected_at is None or posting["created_at"] >= enrollment.selected_at - lookback:
                selected.append(posting["id"])
                break
    return selected


class BackfillSynchronizer:
    """Read-triggered catch-up for subscribers who became eligible after publish."""

    def __init__(
        self,
        *,
        repository: Any,
        enrollment_provider: EnrollmentProvider,
        cache: ReadCache,
        lookback_days: int = 3,
        cooldown_seconds: int = 300,
    ) -> None:
        self.repository = repository
        self.enrollment_provider = enrollment_provider
        self.cache = cache
        self.lookback = timedelta(days=max(0, lookback_days))
        self.cooldown_seconds = max(0, cooldown_seconds)

    async def reconcile(self, subscriber_id: str) -> list[str]:
        """Create missing deliveries for one subscriber; returns the new posting ids."""
        cooldown_key = CooldownKey(subscriber_id)
        if self.cache.get(cooldown_key) is not None:
            return []

        with tracer.start_as_current_span("notifications.reconcile") as span:
            span.set_attribute("subscriber.id", subscriber_id)
            inserted: list[str] = []
            async with self.repository.transaction() as conn:
                enrollments = await self.enrollment_provider.for_subscriber(subscriber_id, conn=conn)
                if enrollments:
                    catalog = await self.repository.list_careers(conn=conn)
                    targets = enrollment_targets(enrollments, catalog)
                    career_ids: set[int] = set()
                    for enrollment in enrollments:
                        career_ids.update(targets.matched_career_ids(enrollment))
                    candidates = await self.repository.list_backfill_candidates(
                        conn=conn,
                        subscriber_id=subscriber_id,
                        career_ids=sorted(career_ids),
                        created_since=earliest_window_start(enrollments, self.lookback),
                    )
                    posting_ids = select_backfill_postings(
                        enrollments=enrollments,
                        targets=targets,
                        candidates=candidates,
                        lookback=self.lookback,
                    )
                    inserted = await self.repository.insert_subscriber_deliveries(
                        conn=conn,
                        subscriber_id=subscriber_id,
                        posting_ids=posting_ids,
                    )
            span.set_attribute("backfill.inserted", len(inserted))

        self.cache.set(cooldown_key, True, ttl_seconds=self.cooldown_seconds)
        if inserted:
            self.cache.delete(*read_keys(subscriber_id))
            logger.info("backfilled deliveries subscriber_id=%s count=%s", subscriber_id, len(inserted))
        return inserted
