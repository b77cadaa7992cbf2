from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any

from opentelemetry import trace

from hiring_notifications.services.cache import ReadCache, read_keys
from hiring_notifications.services.enrollment import CareerTargets, EnrollmentProvider, unique_subscriber_ids
from hiring_notifications.services.repository import (
    PostingDraft,
    RepositoryForbiddenError,
    RepositoryValidationError,
)

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


def validate_posting_draft(draft: PostingDraft) -> PostingDraft:
    """Normalize a draft and enforce the fields every posting needs."""
    title = (draft.title or "").strip()
    position = (draft.position or "").strip()
    if not title or not position:
        raise RepositoryValidationError("title and position are required")

    target_career_ids: list[int] = []
    for career_id in draft.target_career_ids or []:
        if isinstance(career_id, bool) or not isinstance(career_id, int) or career_id <= 0:
            raise RepositoryValidationError("target_career_ids must contain positive integers")
        if career_id not in target_career_ids:
            target_career_ids.append(career_id)
    if not target_career_ids:
        raise RepositoryValidationError("at least one target career must be selected")

    return replace(
        draft,
        title=title,
        position=position,
        target_career_ids=target_career_ids,
        description=_strip_or_none(draft.description),
        location=_strip_or_none(draft.location),
        salary_range=_strip_or_none(draft.salary_range),
        requirements=_strip_or_none(draft.requirements),
    )


class Publisher:
    """Creates a posting and its initial deliveries in one transaction."""

    def __init__(self, *, repository: Any, enrollment_provider: EnrollmentProvider, cache: ReadCache) -> None:
        self.repository = repository
        self.enrollment_provider = enrollment_provider
        self.cache = cache

    async def publish(self, *, publisher_id: str, draft: PostingDraft) -> dict[str, Any]:
        normalized = validate_posting_draft(draft)
        publisher = await self.repository.get_publisher(publisher_id=publisher_id)
        if publisher is None:
            raise RepositoryForbiddenError("publisher is not registered")
        if not publisher.is_approved:
            raise RepositoryForbiddenError("publisher is not yet approved")

        with tracer.start_as_current_span("notifications.publish") as span:
            span.set_attribute("publisher.id", publisher.id)
            async with self.repository.transaction() as conn:
                posting = await self.repository.insert_posting(conn=conn, publisher_id=publisher.id, draft=normalized)
                catalog = await self.repository.list_careers(conn=conn, career_ids=normalized.target_career_ids)
                targets = CareerTargets(normalized.target_career_ids, catalog)
                enrollments = await self.enrollment_provider.for_targets(targets, conn=conn)
                subscriber_ids = unique_subscriber_ids(enrollments)
                delivered = await self.repository.insert_deliveries(
                    conn=conn,
                    posting_id=posting["id"],
                    subscriber_ids=subscriber_ids,
                )
            span.set_attribute("posting.id", posting["id"])
            span.set_attribute("fanout.matched", len(subscriber_ids))
            span.set_attribute("fanout.delivered", len(delivered))

        for subscriber_id in delivered:
            self.cache.delete(*read_keys(subscriber_id))
        logger.info(
            "published posting id=%s publisher_id=%s matched=%s delivered=%s",
            posting["id"],
            publisher.id,
            len(subscriber_ids),
            len(delivered),
        )
        return posting


def _strip_or_none(value: str | None) -> str | None:
    if value is None:
        return None
    stripped = value.strip()
    return stripped or None
