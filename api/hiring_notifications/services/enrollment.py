from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Literal, Protocol

EnrollmentSource = Literal["active_selection", "profile"]


@dataclass(frozen=True, slots=True)
class Career:
    id: int
    name: str


@dataclass(frozen=True, slots=True)
class Enrollment:
    subscriber_id: str
    career_id: int | None
    career_name: str | None
    selected_at: datetime | None
    source: EnrollmentSource

    @property
    def normalized_name(self) -> str | None:
        return normalize_career_name(self.career_name)


def normalize_career_name(value: Any) -> str | None:
    """Comparison form of a career display name; matches ``lower(trim(...))`` in SQL."""
    if not isinstance(value, str):
        return None
    normalized = value.strip().lower()
    return normalized or None


class CareerTargets:
    """A set of target career ids together with the catalog names they resolve to.

    Source rows disagree on how they identify a career: explicit selections may
    carry a numeric id, profile fields only ever carry free text. An enrollment
    matches when either its id is targeted or its name equals the catalog name of
    a targeted career.
    """

    def __init__(self, career_ids: Iterable[int], catalog: Iterable[Career]) -> None:
        self.career_ids = frozenset(int(career_id) for career_id in career_ids)
        ids_by_name: dict[str, set[int]] = {}
        for career in catalog:
            if career.id not in self.career_ids:
                continue
            name = normalize_career_name(career.name)
            if name:
                ids_by_name.setdefault(name, set()).add(career.id)
        self._ids_by_name = {name: frozenset(ids) for name, ids in ids_by_name.items()}

    @classmethod
    def from_catalog(cls, catalog: Sequence[Career]) -> CareerTargets:
        return cls((career.id for career in catalog), catalog)

    @property
    def names(self) -> frozenset[str]:
        return frozenset(self._ids_by_name)

    def matched_career_ids(self, enrollment: Enrollment) -> frozenset[int]:
        matched: set[int] = set()
        if enrollment.career_id is not None and enrollment.career_id in self.career_ids:
            matched.add(enrollment.career_id)
        name = enrollment.normalized_name
        if name:
            matched.update(self._ids_by_name.get(name, ()))
        return frozenset(matched)

    def matches(self, enrollment: Enrollment) -> bool:
        return bool(self.matched_career_ids(enrollment))


class EnrollmentSourceStore(Protocol):
    async def fetch_active_selections(
        self,
        *,
        conn: Any | None = None,
        subscriber_id: str | None = None,
        career_ids: list[int] | None = None,
        career_names: list[str] | None = None,
    ) -> list[dict[str, Any]]: ...

    async def fetch_profile_careers(
        self,
        *,
        conn: Any | None = None,
        subscriber_id: str | None = None,
        career_names: list[str] | None = None,
    ) -> list[dict[str, Any]]: ...


class EnrollmentProvider(Protocol):
    async def for_subscriber(self, subscriber_id: str, *, conn: Any | None = None) -> list[Enrollment]: ...

    async def for_targets(self, targets: CareerTargets, *, conn: Any | None = None) -> list[Enrollment]: ...


class ActiveSelectionEnrollmentProvider:
    """Enrollments from the explicit active career selection of each subscriber."""

    def __init__(self, store: EnrollmentSourceStore) -> None:
        self.store = store

    async def for_subscriber(self, subscriber_id: str, *, conn: Any | None = None) -> list[Enrollment]:
        rows = await self.store.fetch_active_selections(conn=conn, subscriber_id=subscriber_id)
        return [self._row_to_enrollment(row) for row in rows]

    async def for_targets(self, targets: CareerTargets, *, conn: Any | None = None) -> list[Enrollment]:
        if not targets.career_ids:
            return []
        rows = await self.store.fetch_active_selections(
            conn=conn,
            career_ids=sorted(targets.career_ids),
            career_names=sorted(targets.names),
        )
        enrollments = [self._row_to_enrollment(row) for row in rows]
        return [enrollment for enrollment in enrollments if targets.matches(enrollment)]

    @staticmethod
    def _row_to_enrollment(row: dict[str, Any]) -> Enrollment:
        career_id = row.get("career_id")
        return Enrollment(
            subscriber_id=str(row["subscriber_id"]),
            career_id=int(career_id) if career_id is not None else None,
            career_name=row.get("career_name"),
            selected_at=row.get("selected_at"),
            source="active_selection",
        )


class ProfileCareerEnrollmentProvider:
    """Enrollments from the free-text career field of the subscriber profile.

    Profile rows have no selection timestamp and are always eligible.
    """

    def __init__(self, store: EnrollmentSourceStore) -> None:
        self.store = store

    async def for_subscriber(self, subscriber_id: str, *, conn: Any | None = None) -> list[Enrollment]:
        rows = await self.store.fetch_profile_careers(conn=conn, subscriber_id=subscriber_id)
        return [enrollment for enrollment in map(self._row_to_enrollment, rows) if enrollment.normalized_name]

    async def for_targets(self, targets: CareerTargets, *, conn: Any | None = None) -> list[Enrollment]:
        if not targets.names:
            return []
        rows = await self.store.fetch_profile_careers(conn=conn, career_names=sorted(targets.names))
        enrollments = [self._row_to_enrollment(row) for row in rows]
        return [enrollment for enrollment in enrollments if targets.matches(enrollment)]

    @staticmethod
    def _row_to_enrollment(row: dict[str, Any]) -> Enrollment:
        return Enrollment(
            subscriber_id=str(row["subscriber_id"]),
            career_id=None,
            career_name=row.get("career_name"),
            selected_at=None,
            source="profile",
        )


class MergedEnrollmentProvider:
    """Union of several providers; exact duplicates are collapsed, overlaps are kept."""

    def __init__(self, providers: Sequence[EnrollmentProvider]) -> None:
        self.providers = list(providers)

    async def for_subscriber(self, subscriber_id: str, *, conn: Any | None = None) -> list[Enrollment]:
        merged: list[Enrollment] = []
        for provider in self.providers:
            merged.extend(await provider.for_subscriber(subscriber_id, conn=conn))
        return _dedupe_enrollments(merged)

    async def for_targets(self, targets: CareerTargets, *, conn: Any | None = None) -> list[Enrollment]:
        merged: list[Enrollment] = []
        for provider in self.providers:
            merged.extend(await provider.for_targets(targets, conn=conn))
        return _dedupe_enrollments(merged)


def build_enrollment_provider(store: EnrollmentSourceStore) -> MergedEnrollmentProvider:
    return MergedEnrollmentProvider(
        [
            ActiveSelectionEnrollmentProvider(store),
            ProfileCareerEnrollmentProvider(store),
        ]
    )


def unique_subscriber_ids(enrollments: Iterable[Enrollment]) -> list[str]:
    seen: set[str] = set()
    subscriber_ids: list[str] = []
    for enrollment in enrollments:
        if enrollment.subscriber_id in seen:
            continue
        seen.add(enrollment.subscriber_id)
        subscriber_ids.append(enrollment.subscriber_id)
    return subscriber_ids


def _dedupe_enrollments(enrollments: list[Enrollment]) -> list[Enrollment]:
    seen: set[tuple[Any, ...]] = set()
    deduped: list[Enrollment] = []
    for enrollment in enrollments:
        key = (
            enrollment.subscriber_id,
            enrollment.career_id,
            enrollment.normalized_name,
            enrollment.selected_at,
        )
        if key in seen:
            continue
        seen.add(key)
        deduped.append(enrollment)
    return deduped
