from fastapi import APIRouter, Depends, HTTPException, status

from hiring_notifications.core.auth import HIRING_WRITE, Principal
from hiring_notifications.core.security import get_current_principal, require_scopes
from hiring_notifications.schemas.hiring import (
    CareerStudentCountOut,
    PostingOut,
    PostingWriteRequest,
    PublisherPostingOut,
)
from hiring_notifications.services.notifications import NotificationService, get_notification_service
from hiring_notifications.services.repository import (
    PublisherRecord,
    RepositoryForbiddenError,
    RepositoryUnavailableError,
    RepositoryValidationError,
)

router = APIRouter()


async def _resolve_publisher(principal: Principal, service: NotificationService) -> PublisherRecord:
    require_scopes(principal, {HIRING_WRITE})
    try:
        publisher = await service.publisher_for_user(principal.user_id)
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    if publisher is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="no company found for this user",
        )
    return publisher


@router.post("/hiring", response_model=PostingOut, status_code=status.HTTP_201_CREATED)
async def publish_posting(
    payload: PostingWriteRequest,
    principal: Principal = Depends(get_current_principal),
    service: NotificationService = Depends(get_notification_service),
) -> PostingOut:
    publisher = await _resolve_publisher(principal, service)
    try:
        row = await service.publish(publisher_id=publisher.id, draft=payload.to_draft())
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    except RepositoryForbiddenError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc
    except RepositoryValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return PostingOut(**row)


@router.get("/hiring", response_model=list[PublisherPostingOut])
async def list_publisher_postings(
    principal: Principal = Depends(get_current_principal),
    service: NotificationService = Depends(get_notification_service),
) -> list[PublisherPostingOut]:
    publisher = await _resolve_publisher(principal, service)
    try:
        rows = await service.list_publisher_postings(publisher_id=publisher.id)
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return [PublisherPostingOut(**row) for row in rows]


@router.put("/hiring/{posting_id}", response_model=PostingOut)
async def update_posting(
    posting_id: str,
    payload: PostingWriteRequest,
    principal: Principal = Depends(get_current_principal),
    service: NotificationService = Depends(get_notification_service),
) -> PostingOut:
    publisher = await _resolve_publisher(principal, service)
    try:
        row = await service.update(posting_id=posting_id, publisher_id=publisher.id, draft=payload.to_draft())
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    except RepositoryValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    if row is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="posting not found")
    return PostingOut(**row)


@router.delete("/hiring/{posting_id}")
async def deactivate_posting(
    posting_id: str,
    principal: Principal = Depends(get_current_principal),
    service: NotificationService = Depends(get_notification_service),
) -> dict[str, str]:
    publisher = await _resolve_publisher(principal, service)
    try:
        deactivated = await service.deactivate(posting_id=posting_id, publisher_id=publisher.id)
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    if not deactivated:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="posting not found")
    return {"posting_id": posting_id, "status": "deactivated"}


@router.get("/career-stats", response_model=list[CareerStudentCountOut])
async def get_career_stats(
    principal: Principal = Depends(get_current_principal),
    service: NotificationService = Depends(get_notification_service),
) -> list[CareerStudentCountOut]:
    require_scopes(principal, {HIRING_WRITE})
    try:
        rows = await service.career_student_counts()
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return [CareerStudentCountOut(**row) for row in rows]
