from fastapi import APIRouter, Depends, HTTPException, status

from hiring_notifications.core.auth import NOTIFICATIONS_READ, NOTIFICATIONS_WRITE, Principal
from hiring_notifications.core.security import get_current_principal, require_scopes
from hiring_notifications.schemas.notifications import DeliveryOut, MarkReadOut, UnreadCountOut
from hiring_notifications.services.notifications import NotificationService, get_notification_service
from hiring_notifications.services.repository import RepositoryUnavailableError

router = APIRouter()


@router.get("", response_model=list[DeliveryOut])
async def list_notifications(
    principal: Principal = Depends(get_current_principal),
    service: NotificationService = Depends(get_notification_service),
) -> list[DeliveryOut]:
    require_scopes(principal, {NOTIFICATIONS_READ})
    try:
        rows = await service.list_for_subscriber(principal.user_id)
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return [DeliveryOut(**row) for row in rows]


@router.get("/unread-count", response_model=UnreadCountOut)
async def get_unread_count(
    principal: Principal = Depends(get_current_principal),
    service: NotificationService = Depends(get_notification_service),
) -> UnreadCountOut:
    require_scopes(principal, {NOTIFICATIONS_READ})
    try:
        count = await service.unread_count(principal.user_id)
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return UnreadCountOut(unread_count=count)


@router.put("/{posting_id}/read", response_model=MarkReadOut)
async def mark_notification_read(
    posting_id: str,
    principal: Principal = Depends(get_current_principal),
    service: NotificationService = Depends(get_notification_service),
) -> MarkReadOut:
    require_scopes(principal, {NOTIFICATIONS_WRITE})
    try:
        result = await service.mark_read(subscriber_id=principal.user_id, posting_id=posting_id)
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    if result == "not_found":
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="notification not found")
    return MarkReadOut(posting_id=posting_id, status=result)
