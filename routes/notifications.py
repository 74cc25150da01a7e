from typing import List

from fastapi import APIRouter, Depends

from auth import get_current_active_user
from models import User
from schemas import MessageOut, NotificationOut
from storage import Storage, get_storage

router = APIRouter(
    prefix="/api/notifications",
    tags=["Notifications"],
    responses={404: {"description": "Not found"}}
)


@router.get("", response_model=List[NotificationOut], summary="Последние уведомления")
def list_notifications(current_user: User = Depends(get_current_active_user), storage: Storage = Depends(get_storage)):
    return storage.get_notifications(current_user.id)


@router.put("/{notification_id}/read", response_model=MessageOut, summary="Отметить уведомление прочитанным")
def mark_as_read(
    notification_id: int,
    current_user: User = Depends(get_current_active_user),
    storage: Storage = Depends(get_storage),
):
    storage.mark_notification_as_read(notification_id, current_user.id)
    return {"message": "Уведомление отмечено как прочитанное"}
