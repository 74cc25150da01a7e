from typing import List

from fastapi import APIRouter, Depends

from auth import Capability, get_settings_dep, require_capability
from config import Settings
from models import User
from schemas import UserOut, UserUpdate
from storage import Storage, get_storage
from utils import get_password_hash

router = APIRouter(
    prefix="/api/users",
    tags=["Users"],
    responses={404: {"description": "Not found"}}
)


@router.get("", response_model=List[UserOut], summary="Список пользователей")
def list_users(
    current_user: User = Depends(require_capability(Capability.MANAGE_USERS)),
    storage: Storage = Depends(get_storage),
):
    return storage.list_users()


@router.put("/{user_id}", response_model=UserOut, summary="Обновление пользователя",
            description="Имя, пароль и активность. Роль пользователя не меняется.")
def update_user(
    user_id: int,
    user_in: UserUpdate,
    current_user: User = Depends(require_capability(Capability.MANAGE_USERS)),
    storage: Storage = Depends(get_storage),
    settings: Settings = Depends(get_settings_dep),
):
    hashed_password = get_password_hash(user_in.password, settings) if user_in.password else None
    return storage.update_user(
        user_id,
        full_name=user_in.full_name,
        is_active=user_in.is_active,
        hashed_password=hashed_password,
    )
