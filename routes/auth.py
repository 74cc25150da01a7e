from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, status
import redis

from auth import get_current_active_user, get_redis, get_settings_dep, issue_token, oauth2_scheme, revoke_token
from config import Settings
from mail import Mailer, get_mailer
from models import User, UserRole
from schemas import AuthOut, LoginIn, MessageOut, UserCreate, UserOut
from storage import Storage, get_storage
from utils import get_password_hash, verify_password

router = APIRouter(
    prefix="/api/auth",
    tags=["Authentication"],
    responses={404: {"description": "Not found"}}
)


@router.post("/register", response_model=AuthOut, status_code=status.HTTP_201_CREATED,
             summary="Регистрация пользователя",
             description="Регистрация клиента или партнёра. Для партнёра сразу создаётся запись с реферальным кодом. "
                         "Клиент может указать реферальный код партнёра.")
def register(
    user_in: UserCreate,
    background_tasks: BackgroundTasks,
    storage: Storage = Depends(get_storage),
    settings: Settings = Depends(get_settings_dep),
    redis_client: redis.Redis = Depends(get_redis),
    mailer: Mailer = Depends(get_mailer),
):
    """
    Регистрирует нового пользователя и возвращает токен доступа.

    - **email**: Email пользователя.
    - **password**: Пароль (не короче 6 символов).
    - **fullName**: Полное имя.
    - **role**: `client` или `partner`.
    - **referralCode**: (необязательно) Реферальный код партнёра.
    """
    user = storage.register_user(
        email=user_in.email,
        hashed_password=get_password_hash(user_in.password, settings),
        full_name=user_in.full_name,
        role=UserRole(user_in.role),
        referral_code=user_in.referral_code,
    )
    background_tasks.add_task(mailer.send_welcome_email, user.email, user.full_name)
    token = issue_token(user, settings, redis_client)
    return AuthOut(user=UserOut.model_validate(user), token=token, message="Регистрация прошла успешно")


@router.post("/login", response_model=AuthOut, summary="Аутентификация пользователя",
             description="Возвращает JWT токен, если email и пароль корректны, а аккаунт активен.")
def login(
    credentials: LoginIn,
    storage: Storage = Depends(get_storage),
    settings: Settings = Depends(get_settings_dep),
    redis_client: redis.Redis = Depends(get_redis),
):
    """
    Аутентифицирует пользователя и возвращает JWT токен.

    - **email**: Email пользователя.
    - **password**: Пароль пользователя.
    """
    user = storage.get_user_by_email(credentials.email)
    if not user or not user.is_active or not verify_password(credentials.password, user.hashed_password, settings):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Неверный email или пароль")
    token = issue_token(user, settings, redis_client)
    return AuthOut(user=UserOut.model_validate(user), token=token, message="Вход выполнен успешно")


@router.get("/me", response_model=UserOut, summary="Текущий пользователь")
def me(current_user: User = Depends(get_current_active_user)):
    return current_user


@router.post("/logout", response_model=MessageOut, summary="Выход из системы",
             description="Отзыв JWT токена для выхода из системы.")
def logout(token: str = Depends(oauth2_scheme), redis_client: redis.Redis = Depends(get_redis)):
    """
    Отзывает JWT токен, завершая сессию пользователя.
    """
    revoke_token(token, redis_client)
    return {"message": "Вы успешно вышли из системы"}
