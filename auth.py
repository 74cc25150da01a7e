import enum

import jwt
import redis
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
from loguru import logger

from config import Settings
from models import User, UserRole
from schemas import TokenData
from storage import Storage, get_storage
from utils import create_access_token

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login")


class Capability(str, enum.Enum):
    VIEW_PARTNER_DASHBOARD = "view_partner_dashboard"
    MANAGE_PARTNERS = "manage_partners"
    SETTLE_COMMISSIONS = "settle_commissions"
    MANAGE_USERS = "manage_users"
    VIEW_ADMIN_STATS = "view_admin_stats"
    MANAGE_PAYMENT_GATEWAY = "manage_payment_gateway"
    MANAGE_ALL_PROJECTS = "manage_all_projects"
    MANAGE_ALL_TICKETS = "manage_all_tickets"


ROLE_CAPABILITIES = {
    UserRole.ADMIN: frozenset({
        Capability.MANAGE_PARTNERS,
        Capability.SETTLE_COMMISSIONS,
        Capability.MANAGE_USERS,
        Capability.VIEW_ADMIN_STATS,
        Capability.MANAGE_PAYMENT_GATEWAY,
        Capability.MANAGE_ALL_PROJECTS,
        Capability.MANAGE_ALL_TICKETS,
    }),
    UserRole.PARTNER: frozenset({Capability.VIEW_PARTNER_DASHBOARD}),
    UserRole.CLIENT: frozenset(),
}


def has_capability(user: User, capability: Capability) -> bool:
    return capability in ROLE_CAPABILITIES.get(user.role, frozenset())


def get_settings_dep(request: Request) -> Settings:
    return request.app.state.settings


def get_redis(request: Request) -> redis.Redis:
    return request.app.state.redis


def _token_key(token: str) -> str:
    return f"jwt:{token}"


def issue_token(user: User, settings: Settings, redis_client: redis.Redis) -> str:
    access_token = create_access_token(data={"user_id": user.id}, settings=settings)
    ttl_seconds = settings.access_token_expire_minutes * 60
    redis_client.set(_token_key(access_token), user.id, ex=ttl_seconds)
    return access_token


def revoke_token(token: str, redis_client: redis.Redis) -> None:
    redis_client.delete(_token_key(token))


def get_current_user(
    token: str = Depends(oauth2_scheme),
    storage: Storage = Depends(get_storage),
    settings: Settings = Depends(get_settings_dep),
    redis_client: redis.Redis = Depends(get_redis),
) -> User:
    if not redis_client.exists(_token_key(token)):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Токен недействителен или отозван",
            headers={"WWW-Authenticate": "Bearer"},
        )
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Не удалось проверить учетные данные",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
        user_id: int = payload.get("user_id")
        if user_id is None:
            raise credentials_exception
        token_data = TokenData(user_id=user_id)
    except jwt.PyJWTError:
        logger.warning("Rejected malformed or expired token")
        raise credentials_exception
    user = storage.get_user(token_data.user_id)
    if not user:
        raise credentials_exception
    return user


def get_current_active_user(current_user: User = Depends(get_current_user)) -> User:
    if not current_user.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Неактивный пользователь")
    return current_user


def require_capability(capability: Capability):
    def checker(current_user: User = Depends(get_current_active_user)) -> User:
        if not has_capability(current_user, capability):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Недостаточно прав")
        return current_user

    return checker
