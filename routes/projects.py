from typing import List

from fastapi import APIRouter, Depends, HTTPException, status

from auth import Capability, get_current_active_user, has_capability
from errors import DomainError, ProjectNotFound
from models import Project, ProjectStatus, User, UserRole
from schemas import ProjectCreate, ProjectOut, ProjectUpdate
from storage import Storage, get_storage

router = APIRouter(
    prefix="/api/projects",
    tags=["Projects"],
    responses={404: {"description": "Not found"}}
)

# fields only staff may change on an existing project
CLIENT_LOCKED_FIELDS = frozenset({"status", "price"})


def _visible_project(storage: Storage, user: User, project_id: int) -> Project:
    project = storage.get_project(project_id)
    if project is None:
        raise ProjectNotFound()
    if has_capability(user, Capability.MANAGE_ALL_PROJECTS) or project.client_id == user.id:
        return project
    if user.role is UserRole.PARTNER:
        partner = storage.get_partner(user.id)
        if partner is not None and project.partner_id == partner.id:
            return project
    raise ProjectNotFound()


@router.get("", response_model=List[ProjectOut], summary="Список проектов",
            description="Клиент видит свои проекты, партнёр видит привлечённые им, администратор видит все.")
def list_projects(current_user: User = Depends(get_current_active_user), storage: Storage = Depends(get_storage)):
    return storage.get_projects(current_user.id, current_user.role)


@router.post("", response_model=ProjectOut, status_code=status.HTTP_201_CREATED, summary="Создание проекта")
def create_project(
    project_in: ProjectCreate,
    current_user: User = Depends(get_current_active_user),
    storage: Storage = Depends(get_storage),
):
    """
    Создает проект. Для клиента владельцем всегда становится он сам,
    статус всегда pending, а партнёр подставляется из его реферала.
    Администратор указывает **clientId** и, при необходимости, **partnerId**.
    """
    fields = project_in.model_dump(exclude={"client_id", "partner_id"})
    if has_capability(current_user, Capability.MANAGE_ALL_PROJECTS):
        if project_in.client_id is None:
            raise DomainError("Не указан клиент проекта")
        return storage.create_project(project_in.client_id, partner_id=project_in.partner_id, **fields)
    fields["status"] = ProjectStatus.PENDING
    return storage.create_project(current_user.id, **fields)


@router.get("/{project_id}", response_model=ProjectOut, summary="Проект")
def get_project(
    project_id: int,
    current_user: User = Depends(get_current_active_user),
    storage: Storage = Depends(get_storage),
):
    return _visible_project(storage, current_user, project_id)


@router.put("/{project_id}", response_model=ProjectOut, summary="Обновление проекта",
            description="Частичное обновление. Переход в in_progress или completed конвертирует реферал.")
def update_project(
    project_id: int,
    project_in: ProjectUpdate,
    current_user: User = Depends(get_current_active_user),
    storage: Storage = Depends(get_storage),
):
    project = _visible_project(storage, current_user, project_id)
    if not has_capability(current_user, Capability.MANAGE_ALL_PROJECTS) and project.client_id != current_user.id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Недостаточно прав")
    updates = project_in.model_dump(exclude_unset=True, exclude_none=True)
    if not has_capability(current_user, Capability.MANAGE_ALL_PROJECTS) and CLIENT_LOCKED_FIELDS & updates.keys():
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Статус и стоимость проекта меняет администратор")
    return storage.update_project(project_id, **updates)
