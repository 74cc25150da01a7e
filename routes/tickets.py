from typing import List

from fastapi import APIRouter, Depends, status

from auth import Capability, get_current_active_user, has_capability
from errors import TicketNotFound
from models import User
from schemas import TicketCreate, TicketOut, TicketUpdate
from storage import Storage, get_storage

router = APIRouter(
    prefix="/api/tickets",
    tags=["Tickets"],
    responses={404: {"description": "Not found"}}
)


@router.get("", response_model=List[TicketOut], summary="Мои тикеты")
def list_tickets(current_user: User = Depends(get_current_active_user), storage: Storage = Depends(get_storage)):
    return storage.get_tickets(current_user.id)


@router.post("", response_model=TicketOut, status_code=status.HTTP_201_CREATED, summary="Создание тикета")
def create_ticket(
    ticket_in: TicketCreate,
    current_user: User = Depends(get_current_active_user),
    storage: Storage = Depends(get_storage),
):
    return storage.create_ticket(current_user.id, **ticket_in.model_dump())


@router.put("/{ticket_id}", response_model=TicketOut, summary="Обновление тикета")
def update_ticket(
    ticket_id: int,
    ticket_in: TicketUpdate,
    current_user: User = Depends(get_current_active_user),
    storage: Storage = Depends(get_storage),
):
    ticket = storage.get_ticket(ticket_id)
    if ticket is None or (
        ticket.user_id != current_user.id and not has_capability(current_user, Capability.MANAGE_ALL_TICKETS)
    ):
        raise TicketNotFound()
    return storage.update_ticket(ticket_id, **ticket_in.model_dump(exclude_unset=True, exclude_none=True))
