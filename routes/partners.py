from typing import List

from fastapi import APIRouter, BackgroundTasks, Depends, status

from auth import Capability, require_capability
from errors import PartnerNotFound
from mail import Mailer, get_mailer
from models import User
from schemas import PartnerCreate, PartnerOut, PartnerProfileOut, ReferralListItem, ReferralOut
from storage import Storage, get_storage

router = APIRouter(
    prefix="/api/partners",
    tags=["Partners"],
    responses={404: {"description": "Not found"}}
)


def _own_partner(storage: Storage, user: User):
    partner = storage.get_partner(user.id)
    if partner is None:
        raise PartnerNotFound()
    return partner


@router.get("/me", response_model=PartnerProfileOut, summary="Профиль партнёра",
            description="Данные партнёра вместе со статистикой по рефералам.")
def get_my_partner(
    current_user: User = Depends(require_capability(Capability.VIEW_PARTNER_DASHBOARD)),
    storage: Storage = Depends(get_storage),
):
    partner = _own_partner(storage, current_user)
    stats = storage.get_partner_stats(partner.id)
    return PartnerProfileOut(**{**PartnerOut.model_validate(partner).model_dump(), **stats.model_dump()})


@router.get("/referrals", response_model=List[ReferralListItem], summary="Рефералы партнёра",
            description="Список рефералов партнёра с данными клиента и проекта, новые первыми.")
def get_my_referrals(
    current_user: User = Depends(require_capability(Capability.VIEW_PARTNER_DASHBOARD)),
    storage: Storage = Depends(get_storage),
):
    partner = _own_partner(storage, current_user)
    return storage.list_referrals(partner.id)


@router.get("", response_model=List[PartnerOut], summary="Список партнёров")
def list_partners(
    current_user: User = Depends(require_capability(Capability.MANAGE_PARTNERS)),
    storage: Storage = Depends(get_storage),
):
    return storage.list_partners()


@router.post("", response_model=PartnerOut, status_code=status.HTTP_201_CREATED,
             summary="Создание партнёра",
             description="Назначает пользователя партнёром. Возвращает ошибку, если он уже партнёр.")
def create_partner(
    partner_in: PartnerCreate,
    current_user: User = Depends(require_capability(Capability.MANAGE_PARTNERS)),
    storage: Storage = Depends(get_storage),
):
    """
    Создает партнёра для существующего пользователя.

    - **userId**: ID пользователя.
    - **commissionRate**: (необязательно) Процент комиссии, по умолчанию 25.00.
    """
    return storage.create_partner(partner_in.user_id, partner_in.commission_rate)


@router.post("/referrals/{referral_id}/settle", response_model=ReferralOut, summary="Выплата комиссии",
             description="Переводит конвертированный реферал в статус paid и начисляет комиссию партнёру.")
def settle_referral(
    referral_id: int,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(require_capability(Capability.SETTLE_COMMISSIONS)),
    storage: Storage = Depends(get_storage),
    mailer: Mailer = Depends(get_mailer),
):
    referral = storage.settle_referral(referral_id)
    partner_user = referral.partner.user
    background_tasks.add_task(
        mailer.send_partner_commission_notification,
        partner_user.email,
        partner_user.full_name,
        referral.commission_amount,
    )
    return referral
