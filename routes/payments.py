from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, status
from loguru import logger

from auth import Capability, get_current_active_user, has_capability
from errors import PaymentGatewayError, PaymentNotFound, ProjectNotFound
from models import PaymentStatus, User
from payments import MercadoPagoClient, get_gateway, map_gateway_status
from schemas import PaymentCreate, PaymentPreferenceOut, WebhookEvent
from storage import Storage, get_storage

router = APIRouter(
    prefix="/api/payments",
    tags=["Payments"],
    responses={404: {"description": "Not found"}}
)


@router.post("/create", response_model=PaymentPreferenceOut, summary="Создание платежа",
             description="Создает платёж по проекту и возвращает ссылку на оплату MercadoPago.")
def create_payment(
    payment_in: PaymentCreate,
    current_user: User = Depends(get_current_active_user),
    storage: Storage = Depends(get_storage),
    gateway: MercadoPagoClient = Depends(get_gateway),
):
    """
    - **projectId**: ID проекта.
    - **amount**: Сумма платежа.
    - **description**: (необязательно) Назначение платежа.
    """
    project = storage.get_project(payment_in.project_id)
    if project is None or (
        project.client_id != current_user.id and not has_capability(current_user, Capability.MANAGE_ALL_PROJECTS)
    ):
        raise ProjectNotFound()

    payment = storage.create_payment(project.id, payment_in.amount)
    try:
        preference = gateway.create_preference(
            payment_id=payment.id,
            title=payment_in.description or project.name,
            amount=payment_in.amount,
            payer_email=current_user.email,
            payer_name=current_user.full_name,
        )
    except PaymentGatewayError:
        storage.update_payment(payment.id, status=PaymentStatus.FAILED)
        raise
    storage.update_payment(payment.id, transaction_id=str(preference["id"]))
    logger.info("Payment {} created for project {}", payment.id, project.id)
    return PaymentPreferenceOut(
        payment_id=payment.id,
        preference_id=str(preference["id"]),
        init_point=preference.get("init_point"),
    )


@router.post("/webhook", summary="Webhook MercadoPago")
def payment_webhook(
    event: WebhookEvent,
    x_signature: Optional[str] = Header(None),
    x_request_id: Optional[str] = Header(None),
    storage: Storage = Depends(get_storage),
    gateway: MercadoPagoClient = Depends(get_gateway),
):
    if event.type != "payment" or event.data is None:
        return {"status": "ignored"}
    if not gateway.verify_signature(x_signature, x_request_id, event.data.id):
        logger.warning("Rejected webhook for gateway payment {}: bad signature", event.data.id)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Неверная подпись")

    info = gateway.get_payment(event.data.id)
    reference = info.get("external_reference")
    if not reference or not str(reference).isdigit():
        logger.warning("Webhook for gateway payment {} has no usable external_reference", event.data.id)
        return {"status": "ignored"}
    if storage.get_payment(int(reference)) is None:
        raise PaymentNotFound()

    payment = storage.update_payment(
        int(reference),
        status=map_gateway_status(info.get("status", "")),
        transaction_id=str(info.get("id", event.data.id)),
        payment_method=info.get("payment_method_id"),
    )
    return {"status": payment.status.value}
