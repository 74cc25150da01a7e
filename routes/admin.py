from fastapi import APIRouter, Depends

from auth import Capability, require_capability
from models import User
from payments import MercadoPagoClient, get_gateway
from schemas import AdminStats, GatewayConfigIn, GatewayConfigOut, MessageOut
from storage import Storage, get_storage

router = APIRouter(
    prefix="/api/admin",
    tags=["Admin"],
    responses={404: {"description": "Not found"}}
)


@router.get("/stats", response_model=AdminStats, summary="Общая статистика",
            description="Пользователи, партнёры, активные проекты и выручка за текущий месяц.")
def get_stats(
    current_user: User = Depends(require_capability(Capability.VIEW_ADMIN_STATS)),
    storage: Storage = Depends(get_storage),
):
    return storage.get_admin_stats()


@router.get("/mercadopago", response_model=GatewayConfigOut, summary="Настройки MercadoPago")
def get_gateway_config(
    current_user: User = Depends(require_capability(Capability.MANAGE_PAYMENT_GATEWAY)),
    gateway: MercadoPagoClient = Depends(get_gateway),
):
    return GatewayConfigOut(
        public_key=gateway.public_key,
        has_access_token=bool(gateway.access_token),
        has_webhook_secret=bool(gateway.webhook_secret),
    )


@router.put("/mercadopago", response_model=MessageOut, summary="Изменение настроек MercadoPago")
def update_gateway_config(
    config_in: GatewayConfigIn,
    current_user: User = Depends(require_capability(Capability.MANAGE_PAYMENT_GATEWAY)),
    gateway: MercadoPagoClient = Depends(get_gateway),
):
    gateway.configure(
        access_token=config_in.access_token,
        public_key=config_in.public_key,
        webhook_secret=config_in.webhook_secret,
    )
    return {"message": "Настройки MercadoPago обновлены"}
