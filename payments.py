"""
MercadoPago client.

Thin wrapper over the checkout preferences and payments REST endpoints plus
webhook signature verification.
"""
import hashlib
import hmac
from decimal import Decimal
from typing import Dict, Optional

import httpx
from fastapi import Request
from loguru import logger

from config import Settings
from errors import PaymentGatewayError
from models import PaymentStatus

GATEWAY_STATUSES = {
    "approved": PaymentStatus.COMPLETED,
    "rejected": PaymentStatus.FAILED,
    "cancelled": PaymentStatus.FAILED,
    "refunded": PaymentStatus.FAILED,
    "charged_back": PaymentStatus.FAILED,
}


def map_gateway_status(gateway_status: str) -> PaymentStatus:
    return GATEWAY_STATUSES.get(gateway_status, PaymentStatus.PENDING)


class MercadoPagoClient:
    def __init__(self, settings: Settings, transport: httpx.BaseTransport = None):
        self.api_url = settings.mercadopago_api_url
        self.access_token = settings.mercadopago_access_token
        self.public_key = settings.mercadopago_public_key
        self.webhook_secret = settings.mercadopago_webhook_secret
        self.notification_url = f"https://{settings.host_domain}/api/payments/webhook"
        self._transport = transport

    def configure(
        self,
        access_token: Optional[str] = None,
        public_key: Optional[str] = None,
        webhook_secret: Optional[str] = None,
    ) -> None:
        if access_token is not None:
            self.access_token = access_token
        if public_key is not None:
            self.public_key = public_key
        if webhook_secret is not None:
            self.webhook_secret = webhook_secret
        logger.info("MercadoPago configuration updated")

    def _request(self, method: str, path: str, **kwargs) -> Dict:
        if not self.access_token:
            raise PaymentGatewayError("Платёжный шлюз не настроен")
        headers = {"Authorization": f"Bearer {self.access_token}"}
        try:
            with httpx.Client(base_url=self.api_url, timeout=15.0, transport=self._transport) as client:
                response = client.request(method, path, headers=headers, **kwargs)
                response.raise_for_status()
                return response.json()
        except httpx.HTTPError as exc:
            logger.error("MercadoPago {} {} failed: {}", method, path, exc)
            raise PaymentGatewayError()

    def create_preference(
        self,
        payment_id: int,
        title: str,
        amount: Decimal,
        payer_email: str,
        payer_name: str,
    ) -> Dict:
        body = {
            "items": [
                {
                    "title": title,
                    "quantity": 1,
                    "unit_price": float(amount),
                    "currency_id": "USD",
                }
            ],
            "payer": {"email": payer_email, "name": payer_name},
            "external_reference": str(payment_id),
            "notification_url": self.notification_url,
        }
        return self._request("POST", "/checkout/preferences", json=body)

    def get_payment(self, gateway_payment_id: str) -> Dict:
        return self._request("GET", f"/v1/payments/{gateway_payment_id}")

    def verify_signature(self, x_signature: Optional[str], x_request_id: Optional[str], data_id: str) -> bool:
        """Checks the `x-signature: ts=...,v1=...` header. Always true when no secret is set."""
        if not self.webhook_secret:
            return True
        if not x_signature:
            return False
        parts = dict(
            item.strip().split("=", 1) for item in x_signature.split(",") if "=" in item
        )
        ts, v1 = parts.get("ts"), parts.get("v1")
        if not ts or not v1:
            return False
        manifest = f"id:{data_id};request-id:{x_request_id or ''};ts:{ts};"
        expected = hmac.new(self.webhook_secret.encode(), manifest.encode(), hashlib.sha256).hexdigest()
        return hmac.compare_digest(expected, v1)


def get_gateway(request: Request) -> MercadoPagoClient:
    return request.app.state.gateway
