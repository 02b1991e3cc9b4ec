import logging
from dataclasses import asdict
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, Header, HTTPException, Query, status
from sqlmodel import Session, SQLModel

from agenda.core.config import get_settings
from agenda.core.security import get_current_staff
from agenda.database import get_session
from agenda.models.user import User
from agenda.services.mercadopago import MercadoPagoClient, Payer
from agenda.services.reconciliation import (
    ChargeResult,
    create_card_charge,
    create_pix_charge,
    create_point_charge,
    get_payment_status_by_method,
    get_point_order_status,
    process_webhook,
    verify_webhook_signature,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["payments"])


def get_gateway_client():
    client = MercadoPagoClient.from_settings()
    try:
        yield client
    finally:
        client.close()


class PayerInput(SQLModel):
    name: str = ""
    phone: str = ""
    email: Optional[str] = None
    identification_type: Optional[str] = None
    identification_number: Optional[str] = None

    def to_payer(self) -> Payer:
        return Payer(**self.model_dump())


class PixChargeInput(SQLModel):
    appointment_id: int
    amount: float
    payer: Optional[PayerInput] = None
    attempt: int = 0


class CardChargeInput(SQLModel):
    appointment_id: int
    amount: float
    token: str
    payment_method_id: str
    installments: int = 1
    issuer_id: Optional[str] = None
    payer: Optional[PayerInput] = None
    attempt: int = 0


class PointChargeInput(SQLModel):
    appointment_id: int
    amount: float
    terminal_id: str
    card_mode: str  # debit | credit
    attempt: int = 0


def _charge_view(result: ChargeResult) -> dict:
    order = result.order
    return {
        "payment": result.payment,
        "payment_status": result.payment_status,
        "order": {
            "order_id": order.order_id,
            "payment_id": order.payment_id,
            "status": order.internal_status,
            "provider_status": order.provider_status,
            "status_detail": order.status_detail,
            "amount": order.amount,
            "point_terminal_id": order.point_terminal_id,
            "ticket_url": order.ticket_url,
            "qr_code": order.qr_code,
            "qr_code_base64": order.qr_code_base64,
            "expires_at": order.expires_at,
        },
    }


# =========================
# PIX
# =========================
@router.post("/pix", status_code=status.HTTP_201_CREATED)
def create_pix(
    payload: PixChargeInput,
    session: Session = Depends(get_session),
    client: MercadoPagoClient = Depends(get_gateway_client),
    current_user: User = Depends(get_current_staff),
):
    result = create_pix_charge(
        session,
        client,
        current_user.tenant_id,
        payload.appointment_id,
        payload.amount,
        payer=payload.payer.to_payer() if payload.payer else None,
        attempt=payload.attempt,
    )
    return _charge_view(result.unwrap())


# =========================
# CARTÃO ONLINE
# =========================
@router.post("/card", status_code=status.HTTP_201_CREATED)
def create_card(
    payload: CardChargeInput,
    session: Session = Depends(get_session),
    client: MercadoPagoClient = Depends(get_gateway_client),
    current_user: User = Depends(get_current_staff),
):
    result = create_card_charge(
        session,
        client,
        current_user.tenant_id,
        payload.appointment_id,
        payload.amount,
        token=payload.token,
        payment_method_id=payload.payment_method_id,
        installments=payload.installments,
        issuer_id=payload.issuer_id,
        payer=payload.payer.to_payer() if payload.payer else None,
        attempt=payload.attempt,
    )
    return _charge_view(result.unwrap())


# =========================
# MAQUININHA (POINT)
# =========================
@router.post("/point", status_code=status.HTTP_201_CREATED)
def create_point(
    payload: PointChargeInput,
    session: Session = Depends(get_session),
    client: MercadoPagoClient = Depends(get_gateway_client),
    current_user: User = Depends(get_current_staff),
):
    result = create_point_charge(
        session,
        client,
        current_user.tenant_id,
        payload.appointment_id,
        payload.amount,
        terminal_id=payload.terminal_id,
        card_mode=payload.card_mode,
        attempt=payload.attempt,
    )
    return _charge_view(result.unwrap())


@router.get("/point/devices")
def list_point_devices(
    client: MercadoPagoClient = Depends(get_gateway_client),
    current_user: User = Depends(get_current_staff),
):
    return [asdict(device) for device in client.list_point_devices().unwrap()]


@router.get("/point/{order_id}")
def point_order_status(
    order_id: str,
    appointment_id: int,
    session: Session = Depends(get_session),
    client: MercadoPagoClient = Depends(get_gateway_client),
    current_user: User = Depends(get_current_staff),
):
    result = get_point_order_status(session, client, current_user.tenant_id, appointment_id, order_id)
    return _charge_view(result.unwrap())


# =========================
# STATUS POR FORMA DE PAGAMENTO
# GET /payments/status?appointment_id=1&method=pix
# =========================
@router.get("/status")
def payment_status(
    appointment_id: int,
    method: str = "pix",
    session: Session = Depends(get_session),
    client: MercadoPagoClient = Depends(get_gateway_client),
    current_user: User = Depends(get_current_staff),
):
    result = get_payment_status_by_method(session, client, current_user.tenant_id, appointment_id, method)
    return asdict(result.unwrap())


# =========================
# WEBHOOK (sem login; validado pela assinatura)
# =========================
@router.post("/webhook")
def mercadopago_webhook(
    body: Optional[Dict[str, Any]] = Body(default=None),
    query_data_id: Optional[str] = Query(default=None, alias="data.id"),
    x_signature: Optional[str] = Header(default=None),
    x_request_id: Optional[str] = Header(default=None),
    session: Session = Depends(get_session),
    client: MercadoPagoClient = Depends(get_gateway_client),
):
    data = (body or {}).get("data")
    data_id = query_data_id or (data.get("id") if isinstance(data, dict) else None)

    if not verify_webhook_signature(get_settings().mercadopago_webhook_secret, x_signature, x_request_id, data_id):
        logger.warning("Webhook rejected: invalid signature (request-id=%s)", x_request_id)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Assinatura inválida")

    result = process_webhook(session, client, data_id).unwrap()
    if result is None:
        return {"received": True, "reconciled": False}
    return {"received": True, "reconciled": True, "payment_status": result.payment_status}
