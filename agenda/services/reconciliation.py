"""
Conciliação de pagamentos

recalculate_appointment_payment_status é o único lugar que deriva
appointments.payment_status a partir dos pagamentos pagos e do total do
checkout. Todo caminho que cria ou atualiza um Payment (cobrança, polling,
webhook, pagamento manual, mudança de desconto) termina chamando ele.
"""

import hashlib
import hmac
import logging
from dataclasses import dataclass
from typing import Any, Dict, NamedTuple, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, col, select

from agenda.core.errors import AppError, ErrorCode, Result, fail, ok
from agenda.core.timezone import utcnow
from agenda.models.appointment import Appointment
from agenda.models.checkout import Checkout
from agenda.models.payment import Payment
from agenda.services.mercadopago import (
    MINIMUM_TRANSACTION_AMOUNT,
    MercadoPagoClient,
    OrderSnapshot,
    Payer,
)
from agenda.services.totals import PAID_EPSILON, round_currency

logger = logging.getLogger(__name__)


class PaymentRecalc(NamedTuple):
    next_status: str
    paid_total: float
    total: float


@dataclass
class ChargeResult:
    payment: Payment
    order: OrderSnapshot
    payment_status: str


@dataclass
class MethodStatus:
    method: str
    status: Optional[str]
    payment_status: str
    paid_total: float
    total: float
    payment_id: Optional[int] = None
    provider_order_id: Optional[str] = None


# =========================
# DERIVAÇÃO DO STATUS
# =========================

def derive_payment_status(current_status: str, appointment_status: str, paid_total: float, total: float) -> str:
    if current_status == "waived":
        return "waived"
    if current_status == "refunded" and paid_total <= 0:
        return "refunded"
    if total <= 0:
        return "paid"
    if paid_total + PAID_EPSILON >= total:
        return "paid"
    if paid_total > 0:
        # atendimento concluído com saldo em aberto volta para pending (cobrar depois)
        return "partial" if appointment_status != "completed" else "pending"
    return "pending"


def get_tenant_appointment(session: Session, tenant_id: int, appointment_id: int) -> Optional[Appointment]:
    appt = session.get(Appointment, appointment_id)
    if not appt or appt.tenant_id != tenant_id:
        return None
    return appt


def get_checkout(session: Session, tenant_id: int, appointment_id: int) -> Optional[Checkout]:
    return session.exec(
        select(Checkout).where(
            Checkout.appointment_id == appointment_id,
            Checkout.tenant_id == tenant_id,
        )
    ).first()


def appointment_total(session: Session, appt: Appointment) -> float:
    checkout = get_checkout(session, appt.tenant_id, appt.id)
    if checkout is not None:
        return round_currency(checkout.total)
    if appt.price_override is not None:
        return round_currency(appt.price_override)
    return round_currency(appt.price)


def paid_total_for(session: Session, tenant_id: int, appointment_id: int) -> float:
    payments = session.exec(
        select(Payment).where(
            Payment.appointment_id == appointment_id,
            Payment.tenant_id == tenant_id,
            Payment.status == "paid",
        )
    ).all()
    return round_currency(sum(p.amount or 0 for p in payments))


def recalculate_appointment_payment_status(
    session: Session,
    appointment_id: int,
    tenant_id: int,
    reason: str = "manual",
) -> Result[PaymentRecalc]:
    appt = get_tenant_appointment(session, tenant_id, appointment_id)
    if appt is None:
        return fail(AppError("Agendamento não encontrado", ErrorCode.NOT_FOUND))

    total = appointment_total(session, appt)
    paid_total = paid_total_for(session, tenant_id, appointment_id)
    next_status = derive_payment_status(appt.payment_status, appt.status, paid_total, total)

    if next_status != appt.payment_status:
        logger.info(
            "Appointment %s payment_status %s -> %s (reason=%s, paid=%.2f, total=%.2f)",
            appointment_id, appt.payment_status, next_status, reason, paid_total, total,
        )
        appt.payment_status = next_status
        session.add(appt)
        try:
            session.commit()
        except SQLAlchemyError as exc:
            session.rollback()
            logger.exception("Could not persist payment_status for appointment %s", appointment_id)
            return fail(AppError("Erro ao atualizar status de pagamento", ErrorCode.DATABASE_ERROR, details=str(exc)))

    return ok(PaymentRecalc(next_status=next_status, paid_total=paid_total, total=total))


# =========================
# UPSERT DE PAGAMENTO
# =========================

def upsert_appointment_payment(
    session: Session,
    *,
    tenant_id: int,
    appointment_id: int,
    provider_ref: str,
    method: str,
    amount: float,
    status: str,
    provider_order_id: Optional[str] = None,
    point_terminal_id: Optional[str] = None,
    card_mode: Optional[str] = None,
    payment_method_id: Optional[str] = None,
    installments: Optional[int] = None,
    raw_payload: Optional[Dict[str, Any]] = None,
) -> Payment:
    """Chave (provider_ref, tenant_id). Metadados já conhecidos nunca voltam a None."""
    payment = session.exec(
        select(Payment).where(
            Payment.provider_ref == provider_ref,
            Payment.tenant_id == tenant_id,
        )
    ).first()

    if payment is None:
        payment = Payment(
            tenant_id=tenant_id,
            appointment_id=appointment_id,
            provider_ref=provider_ref,
            method=method,
            amount=amount,
            status=status,
        )

    payment.amount = round_currency(amount)
    payment.status = status
    if raw_payload is not None:
        payment.raw_payload = raw_payload
    payment.provider_order_id = provider_order_id or payment.provider_order_id
    payment.point_terminal_id = point_terminal_id or payment.point_terminal_id
    payment.card_mode = card_mode or payment.card_mode
    payment.payment_method_id = payment_method_id or payment.payment_method_id
    payment.installments = installments or payment.installments
    if status == "paid" and payment.paid_at is None:
        payment.paid_at = utcnow()

    session.add(payment)
    session.commit()
    session.refresh(payment)
    return payment


def reconcile_order(
    session: Session,
    tenant_id: int,
    appointment_id: int,
    method: str,
    order: OrderSnapshot,
    *,
    fallback_amount: float = 0.0,
    card_mode: Optional[str] = None,
    reason: str = "gateway",
) -> Result[ChargeResult]:
    """Grava o snapshot da order como Payment e recalcula o agendamento."""
    try:
        payment = upsert_appointment_payment(
            session,
            tenant_id=tenant_id,
            appointment_id=appointment_id,
            provider_ref=order.payment_id,
            method=method,
            amount=order.amount or fallback_amount,
            status=order.internal_status,
            provider_order_id=order.order_id,
            point_terminal_id=order.point_terminal_id,
            card_mode=card_mode or order.card_mode,
            payment_method_id=order.payment_method_id,
            installments=order.installments,
            raw_payload=order.raw,
        )
    except SQLAlchemyError as exc:
        session.rollback()
        logger.exception("Could not upsert payment %s for appointment %s", order.payment_id, appointment_id)
        return fail(AppError("Erro ao registrar pagamento", ErrorCode.DATABASE_ERROR, details=str(exc)))

    recalc = recalculate_appointment_payment_status(session, appointment_id, tenant_id, reason)
    if not recalc.ok:
        return recalc
    session.refresh(payment)
    return ok(ChargeResult(payment=payment, order=order, payment_status=recalc.data.next_status))


# =========================
# COBRANÇAS
# =========================

def ensure_valid_payment_context(
    session: Session,
    tenant_id: int,
    appointment_id: int,
    amount: float,
) -> Result[Appointment]:
    if amount is None or amount <= 0:
        return fail(AppError("Valor do pagamento deve ser maior que zero", ErrorCode.VALIDATION_ERROR))
    if round_currency(amount) < MINIMUM_TRANSACTION_AMOUNT:
        return fail(AppError(
            f"Valor mínimo para cobrança é R$ {MINIMUM_TRANSACTION_AMOUNT:.2f}".replace(".", ","),
            ErrorCode.VALIDATION_ERROR,
        ))
    appt = get_tenant_appointment(session, tenant_id, appointment_id)
    if appt is None:
        return fail(AppError("Agendamento não encontrado", ErrorCode.NOT_FOUND))
    if appt.payment_status == "waived":
        return fail(AppError("Agendamento isento de pagamento", ErrorCode.VALIDATION_ERROR))
    return ok(appt)


def _payer_for(appt: Appointment, payer: Optional[Payer]) -> Payer:
    if payer is not None and payer.name.strip():
        return payer
    base = payer or Payer(name="")
    return Payer(
        name=appt.client_name or "Cliente",
        phone=base.phone,
        email=base.email,
        identification_type=base.identification_type,
        identification_number=base.identification_number,
    )


def create_pix_charge(
    session: Session,
    client: MercadoPagoClient,
    tenant_id: int,
    appointment_id: int,
    amount: float,
    payer: Optional[Payer] = None,
    attempt: int = 0,
) -> Result[ChargeResult]:
    context = ensure_valid_payment_context(session, tenant_id, appointment_id, amount)
    if not context.ok:
        return context

    created = client.create_pix_order(appointment_id, amount, _payer_for(context.data, payer), attempt=attempt)
    if not created.ok:
        return created
    return reconcile_order(session, tenant_id, appointment_id, "pix", created.data,
                           fallback_amount=amount, reason="pix_created")


def create_card_charge(
    session: Session,
    client: MercadoPagoClient,
    tenant_id: int,
    appointment_id: int,
    amount: float,
    *,
    token: str,
    payment_method_id: str,
    installments: int = 1,
    issuer_id: Optional[str] = None,
    payer: Optional[Payer] = None,
    attempt: int = 0,
) -> Result[ChargeResult]:
    context = ensure_valid_payment_context(session, tenant_id, appointment_id, amount)
    if not context.ok:
        return context
    if not token or not payment_method_id:
        return fail(AppError("Dados do cartão incompletos", ErrorCode.VALIDATION_ERROR))

    created = client.create_card_order(
        appointment_id,
        amount,
        token=token,
        payment_method_id=payment_method_id,
        payer=_payer_for(context.data, payer),
        installments=installments,
        issuer_id=issuer_id,
        attempt=attempt,
    )
    if not created.ok:
        return created
    return reconcile_order(session, tenant_id, appointment_id, "card", created.data,
                           fallback_amount=amount, card_mode="credit", reason="card_created")


def create_point_charge(
    session: Session,
    client: MercadoPagoClient,
    tenant_id: int,
    appointment_id: int,
    amount: float,
    *,
    terminal_id: str,
    card_mode: str,
    attempt: int = 0,
) -> Result[ChargeResult]:
    context = ensure_valid_payment_context(session, tenant_id, appointment_id, amount)
    if not context.ok:
        return context

    created = client.create_point_order(
        appointment_id, amount, terminal_id=terminal_id, card_mode=card_mode, attempt=attempt
    )
    if not created.ok:
        return created
    return reconcile_order(session, tenant_id, appointment_id, "card", created.data,
                           fallback_amount=amount, card_mode=card_mode, reason="point_created")


# =========================
# CONSULTA DE STATUS
# =========================

def get_point_order_status(
    session: Session,
    client: MercadoPagoClient,
    tenant_id: int,
    appointment_id: int,
    order_id: str,
) -> Result[ChargeResult]:
    """Polling da maquininha; a order precisa ser deste agendamento."""
    if get_tenant_appointment(session, tenant_id, appointment_id) is None:
        return fail(AppError("Agendamento não encontrado", ErrorCode.NOT_FOUND))

    fetched = client.get_order(order_id)
    if not fetched.ok:
        return fetched
    order = fetched.data

    if order.external_reference is not None:
        belongs = order.external_reference == str(appointment_id)
    else:
        # sem referência no payload: confia só no registro local da order
        local = session.exec(
            select(Payment).where(
                Payment.provider_order_id == order.order_id,
                Payment.tenant_id == tenant_id,
            )
        ).first()
        belongs = local is not None and local.appointment_id == appointment_id

    if not belongs:
        logger.warning(
            "Point order %s does not belong to appointment %s (external_reference=%s)",
            order_id, appointment_id, order.external_reference,
        )
        return fail(AppError("A cobrança consultada pertence a outro atendimento.", ErrorCode.CONFLICT))

    return reconcile_order(session, tenant_id, appointment_id, "card", order, reason="point_poll")


def get_payment_status_by_method(
    session: Session,
    client: MercadoPagoClient,
    tenant_id: int,
    appointment_id: int,
    method: str = "pix",
) -> Result[MethodStatus]:
    """Sem Pix pago ainda, sincroniza o Pix mais recente com o gateway antes de responder."""
    appt = get_tenant_appointment(session, tenant_id, appointment_id)
    if appt is None:
        return fail(AppError("Agendamento não encontrado", ErrorCode.NOT_FOUND))

    payments = session.exec(
        select(Payment)
        .where(
            Payment.appointment_id == appointment_id,
            Payment.tenant_id == tenant_id,
            Payment.method == method,
        )
        .order_by(col(Payment.created_at).desc(), col(Payment.id).desc())
    ).all()

    paid = next((p for p in payments if p.status == "paid"), None)
    latest = paid or (payments[0] if payments else None)

    if paid is None and latest is not None and latest.provider_order_id:
        fetched = client.get_order(latest.provider_order_id)
        if not fetched.ok:
            return fetched
        synced = reconcile_order(session, tenant_id, appointment_id, method, fetched.data,
                                 fallback_amount=latest.amount, reason=f"{method}_poll")
        if not synced.ok:
            return synced
        latest = synced.data.payment

    recalc = recalculate_appointment_payment_status(session, appointment_id, tenant_id, f"{method}_status")
    if not recalc.ok:
        return recalc

    return ok(MethodStatus(
        method=method,
        status=latest.status if latest else None,
        payment_status=recalc.data.next_status,
        paid_total=recalc.data.paid_total,
        total=recalc.data.total,
        payment_id=latest.id if latest else None,
        provider_order_id=latest.provider_order_id if latest else None,
    ))


# =========================
# WEBHOOK
# =========================

def parse_signature_header(header: Optional[str]) -> Dict[str, str]:
    parts: Dict[str, str] = {}
    for chunk in (header or "").split(","):
        key, sep, value = chunk.strip().partition("=")
        if sep:
            parts[key.strip()] = value.strip()
    return parts


def verify_webhook_signature(
    secret: Optional[str],
    signature_header: Optional[str],
    request_id: Optional[str],
    data_id: Optional[str],
) -> bool:
    """x-signature "ts=...,v1=..." sobre o manifesto id:<data.id>;request-id:<x-request-id>;ts:<ts>;"""
    if not secret:
        return False
    parts = parse_signature_header(signature_header)
    ts, received = parts.get("ts"), parts.get("v1")
    if not ts or not received:
        return False

    manifest = ""
    if data_id:
        manifest += f"id:{str(data_id).lower()};"
    if request_id:
        manifest += f"request-id:{request_id};"
    manifest += f"ts:{ts};"

    expected = hmac.new(secret.encode("utf-8"), manifest.encode("utf-8"), hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, received)


def process_webhook(
    session: Session,
    client: MercadoPagoClient,
    data_id: Optional[str],
) -> Result[Optional[ChargeResult]]:
    """Lê a order notificada no gateway e concilia pelo mesmo caminho de upsert + recálculo."""
    if not data_id:
        return fail(AppError("Notificação sem data.id", ErrorCode.VALIDATION_ERROR))

    fetched = client.get_order(str(data_id))
    if not fetched.ok:
        return fetched
    order = fetched.data

    appointment_id = None
    try:
        appointment_id = int(order.external_reference) if order.external_reference else None
    except ValueError:
        appointment_id = None

    appt = session.get(Appointment, appointment_id) if appointment_id is not None else None
    if appt is None:
        logger.warning("Webhook order %s has no known appointment (external_reference=%s)",
                       order.order_id, order.external_reference)
        return ok(None)

    existing = session.exec(
        select(Payment).where(
            Payment.provider_ref == order.payment_id,
            Payment.tenant_id == appt.tenant_id,
        )
    ).first()
    method = existing.method if existing else ("pix" if order.payment_method_id == "pix" else "card")

    return reconcile_order(session, appt.tenant_id, appt.id, method, order, reason="webhook")


# =========================
# ISENÇÃO MANUAL
# =========================

def mark_payment_waived(session: Session, tenant_id: int, appointment_id: int) -> Result[PaymentRecalc]:
    """Override manual explícito; fica até clear_payment_waiver."""
    appt = get_tenant_appointment(session, tenant_id, appointment_id)
    if appt is None:
        return fail(AppError("Agendamento não encontrado", ErrorCode.NOT_FOUND))
    if appt.payment_status == "paid":
        return fail(AppError("Agendamento já está pago", ErrorCode.VALIDATION_ERROR))

    appt.payment_status = "waived"
    session.add(appt)
    session.commit()
    logger.info("Appointment %s payment waived", appointment_id)
    return ok(PaymentRecalc(
        next_status="waived",
        paid_total=paid_total_for(session, tenant_id, appointment_id),
        total=appointment_total(session, appt),
    ))


def clear_payment_waiver(session: Session, tenant_id: int, appointment_id: int) -> Result[PaymentRecalc]:
    appt = get_tenant_appointment(session, tenant_id, appointment_id)
    if appt is None:
        return fail(AppError("Agendamento não encontrado", ErrorCode.NOT_FOUND))
    if appt.payment_status != "waived":
        return fail(AppError("Agendamento não está isento", ErrorCode.VALIDATION_ERROR))

    appt.payment_status = "pending"
    session.add(appt)
    session.commit()
    return recalculate_appointment_payment_status(session, appointment_id, tenant_id, "waiver_cleared")
