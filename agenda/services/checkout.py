import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional

from sqlmodel import Session, col, select

from agenda.core.errors import AppError, ErrorCode
from agenda.core.timezone import utcnow
from agenda.models.appointment import Appointment
from agenda.models.checkout import Checkout, CheckoutItem, CheckoutItemInput
from agenda.models.payment import Payment
from agenda.services.reconciliation import (
    PaymentRecalc,
    clear_payment_waiver,
    get_checkout,
    get_tenant_appointment,
    mark_payment_waived,
    recalculate_appointment_payment_status,
)
from agenda.services.totals import PAID_EPSILON, compute_totals, round_currency

logger = logging.getLogger(__name__)


DISCOUNT_TYPES = ("value", "pct")
MANUAL_METHODS = ("cash", "pix", "card", "other")
ITEM_TYPES = ("service", "fee", "addon", "adjustment")


@dataclass
class ChargeSnapshot:
    appointment_id: int
    subtotal: float
    total: float
    paid: float
    remaining: float
    payment_status: str


def _appointment_or_404(session: Session, tenant_id: int, appointment_id: int) -> Appointment:
    appt = get_tenant_appointment(session, tenant_id, appointment_id)
    if appt is None:
        raise AppError("Agendamento não encontrado", ErrorCode.NOT_FOUND)
    return appt


def _checkout_or_404(session: Session, tenant_id: int, appointment_id: int) -> Checkout:
    checkout = get_checkout(session, tenant_id, appointment_id)
    if checkout is None:
        raise AppError("Checkout não encontrado", ErrorCode.NOT_FOUND)
    return checkout


def validate_checkout_items(items: Iterable[CheckoutItemInput]) -> List[CheckoutItemInput]:
    items = list(items)
    for item in items:
        if item.type not in ITEM_TYPES:
            raise AppError("Tipo de item inválido, use service, fee, addon ou adjustment", ErrorCode.VALIDATION_ERROR)
        if item.qty < 1:
            raise AppError("Quantidade deve ser pelo menos 1", ErrorCode.VALIDATION_ERROR)
        if not item.label.strip():
            raise AppError("Descrição do item é obrigatória", ErrorCode.VALIDATION_ERROR)
    return items


def list_items(session: Session, tenant_id: int, appointment_id: int) -> List[CheckoutItem]:
    return session.exec(
        select(CheckoutItem)
        .where(
            CheckoutItem.appointment_id == appointment_id,
            CheckoutItem.tenant_id == tenant_id,
        )
        .order_by(col(CheckoutItem.sort_order), col(CheckoutItem.id))
    ).all()


def _recalc_or_raise(session: Session, tenant_id: int, appointment_id: int, reason: str) -> PaymentRecalc:
    return recalculate_appointment_payment_status(session, appointment_id, tenant_id, reason).unwrap()


def recalc_checkout_totals(session: Session, tenant_id: int, appointment_id: int) -> Checkout:
    """Subtotal e total sempre recalculados a partir das linhas + desconto."""
    checkout = _checkout_or_404(session, tenant_id, appointment_id)
    totals = compute_totals(
        list_items(session, tenant_id, appointment_id),
        checkout.discount_type,
        checkout.discount_value,
    )
    checkout.subtotal = round_currency(totals.subtotal)
    checkout.total = round_currency(totals.total)
    session.add(checkout)
    session.commit()
    session.refresh(checkout)
    return checkout


def ensure_checkout(session: Session, tenant_id: int, appointment_id: int) -> Checkout:
    checkout = get_checkout(session, tenant_id, appointment_id)
    if checkout is None:
        checkout = Checkout(appointment_id=appointment_id, tenant_id=tenant_id)
        session.add(checkout)
        session.commit()
        session.refresh(checkout)
    return checkout


def set_checkout_items(
    session: Session,
    tenant_id: int,
    appointment_id: int,
    items: Iterable[CheckoutItemInput],
) -> Checkout:
    """Substitui todas as linhas; a ordem é a posição na lista."""
    _appointment_or_404(session, tenant_id, appointment_id)
    items = validate_checkout_items(items)
    ensure_checkout(session, tenant_id, appointment_id)

    for existing in list_items(session, tenant_id, appointment_id):
        session.delete(existing)

    for position, item in enumerate(items):
        session.add(
            CheckoutItem(
                appointment_id=appointment_id,
                tenant_id=tenant_id,
                type=item.type,
                label=item.label.strip(),
                qty=item.qty,
                amount=round_currency(item.amount),
                sort_order=position,
            )
        )
    session.commit()

    checkout = recalc_checkout_totals(session, tenant_id, appointment_id)
    _recalc_or_raise(session, tenant_id, appointment_id, "items_changed")
    return checkout


def set_discount(
    session: Session,
    tenant_id: int,
    appointment_id: int,
    discount_type: Optional[str],
    discount_value: Optional[float],
    discount_reason: Optional[str] = None,
) -> Checkout:
    if discount_type is not None and discount_type not in DISCOUNT_TYPES:
        raise AppError("Tipo de desconto inválido, use value ou pct", ErrorCode.VALIDATION_ERROR)
    if discount_value is not None and discount_value < 0:
        raise AppError("Desconto não pode ser negativo", ErrorCode.VALIDATION_ERROR)

    checkout = _checkout_or_404(session, tenant_id, appointment_id)
    checkout.discount_type = discount_type
    checkout.discount_value = discount_value if discount_type else None
    checkout.discount_reason = discount_reason if discount_type else None
    session.add(checkout)
    session.commit()

    checkout = recalc_checkout_totals(session, tenant_id, appointment_id)
    _recalc_or_raise(session, tenant_id, appointment_id, "discount_changed")
    return checkout


def get_charge_snapshot(session: Session, tenant_id: int, appointment_id: int) -> ChargeSnapshot:
    appt = _appointment_or_404(session, tenant_id, appointment_id)
    recalc = _recalc_or_raise(session, tenant_id, appointment_id, "snapshot")
    checkout = get_checkout(session, tenant_id, appointment_id)

    return ChargeSnapshot(
        appointment_id=appt.id,
        subtotal=checkout.subtotal if checkout else recalc.total,
        total=recalc.total,
        paid=recalc.paid_total,
        remaining=max(0.0, round_currency(recalc.total - recalc.paid_total)),
        payment_status=recalc.next_status,
    )


def record_manual_payment(
    session: Session,
    tenant_id: int,
    appointment_id: int,
    amount: float,
    method: str = "cash",
) -> Payment:
    """Pagamento registrado na recepção (dinheiro, Pix direto etc.), já pago."""
    if method not in MANUAL_METHODS:
        raise AppError("Forma de pagamento inválida", ErrorCode.VALIDATION_ERROR)
    if amount is None or amount <= 0:
        raise AppError("Valor do pagamento deve ser maior que zero", ErrorCode.VALIDATION_ERROR)

    appt = _appointment_or_404(session, tenant_id, appointment_id)
    if appt.payment_status == "waived":
        raise AppError("Agendamento isento de pagamento", ErrorCode.VALIDATION_ERROR)

    snapshot = get_charge_snapshot(session, tenant_id, appointment_id)
    if snapshot.remaining <= PAID_EPSILON:
        raise AppError("Agendamento já está quitado", ErrorCode.VALIDATION_ERROR)
    if round_currency(amount) > snapshot.remaining + 0.01:
        raise AppError("Valor maior que o saldo restante", ErrorCode.VALIDATION_ERROR)

    now = utcnow()
    payment = Payment(
        appointment_id=appointment_id,
        tenant_id=tenant_id,
        method=method,
        amount=round_currency(amount),
        status="paid",
        paid_at=now,
    )
    session.add(payment)
    session.commit()
    session.refresh(payment)

    logger.info("Manual %s payment of %.2f recorded for appointment %s", method, payment.amount, appointment_id)
    _recalc_or_raise(session, tenant_id, appointment_id, "manual_payment")
    session.refresh(payment)
    return payment


def confirm_checkout(session: Session, tenant_id: int, appointment_id: int) -> Checkout:
    snapshot = get_charge_snapshot(session, tenant_id, appointment_id)
    if snapshot.payment_status not in ("paid", "waived"):
        raise AppError("Pagamento insuficiente", ErrorCode.VALIDATION_ERROR)

    checkout = _checkout_or_404(session, tenant_id, appointment_id)
    checkout.confirmed_at = utcnow()
    session.add(checkout)
    session.commit()
    session.refresh(checkout)
    return checkout


def waive_payment(session: Session, tenant_id: int, appointment_id: int) -> PaymentRecalc:
    return mark_payment_waived(session, tenant_id, appointment_id).unwrap()


def unwaive_payment(session: Session, tenant_id: int, appointment_id: int) -> PaymentRecalc:
    return clear_payment_waiver(session, tenant_id, appointment_id).unwrap()
