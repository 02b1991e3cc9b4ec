"""
Ciclo de vida do agendamento

Criação e remarcação passam por ensure_slot_available (o mesmo predicado
usado na listagem de horários). Transições de status ficam aqui; o status
de pagamento é sempre recalculado pela conciliação, nunca escrito direto.
"""

import logging
from datetime import datetime
from typing import Optional

from sqlmodel import Session

from agenda.core.errors import AppError, ErrorCode
from agenda.core.timezone import local_to_utc, utcnow
from agenda.models.appointment import (
    CANCELED_STATUSES,
    Appointment,
    AppointmentCancel,
    AppointmentCreate,
    AppointmentReschedule,
)
from agenda.models.checkout import Checkout, CheckoutItem
from agenda.services import attendance
from agenda.services.availability import ensure_slot_available, get_tenant_service
from agenda.services.checkout import DISCOUNT_TYPES, recalc_checkout_totals, validate_checkout_items
from agenda.services.reconciliation import get_tenant_appointment, recalculate_appointment_payment_status
from agenda.services.totals import round_currency

logger = logging.getLogger(__name__)


# status a partir dos quais o agendamento não muda mais
CLOSED_STATUSES = ("completed", "no_show") + CANCELED_STATUSES


def get_appointment(session: Session, tenant_id: int, appointment_id: int) -> Appointment:
    appt = get_tenant_appointment(session, tenant_id, appointment_id)
    if appt is None:
        raise AppError("Agendamento não encontrado", ErrorCode.NOT_FOUND)
    return appt


def _ensure_open(appt: Appointment, action: str) -> None:
    if appt.status in CLOSED_STATUSES:
        raise AppError(f"Não é possível {action} nesse status", ErrorCode.VALIDATION_ERROR)


def _recalc(session: Session, appt: Appointment, reason: str) -> None:
    recalculate_appointment_payment_status(session, appt.id, appt.tenant_id, reason).unwrap()
    session.refresh(appt)


# =========================
# CRIAR
# =========================

def create_appointment(session: Session, tenant_id: int, request: AppointmentCreate) -> Appointment:
    service = get_tenant_service(session, tenant_id, request.service_id)
    if not service.active:
        raise AppError("Serviço inativo", ErrorCode.VALIDATION_ERROR)
    if request.is_home_visit and not service.accepts_home_visit:
        raise AppError("Serviço não atende em domicílio", ErrorCode.VALIDATION_ERROR)
    if request.discount_type is not None and request.discount_type not in DISCOUNT_TYPES:
        raise AppError("Tipo de desconto inválido, use value ou pct", ErrorCode.VALIDATION_ERROR)
    extras = validate_checkout_items(request.extras)

    buffers = ensure_slot_available(
        session, tenant_id, service, request.day, request.start_at, request.is_home_visit
    )

    price = service.price if request.price_override is None else request.price_override
    displacement_fee = 0.0
    if request.is_home_visit:
        fee = request.displacement_fee if request.displacement_fee is not None else service.home_visit_fee
        displacement_fee = round_currency(fee or 0.0)

    appt = Appointment(
        tenant_id=tenant_id,
        client_id=request.client_id,
        client_name=request.client_name,
        service_id=service.id,
        start_time=local_to_utc(request.day, request.start_at),
        total_duration_minutes=service.duration_minutes + buffers.before + buffers.after,
        service_name_snapshot=service.name,
        service_duration_snapshot=service.duration_minutes,
        price=service.price,
        price_override=request.price_override,
        is_home_visit=request.is_home_visit,
        displacement_fee=displacement_fee,
        displacement_distance_km=request.displacement_distance_km,
        internal_notes=request.internal_notes,
    )
    # agendamento, checkout e linhas no mesmo commit
    session.add(appt)
    session.flush()

    session.add(
        Checkout(
            appointment_id=appt.id,
            tenant_id=tenant_id,
            discount_type=request.discount_type,
            discount_value=request.discount_value if request.discount_type else None,
            discount_reason=request.discount_reason if request.discount_type else None,
        )
    )
    lines = [("service", service.name, 1, price)]
    if displacement_fee > 0:
        lines.append(("fee", "Taxa de deslocamento", 1, displacement_fee))
    lines.extend((e.type, e.label.strip(), e.qty, e.amount) for e in extras)

    for position, (kind, label, qty, amount) in enumerate(lines):
        session.add(
            CheckoutItem(
                appointment_id=appt.id,
                tenant_id=tenant_id,
                type=kind,
                label=label,
                qty=qty,
                amount=round_currency(amount),
                sort_order=position,
            )
        )
    session.commit()
    session.refresh(appt)

    recalc_checkout_totals(session, tenant_id, appt.id)
    _recalc(session, appt, "appointment_created")

    logger.info(
        "Appointment %s created for tenant=%s service=%s at %s (home=%s)",
        appt.id, tenant_id, service.id, appt.start_time.isoformat(), appt.is_home_visit,
    )
    return appt


# =========================
# REMARCAR
# =========================

def reschedule_appointment(
    session: Session,
    tenant_id: int,
    appointment_id: int,
    request: AppointmentReschedule,
) -> Appointment:
    appt = get_appointment(session, tenant_id, appointment_id)
    _ensure_open(appt, "remarcar")
    if appt.status == "in_progress":
        raise AppError("Não é possível remarcar um atendimento em andamento", ErrorCode.VALIDATION_ERROR)

    service = get_tenant_service(session, tenant_id, appt.service_id)
    buffers = ensure_slot_available(
        session,
        tenant_id,
        service,
        request.day,
        request.start_at,
        appt.is_home_visit,
        exclude_appointment_id=appt.id,
    )

    appt.start_time = local_to_utc(request.day, request.start_at)
    appt.total_duration_minutes = service.duration_minutes + buffers.before + buffers.after
    session.add(appt)
    session.commit()
    session.refresh(appt)
    logger.info("Appointment %s rescheduled to %s", appt.id, appt.start_time.isoformat())
    return appt


# =========================
# TRANSIÇÕES
# =========================

def confirm_appointment(session: Session, tenant_id: int, appointment_id: int) -> Appointment:
    appt = get_appointment(session, tenant_id, appointment_id)
    _ensure_open(appt, "confirmar")
    if appt.status == "in_progress":
        raise AppError("Atendimento já está em andamento", ErrorCode.VALIDATION_ERROR)

    appt.status = "confirmed"
    session.add(appt)
    session.commit()
    session.refresh(appt)
    return appt


def start_appointment(
    session: Session,
    tenant_id: int,
    appointment_id: int,
    now: Optional[datetime] = None,
) -> Appointment:
    appt = get_appointment(session, tenant_id, appointment_id)
    _ensure_open(appt, "iniciar")
    if appt.status == "in_progress":
        return appt

    now = now or utcnow()
    appt.status = "in_progress"
    appt.started_at = now
    session.add(appt)
    session.commit()

    attendance.start_timer(
        session,
        tenant_id,
        appt.id,
        planned_seconds=(appt.service_duration_snapshot or 0) * 60,
        now=now,
    )
    session.refresh(appt)
    return appt


def finish_appointment(
    session: Session,
    tenant_id: int,
    appointment_id: int,
    now: Optional[datetime] = None,
) -> Appointment:
    appt = get_appointment(session, tenant_id, appointment_id)
    _ensure_open(appt, "finalizar")

    now = now or utcnow()
    timer = attendance.finish_timer(session, tenant_id, appt.id, now=now)

    appt.status = "completed"
    appt.finished_at = now
    if timer.actual_seconds is not None and timer.timer_started_at is not None:
        appt.actual_duration_minutes = round(timer.actual_seconds / 60)
    session.add(appt)
    session.commit()

    # concluído muda partial -> pending
    _recalc(session, appt, "appointment_completed")
    return appt


def cancel_appointment(
    session: Session,
    tenant_id: int,
    appointment_id: int,
    request: AppointmentCancel,
) -> Appointment:
    appt = get_appointment(session, tenant_id, appointment_id)
    if appt.status in CANCELED_STATUSES:
        return appt
    _ensure_open(appt, "cancelar")
    if request.canceled_by not in ("client", "studio"):
        raise AppError("canceled_by deve ser client ou studio", ErrorCode.VALIDATION_ERROR)

    appt.status = f"canceled_by_{request.canceled_by}"
    appt.canceled_at = utcnow()
    appt.cancel_reason = request.reason or "Cancelado"
    session.add(appt)
    session.commit()

    attendance.reset_timer(session, tenant_id, appt.id)
    session.refresh(appt)
    logger.info("Appointment %s canceled by %s", appt.id, request.canceled_by)
    return appt


def mark_no_show(session: Session, tenant_id: int, appointment_id: int) -> Appointment:
    appt = get_appointment(session, tenant_id, appointment_id)
    _ensure_open(appt, "marcar falta")
    if appt.status == "in_progress":
        raise AppError("Atendimento em andamento não pode ser falta", ErrorCode.VALIDATION_ERROR)

    appt.status = "no_show"
    session.add(appt)
    session.commit()
    session.refresh(appt)
    return appt
