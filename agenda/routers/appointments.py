from datetime import date
from typing import Dict

from fastapi import APIRouter, Depends, Query, status
from sqlmodel import Session, col, select

from agenda.core.security import get_current_staff
from agenda.database import get_session
from agenda.models.appointment import (
    Appointment,
    AppointmentCancel,
    AppointmentCreate,
    AppointmentReschedule,
)
from agenda.models.user import User
from agenda.services import booking
from agenda.services.availability import SLOT_STEP, get_available_slots, get_month_available_days, get_tenant_service
from agenda.core.timezone import local_day_bounds


router = APIRouter(prefix="/appointments", tags=["appointments"])


# =========================
# HORÁRIOS DISPONÍVEIS (dia + serviço)
# GET /appointments/available?service_id=1&day=2026-02-14
# =========================
@router.get("/available")
def available_slots(
    service_id: int,
    day: date,
    is_home_visit: bool = False,
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_staff),
) -> Dict:
    service = get_tenant_service(session, current_user.tenant_id, service_id)
    slots = get_available_slots(session, current_user.tenant_id, service_id, day, is_home_visit)

    return {
        "service_id": service_id,
        "day": day.isoformat(),
        "is_home_visit": is_home_visit,
        "duration_minutes": service.duration_minutes,
        "slot_step_minutes": int(SLOT_STEP.total_seconds() // 60),
        "slots": slots,
    }


# =========================
# DIAS COM HORÁRIO NO MÊS
# GET /appointments/available-days?service_id=1&month=2026-02
# =========================
@router.get("/available-days")
def available_days(
    service_id: int,
    month: str = Query(..., pattern=r"^\d{4}-\d{2}$"),
    is_home_visit: bool = False,
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_staff),
) -> Dict:
    days = get_month_available_days(session, current_user.tenant_id, service_id, month, is_home_visit)
    return {"service_id": service_id, "month": month, "days": days}


# =========================
# CRIAR AGENDAMENTO
# =========================
@router.post("/", status_code=status.HTTP_201_CREATED)
def create_appointment(
    request: AppointmentCreate,
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_staff),
):
    return booking.create_appointment(session, current_user.tenant_id, request)


# =========================
# LISTAR AGENDAMENTOS (opcionalmente por dia)
# =========================
@router.get("/")
def list_appointments(
    day: date | None = None,
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_staff),
):
    query = select(Appointment).where(Appointment.tenant_id == current_user.tenant_id)
    if day is not None:
        start, end = local_day_bounds(day)
        query = query.where(Appointment.start_time >= start, Appointment.start_time < end)
    return session.exec(query.order_by(col(Appointment.start_time))).all()


@router.get("/{appointment_id}")
def read_appointment(
    appointment_id: int,
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_staff),
):
    return booking.get_appointment(session, current_user.tenant_id, appointment_id)


# =========================
# REMARCAR
# =========================
@router.patch("/{appointment_id}/reschedule")
def reschedule_appointment(
    appointment_id: int,
    request: AppointmentReschedule,
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_staff),
):
    return booking.reschedule_appointment(session, current_user.tenant_id, appointment_id, request)


# =========================
# TRANSIÇÕES DE STATUS
# =========================
@router.patch("/{appointment_id}/confirm")
def confirm_appointment(
    appointment_id: int,
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_staff),
):
    return booking.confirm_appointment(session, current_user.tenant_id, appointment_id)


@router.patch("/{appointment_id}/start")
def start_appointment(
    appointment_id: int,
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_staff),
):
    return booking.start_appointment(session, current_user.tenant_id, appointment_id)


@router.patch("/{appointment_id}/complete")
def complete_appointment(
    appointment_id: int,
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_staff),
):
    return booking.finish_appointment(session, current_user.tenant_id, appointment_id)


@router.patch("/{appointment_id}/cancel")
def cancel_appointment(
    appointment_id: int,
    request: AppointmentCancel,
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_staff),
):
    return booking.cancel_appointment(session, current_user.tenant_id, appointment_id, request)


@router.patch("/{appointment_id}/no-show")
def no_show_appointment(
    appointment_id: int,
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_staff),
):
    return booking.mark_no_show(session, current_user.tenant_id, appointment_id)
