import logging
import math
from datetime import datetime
from typing import Optional

from sqlmodel import Session, select

from agenda.core.errors import AppError, ErrorCode
from agenda.core.timezone import as_utc_naive, utcnow
from agenda.models.attendance import AttendanceTimer, TimerSync

logger = logging.getLogger(__name__)


TIMER_STATUSES = ("idle", "running", "paused", "finished")


def compute_elapsed_seconds(
    started_at: Optional[datetime],
    paused_at: Optional[datetime] = None,
    paused_total_seconds: int = 0,
    now: Optional[datetime] = None,
) -> int:
    """Segundos de atendimento, sem contar pausas. Pausado, o relógio congela em paused_at."""
    if started_at is None:
        return 0
    reference = paused_at or now or utcnow()
    active = (reference - started_at).total_seconds()
    return max(0, math.floor(active - (paused_total_seconds or 0)))


def get_timer(session: Session, tenant_id: int, appointment_id: int) -> Optional[AttendanceTimer]:
    return session.exec(
        select(AttendanceTimer).where(
            AttendanceTimer.appointment_id == appointment_id,
            AttendanceTimer.tenant_id == tenant_id,
        )
    ).first()


def _get_or_create(session: Session, tenant_id: int, appointment_id: int) -> AttendanceTimer:
    timer = get_timer(session, tenant_id, appointment_id)
    if timer is None:
        timer = AttendanceTimer(appointment_id=appointment_id, tenant_id=tenant_id)
    return timer


def _save(session: Session, timer: AttendanceTimer) -> AttendanceTimer:
    session.add(timer)
    session.commit()
    session.refresh(timer)
    return timer


def elapsed_for(timer: AttendanceTimer, now: Optional[datetime] = None) -> int:
    if timer.timer_status == "finished" and timer.actual_seconds is not None:
        return timer.actual_seconds
    return compute_elapsed_seconds(timer.timer_started_at, timer.timer_paused_at, timer.paused_total_seconds, now)


def start_timer(
    session: Session,
    tenant_id: int,
    appointment_id: int,
    planned_seconds: Optional[int] = None,
    now: Optional[datetime] = None,
) -> AttendanceTimer:
    timer = _get_or_create(session, tenant_id, appointment_id)
    if timer.timer_status == "finished":
        raise AppError("Atendimento já finalizado", ErrorCode.VALIDATION_ERROR)
    if timer.timer_status in ("running", "paused"):
        return timer

    timer.timer_status = "running"
    timer.timer_started_at = now or utcnow()
    timer.timer_paused_at = None
    timer.paused_total_seconds = 0
    if planned_seconds is not None:
        timer.planned_seconds = planned_seconds
    return _save(session, timer)


def pause_timer(session: Session, tenant_id: int, appointment_id: int, now: Optional[datetime] = None) -> AttendanceTimer:
    timer = get_timer(session, tenant_id, appointment_id)
    if timer is None or timer.timer_status != "running":
        raise AppError("Cronômetro não está rodando", ErrorCode.VALIDATION_ERROR)

    timer.timer_status = "paused"
    timer.timer_paused_at = now or utcnow()
    return _save(session, timer)


def resume_timer(session: Session, tenant_id: int, appointment_id: int, now: Optional[datetime] = None) -> AttendanceTimer:
    timer = get_timer(session, tenant_id, appointment_id)
    if timer is None or timer.timer_status != "paused":
        raise AppError("Cronômetro não está pausado", ErrorCode.VALIDATION_ERROR)

    now = now or utcnow()
    paused_for = max(0, math.floor((now - timer.timer_paused_at).total_seconds()))
    timer.paused_total_seconds = (timer.paused_total_seconds or 0) + paused_for
    timer.timer_paused_at = None
    timer.timer_status = "running"
    return _save(session, timer)


def sync_timer(session: Session, tenant_id: int, appointment_id: int, payload: TimerSync) -> AttendanceTimer:
    """Estado vindo do app (ex.: cronômetro rodando offline).

    O estado precisa ser coerente: rodando tem início, pausado tem início e
    pausa, finalizado tem actual_seconds (ou início para calcular).
    """
    if payload.timer_status not in TIMER_STATUSES:
        raise AppError("Status do cronômetro inválido", ErrorCode.VALIDATION_ERROR)
    if payload.paused_total_seconds < 0:
        raise AppError("paused_total_seconds não pode ser negativo", ErrorCode.VALIDATION_ERROR)

    timer = _get_or_create(session, tenant_id, appointment_id)
    if timer.timer_status == "finished":
        raise AppError("Atendimento já finalizado", ErrorCode.VALIDATION_ERROR)

    status = payload.timer_status
    started_at = as_utc_naive(payload.timer_started_at)
    paused_at = as_utc_naive(payload.timer_paused_at)
    actual_seconds = payload.actual_seconds

    if status in ("running", "paused") and started_at is None:
        raise AppError("Cronômetro sem horário de início", ErrorCode.VALIDATION_ERROR)
    if status == "paused" and paused_at is None:
        raise AppError("Cronômetro pausado sem horário da pausa", ErrorCode.VALIDATION_ERROR)
    if started_at is not None and paused_at is not None and paused_at < started_at:
        raise AppError("Pausa anterior ao início do cronômetro", ErrorCode.VALIDATION_ERROR)
    if actual_seconds is not None and actual_seconds < 0:
        raise AppError("actual_seconds não pode ser negativo", ErrorCode.VALIDATION_ERROR)
    if status == "finished" and actual_seconds is None:
        if started_at is None:
            raise AppError("Cronômetro finalizado sem duração", ErrorCode.VALIDATION_ERROR)
        actual_seconds = compute_elapsed_seconds(started_at, paused_at, payload.paused_total_seconds)

    if status == "idle":
        started_at, paused_at, actual_seconds = None, None, None
    elif status in ("running", "finished"):
        paused_at = None

    timer.timer_status = status
    timer.timer_started_at = started_at
    timer.timer_paused_at = paused_at
    timer.paused_total_seconds = payload.paused_total_seconds if status != "idle" else 0
    timer.actual_seconds = actual_seconds if status == "finished" else None
    if payload.planned_seconds is not None:
        timer.planned_seconds = payload.planned_seconds
    return _save(session, timer)


def finish_timer(session: Session, tenant_id: int, appointment_id: int, now: Optional[datetime] = None) -> AttendanceTimer:
    timer = _get_or_create(session, tenant_id, appointment_id)
    if timer.timer_status == "finished":
        return timer

    now = now or utcnow()
    if timer.timer_status == "paused":
        # pausa em aberto conta como pausa
        timer.paused_total_seconds = (timer.paused_total_seconds or 0) + max(
            0, math.floor((now - timer.timer_paused_at).total_seconds())
        )
        timer.timer_paused_at = None

    timer.actual_seconds = compute_elapsed_seconds(timer.timer_started_at, None, timer.paused_total_seconds, now)
    timer.timer_status = "finished"
    logger.info("Timer finished for appointment %s: %ss", appointment_id, timer.actual_seconds)
    return _save(session, timer)


def reset_timer(session: Session, tenant_id: int, appointment_id: int) -> Optional[AttendanceTimer]:
    timer = get_timer(session, tenant_id, appointment_id)
    if timer is None:
        return None
    timer.timer_status = "idle"
    timer.timer_started_at = None
    timer.timer_paused_at = None
    timer.paused_total_seconds = 0
    timer.actual_seconds = None
    return _save(session, timer)
