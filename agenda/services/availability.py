"""
Disponibilidade de horários

Simula candidatos de 30 em 30 minutos dentro do expediente e testa cada um
contra os agendamentos (com os buffers de cada um) e os bloqueios manuais.
A mesma verificação é usada na criação, na remarcação e na escala de plantões.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from typing import Dict, Iterable, List, NamedTuple, Optional

from sqlmodel import Session, col, select

from agenda.core.errors import AppError, ErrorCode
from agenda.core.timezone import local_day_bounds, local_to_utc, month_days, utc_to_local, utcnow
from agenda.models.appointment import Appointment, FREEING_STATUSES
from agenda.models.availability_block import AvailabilityBlock
from agenda.models.business_hours import BusinessHours
from agenda.models.service import Service
from agenda.models.tenant_settings import TenantSettings
from agenda.services.buffers import Buffers, resolve_service_buffers

logger = logging.getLogger(__name__)


# passo fixo dos candidatos na agenda
SLOT_STEP = timedelta(minutes=30)

# folga de leitura ao redor do dia: buffers de agendamentos vizinhos podem invadir o expediente
_NEIGHBOUR_WINDOW = timedelta(days=1)


class Interval(NamedTuple):
    start: datetime
    end: datetime


def overlaps(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    """Retorna True se [a_start, a_end) sobrepõe [b_start, b_end)."""
    return a_start < b_end and a_end > b_start


def occupied_interval(start: datetime, duration_minutes: int, buffers: Buffers) -> Interval:
    """[início - buffer antes, início + duração + buffer depois)"""
    return Interval(
        start - timedelta(minutes=buffers.before),
        start + timedelta(minutes=duration_minutes + buffers.after),
    )


def collides(candidate: Interval, busy: Iterable[Interval]) -> bool:
    return any(overlaps(candidate.start, candidate.end, b.start, b.end) for b in busy)


@dataclass
class DaySchedule:
    day: date
    open_at: Optional[datetime] = None
    close_at: Optional[datetime] = None
    open_time: Optional[time] = None
    close_time: Optional[time] = None
    busy: List[Interval] = field(default_factory=list)

    @property
    def is_closed(self) -> bool:
        return self.open_at is None or self.close_at is None


def get_tenant_settings(session: Session, tenant_id: int) -> Optional[TenantSettings]:
    return session.exec(
        select(TenantSettings).where(TenantSettings.tenant_id == tenant_id)
    ).first()


def get_business_hours_for_day(
    session: Session,
    tenant_id: int,
    day: date,
) -> BusinessHours | None:
    return session.exec(
        select(BusinessHours).where(
            BusinessHours.tenant_id == tenant_id,
            BusinessHours.weekday == day.weekday(),
        )
    ).first()


def get_tenant_service(session: Session, tenant_id: int, service_id: int) -> Service:
    service = session.get(Service, service_id)
    if not service or service.tenant_id != tenant_id:
        raise AppError("Serviço não encontrado", ErrorCode.NOT_FOUND)
    return service


def appointment_interval(
    appt: Appointment,
    service: Optional[Service],
    settings: Optional[TenantSettings],
) -> Interval:
    """Intervalo ocupado de um agendamento existente, com os buffers resolvidos para ele."""
    buffers = resolve_service_buffers(service, settings, appt.is_home_visit)
    if appt.service_duration_snapshot is not None:
        duration = appt.service_duration_snapshot
    elif service is not None:
        duration = service.duration_minutes
    else:
        duration = max(0, appt.total_duration_minutes - buffers.before - buffers.after)
    return occupied_interval(appt.start_time, duration, buffers)


def load_day_schedule(
    session: Session,
    tenant_id: int,
    day: date,
    *,
    settings: Optional[TenantSettings] = None,
    exclude_appointment_id: Optional[int] = None,
    ignore_blocks: bool = False,
) -> DaySchedule:
    """Monta expediente e intervalos ocupados do dia (agendamentos ativos + bloqueios)."""
    hours = get_business_hours_for_day(session, tenant_id, day)
    if not hours or hours.is_closed or not hours.open_time or not hours.close_time:
        return DaySchedule(day=day)

    schedule = DaySchedule(
        day=day,
        open_at=local_to_utc(day, hours.open_time),
        close_at=local_to_utc(day, hours.close_time),
        open_time=hours.open_time,
        close_time=hours.close_time,
    )

    day_start, day_end = local_day_bounds(day)
    if settings is None:
        settings = get_tenant_settings(session, tenant_id)

    # 1) agendamentos (ignora cancelados e faltas)
    query = select(Appointment).where(
        Appointment.tenant_id == tenant_id,
        Appointment.start_time >= day_start - _NEIGHBOUR_WINDOW,
        Appointment.start_time < day_end + _NEIGHBOUR_WINDOW,
        col(Appointment.status).not_in(FREEING_STATUSES),
    )
    if exclude_appointment_id is not None:
        query = query.where(Appointment.id != exclude_appointment_id)

    services: Dict[int, Optional[Service]] = {}
    for appt in session.exec(query).all():
        if appt.service_id not in services:
            services[appt.service_id] = session.get(Service, appt.service_id)
        schedule.busy.append(appointment_interval(appt, services[appt.service_id], settings))

    # 2) bloqueios manuais (intervalo cru, sem buffer)
    if not ignore_blocks:
        blocks = session.exec(
            select(AvailabilityBlock).where(
                AvailabilityBlock.tenant_id == tenant_id,
                AvailabilityBlock.start_time < day_end,
                AvailabilityBlock.end_time > day_start,
            )
        ).all()
        schedule.busy.extend(Interval(b.start_time, b.end_time) for b in blocks)

    return schedule


def fits_schedule(
    schedule: DaySchedule,
    start: datetime,
    duration_minutes: int,
    buffers: Buffers,
) -> bool:
    """O serviço precisa começar e terminar dentro do expediente; os buffers podem passar das bordas."""
    if schedule.is_closed:
        return False
    if start < schedule.open_at or start + timedelta(minutes=duration_minutes) > schedule.close_at:
        return False
    return not collides(occupied_interval(start, duration_minutes, buffers), schedule.busy)


def _candidate_times(schedule: DaySchedule) -> Iterable[time]:
    # passo no relógio de parede do estúdio, não em UTC
    current = datetime.combine(schedule.day, schedule.open_time)
    closing = datetime.combine(schedule.day, schedule.close_time)
    while current <= closing:
        yield current.time()
        current += SLOT_STEP


def get_available_slots(
    session: Session,
    tenant_id: int,
    service_id: int,
    day: date,
    is_home_visit: bool = False,
    *,
    exclude_appointment_id: Optional[int] = None,
    ignore_blocks: bool = False,
) -> List[str]:
    """Horários livres ("HH:MM", em ordem) para o serviço no dia; dia fechado -> lista vazia."""
    service = get_tenant_service(session, tenant_id, service_id)
    settings = get_tenant_settings(session, tenant_id)
    buffers = resolve_service_buffers(service, settings, is_home_visit)
    duration = max(0, service.duration_minutes or 0)

    schedule = load_day_schedule(
        session,
        tenant_id,
        day,
        settings=settings,
        exclude_appointment_id=exclude_appointment_id,
        ignore_blocks=ignore_blocks,
    )
    if schedule.is_closed:
        return []

    slots: List[str] = []
    for candidate in _candidate_times(schedule):
        if fits_schedule(schedule, local_to_utc(day, candidate), duration, buffers):
            slots.append(candidate.strftime("%H:%M"))

    logger.debug(
        "Slots for tenant=%s service=%s day=%s home=%s: %d",
        tenant_id, service_id, day.isoformat(), is_home_visit, len(slots),
    )
    return slots


def ensure_slot_available(
    session: Session,
    tenant_id: int,
    service: Service,
    day: date,
    start_at: time,
    is_home_visit: bool = False,
    *,
    exclude_appointment_id: Optional[int] = None,
) -> Buffers:
    """Valida um horário pedido com o mesmo predicado da listagem. Retorna os buffers resolvidos."""
    settings = get_tenant_settings(session, tenant_id)
    buffers = resolve_service_buffers(service, settings, is_home_visit)
    duration = max(0, service.duration_minutes or 0)

    schedule = load_day_schedule(
        session,
        tenant_id,
        day,
        settings=settings,
        exclude_appointment_id=exclude_appointment_id,
    )
    if schedule.is_closed:
        raise AppError("Estúdio fechado ou sem horário configurado para esse dia", ErrorCode.VALIDATION_ERROR)

    start = local_to_utc(day, start_at)
    if start < schedule.open_at or start + timedelta(minutes=duration) > schedule.close_at:
        raise AppError("Fora do horário de funcionamento", ErrorCode.VALIDATION_ERROR)

    if not fits_schedule(schedule, start, duration, buffers):
        raise AppError("Horário indisponível", ErrorCode.CONFLICT)

    return buffers


def get_month_available_days(
    session: Session,
    tenant_id: int,
    service_id: int,
    month: str,
    is_home_visit: bool = False,
    *,
    today: Optional[date] = None,
) -> Dict[str, bool]:
    """'YYYY-MM' -> {"YYYY-MM-DD": tem horário livre}; dias passados são sempre False."""
    try:
        days = month_days(month)
    except ValueError as exc:
        raise AppError("Mês inválido, use YYYY-MM", ErrorCode.VALIDATION_ERROR) from exc

    today = today or utc_to_local(utcnow()).date()
    result: Dict[str, bool] = {}
    for day in days:
        if day < today:
            result[day.isoformat()] = False
            continue
        slots = get_available_slots(session, tenant_id, service_id, day, is_home_visit)
        result[day.isoformat()] = len(slots) > 0
    return result
