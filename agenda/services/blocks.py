import logging
from dataclasses import dataclass
from datetime import date, timedelta
from typing import List, Optional

from sqlmodel import Session, col, select

from agenda.core.errors import AppError, ErrorCode
from agenda.core.timezone import as_utc_naive, local_day_bounds, month_days
from agenda.models.appointment import Appointment, FREEING_STATUSES
from agenda.models.availability_block import AvailabilityBlock, AvailabilityBlockCreate
from agenda.models.service import Service
from agenda.services.availability import appointment_interval, get_tenant_settings, overlaps

logger = logging.getLogger(__name__)


SHIFT_BLOCK_TYPE = "shift"


@dataclass
class ShiftPlanResult:
    count: int
    requires_confirm: bool = False
    conflicting_appointments: int = 0


def _month_bounds(month: str):
    try:
        days = month_days(month)
    except ValueError as exc:
        raise AppError("Mês inválido, use YYYY-MM", ErrorCode.VALIDATION_ERROR) from exc
    return days, local_day_bounds(days[0])[0], local_day_bounds(days[-1])[1]


def list_blocks(session: Session, tenant_id: int, start=None, end=None) -> List[AvailabilityBlock]:
    start, end = as_utc_naive(start), as_utc_naive(end)
    query = select(AvailabilityBlock).where(AvailabilityBlock.tenant_id == tenant_id)
    if start is not None:
        query = query.where(AvailabilityBlock.end_time > start)
    if end is not None:
        query = query.where(AvailabilityBlock.start_time < end)
    return session.exec(query.order_by(AvailabilityBlock.start_time)).all()


def create_block(session: Session, tenant_id: int, payload: AvailabilityBlockCreate) -> AvailabilityBlock:
    start_time, end_time = as_utc_naive(payload.start_time), as_utc_naive(payload.end_time)
    if end_time <= start_time:
        raise AppError("end_time deve ser maior que start_time", ErrorCode.VALIDATION_ERROR)

    block = AvailabilityBlock(
        tenant_id=tenant_id,
        **payload.model_dump(exclude={"start_time", "end_time"}),
        start_time=start_time,
        end_time=end_time,
    )
    session.add(block)
    session.commit()
    session.refresh(block)
    return block


def delete_block(session: Session, tenant_id: int, block_id: int) -> None:
    block = session.get(AvailabilityBlock, block_id)
    if not block or block.tenant_id != tenant_id:
        raise AppError("Bloqueio não encontrado", ErrorCode.NOT_FOUND)
    session.delete(block)
    session.commit()


def _days_with_appointments(session: Session, tenant_id: int, days: List[date], start, end) -> int:
    # mesmo predicado de sobreposição da agenda: intervalo ocupado x dia inteiro
    settings = get_tenant_settings(session, tenant_id)
    appointments = session.exec(
        select(Appointment).where(
            Appointment.tenant_id == tenant_id,
            Appointment.start_time >= start - timedelta(days=1),
            Appointment.start_time < end,
            col(Appointment.status).not_in(FREEING_STATUSES),
        )
    ).all()
    intervals = [
        appointment_interval(appt, session.get(Service, appt.service_id), settings)
        for appt in appointments
    ]

    conflicting = 0
    for day in days:
        day_start, day_end = local_day_bounds(day)
        if any(overlaps(day_start, day_end, i.start, i.end) for i in intervals):
            conflicting += 1
    return conflicting


def create_shift_blocks(
    session: Session,
    tenant_id: int,
    parity: str,
    month: str,
    force: bool = False,
) -> ShiftPlanResult:
    """Plantões de dia inteiro nos dias pares ou ímpares do mês.

    Mantém plantões já existentes nos dias escolhidos, remove os dos outros dias
    do mês e só insere os que faltam. Se houver atendimentos nos dias escolhidos,
    pede confirmação (force=True) antes de gravar.
    """
    if parity not in ("even", "odd"):
        raise AppError("Tipo de escala inválido, use even ou odd", ErrorCode.VALIDATION_ERROR)

    days, month_start, month_end = _month_bounds(month)
    remainder = 0 if parity == "even" else 1
    selected = [d for d in days if d.day % 2 == remainder]

    conflicts = _days_with_appointments(session, tenant_id, selected, month_start, month_end)
    if conflicts > 0 and not force:
        logger.info("Shift plan for tenant=%s month=%s needs confirmation: %d day(s) with appointments",
                    tenant_id, month, conflicts)
        return ShiftPlanResult(count=0, requires_confirm=True, conflicting_appointments=conflicts)

    existing = [
        b for b in list_blocks(session, tenant_id, month_start, month_end)
        if b.block_type == SHIFT_BLOCK_TYPE
    ]
    covered = set()
    selected_starts = {local_day_bounds(d)[0] for d in selected}
    for block in existing:
        if block.start_time in selected_starts:
            covered.add(block.start_time)
        else:
            session.delete(block)

    created = 0
    for day in selected:
        start, end = local_day_bounds(day)
        if start in covered:
            continue
        session.add(
            AvailabilityBlock(
                tenant_id=tenant_id,
                title="Plantão",
                reason="Plantão",
                block_type=SHIFT_BLOCK_TYPE,
                is_full_day=True,
                start_time=start,
                end_time=end,
            )
        )
        created += 1

    session.commit()
    logger.info("Shift blocks for tenant=%s month=%s parity=%s: %d created", tenant_id, month, parity, created)
    return ShiftPlanResult(count=created, conflicting_appointments=conflicts)


def clear_month_blocks(session: Session, tenant_id: int, month: str, block_type: Optional[str] = SHIFT_BLOCK_TYPE) -> int:
    _, month_start, month_end = _month_bounds(month)
    removed = 0
    for block in list_blocks(session, tenant_id, month_start, month_end):
        if block_type is not None and block.block_type != block_type:
            continue
        # só blocos que começam dentro do mês
        if not (month_start <= block.start_time < month_end):
            continue
        session.delete(block)
        removed += 1
    session.commit()
    return removed
