from datetime import date, datetime, time, timedelta

import pytest

from agenda.core.errors import AppError, ErrorCode
from agenda.core.timezone import local_to_utc
from agenda.models.appointment import Appointment
from agenda.models.availability_block import AvailabilityBlock
from agenda.models.business_hours import BusinessHours
from agenda.models.service import Service
from agenda.services.availability import (
    appointment_interval,
    ensure_slot_available,
    get_available_slots,
    get_month_available_days,
)

from conftest import MONDAY, OTHER_TENANT_ID, SUNDAY, TENANT_ID


def _all_slots(first: str, last: str):
    current = datetime.combine(MONDAY, time.fromisoformat(first))
    end = datetime.combine(MONDAY, time.fromisoformat(last))
    slots = []
    while current <= end:
        slots.append(current.strftime("%H:%M"))
        current += timedelta(minutes=30)
    return slots


def _book(session, service, at: time, day: date = MONDAY, status="confirmed", is_home_visit=False, total=None):
    appt = Appointment(
        tenant_id=TENANT_ID,
        service_id=service.id,
        start_time=local_to_utc(day, at),
        total_duration_minutes=total or service.duration_minutes + 30,
        service_name_snapshot=service.name,
        service_duration_snapshot=service.duration_minutes,
        status=status,
        price=service.price,
        is_home_visit=is_home_visit,
    )
    session.add(appt)
    session.commit()
    session.refresh(appt)
    return appt


def test_empty_day_runs_from_open_until_last_fitting_start(session, massage):
    slots = get_available_slots(session, TENANT_ID, massage.id, MONDAY)

    assert slots == _all_slots("08:00", "17:00")


def test_closed_day_has_no_slots(session, massage):
    assert get_available_slots(session, TENANT_ID, massage.id, SUNDAY) == []


def test_day_without_business_hours_has_no_slots(session):
    service = Service(tenant_id=TENANT_ID, name="Sem horário", duration_minutes=30, price=50.0)
    session.add(service)
    session.commit()

    assert get_available_slots(session, TENANT_ID, service.id, MONDAY) == []


def test_existing_appointment_blocks_overlapping_slots_only(session, massage):
    # ocupado [09:45, 11:15)
    _book(session, massage, time(10, 0))

    slots = get_available_slots(session, TENANT_ID, massage.id, MONDAY)

    for taken in ("09:00", "09:30", "10:00", "10:30", "11:00"):
        assert taken not in slots
    # encostados na borda (sem sobreposição) continuam livres
    assert "08:30" in slots
    assert "11:30" in slots


def test_canceled_and_no_show_do_not_occupy(session, massage):
    _book(session, massage, time(10, 0), status="canceled_by_client")
    _book(session, massage, time(14, 0), status="no_show")

    assert get_available_slots(session, TENANT_ID, massage.id, MONDAY) == _all_slots("08:00", "17:00")


def test_other_tenant_appointments_are_ignored(session, massage):
    session.add(
        Appointment(
            tenant_id=OTHER_TENANT_ID,
            service_id=massage.id,
            start_time=local_to_utc(MONDAY, time(10, 0)),
            total_duration_minutes=90,
            service_name_snapshot="x",
            service_duration_snapshot=60,
        )
    )
    session.commit()

    assert "10:00" in get_available_slots(session, TENANT_ID, massage.id, MONDAY)


def test_manual_block_is_raw_interval(session, massage):
    session.add(
        AvailabilityBlock(
            tenant_id=TENANT_ID,
            start_time=local_to_utc(MONDAY, time(12, 0)),
            end_time=local_to_utc(MONDAY, time(13, 0)),
        )
    )
    session.commit()

    slots = get_available_slots(session, TENANT_ID, massage.id, MONDAY)

    # 10:30 ocupa [10:15, 11:45); 11:00 ocupa até 12:15 e invade o bloqueio
    assert "10:30" in slots
    assert "11:00" not in slots
    assert "12:30" not in slots
    # 13:00 começa em 12:45 com o buffer
    assert "13:00" not in slots
    assert "13:30" in slots


def test_full_day_block_can_be_ignored(session, massage):
    start = local_to_utc(MONDAY, time(0, 0))
    session.add(AvailabilityBlock(tenant_id=TENANT_ID, start_time=start, end_time=start + timedelta(days=1)))
    session.commit()

    assert get_available_slots(session, TENANT_ID, massage.id, MONDAY) == []
    assert get_available_slots(session, TENANT_ID, massage.id, MONDAY, ignore_blocks=True) != []


def test_home_visit_interval_uses_home_buffers(session, massage, home_settings):
    service = Service(tenant_id=TENANT_ID, name="Domiciliar", duration_minutes=60, price=200.0)
    session.add(service)
    session.commit()
    appt = _book(session, service, time(10, 0), is_home_visit=True, total=150)

    interval = appointment_interval(appt, service, home_settings)

    assert interval.start == local_to_utc(MONDAY, time(9, 15))
    assert interval.end == local_to_utc(MONDAY, time(11, 45))


def test_studio_slot_after_home_visit_respects_home_buffer(session, home_settings):
    service = Service(tenant_id=TENANT_ID, name="Domiciliar", duration_minutes=60, price=200.0)
    session.add(service)
    session.commit()

    session.add(BusinessHours(tenant_id=TENANT_ID, weekday=MONDAY.weekday(), open_time=time(8), close_time=time(18)))
    session.commit()
    # domiciliar ocupa [09:15, 11:45)
    _book(session, service, time(10, 0), is_home_visit=True, total=150)

    slots = get_available_slots(session, TENANT_ID, service.id, MONDAY, is_home_visit=False)

    # estúdio com buffer de 15: 11:30 começa em 11:15 (colide), 12:00 começa em 11:45 (encosta)
    assert "11:30" not in slots
    assert "12:00" in slots


def test_home_visit_candidate_uses_home_buffer(session, home_settings):
    service = Service(tenant_id=TENANT_ID, name="Domiciliar", duration_minutes=60, price=200.0)
    session.add(service)

    session.add(BusinessHours(tenant_id=TENANT_ID, weekday=MONDAY.weekday(), open_time=time(8), close_time=time(18)))
    session.commit()
    # estúdio ocupa [13:45, 15:15)
    _book(session, service, time(14, 0), total=90)

    studio = get_available_slots(session, TENANT_ID, service.id, MONDAY, is_home_visit=False)
    home = get_available_slots(session, TENANT_ID, service.id, MONDAY, is_home_visit=True)

    assert "12:30" in studio
    # domiciliar às 12:30 vai até 14:15 com o buffer de 45
    assert "12:30" not in home


def test_ensure_slot_available_raises_conflict(session, massage):
    _book(session, massage, time(10, 0))

    with pytest.raises(AppError) as exc:
        ensure_slot_available(session, TENANT_ID, massage, MONDAY, time(10, 30))

    assert exc.value.code == ErrorCode.CONFLICT
    assert exc.value.message == "Horário indisponível"


def test_ensure_slot_available_can_exclude_itself(session, massage):
    appt = _book(session, massage, time(10, 0))

    buffers = ensure_slot_available(session, TENANT_ID, massage, MONDAY, time(10, 30), exclude_appointment_id=appt.id)

    assert buffers == (15, 15)


def test_ensure_slot_available_rejects_closed_day(session, massage):
    with pytest.raises(AppError) as exc:
        ensure_slot_available(session, TENANT_ID, massage, SUNDAY, time(10, 0))

    assert exc.value.code == ErrorCode.VALIDATION_ERROR


def test_ensure_slot_available_rejects_outside_hours(session, massage):
    with pytest.raises(AppError) as exc:
        ensure_slot_available(session, TENANT_ID, massage, MONDAY, time(17, 30))

    assert exc.value.code == ErrorCode.VALIDATION_ERROR
    assert exc.value.message == "Fora do horário de funcionamento"


def test_unknown_service_is_not_found(session, massage):
    with pytest.raises(AppError) as exc:
        get_available_slots(session, OTHER_TENANT_ID, massage.id, MONDAY)

    assert exc.value.code == ErrorCode.NOT_FOUND


def test_month_available_days(session, massage):
    days = get_month_available_days(session, TENANT_ID, massage.id, "2026-03", today=date(2026, 3, 10))

    assert len(days) == 31
    assert days["2026-03-09"] is False  # passado
    assert days["2026-03-15"] is False  # domingo
    assert days["2026-03-16"] is True


def test_month_available_days_rejects_bad_month(session, massage):
    with pytest.raises(AppError) as exc:
        get_month_available_days(session, TENANT_ID, massage.id, "2026-13")

    assert exc.value.code == ErrorCode.VALIDATION_ERROR
