from datetime import date, datetime, time, timedelta, timezone

import pytest

from agenda.core.errors import AppError, ErrorCode
from agenda.core.timezone import local_day_bounds, local_to_utc
from agenda.models.availability_block import AvailabilityBlockCreate
from agenda.services import blocks
from agenda.services.availability import get_available_slots

from conftest import MONDAY, OTHER_TENANT_ID, TENANT_ID


def _shift_days(session):
    starts = [b.start_time for b in blocks.list_blocks(session, TENANT_ID) if b.block_type == blocks.SHIFT_BLOCK_TYPE]
    return sorted(starts)


def test_even_shift_creates_full_day_blocks(session):
    result = blocks.create_shift_blocks(session, TENANT_ID, "even", "2026-03")

    assert result.count == 15
    assert not result.requires_confirm
    first = blocks.list_blocks(session, TENANT_ID)[0]
    assert first.is_full_day
    assert (first.start_time, first.end_time) == local_day_bounds(date(2026, 3, 2))


def test_running_twice_does_not_duplicate(session):
    blocks.create_shift_blocks(session, TENANT_ID, "odd", "2026-03")

    again = blocks.create_shift_blocks(session, TENANT_ID, "odd", "2026-03")

    assert again.count == 0
    assert len(_shift_days(session)) == 16


def test_switching_parity_replaces_blocks(session):
    blocks.create_shift_blocks(session, TENANT_ID, "even", "2026-03")

    result = blocks.create_shift_blocks(session, TENANT_ID, "odd", "2026-03")

    assert result.count == 16
    assert _shift_days(session) == [local_day_bounds(date(2026, 3, d))[0] for d in range(1, 32, 2)]


def test_days_with_appointments_need_confirmation(session, booked):
    # booked: segunda 02/03 (dia par)
    result = blocks.create_shift_blocks(session, TENANT_ID, "even", "2026-03")

    assert result.requires_confirm
    assert result.conflicting_appointments == 1
    assert _shift_days(session) == []

    forced = blocks.create_shift_blocks(session, TENANT_ID, "even", "2026-03", force=True)
    assert forced.count == 15


def test_other_parity_does_not_conflict(session, booked):
    result = blocks.create_shift_blocks(session, TENANT_ID, "odd", "2026-03")

    assert not result.requires_confirm
    assert result.count == 16


def test_invalid_parity_and_month(session):
    with pytest.raises(AppError):
        blocks.create_shift_blocks(session, TENANT_ID, "weekends", "2026-03")
    with pytest.raises(AppError) as exc:
        blocks.create_shift_blocks(session, TENANT_ID, "even", "março")
    assert exc.value.code == ErrorCode.VALIDATION_ERROR


def test_clear_month_only_removes_shift_blocks(session):
    blocks.create_shift_blocks(session, TENANT_ID, "even", "2026-03")
    blocks.create_block(
        session,
        TENANT_ID,
        AvailabilityBlockCreate(
            start_time=local_to_utc(MONDAY, time(12)),
            end_time=local_to_utc(MONDAY, time(13)),
            reason="Almoço",
        ),
    )

    removed = blocks.clear_month_blocks(session, TENANT_ID, "2026-03")

    remaining = blocks.list_blocks(session, TENANT_ID)
    assert removed == 15
    assert [b.reason for b in remaining] == ["Almoço"]


def test_block_requires_positive_interval(session):
    with pytest.raises(AppError):
        blocks.create_block(
            session,
            TENANT_ID,
            AvailabilityBlockCreate(start_time=local_to_utc(MONDAY, time(13)), end_time=local_to_utc(MONDAY, time(12))),
        )


def test_delete_block_of_other_tenant_is_not_found(session):
    block = blocks.create_block(
        session,
        TENANT_ID,
        AvailabilityBlockCreate(start_time=local_to_utc(MONDAY, time(12)), end_time=local_to_utc(MONDAY, time(13))),
    )

    with pytest.raises(AppError) as exc:
        blocks.delete_block(session, OTHER_TENANT_ID, block.id)

    assert exc.value.code == ErrorCode.NOT_FOUND


def test_block_with_offset_is_stored_in_utc(session, massage):
    sao_paulo = timezone(timedelta(hours=-3))
    block = blocks.create_block(
        session,
        TENANT_ID,
        AvailabilityBlockCreate(
            start_time=datetime(2026, 3, 2, 12, 0, tzinfo=sao_paulo),
            end_time=datetime(2026, 3, 2, 13, 0, tzinfo=sao_paulo),
        ),
    )

    assert (block.start_time, block.end_time) == (local_to_utc(MONDAY, time(12)), local_to_utc(MONDAY, time(13)))
    slots = get_available_slots(session, TENANT_ID, massage.id, MONDAY)
    assert "12:00" not in slots
    assert "13:30" in slots


def test_list_blocks_accepts_offset_filters(session):
    blocks.create_block(
        session,
        TENANT_ID,
        AvailabilityBlockCreate(start_time=local_to_utc(MONDAY, time(12)), end_time=local_to_utc(MONDAY, time(13))),
    )
    sao_paulo = timezone(timedelta(hours=-3))

    # 13:00-14:00 em -03:00 começa exatamente no fim do bloqueio
    after = blocks.list_blocks(
        session, TENANT_ID, datetime(2026, 3, 2, 13, 0, tzinfo=sao_paulo), datetime(2026, 3, 2, 14, 0, tzinfo=sao_paulo)
    )
    during = blocks.list_blocks(
        session, TENANT_ID, datetime(2026, 3, 2, 12, 30, tzinfo=sao_paulo), datetime(2026, 3, 2, 14, 0, tzinfo=sao_paulo)
    )

    assert after == []
    assert len(during) == 1
