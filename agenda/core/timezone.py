from datetime import date, datetime, time, timedelta, timezone
from typing import Optional, Tuple
from zoneinfo import ZoneInfo

from agenda.core.config import get_settings


# No banco tudo é UTC sem tzinfo; a agenda do estúdio é lida no fuso local.

def business_tz() -> ZoneInfo:
    return ZoneInfo(get_settings().business_timezone)


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def local_to_utc(day: date, at: time) -> datetime:
    """Horário de parede (dia + hora no fuso do estúdio) -> datetime UTC sem tzinfo."""
    local = datetime.combine(day, at).replace(tzinfo=business_tz())
    return local.astimezone(timezone.utc).replace(tzinfo=None)


def as_utc_naive(value: Optional[datetime]) -> Optional[datetime]:
    """Datetime com fuso -> UTC sem tzinfo. Sem fuso já é UTC (convenção do banco)."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def utc_to_local(value: datetime) -> datetime:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(business_tz())


def local_day_bounds(day: date) -> Tuple[datetime, datetime]:
    """[00:00 do dia, 00:00 do dia seguinte) em UTC."""
    return local_to_utc(day, time(0, 0)), local_to_utc(day + timedelta(days=1), time(0, 0))


def month_days(month: str) -> list:
    """'YYYY-MM' -> lista de datas do mês."""
    try:
        first = datetime.strptime(f"{month}-01", "%Y-%m-%d").date()
    except ValueError as exc:
        raise ValueError(f"mês inválido: {month!r}") from exc
    next_month = (first.replace(day=28) + timedelta(days=4)).replace(day=1)
    return [first + timedelta(days=offset) for offset in range((next_month - first).days)]
