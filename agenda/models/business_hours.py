from datetime import time
from typing import Optional

from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel


class BusinessHours(SQLModel, table=True):
    """Expediente semanal do estúdio, uma linha por dia da semana."""

    __table_args__ = (UniqueConstraint("tenant_id", "weekday", name="uq_business_hours_tenant_weekday"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    tenant_id: int = Field(index=True)

    # 0=segunda ... 6=domingo, igual a date.weekday()
    weekday: int = Field(index=True)

    # dia fechado ou sem horário não gera horários livres
    is_closed: bool = False
    open_time: Optional[time] = None
    close_time: Optional[time] = None
