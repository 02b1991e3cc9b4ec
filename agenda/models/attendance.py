from typing import Optional
from datetime import datetime
from sqlmodel import SQLModel, Field


class AttendanceTimer(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)

    appointment_id: int = Field(foreign_key="appointment.id", index=True, unique=True)
    tenant_id: int = Field(index=True)

    timer_status: str = "idle"  # idle | running | paused | finished
    timer_started_at: Optional[datetime] = None
    timer_paused_at: Optional[datetime] = None
    paused_total_seconds: int = 0
    planned_seconds: Optional[int] = None
    actual_seconds: Optional[int] = None


class TimerSync(SQLModel):
    timer_status: str
    timer_started_at: Optional[datetime] = None
    timer_paused_at: Optional[datetime] = None
    paused_total_seconds: int = 0
    planned_seconds: Optional[int] = None
    actual_seconds: Optional[int] = None
