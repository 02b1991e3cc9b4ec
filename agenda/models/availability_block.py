from typing import Optional
from datetime import datetime
from sqlmodel import SQLModel, Field


class AvailabilityBlock(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)

    tenant_id: int = Field(index=True)

    # intervalo [start_time, end_time) em UTC
    start_time: datetime = Field(index=True)
    end_time: datetime = Field(index=True)

    title: str = "Bloqueio"
    reason: Optional[str] = None
    block_type: Optional[str] = Field(default=None, index=True)  # "shift" para plantões
    is_full_day: bool = False


class AvailabilityBlockCreate(SQLModel):
    start_time: datetime
    end_time: datetime
    title: str = "Bloqueio"
    reason: Optional[str] = None
    block_type: Optional[str] = None
