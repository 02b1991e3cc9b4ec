from datetime import datetime
from typing import Optional

from sqlmodel import Field, SQLModel

from agenda.core.timezone import utcnow


class Service(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    tenant_id: int = Field(index=True)

    name: str
    description: Optional[str] = None
    duration_minutes: int
    price: float
    active: bool = True

    # atendimento em domicílio; a taxa sugerida vira a linha "fee" do checkout
    accepts_home_visit: bool = True
    home_visit_fee: Optional[float] = None

    # BUFFERS (minutos); nulos/zero caem para a cascata das configurações
    buffer_before_minutes: Optional[int] = None
    buffer_after_minutes: Optional[int] = None
    custom_buffer_minutes: Optional[int] = None

    created_at: datetime = Field(default_factory=utcnow)
