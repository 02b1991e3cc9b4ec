from typing import List, Optional
from datetime import date, datetime, time
from sqlmodel import SQLModel, Field

from agenda.core.timezone import utcnow
from agenda.models.checkout import CheckoutItemInput


ACTIVE_STATUSES = ("pending", "confirmed", "in_progress", "completed")
CANCELED_STATUSES = ("canceled_by_client", "canceled_by_studio")
# status que não ocupam horário na agenda
FREEING_STATUSES = CANCELED_STATUSES + ("no_show",)


class Appointment(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)

    tenant_id: int = Field(index=True)
    client_id: Optional[int] = Field(default=None, index=True)
    client_name: Optional[str] = None
    service_id: int = Field(foreign_key="service.id", index=True)

    # início em UTC
    start_time: datetime = Field(index=True)
    # duração do serviço + buffers resolvidos
    total_duration_minutes: int

    # SNAPSHOT DO SERVIÇO
    service_name_snapshot: str
    service_duration_snapshot: int

    # STATUS DO AGENDAMENTO
    status: str = Field(default="pending", index=True)
    # pending | confirmed | in_progress | completed | canceled_by_client | canceled_by_studio | no_show

    # STATUS DO PAGAMENTO (derivado; ver services.reconciliation)
    payment_status: str = Field(default="pending", index=True)
    # pending | partial | paid | waived | refunded

    price: float = 0.0
    price_override: Optional[float] = None

    is_home_visit: bool = False
    displacement_fee: float = 0.0
    displacement_distance_km: Optional[float] = None

    internal_notes: Optional[str] = None

    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    actual_duration_minutes: Optional[int] = None

    created_at: datetime = Field(default_factory=utcnow, index=True)

    canceled_at: Optional[datetime] = Field(default=None, index=True)
    cancel_reason: Optional[str] = None


class AppointmentCreate(SQLModel):
    service_id: int
    # dia e hora no fuso do estúdio
    day: date
    start_at: time

    client_id: Optional[int] = None
    client_name: Optional[str] = None

    is_home_visit: bool = False
    # sem valor, usa a taxa de domicílio do serviço
    displacement_fee: Optional[float] = None
    displacement_distance_km: Optional[float] = None

    price_override: Optional[float] = None
    internal_notes: Optional[str] = None

    extras: List[CheckoutItemInput] = []
    discount_type: Optional[str] = None
    discount_value: Optional[float] = None
    discount_reason: Optional[str] = None


class AppointmentReschedule(SQLModel):
    day: date
    start_at: time


class AppointmentCancel(SQLModel):
    canceled_by: str = "studio"  # client | studio
    reason: Optional[str] = None
