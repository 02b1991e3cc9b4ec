from typing import Any, Dict, Optional
from datetime import datetime
from sqlalchemy import Column, JSON, UniqueConstraint
from sqlmodel import SQLModel, Field

from agenda.core.timezone import utcnow


class Payment(SQLModel, table=True):
    __table_args__ = (UniqueConstraint("provider_ref", "tenant_id", name="uq_payment_provider_ref_tenant"),)

    id: Optional[int] = Field(default=None, primary_key=True)

    appointment_id: int = Field(foreign_key="appointment.id", index=True)
    tenant_id: int = Field(index=True)

    method: str  # pix | card | cash | other
    amount: float

    status: str = Field(default="pending", index=True)
    # pending | paid | failed

    # id do pagamento no gateway; âncora do upsert
    provider_ref: Optional[str] = Field(default=None, index=True)
    provider_order_id: Optional[str] = Field(default=None, index=True)
    point_terminal_id: Optional[str] = None
    card_mode: Optional[str] = None  # debit | credit
    payment_method_id: Optional[str] = None
    installments: Optional[int] = None
    raw_payload: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSON))

    created_at: datetime = Field(default_factory=utcnow, index=True)
    paid_at: Optional[datetime] = None
