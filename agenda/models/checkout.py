from typing import Optional
from datetime import datetime
from sqlmodel import SQLModel, Field


class Checkout(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)

    appointment_id: int = Field(foreign_key="appointment.id", index=True, unique=True)
    tenant_id: int = Field(index=True)

    # sempre recalculados a partir dos itens + desconto
    subtotal: float = 0.0
    total: float = 0.0

    discount_type: Optional[str] = None  # value | pct
    discount_value: Optional[float] = None
    discount_reason: Optional[str] = None

    confirmed_at: Optional[datetime] = None


class CheckoutItem(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)

    appointment_id: int = Field(foreign_key="appointment.id", index=True)
    tenant_id: int = Field(index=True)

    type: str  # service | fee | addon | adjustment
    label: str
    qty: int = 1
    amount: float
    sort_order: int = 0


class CheckoutItemInput(SQLModel):
    type: str = "addon"
    label: str
    qty: int = 1
    amount: float
