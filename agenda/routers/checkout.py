from dataclasses import asdict
from typing import List, Optional

from fastapi import APIRouter, Depends, status
from sqlmodel import Session, SQLModel

from agenda.core.security import get_current_staff
from agenda.database import get_session
from agenda.models.checkout import CheckoutItemInput
from agenda.models.user import User
from agenda.services import checkout as checkout_service

router = APIRouter(prefix="/appointments/{appointment_id}/checkout", tags=["checkout"])


class DiscountInput(SQLModel):
    discount_type: Optional[str] = None  # value | pct
    discount_value: Optional[float] = None
    discount_reason: Optional[str] = None


class ManualPaymentInput(SQLModel):
    amount: float
    method: str = "cash"


def _checkout_view(session: Session, tenant_id: int, appointment_id: int) -> dict:
    snapshot = checkout_service.get_charge_snapshot(session, tenant_id, appointment_id)
    return {
        **asdict(snapshot),
        "items": checkout_service.list_items(session, tenant_id, appointment_id),
    }


@router.get("/")
def read_checkout(
    appointment_id: int,
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_staff),
):
    return _checkout_view(session, current_user.tenant_id, appointment_id)


@router.put("/items")
def replace_items(
    appointment_id: int,
    items: List[CheckoutItemInput],
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_staff),
):
    checkout_service.set_checkout_items(session, current_user.tenant_id, appointment_id, items)
    return _checkout_view(session, current_user.tenant_id, appointment_id)


@router.put("/discount")
def update_discount(
    appointment_id: int,
    payload: DiscountInput,
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_staff),
):
    checkout_service.set_discount(
        session,
        current_user.tenant_id,
        appointment_id,
        payload.discount_type,
        payload.discount_value,
        payload.discount_reason,
    )
    return _checkout_view(session, current_user.tenant_id, appointment_id)


@router.post("/payments", status_code=status.HTTP_201_CREATED)
def add_manual_payment(
    appointment_id: int,
    payload: ManualPaymentInput,
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_staff),
):
    payment = checkout_service.record_manual_payment(
        session, current_user.tenant_id, appointment_id, payload.amount, payload.method
    )
    return {"payment": payment, **_checkout_view(session, current_user.tenant_id, appointment_id)}


@router.post("/confirm")
def confirm_checkout(
    appointment_id: int,
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_staff),
):
    checkout = checkout_service.confirm_checkout(session, current_user.tenant_id, appointment_id)
    return {"confirmed_at": checkout.confirmed_at, **_checkout_view(session, current_user.tenant_id, appointment_id)}


@router.post("/waive")
def waive(
    appointment_id: int,
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_staff),
):
    return checkout_service.waive_payment(session, current_user.tenant_id, appointment_id)._asdict()


@router.delete("/waive")
def unwaive(
    appointment_id: int,
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_staff),
):
    return checkout_service.unwaive_payment(session, current_user.tenant_id, appointment_id)._asdict()
