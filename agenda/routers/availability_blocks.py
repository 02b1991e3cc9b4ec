from dataclasses import asdict
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlmodel import Session

from agenda.core.security import get_current_staff
from agenda.database import get_session
from agenda.models.availability_block import AvailabilityBlockCreate
from agenda.models.user import User
from agenda.services import blocks

router = APIRouter(prefix="/availability-blocks", tags=["availability-blocks"])


@router.get("/")
def list_availability_blocks(
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_staff),
):
    return blocks.list_blocks(session, current_user.tenant_id, start, end)


@router.post("/", status_code=status.HTTP_201_CREATED)
def create_availability_block(
    block: AvailabilityBlockCreate,
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_staff),
):
    return blocks.create_block(session, current_user.tenant_id, block)


# =========================
# ESCALA DE PLANTÕES (dias pares/ímpares do mês)
# POST /availability-blocks/shifts?month=2026-02&parity=even
# =========================
@router.post("/shifts")
def create_shift_blocks(
    month: str = Query(..., pattern=r"^\d{4}-\d{2}$"),
    parity: str = Query(..., pattern=r"^(even|odd)$"),
    force: bool = False,
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_staff),
):
    result = blocks.create_shift_blocks(session, current_user.tenant_id, parity, month, force)
    return asdict(result)


@router.delete("/shifts")
def clear_shift_blocks(
    month: str = Query(..., pattern=r"^\d{4}-\d{2}$"),
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_staff),
):
    removed = blocks.clear_month_blocks(session, current_user.tenant_id, month)
    return {"removed": removed}


@router.delete("/{block_id}")
def delete_availability_block(
    block_id: int,
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_staff),
):
    blocks.delete_block(session, current_user.tenant_id, block_id)
    return {"message": "Bloqueio removido"}
