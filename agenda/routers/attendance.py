from fastapi import APIRouter, Depends
from sqlmodel import Session

from agenda.core.security import get_current_staff
from agenda.database import get_session
from agenda.models.attendance import AttendanceTimer, TimerSync
from agenda.models.user import User
from agenda.services import attendance
from agenda.services.booking import get_appointment

router = APIRouter(prefix="/appointments/{appointment_id}/timer", tags=["attendance"])


def _view(timer: AttendanceTimer) -> dict:
    return {**timer.model_dump(), "elapsed_seconds": attendance.elapsed_for(timer)}


@router.get("/")
def read_timer(
    appointment_id: int,
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_staff),
):
    get_appointment(session, current_user.tenant_id, appointment_id)
    timer = attendance.get_timer(session, current_user.tenant_id, appointment_id)
    if timer is None:
        return {"appointment_id": appointment_id, "timer_status": "idle", "elapsed_seconds": 0}
    return _view(timer)


@router.post("/pause")
def pause(
    appointment_id: int,
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_staff),
):
    get_appointment(session, current_user.tenant_id, appointment_id)
    return _view(attendance.pause_timer(session, current_user.tenant_id, appointment_id))


@router.post("/resume")
def resume(
    appointment_id: int,
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_staff),
):
    get_appointment(session, current_user.tenant_id, appointment_id)
    return _view(attendance.resume_timer(session, current_user.tenant_id, appointment_id))


@router.put("/sync")
def sync(
    appointment_id: int,
    payload: TimerSync,
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_staff),
):
    get_appointment(session, current_user.tenant_id, appointment_id)
    return _view(attendance.sync_timer(session, current_user.tenant_id, appointment_id, payload))
