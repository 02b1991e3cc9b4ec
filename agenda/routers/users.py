from typing import List

from fastapi import APIRouter, Depends, HTTPException, status
from sqlmodel import Session, col, select

from agenda.core.security import get_current_owner, get_current_staff, get_password_hash
from agenda.database import get_session
from agenda.models.user import STAFF_ROLES, User, UserCreate, UserPublic

router = APIRouter(prefix="/users", tags=["users"])


# =========================
# EQUIPE DO ESTÚDIO (somente o dono cadastra)
# o novo usuário entra no tenant de quem cadastra
# =========================
@router.post("/", response_model=UserPublic, status_code=status.HTTP_201_CREATED)
def create_user(
    user: UserCreate,
    session: Session = Depends(get_session),
    owner: User = Depends(get_current_owner),
):
    if user.role not in STAFF_ROLES:
        raise HTTPException(status_code=400, detail="Papel inválido, use owner ou staff")

    if session.exec(select(User).where(User.email == user.email)).first():
        raise HTTPException(status_code=400, detail="Email já cadastrado")

    db_user = User(
        **user.model_dump(exclude={"password"}),
        password_hash=get_password_hash(user.password),
        tenant_id=owner.tenant_id,
    )
    session.add(db_user)
    session.commit()
    session.refresh(db_user)
    return db_user


@router.get("/", response_model=List[UserPublic])
def list_team(
    session: Session = Depends(get_session),
    owner: User = Depends(get_current_owner),
):
    return session.exec(select(User).where(User.tenant_id == owner.tenant_id).order_by(col(User.name))).all()


@router.patch("/{user_id}/deactivate", response_model=UserPublic)
def deactivate_user(
    user_id: int,
    session: Session = Depends(get_session),
    owner: User = Depends(get_current_owner),
):
    user = session.get(User, user_id)
    if user is None or user.tenant_id != owner.tenant_id:
        raise HTTPException(status_code=404, detail="Usuário não encontrado")
    if user.id == owner.id:
        raise HTTPException(status_code=400, detail="Não é possível desativar a própria conta")

    user.active = False
    session.add(user)
    session.commit()
    session.refresh(user)
    return user


@router.get("/me", response_model=UserPublic)
def read_me(current_user: User = Depends(get_current_staff)):
    return current_user
