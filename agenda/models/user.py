from datetime import datetime
from typing import Optional

from sqlmodel import Field, SQLModel

from agenda.core.timezone import utcnow


# papéis da equipe do estúdio
STAFF_ROLES = ("owner", "staff")


class UserBase(SQLModel):
    name: str
    email: str = Field(index=True, unique=True)
    phone: Optional[str] = None
    role: str = "staff"  # "owner" ou "staff"


class User(UserBase, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    tenant_id: int = Field(index=True)
    password_hash: str

    # desativado não faz login nem usa token já emitido
    active: bool = True
    created_at: datetime = Field(default_factory=utcnow)


class UserCreate(UserBase):
    password: str


class UserPublic(UserBase):
    id: int
    tenant_id: int
    active: bool
