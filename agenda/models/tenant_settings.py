from typing import Optional
from sqlmodel import SQLModel, Field


class TenantSettings(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    tenant_id: int = Field(index=True, unique=True)

    # overrides globais do estúdio (valem para todos os serviços)
    buffer_before_minutes: Optional[int] = None
    buffer_after_minutes: Optional[int] = None

    # padrões por tipo de atendimento
    default_studio_buffer: Optional[int] = None
    default_home_buffer: Optional[int] = None
