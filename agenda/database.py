from sqlmodel import Session, SQLModel, create_engine

from agenda.core.config import get_settings


settings = get_settings()

connect_args = {"check_same_thread": False} if settings.database_url.startswith("sqlite") else {}
engine = create_engine(settings.database_url, connect_args=connect_args)


def create_db_and_tables():
    # registra as tabelas no metadata antes do create_all
    from agenda.models import (  # noqa: F401
        appointment,
        attendance,
        availability_block,
        business_hours,
        checkout,
        payment,
        service,
        tenant_settings,
        user,
    )

    SQLModel.metadata.create_all(engine)


def get_session():
    with Session(engine) as session:
        yield session
