import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("BUSINESS_TIMEZONE", "America/Sao_Paulo")
os.environ.setdefault("MERCADOPAGO_ACCESS_TOKEN", "APP_USR-0000-token")
os.environ.setdefault("MERCADOPAGO_WEBHOOK_SECRET", "segredo-webhook")

from datetime import date, time

import httpx
import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

# registra todas as tabelas no metadata
import agenda.models.attendance  # noqa: F401
import agenda.models.availability_block  # noqa: F401
import agenda.models.checkout  # noqa: F401
import agenda.models.payment  # noqa: F401
import agenda.models.user  # noqa: F401
from agenda.models.appointment import AppointmentCreate
from agenda.models.business_hours import BusinessHours
from agenda.models.service import Service
from agenda.models.tenant_settings import TenantSettings
from agenda.services.booking import create_appointment
from agenda.services.mercadopago import MercadoPagoClient


TENANT_ID = 1
OTHER_TENANT_ID = 2

# 2026-03-02 é segunda-feira; 2026-03-01 é domingo
MONDAY = date(2026, 3, 2)
SUNDAY = date(2026, 3, 1)


@pytest.fixture
def session():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    with Session(engine) as session:
        yield session
    SQLModel.metadata.drop_all(engine)


@pytest.fixture
def business_hours(session):
    """Seg-sáb 08:00-18:00, domingo fechado."""
    for weekday in range(7):
        closed = weekday == 6
        session.add(
            BusinessHours(
                tenant_id=TENANT_ID,
                weekday=weekday,
                is_closed=closed,
                open_time=None if closed else time(8, 0),
                close_time=None if closed else time(18, 0),
            )
        )
    session.commit()


@pytest.fixture
def massage(session, business_hours) -> Service:
    service = Service(
        tenant_id=TENANT_ID,
        name="Massagem relaxante",
        duration_minutes=60,
        price=150.0,
        buffer_before_minutes=15,
        buffer_after_minutes=15,
    )
    session.add(service)
    session.commit()
    session.refresh(service)
    return service


@pytest.fixture
def home_settings(session) -> TenantSettings:
    settings = TenantSettings(tenant_id=TENANT_ID, default_studio_buffer=15, default_home_buffer=45)
    session.add(settings)
    session.commit()
    session.refresh(settings)
    return settings


class GatewayRecorder:
    """Fila de respostas para o MockTransport + registro das requisições feitas."""

    def __init__(self):
        self.requests = []
        self.responses = []

    def queue(self, status_code=200, json=None, exc=None):
        self.responses.append((status_code, json, exc))

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        status_code, body, exc = self.responses.pop(0)
        if exc is not None:
            raise exc(request)
        return httpx.Response(status_code, json=body)


@pytest.fixture
def gateway():
    return GatewayRecorder()


@pytest.fixture
def mp_client(gateway):
    client = MercadoPagoClient(
        "APP_USR-0000-token",
        base_url="https://mp.test",
        timeout=5,
        transport=httpx.MockTransport(gateway),
    )
    yield client
    client.close()


def order_payload(
    order_id="ORD1",
    payment_id="PAY1",
    status="processed",
    amount="150.00",
    external_reference="1",
    method=None,
    **extra,
):
    payload = {
        "id": order_id,
        "status": status,
        "external_reference": external_reference,
        "created_date": "2026-03-02T12:00:00Z",
        "transactions": {
            "payments": [
                {
                    "id": payment_id,
                    "status": status,
                    "amount": amount,
                    "payment_method": method or {"id": "pix", "type": "bank_transfer"},
                }
            ]
        },
    }
    payload.update(extra)
    return payload


@pytest.fixture
def booked(session, massage):
    """Massagem de 150,00 na segunda às 10:00 (checkout criado junto)."""
    return create_appointment(
        session,
        TENANT_ID,
        AppointmentCreate(service_id=massage.id, day=MONDAY, start_at=time(10, 0), client_name="Maria da Silva"),
    )
