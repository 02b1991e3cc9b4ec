import hashlib
import hmac

import pytest
from fastapi.testclient import TestClient

from agenda.core.security import get_current_staff
from agenda.database import get_session
from agenda.main import app
from agenda.models.user import User
from agenda.routers.payments import get_gateway_client

from conftest import MONDAY, TENANT_ID, order_payload


@pytest.fixture
def client(session, mp_client):
    staff = User(id=1, name="Recepção", email="recepcao@estudio.local", tenant_id=TENANT_ID, password_hash="x")

    app.dependency_overrides[get_session] = lambda: session
    app.dependency_overrides[get_current_staff] = lambda: staff
    app.dependency_overrides[get_gateway_client] = lambda: mp_client
    yield TestClient(app)
    app.dependency_overrides.clear()


def _create(client, service_id, start_at="10:00"):
    return client.post(
        "/appointments/",
        json={"service_id": service_id, "day": MONDAY.isoformat(), "start_at": start_at, "client_name": "Ana"},
    )


def test_available_slots(client, massage):
    response = client.get("/appointments/available", params={"service_id": massage.id, "day": MONDAY.isoformat()})

    assert response.status_code == 200
    body = response.json()
    assert body["slots"][0] == "08:00"
    assert body["slots"][-1] == "17:00"
    assert body["slot_step_minutes"] == 30


def test_available_days_validates_month(client, massage):
    response = client.get("/appointments/available-days", params={"service_id": massage.id, "month": "03-2026"})

    assert response.status_code == 422


def test_create_and_conflict(client, massage):
    created = _create(client, massage.id)
    conflict = _create(client, massage.id, "10:30")

    assert created.status_code == 201
    assert created.json()["total_duration_minutes"] == 90
    assert conflict.status_code == 409
    assert conflict.json() == {"detail": "Horário indisponível", "code": "CONFLICT"}


def test_unknown_service_is_404(client, business_hours):
    response = _create(client, 999)

    assert response.status_code == 404
    assert response.json()["code"] == "NOT_FOUND"


def test_checkout_flow(client, massage):
    appointment_id = _create(client, massage.id).json()["id"]

    paid = client.post(f"/appointments/{appointment_id}/checkout/payments", json={"amount": 100, "method": "cash"})
    assert paid.status_code == 201
    assert paid.json()["payment_status"] == "partial"

    refused = client.post(f"/appointments/{appointment_id}/checkout/confirm")
    assert refused.status_code == 400
    assert refused.json()["detail"] == "Pagamento insuficiente"

    discounted = client.put(
        f"/appointments/{appointment_id}/checkout/discount",
        json={"discount_type": "value", "discount_value": 50},
    )
    assert discounted.json()["total"] == 100
    assert discounted.json()["payment_status"] == "paid"

    confirmed = client.post(f"/appointments/{appointment_id}/checkout/confirm")
    assert confirmed.status_code == 200
    assert confirmed.json()["confirmed_at"] is not None


def test_pix_charge_endpoint(client, massage, gateway):
    appointment_id = _create(client, massage.id).json()["id"]
    gateway.queue(201, order_payload(status="action_required", external_reference=str(appointment_id)))

    response = client.post("/payments/pix", json={"appointment_id": appointment_id, "amount": 150})

    assert response.status_code == 201
    assert response.json()["order"]["order_id"] == "ORD1"
    assert response.json()["payment_status"] == "pending"


def test_gateway_rejection_is_user_safe(client, massage, gateway):
    appointment_id = _create(client, massage.id).json()["id"]
    gateway.queue(400, {"errors": [{"code": "high_risk"}]})

    response = client.post(
        "/payments/card",
        json={"appointment_id": appointment_id, "amount": 150, "token": "tok", "payment_method_id": "visa"},
    )

    assert response.status_code == 402
    assert response.json() == {
        "detail": "Cartão recusado por segurança. Tente outro cartão ou Pix.",
        "code": "PROVIDER_REJECTED",
    }


def test_timer_endpoints(client, massage):
    appointment_id = _create(client, massage.id).json()["id"]

    assert client.get(f"/appointments/{appointment_id}/timer/").json()["timer_status"] == "idle"
    client.patch(f"/appointments/{appointment_id}/start")
    paused = client.post(f"/appointments/{appointment_id}/timer/pause")

    assert paused.status_code == 200
    assert paused.json()["timer_status"] == "paused"


def test_shift_endpoint(client):
    response = client.post("/availability-blocks/shifts", params={"month": "2026-03", "parity": "even"})

    assert response.status_code == 200
    assert response.json() == {"count": 15, "requires_confirm": False, "conflicting_appointments": 0}
    assert client.delete("/availability-blocks/shifts", params={"month": "2026-03"}).json() == {"removed": 15}


def test_webhook_rejects_bad_signature(client):
    response = client.post(
        "/payments/webhook",
        json={"type": "order", "data": {"id": "ORD1"}},
        headers={"x-signature": "ts=1,v1=deadbeef", "x-request-id": "req-1"},
    )

    assert response.status_code == 401


def test_webhook_with_valid_signature_reconciles(client, massage, gateway):
    appointment_id = _create(client, massage.id).json()["id"]
    gateway.queue(200, order_payload(status="processed", external_reference=str(appointment_id)))
    ts = "1700000000"
    manifest = f"id:ord1;request-id:req-9;ts:{ts};"
    digest = hmac.new(b"segredo-webhook", manifest.encode(), hashlib.sha256).hexdigest()

    response = client.post(
        "/payments/webhook",
        json={"type": "order", "data": {"id": "ORD1"}},
        headers={"x-signature": f"ts={ts},v1={digest}", "x-request-id": "req-9"},
    )

    assert response.status_code == 200
    assert response.json() == {"received": True, "reconciled": True, "payment_status": "paid"}
