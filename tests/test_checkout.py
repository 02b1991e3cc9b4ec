import pytest

from agenda.core.errors import AppError, ErrorCode
from agenda.models.checkout import CheckoutItemInput
from agenda.services import checkout as checkout_service

from conftest import TENANT_ID


def test_booking_creates_checkout_with_service_line(session, booked):
    items = checkout_service.list_items(session, TENANT_ID, booked.id)
    snapshot = checkout_service.get_charge_snapshot(session, TENANT_ID, booked.id)

    assert [(i.type, i.amount) for i in items] == [("service", 150.0)]
    assert snapshot.total == 150
    assert snapshot.remaining == 150
    assert snapshot.payment_status == "pending"


def test_replacing_items_recalculates_totals(session, booked):
    checkout = checkout_service.set_checkout_items(
        session,
        TENANT_ID,
        booked.id,
        [
            CheckoutItemInput(type="service", label="Massagem", amount=150),
            CheckoutItemInput(type="addon", label="Óleo aromático", qty=2, amount=15),
        ],
    )

    items = checkout_service.list_items(session, TENANT_ID, booked.id)
    assert checkout.subtotal == 180
    assert checkout.total == 180
    assert [i.sort_order for i in items] == [0, 1]


def test_item_with_zero_quantity_is_rejected(session, booked):
    with pytest.raises(AppError):
        checkout_service.set_checkout_items(
            session, TENANT_ID, booked.id, [CheckoutItemInput(label="x", qty=0, amount=10)]
        )


def test_unknown_item_type_keeps_existing_lines(session, booked):
    with pytest.raises(AppError) as exc:
        checkout_service.set_checkout_items(
            session, TENANT_ID, booked.id, [CheckoutItemInput(type="gorjeta", label="Gorjeta", amount=10)]
        )

    assert exc.value.code == ErrorCode.VALIDATION_ERROR
    assert [i.type for i in checkout_service.list_items(session, TENANT_ID, booked.id)] == ["service"]


def test_discount_changes_total_and_payment_status(session, booked):
    checkout_service.record_manual_payment(session, TENANT_ID, booked.id, 100)
    assert checkout_service.get_charge_snapshot(session, TENANT_ID, booked.id).payment_status == "partial"

    checkout = checkout_service.set_discount(session, TENANT_ID, booked.id, "value", 50, "Cliente fiel")

    assert checkout.total == 100
    assert checkout.discount_reason == "Cliente fiel"
    assert checkout_service.get_charge_snapshot(session, TENANT_ID, booked.id).payment_status == "paid"


def test_discount_can_be_removed(session, booked):
    checkout_service.set_discount(session, TENANT_ID, booked.id, "pct", 10)
    checkout = checkout_service.set_discount(session, TENANT_ID, booked.id, None, None)

    assert checkout.total == 150
    assert checkout.discount_value is None


def test_invalid_discount_type(session, booked):
    with pytest.raises(AppError) as exc:
        checkout_service.set_discount(session, TENANT_ID, booked.id, "cupom", 10)

    assert exc.value.code == ErrorCode.VALIDATION_ERROR


def test_manual_payment_above_remaining_is_rejected(session, booked):
    checkout_service.record_manual_payment(session, TENANT_ID, booked.id, 100)

    with pytest.raises(AppError) as exc:
        checkout_service.record_manual_payment(session, TENANT_ID, booked.id, 60)

    assert exc.value.message == "Valor maior que o saldo restante"


def test_manual_payment_on_settled_appointment_is_rejected(session, booked):
    checkout_service.record_manual_payment(session, TENANT_ID, booked.id, 150, "pix")

    with pytest.raises(AppError) as exc:
        checkout_service.record_manual_payment(session, TENANT_ID, booked.id, 10)

    assert exc.value.message == "Agendamento já está quitado"


def test_manual_payment_on_waived_appointment_is_rejected(session, booked):
    checkout_service.waive_payment(session, TENANT_ID, booked.id)

    with pytest.raises(AppError):
        checkout_service.record_manual_payment(session, TENANT_ID, booked.id, 10)


def test_confirm_requires_full_payment(session, booked):
    checkout_service.record_manual_payment(session, TENANT_ID, booked.id, 100)

    with pytest.raises(AppError) as exc:
        checkout_service.confirm_checkout(session, TENANT_ID, booked.id)
    assert exc.value.message == "Pagamento insuficiente"

    checkout_service.record_manual_payment(session, TENANT_ID, booked.id, 50)
    checkout = checkout_service.confirm_checkout(session, TENANT_ID, booked.id)
    assert checkout.confirmed_at is not None


def test_confirm_waived_checkout(session, booked):
    checkout_service.waive_payment(session, TENANT_ID, booked.id)

    assert checkout_service.confirm_checkout(session, TENANT_ID, booked.id).confirmed_at is not None


def test_unwaive_returns_to_computed_status(session, booked):
    checkout_service.waive_payment(session, TENANT_ID, booked.id)

    assert checkout_service.unwaive_payment(session, TENANT_ID, booked.id).next_status == "pending"


def test_unknown_appointment(session):
    with pytest.raises(AppError) as exc:
        checkout_service.get_charge_snapshot(session, TENANT_ID, 999)

    assert exc.value.code == ErrorCode.NOT_FOUND
