import json
from datetime import datetime, time, timedelta
from unittest.mock import MagicMock

import pytest

from conftest import MONDAY, NOW, make_service, make_window
from servicebook.constants import GatewayStatus, NotificationType, PaymentStatus, PaymentType
from servicebook.errors import InvalidTransitionError, PaymentGatewayError, ValidationError
from servicebook.models.tables import Payments
from servicebook.schemas.bookings import BookingCreate
from servicebook.services import booking_service
from servicebook.services.booking_payment import net_paid, record_payment
from servicebook.services.payment_gateway import GatewayResult, ManualPaymentGateway, PaymentGateway

NEXT_MONDAY = MONDAY + timedelta(days=7)


@pytest.fixture
def gateway():
    return ManualPaymentGateway()


def book(db, user, **service_overrides):
    service = make_service(db, **service_overrides)
    make_window(db, service)
    return booking_service.create_booking(
        db,
        BookingCreate(
            user_id=user.id,
            service_id=service.id,
            scheduled_at=datetime.combine(NEXT_MONDAY, time(9)),
            client_name="Ada Client",
            client_email="ada@example.com",
        ),
        now=NOW,
    )


class TestCharges:
    def test_deposit_then_final(self, db, user, gateway):
        booking = book(db, user, requires_deposit=True, deposit_percentage=30)

        deposit = record_payment(db, booking.id, PaymentType.DEPOSIT, gateway)
        assert deposit.amount == 3000
        assert deposit.status == GatewayStatus.SUCCEEDED
        assert deposit.gateway == "manual"
        assert deposit.transaction_reference.startswith("MAN-")
        assert booking.payment_status == PaymentStatus.DEPOSIT_PAID

        final = record_payment(db, booking.id, PaymentType.FINAL, gateway)
        assert final.amount == 7000
        assert booking.payment_status == PaymentStatus.FULLY_PAID
        assert net_paid(booking) == 10000

    def test_full_payment_without_deposit(self, db, user, gateway):
        booking = book(db, user)
        payment = record_payment(db, booking.id, PaymentType.FULL, gateway)
        assert payment.amount == 10000
        assert booking.payment_status == PaymentStatus.FULLY_PAID

    def test_full_payment_cannot_skip_required_deposit(self, db, user):
        booking = book(db, user, requires_deposit=True, deposit_amount=2000)
        gateway = MagicMock(spec=PaymentGateway)

        with pytest.raises(InvalidTransitionError):
            record_payment(db, booking.id, PaymentType.FULL, gateway)

        gateway.charge.assert_not_called()
        assert db.query(Payments).count() == 0

    def test_deposit_on_booking_without_deposit(self, db, user, gateway):
        booking = book(db, user)
        with pytest.raises(ValidationError):
            record_payment(db, booking.id, PaymentType.DEPOSIT, gateway)

    def test_overpayment_is_rejected(self, db, user, gateway):
        booking = book(db, user)
        with pytest.raises(ValidationError) as exc:
            record_payment(db, booking.id, PaymentType.FULL, gateway, amount=15000)
        assert exc.value.field == "amount"

    def test_cancelled_booking_cannot_be_charged(self, db, user, gateway):
        booking = book(db, user)
        booking_service.cancel_booking(db, booking.id, now=NOW)
        with pytest.raises(ValidationError):
            record_payment(db, booking.id, PaymentType.FULL, gateway)

    def test_failed_charge_is_recorded_without_status_change(self, db, user):
        booking = book(db, user)
        gateway = MagicMock(spec=PaymentGateway)
        gateway.name = "http"
        gateway.charge.return_value = GatewayResult("GW-42", GatewayStatus.FAILED)

        payment = record_payment(db, booking.id, PaymentType.FULL, gateway)

        assert payment.status == GatewayStatus.FAILED
        assert payment.transaction_reference == "GW-42"
        assert booking.payment_status == PaymentStatus.PENDING
        assert net_paid(booking) == 0

    def test_gateway_error_records_nothing(self, db, user):
        booking = book(db, user)
        gateway = MagicMock(spec=PaymentGateway)
        gateway.name = "http"
        gateway.charge.side_effect = PaymentGatewayError("timeout")

        with pytest.raises(PaymentGatewayError):
            record_payment(db, booking.id, PaymentType.FULL, gateway)

        assert db.query(Payments).count() == 0

    def test_successful_payment_is_announced(self, db, user, gateway, notifier, redis_mock):
        booking = book(db, user)
        record_payment(db, booking.id, PaymentType.FULL, gateway, notifier=notifier)

        event = json.loads(redis_mock.rpush.call_args.args[1])
        assert event["type"] == NotificationType.PAYMENT_RECEIVED
        assert event["amount"] == 10000


class TestRefunds:
    def test_partial_then_full_refund(self, db, user, gateway):
        booking = book(db, user)
        record_payment(db, booking.id, PaymentType.FULL, gateway)

        record_payment(db, booking.id, PaymentType.REFUND, gateway, amount=4000)
        assert booking.payment_status == PaymentStatus.PARTIALLY_REFUNDED

        rest = record_payment(db, booking.id, PaymentType.REFUND, gateway)
        assert rest.amount == 6000
        assert booking.payment_status == PaymentStatus.REFUNDED
        assert net_paid(booking) == 0

    def test_refund_defaults_to_cancellation_percentage(self, db, user, gateway):
        booking = book(db, user)
        record_payment(db, booking.id, PaymentType.FULL, gateway)
        booking_service.cancel_booking(db, booking.id, now=datetime.combine(NEXT_MONDAY - timedelta(days=1), time(8)))

        refund = record_payment(db, booking.id, PaymentType.REFUND, gateway)

        assert refund.amount == 5000
        assert refund.transaction_reference.startswith("MAN-R-")
        assert booking.payment_status == PaymentStatus.PARTIALLY_REFUNDED

    def test_refund_cannot_exceed_money_held(self, db, user, gateway):
        booking = book(db, user)
        record_payment(db, booking.id, PaymentType.FULL, gateway)
        with pytest.raises(ValidationError):
            record_payment(db, booking.id, PaymentType.REFUND, gateway, amount=10001)

    def test_refund_passes_original_reference(self, db, user, gateway):
        booking = book(db, user)
        charge = record_payment(db, booking.id, PaymentType.FULL, gateway)
        spy = MagicMock(spec=PaymentGateway)
        spy.name = "manual"
        spy.refund.return_value = GatewayResult("R-1", GatewayStatus.SUCCEEDED)

        record_payment(db, booking.id, PaymentType.REFUND, spy, amount=1000)

        spy.refund.assert_called_once_with(1000, booking.id, charge.transaction_reference)

    def test_nothing_to_refund(self, db, user, gateway):
        booking = book(db, user)
        with pytest.raises(ValidationError):
            record_payment(db, booking.id, PaymentType.REFUND, gateway)
