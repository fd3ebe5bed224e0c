from datetime import datetime, time, timedelta
from unittest.mock import MagicMock

import pytest

from conftest import MONDAY, NOW, make_service
from servicebook.constants import (
    ConsultationFormat,
    ConsultationPaymentStatus,
    ConsultationStatus,
    ConsultationType,
    GatewayStatus,
)
from servicebook.errors import InvalidTransitionError, NotFoundError, PaymentGatewayError, ValidationError
from servicebook.models.tables import Bookings, ConsultationBookings
from servicebook.schemas.consultations import ConsultationCreate, ConsultationUpdate
from servicebook.services.consultations import (
    ConsultationRules,
    cancel_consultation,
    check_schedule,
    complete_consultation,
    create_consultation,
    initial_payment_status,
    mark_consultation_no_show,
    pay_consultation_fee,
    pre_booking_time,
    schedule_pre_booking_consultation,
    start_consultation,
    update_consultation,
)
from servicebook.services.payment_gateway import GatewayResult

RULES = ConsultationRules()
SATURDAY = MONDAY + timedelta(days=5)


def at(hour, minute=0, day=MONDAY):
    return datetime.combine(day, time(hour, minute))


def gateway(status=GatewayStatus.SUCCEEDED):
    mock = MagicMock()
    mock.name = "mock"
    mock.charge.return_value = GatewayResult("TX-CHARGE", status)
    mock.refund.return_value = GatewayResult("TX-REFUND", status)
    return mock


def request(user, service, scheduled_at, **kw):
    values = dict(
        user_id=user.id,
        service_id=service.id,
        scheduled_at=scheduled_at,
        client_name="Ada Client",
        client_email="ada@example.com",
    )
    values.update(kw)
    return ConsultationCreate(**values)


class TestCheckSchedule:
    def test_valid_weekday_afternoon(self):
        check_schedule(at(14), NOW, RULES)

    @pytest.mark.parametrize("scheduled_at", [
        at(7),                 # past
        at(9, 30),             # under two hours ahead
        at(18),                # end of business day
        at(11, day=SATURDAY),  # weekend
    ])
    def test_rejected_times(self, scheduled_at):
        with pytest.raises(ValidationError):
            check_schedule(scheduled_at, NOW, RULES)

    def test_service_min_advance_wins_when_longer(self):
        with pytest.raises(ValidationError):
            check_schedule(at(14), NOW, RULES, service_min_advance_hours=24)


@pytest.mark.parametrize("fee, main_booking, waived, expected", [
    (0, None, True, ConsultationPaymentStatus.FREE),
    (2500, object(), True, ConsultationPaymentStatus.WAIVED),
    (2500, object(), False, ConsultationPaymentStatus.UNPAID),
    (2500, None, True, ConsultationPaymentStatus.UNPAID),
])
def test_initial_payment_status(fee, main_booking, waived, expected):
    assert initial_payment_status(fee, main_booking, waived) == expected


class TestCreate:
    def test_schedules_consultation(self, db, user, service, notifier, redis_mock):
        consultation = create_consultation(
            db, request(user, service, at(14), duration_minutes=45), now=NOW, rules=RULES, notifier=notifier
        )

        assert consultation.status == ConsultationStatus.SCHEDULED
        assert consultation.consultation_reference.startswith("CN")
        assert consultation.ends_at == at(14, 45)
        assert consultation.payment_status == ConsultationPaymentStatus.FREE
        redis_mock.rpush.assert_called_once()

    def test_fee_waived_for_linked_booking(self, db, user, service):
        main = Bookings(
            user_id=user.id,
            service_id=service.id,
            booking_reference="BK0000CAFE",
            scheduled_at=at(9, day=MONDAY + timedelta(days=7)),
            ends_at=at(10, day=MONDAY + timedelta(days=7)),
            duration_minutes=60,
            base_price=10000,
            total_amount=10000,
            status="confirmed",
            client_name="Ada Client",
            client_email="ada@example.com",
        )
        db.add(main)
        db.commit()

        consultation = create_consultation(
            db,
            request(user, service, at(14), main_booking_id=main.id, consultation_fee=2500),
            now=NOW,
            rules=RULES,
        )
        assert consultation.payment_status == ConsultationPaymentStatus.WAIVED

    def test_main_booking_must_belong_to_service(self, db, user, service):
        with pytest.raises(ValidationError):
            create_consultation(db, request(user, service, at(14), main_booking_id=999), now=NOW, rules=RULES)

    def test_overlap_with_scheduled_consultation(self, db, user, service):
        create_consultation(db, request(user, service, at(14)), now=NOW, rules=RULES)

        with pytest.raises(ValidationError):
            create_consultation(db, request(user, service, at(14, 15)), now=NOW, rules=RULES)

        create_consultation(db, request(user, service, at(14, 30)), now=NOW, rules=RULES)
        assert db.query(ConsultationBookings).count() == 2

    def test_cancelled_consultation_frees_time(self, db, user, service):
        first = create_consultation(db, request(user, service, at(14)), now=NOW, rules=RULES)
        cancel_consultation(db, first.id, now=NOW, rules=RULES)
        create_consultation(db, request(user, service, at(14)), now=NOW, rules=RULES)

    def test_inactive_service(self, db, user):
        draft = make_service(db, status="draft")
        with pytest.raises(NotFoundError):
            create_consultation(db, request(user, draft, at(14)), now=NOW, rules=RULES)


class TestLifecycle:
    def test_start_and_complete(self, db, user, service):
        c = create_consultation(db, request(user, service, at(14)), now=NOW, rules=RULES)

        with pytest.raises(InvalidTransitionError):
            start_consultation(db, c.id, now=at(13, 40), rules=RULES)

        start_consultation(db, c.id, now=at(13, 50), rules=RULES)
        c = complete_consultation(db, c.id, "Agreed on a plan", now=at(14, 30))

        assert c.status == ConsultationStatus.COMPLETED
        assert c.started_at == at(13, 50)
        assert c.completion_notes == "Agreed on a plan"

    def test_complete_requires_in_progress(self, db, user, service):
        c = create_consultation(db, request(user, service, at(14)), now=NOW, rules=RULES)
        with pytest.raises(InvalidTransitionError):
            complete_consultation(db, c.id, now=at(14, 30))

    def test_late_cancellation_is_rejected(self, db, user, service):
        c = create_consultation(db, request(user, service, at(14)), now=NOW, rules=RULES)
        with pytest.raises(InvalidTransitionError):
            cancel_consultation(db, c.id, now=at(12, 30), rules=RULES)
        assert db.get(ConsultationBookings, c.id).status == ConsultationStatus.SCHEDULED

    def test_no_show_only_after_start(self, db, user, service):
        c = create_consultation(db, request(user, service, at(14)), now=NOW, rules=RULES)
        with pytest.raises(InvalidTransitionError):
            mark_consultation_no_show(db, c.id, now=at(13))
        assert mark_consultation_no_show(db, c.id, now=at(14, 10)).status == ConsultationStatus.NO_SHOW

    def test_terminal_consultation_is_frozen(self, db, user, service):
        c = create_consultation(db, request(user, service, at(14)), now=NOW, rules=RULES)
        mark_consultation_no_show(db, c.id, now=at(14, 10))
        with pytest.raises(InvalidTransitionError):
            start_consultation(db, c.id, now=at(14, 15), rules=RULES)


class TestUpdate:
    def test_reschedule_may_overlap_its_own_time(self, db, user, service, notifier, redis_mock):
        c = create_consultation(db, request(user, service, at(14)), now=NOW, rules=RULES)

        c = update_consultation(
            db, c.id, ConsultationUpdate(scheduled_at=at(14, 15)), now=NOW, rules=RULES, notifier=notifier
        )

        assert c.scheduled_at == at(14, 15)
        assert c.ends_at == at(14, 45)
        assert '"rescheduled"' in redis_mock.rpush.call_args.args[1]

    def test_reschedule_onto_another_consultation(self, db, user, service):
        first = create_consultation(db, request(user, service, at(14)), now=NOW, rules=RULES)
        create_consultation(db, request(user, service, at(15)), now=NOW, rules=RULES)

        with pytest.raises(ValidationError):
            update_consultation(db, first.id, ConsultationUpdate(scheduled_at=at(14, 45)), now=NOW, rules=RULES)
        assert db.get(ConsultationBookings, first.id).scheduled_at == at(14)

    def test_reschedule_runs_schedule_checks(self, db, user, service):
        c = create_consultation(db, request(user, service, at(14)), now=NOW, rules=RULES)
        with pytest.raises(ValidationError):
            update_consultation(db, c.id, ConsultationUpdate(scheduled_at=at(11, day=SATURDAY)), now=NOW, rules=RULES)

    def test_details_change_without_notification(self, db, user, service, notifier, redis_mock):
        c = create_consultation(db, request(user, service, at(14)), now=NOW, rules=RULES)
        redis_mock.rpush.reset_mock()

        c = update_consultation(
            db,
            c.id,
            ConsultationUpdate(format=ConsultationFormat.VIDEO, consultation_notes="Bring floor plans"),
            now=NOW,
            rules=RULES,
            notifier=notifier,
        )

        assert c.format == ConsultationFormat.VIDEO
        assert c.consultation_notes == "Bring floor plans"
        assert c.scheduled_at == at(14)
        redis_mock.rpush.assert_not_called()

    def test_only_scheduled_consultations_change(self, db, user, service):
        c = create_consultation(db, request(user, service, at(14)), now=NOW, rules=RULES)
        cancel_consultation(db, c.id, now=NOW, rules=RULES)
        with pytest.raises(InvalidTransitionError):
            update_consultation(db, c.id, ConsultationUpdate(client_name="Grace"), now=NOW, rules=RULES)

    def test_unknown_format_is_rejected(self):
        with pytest.raises(ValueError):
            ConsultationUpdate(format="carrier_pigeon")


class TestFee:
    def test_pay_then_cancel_refunds_through_gateway(self, db, user, service):
        c = create_consultation(db, request(user, service, at(14), consultation_fee=2500), now=NOW, rules=RULES)
        gw = gateway()

        c = pay_consultation_fee(db, c.id, gw)
        assert c.payment_status == ConsultationPaymentStatus.PAID
        assert c.payment_reference == "TX-CHARGE"
        gw.charge.assert_called_once_with(2500, None, reference=c.consultation_reference)

        c = cancel_consultation(db, c.id, reason="Sorted by email", now=NOW, rules=RULES, gateway=gw)

        assert c.status == ConsultationStatus.CANCELLED
        assert c.payment_status == ConsultationPaymentStatus.REFUNDED
        assert c.cancellation_reason == "Sorted by email"
        gw.refund.assert_called_once_with(
            2500, None, original_reference="TX-CHARGE", reference=c.consultation_reference
        )

    def test_free_consultation_has_nothing_to_pay(self, db, user, service):
        c = create_consultation(db, request(user, service, at(14)), now=NOW, rules=RULES)
        with pytest.raises(InvalidTransitionError):
            pay_consultation_fee(db, c.id, gateway())

    def test_declined_charge_leaves_fee_unpaid(self, db, user, service):
        c = create_consultation(db, request(user, service, at(14), consultation_fee=2500), now=NOW, rules=RULES)
        with pytest.raises(PaymentGatewayError):
            pay_consultation_fee(db, c.id, gateway(GatewayStatus.FAILED))
        assert db.get(ConsultationBookings, c.id).payment_status == ConsultationPaymentStatus.UNPAID

    def test_paid_consultation_needs_gateway_to_cancel(self, db, user, service):
        c = create_consultation(db, request(user, service, at(14), consultation_fee=2500), now=NOW, rules=RULES)
        pay_consultation_fee(db, c.id, gateway())

        with pytest.raises(PaymentGatewayError):
            cancel_consultation(db, c.id, now=NOW, rules=RULES)
        assert db.get(ConsultationBookings, c.id).status == ConsultationStatus.SCHEDULED


class TestPreBooking:
    @pytest.mark.parametrize("booking_start, expected", [
        (at(9, day=MONDAY + timedelta(days=7)), at(10, day=MONDAY + timedelta(days=2))),  # Wed before
        (at(9, day=MONDAY + timedelta(days=10)), at(10, day=MONDAY + timedelta(days=7))),  # Sat → Mon
        (at(15, day=MONDAY + timedelta(days=2)), at(10, day=MONDAY + timedelta(days=1))),  # not before tomorrow
    ])
    def test_pre_booking_time(self, booking_start, expected):
        assert pre_booking_time(booking_start, NOW, 5, RULES) == expected

    def booking(self, db, user, service, scheduled_at):
        main = Bookings(
            user_id=user.id,
            service_id=service.id,
            booking_reference="BK0000D00D",
            scheduled_at=scheduled_at,
            ends_at=scheduled_at + timedelta(hours=1),
            duration_minutes=60,
            base_price=10000,
            total_amount=10000,
            status="pending",
            client_name="Ada Client",
            client_email="ada@example.com",
        )
        db.add(main)
        db.commit()
        return main

    def test_links_free_consultation_to_booking(self, db, user):
        service = make_service(db, requires_consultation=True, consultation_duration_minutes=45)
        main = self.booking(db, user, service, at(9, day=MONDAY + timedelta(days=7)))

        c = schedule_pre_booking_consultation(db, main, service, now=NOW, rules=RULES)

        assert c.main_booking_id == main.id
        assert c.type == ConsultationType.PRE_BOOKING
        assert c.format == ConsultationFormat.PHONE
        assert c.scheduled_at == at(10, day=MONDAY + timedelta(days=2))
        assert c.duration_minutes == 45
        assert c.payment_status == ConsultationPaymentStatus.FREE
        assert db.get(Bookings, main.id).consultations == [c]

    def test_skipped_when_it_cannot_finish_before_the_booking(self, db, user):
        service = make_service(db, requires_consultation=True)
        main = self.booking(db, user, service, at(9, day=MONDAY + timedelta(days=1)))

        assert schedule_pre_booking_consultation(db, main, service, now=NOW, rules=RULES) is None
        assert db.query(ConsultationBookings).count() == 0

    def test_conflict_is_logged_not_raised(self, db, user):
        service = make_service(db, requires_consultation=True)
        create_consultation(db, request(user, service, at(10, day=MONDAY + timedelta(days=2))), now=NOW, rules=RULES)
        main = self.booking(db, user, service, at(9, day=MONDAY + timedelta(days=7)))

        assert schedule_pre_booking_consultation(db, main, service, now=NOW, rules=RULES) is None
        assert db.query(ConsultationBookings).count() == 1
