"""
Tests for app.services.refunds — admin refunds and guest refund requests.
"""

from datetime import timedelta

import pytest

from app.core.errors import (
    AlreadyRefunded, ConcurrencyConflict, InvalidRefundAmount, NotFound, PaymentProviderError,
    PermissionDenied, ValidationError,
)
from app.models.booking import Booking
from app.models.enums import BookingStatus, PaymentStatus, RefundStatus, RoomStatus
from app.services import booking_lifecycle, payment_webhooks, refunds, room_inventory

from conftest import NOW, TODAY, make_admin, make_booking, make_hotel, make_user, room_status


@pytest.fixture
def setup(db):
    admin = make_admin(db)
    user = make_user(db)
    hotel = make_hotel(db, admin)
    booking = make_booking(db, user, hotel, total_price=300.0)
    room_inventory.mark_occupied(db, hotel.id, "101")
    db.commit()
    return hotel, user, admin, booking


class TestIssueRefund:

    def test_full_refund_cancels_and_frees_room(self, db, gateway, setup, events):
        hotel, _, admin, booking = setup

        amount, booking = refunds.issue_refund(db, gateway, booking.id, "full", admin=admin, now=NOW)

        assert amount == 300
        assert booking.refunded_amount == 300
        assert booking.refund_status == RefundStatus.COMPLETED.value
        assert booking.payment_status == PaymentStatus.REFUNDED.value
        assert booking.status == BookingStatus.CANCELLED.value
        assert booking.refund_processed_by == admin.id
        assert room_status(db, hotel) == RoomStatus.AVAILABLE.value
        assert gateway.refunds[0]["amount"] == 30000
        assert booking.provider_refund_ids == ["rfnd_1"]
        assert booking.refund_claimed_at is None
        assert "bookingRefunded" in [name for name, _ in events]

    def test_partial_refund_keeps_stay(self, db, gateway, setup):
        hotel, _, _, booking = setup

        amount, booking = refunds.issue_refund(db, gateway, booking.id, "partial", amount=100, now=NOW)

        assert amount == 100
        assert booking.refunded_amount == 100
        assert booking.remaining_balance == 200
        assert booking.refund_status == RefundStatus.PARTIAL.value
        assert booking.payment_status == PaymentStatus.SUCCEEDED.value
        assert booking.status == BookingStatus.CONFIRMED.value
        assert room_status(db, hotel) == RoomStatus.OCCUPIED.value

    def test_partial_then_full_refunds_remainder(self, db, gateway, setup):
        _, _, _, booking = setup

        refunds.issue_refund(db, gateway, booking.id, "partial", amount=120.5, now=NOW)
        amount, booking = refunds.issue_refund(db, gateway, booking.id, "full", now=NOW)

        assert amount == 179.5
        assert booking.refunded_amount == 300
        assert [r["amount"] for r in gateway.refunds] == [12050, 17950]

    def test_partial_refund_of_remaining_balance_completes(self, db, gateway, setup):
        _, _, _, booking = setup

        refunds.issue_refund(db, gateway, booking.id, "partial", amount=100, now=NOW)
        _, booking = refunds.issue_refund(db, gateway, booking.id, "partial", amount=200, now=NOW)

        assert booking.refund_status == RefundStatus.COMPLETED.value
        assert booking.status == BookingStatus.CANCELLED.value

    def test_partial_refund_after_stay_closes_booking(self, db, gateway):
        admin = make_admin(db)
        user = make_user(db)
        hotel = make_hotel(db, admin)
        booking = make_booking(db, user, hotel, check_in=TODAY - timedelta(days=3), check_out=TODAY)

        _, booking = refunds.issue_refund(db, gateway, booking.id, "partial", amount=50, now=NOW)

        assert booking.status == BookingStatus.CANCELLED.value
        assert booking.refund_status == RefundStatus.PARTIAL.value

    def test_full_refund_of_completed_stay_stays_completed(self, db, gateway, setup):
        _, _, _, booking = setup
        booking.status = BookingStatus.COMPLETED.value
        db.commit()

        _, booking = refunds.issue_refund(db, gateway, booking.id, "full", now=NOW)

        assert booking.status == BookingStatus.COMPLETED.value
        assert booking.refund_status == RefundStatus.COMPLETED.value

    def test_refund_after_rejection(self, db, gateway):
        admin = make_admin(db)
        user = make_user(db)
        hotel = make_hotel(db, admin)
        booking = make_booking(db, user, hotel, status=BookingStatus.PENDING.value)
        booking_lifecycle.reject_booking(db, booking.id, admin=admin)

        amount, booking = refunds.issue_refund(db, gateway, booking.id, "full", now=NOW)

        assert amount == 300
        assert booking.status == BookingStatus.CANCELLED.value
        assert booking.payment_status == PaymentStatus.REFUNDED.value


class TestRefundGuards:

    def test_second_full_refund_rejected(self, db, gateway, setup):
        _, _, _, booking = setup
        refunds.issue_refund(db, gateway, booking.id, "full", now=NOW)

        with pytest.raises(AlreadyRefunded):
            refunds.issue_refund(db, gateway, booking.id, "full", now=NOW)
        with pytest.raises(AlreadyRefunded):
            refunds.issue_refund(db, gateway, booking.id, "partial", amount=1, now=NOW)
        assert len(gateway.refunds) == 1

    @pytest.mark.parametrize("amount", [0, -5, 300.01, 1000])
    def test_partial_amount_out_of_range(self, db, gateway, setup, amount):
        _, _, _, booking = setup
        with pytest.raises(InvalidRefundAmount):
            refunds.issue_refund(db, gateway, booking.id, "partial", amount=amount, now=NOW)
        assert gateway.refunds == []

    def test_partial_exceeding_remaining_balance(self, db, gateway, setup):
        _, _, _, booking = setup
        refunds.issue_refund(db, gateway, booking.id, "partial", amount=250, now=NOW)

        with pytest.raises(InvalidRefundAmount):
            refunds.issue_refund(db, gateway, booking.id, "partial", amount=60, now=NOW)

        db.expire_all()
        assert db.get(Booking, booking.id).refunded_amount == 250

    def test_partial_without_amount_uses_guest_request(self, db, gateway, setup):
        _, user, _, booking = setup
        refunds.request_refund(db, booking.id, user, "Plans changed", requested_amount=75, now=NOW)

        amount, booking = refunds.issue_refund(db, gateway, booking.id, "partial", now=NOW)
        assert amount == 75

    def test_partial_without_any_amount(self, db, gateway, setup):
        _, _, _, booking = setup
        with pytest.raises(ValidationError):
            refunds.issue_refund(db, gateway, booking.id, "partial", now=NOW)

    def test_invalid_refund_type(self, db, gateway, setup):
        _, _, _, booking = setup
        with pytest.raises(ValidationError):
            refunds.issue_refund(db, gateway, booking.id, "everything", now=NOW)

    def test_unpaid_booking(self, db, gateway):
        admin = make_admin(db)
        user = make_user(db)
        hotel = make_hotel(db, admin)
        booking = make_booking(db, user, hotel, payment_status=PaymentStatus.PENDING.value)

        with pytest.raises(ValidationError):
            refunds.issue_refund(db, gateway, booking.id, "full", now=NOW)

    def test_missing_booking(self, db, gateway):
        with pytest.raises(NotFound):
            refunds.issue_refund(db, gateway, 404, "full", now=NOW)

    def test_provider_failure_changes_nothing(self, db, gateway, setup):
        _, _, _, booking = setup
        gateway.fail_refund = True

        with pytest.raises(PaymentProviderError):
            refunds.issue_refund(db, gateway, booking.id, "full", now=NOW)

        db.rollback()
        booking = db.get(Booking, booking.id)
        assert booking.refunded_amount == 0
        assert booking.refund_status == RefundStatus.NONE.value
        assert booking.status == BookingStatus.CONFIRMED.value
        assert booking.refund_claimed_at is None

    def test_refund_in_flight_blocks_another(self, db, gateway, setup):
        _, _, _, booking = setup
        booking.refund_claimed_at = NOW - timedelta(minutes=1)
        db.commit()

        with pytest.raises(ConcurrencyConflict):
            refunds.issue_refund(db, gateway, booking.id, "full", now=NOW)
        assert gateway.refunds == []

    def test_abandoned_claim_is_overridden(self, db, gateway, setup):
        _, _, _, booking = setup
        booking.refund_claimed_at = NOW - timedelta(minutes=refunds.REFUND_CLAIM_TIMEOUT_MINUTES + 1)
        db.commit()

        amount, booking = refunds.issue_refund(db, gateway, booking.id, "full", now=NOW)

        assert amount == 300
        assert booking.refund_claimed_at is None


class TestRefundRace:

    @pytest.fixture
    def seeded(self, file_session_factory):
        seed = file_session_factory()
        admin = make_admin(seed)
        user = make_user(seed)
        hotel = make_hotel(seed, admin)
        booking_id = make_booking(
            seed, user, hotel, check_in=TODAY - timedelta(days=3), check_out=TODAY - timedelta(days=1),
        ).id
        seed.close()

        sessions = []

        def open_session():
            session = file_session_factory()
            sessions.append(session)
            return session

        yield booking_id, open_session
        for session in sessions:
            session.close()

    def test_refund_recorded_after_concurrent_completion(self, seeded, gateway):
        booking_id, open_session = seeded
        refund_session, sweep_session = open_session(), open_session()

        gateway.during_refund = lambda _: booking_lifecycle.sweep_completions(sweep_session, now=NOW)

        amount, booking = refunds.issue_refund(refund_session, gateway, booking_id, "full", now=NOW)

        assert amount == 300
        assert booking.refunded_amount == 300
        assert booking.refund_status == RefundStatus.COMPLETED.value
        assert booking.status == BookingStatus.COMPLETED.value
        assert booking.refund_claimed_at is None
        assert booking.provider_refund_ids == ["rfnd_1"]
        assert len(gateway.refunds) == 1

    def test_concurrent_refunds_move_money_once(self, seeded, gateway):
        booking_id, open_session = seeded
        first, second = open_session(), open_session()
        rejected = []

        def second_admin_refunds(_):
            with pytest.raises(ConcurrencyConflict) as exc:
                refunds.issue_refund(second, gateway, booking_id, "full", now=NOW)
            rejected.append(exc.value)

        gateway.during_refund = second_admin_refunds

        amount, booking = refunds.issue_refund(first, gateway, booking_id, "full", now=NOW)

        assert rejected
        assert amount == 300
        assert booking.refunded_amount == 300
        assert len(gateway.refunds) == 1

        second.expire_all()
        assert second.get(Booking, booking_id).refunded_amount == 300

    def test_stale_session_sees_finished_refund(self, seeded, gateway):
        booking_id, open_session = seeded
        first, second = open_session(), open_session()
        second.get(Booking, booking_id)

        refunds.issue_refund(first, gateway, booking_id, "full", now=NOW)

        with pytest.raises(AlreadyRefunded):
            refunds.issue_refund(second, gateway, booking_id, "full", now=NOW)
        assert len(gateway.refunds) == 1

    def test_claim_lost_to_concurrent_writer_moves_no_money(self, seeded, gateway, monkeypatch):
        booking_id, open_session = seeded
        first, sweep_session = open_session(), open_session()
        resolve = refunds._resolve_amount

        def sweep_then_resolve(booking, refund_type, amount):
            booking_lifecycle.sweep_completions(sweep_session, now=NOW)
            return resolve(booking, refund_type, amount)

        monkeypatch.setattr(refunds, "_resolve_amount", sweep_then_resolve)

        with pytest.raises(ConcurrencyConflict):
            refunds.issue_refund(first, gateway, booking_id, "full", now=NOW)
        assert gateway.refunds == []

    def test_outside_refund_during_ours_is_not_double_counted(self, seeded, gateway):
        booking_id, open_session = seeded
        first, webhook_session = open_session(), open_session()

        def provider_reports_other_refund(_):
            payment_webhooks.handle_event(webhook_session, gateway, {
                "event": "refund.processed",
                "payload": {"refund": {"entity": {
                    "id": "rfnd_dashboard", "payment_id": "pay_seed_1", "amount": 30000,
                }}},
            }, now=NOW)

        gateway.during_refund = provider_reports_other_refund

        with pytest.raises(ConcurrencyConflict):
            refunds.issue_refund(first, gateway, booking_id, "full", now=NOW)

        first.expire_all()
        booking = first.get(Booking, booking_id)
        assert booking.refunded_amount == 300
        assert booking.provider_refund_ids == ["rfnd_dashboard"]
        assert booking.refund_claimed_at is None

    def test_our_refund_reported_by_provider_first(self, seeded, gateway):
        booking_id, open_session = seeded
        first, webhook_session = open_session(), open_session()

        def provider_reports_our_refund(refund):
            payment_webhooks.handle_event(webhook_session, gateway, {
                "event": "refund.processed",
                "payload": {"refund": {"entity": {
                    "id": refund["id"], "payment_id": refund["payment_id"], "amount": refund["amount"],
                }}},
            }, now=NOW)

        gateway.during_refund = provider_reports_our_refund

        amount, booking = refunds.issue_refund(first, gateway, booking_id, "full", now=NOW)

        assert amount == 300
        assert booking.refunded_amount == 300
        assert booking.provider_refund_ids == ["rfnd_1"]
        assert booking.refund_claimed_at is None


class TestRefundRequests:

    def test_request_queues_for_admin(self, db, setup, events):
        _, user, _, booking = setup
        booking = refunds.request_refund(db, booking.id, user, "Flight cancelled", now=NOW)

        assert booking.refund_status == RefundStatus.REQUESTED.value
        assert booking.refund_reason == "Flight cancelled"
        assert booking.refund_requested_at == NOW
        assert booking.refunded_amount == 0
        items, total = refunds.list_refund_requests(db)
        assert total == 1 and items[0].id == booking.id
        assert "refundRequested" in [name for name, _ in events]

    def test_only_owner_may_request(self, db, setup):
        _, _, _, booking = setup
        stranger = make_user(db, email="stranger@example.com")
        with pytest.raises(PermissionDenied):
            refunds.request_refund(db, booking.id, stranger, "mine now", now=NOW)

    def test_duplicate_request(self, db, setup):
        _, user, _, booking = setup
        refunds.request_refund(db, booking.id, user, "first", now=NOW)
        with pytest.raises(ValidationError):
            refunds.request_refund(db, booking.id, user, "second", now=NOW)

    def test_request_after_full_refund(self, db, gateway, setup):
        _, user, _, booking = setup
        refunds.issue_refund(db, gateway, booking.id, "full", now=NOW)
        with pytest.raises(AlreadyRefunded):
            refunds.request_refund(db, booking.id, user, "again", now=NOW)

    def test_request_after_partial_refund(self, db, gateway, setup):
        _, user, _, booking = setup
        refunds.issue_refund(db, gateway, booking.id, "partial", amount=10, now=NOW)
        with pytest.raises(ValidationError):
            refunds.request_refund(db, booking.id, user, "more please", now=NOW)

    def test_requested_amount_above_paid(self, db, setup):
        _, user, _, booking = setup
        with pytest.raises(InvalidRefundAmount):
            refunds.request_refund(db, booking.id, user, "too much", requested_amount=301, now=NOW)

    def test_admin_rejects_request(self, db, setup):
        _, user, admin, booking = setup
        refunds.request_refund(db, booking.id, user, "please", now=NOW)

        booking = refunds.reject_refund_request(db, booking.id, admin_notes="Non-refundable rate", admin=admin, now=NOW)

        assert booking.refund_status == RefundStatus.REJECTED.value
        assert booking.refund_admin_notes == "Non-refundable rate"
        assert booking.payment_status == PaymentStatus.SUCCEEDED.value
        assert refunds.list_refund_requests(db)[1] == 0

    def test_rejected_request_can_be_resubmitted(self, db, setup):
        _, user, _, booking = setup
        refunds.request_refund(db, booking.id, user, "please", now=NOW)
        refunds.reject_refund_request(db, booking.id, now=NOW)

        booking = refunds.request_refund(db, booking.id, user, "new evidence", now=NOW)
        assert booking.refund_status == RefundStatus.REQUESTED.value
        assert booking.refund_admin_notes is None

    def test_reject_without_request(self, db, setup):
        _, _, _, booking = setup
        with pytest.raises(ValidationError):
            refunds.reject_refund_request(db, booking.id, now=NOW)
