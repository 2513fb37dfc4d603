# tests/test_reservation_machine.py
"""Unit tests for the reservation state machine — both payment rails, races, replays, linking."""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import pytest
from datetime import timedelta

from parkbot.models.parking_space import VACANT, RESERVED, OCCUPIED
from parkbot.models.payment_intent import PaymentIntent
from parkbot.models.payment_record import PaymentRecord, PENDING, VERIFIED, REJECTED, RAIL_TON
from parkbot.models.reservation import Reservation
from parkbot.services.errors import (NotLinked, PaymentNotVerified, SpaceUnavailable, TransferPending,
                                     TransferRejected, UnknownPaymentReference, UpstreamTransportFailure)
from parkbot.services.reservation_machine import (ReservationMachine, ReservationRequest,
                                                  ReservationState, terminal_state)
from parkbot.services.ton_verifier import TransferCheck
from parkbot.utils.clock import utcnow
from tests.factories import (add_account, add_space, add_zone, fast_resolver, invoice_payload,
                             make_engine, make_session, make_session_factory, make_verifier)


def make_machine(db, verifier=None, sleep=None):
    resolver = fast_resolver(db) if sleep is None else fast_resolver(db, sleep=sleep)
    return ReservationMachine(db, resolver=resolver, verifier=verifier or make_verifier())


def premium_space(db, space_id, rate=2.0, status=VACANT):
    zone = add_zone(db, name=f"Premium {space_id}", premium=True, rate=rate)
    return add_space(db, zone, space_id, status=status)


def free_space(db, space_id):
    return add_space(db, add_zone(db, name=f"Free {space_id}", premium=False, rate=1.0), space_id)


class TestSuccessfulNativePayment:
    """Space 42, premium zone at 2.0, user linked to ABC123, pays with Stars."""

    @pytest.mark.asyncio
    async def test_full_flow(self):
        db = make_session()
        premium_space(db, 42)
        add_account(db, 111, plate="ABC123")
        machine = make_machine(db)

        selected = await machine.select_space(42, 111)
        assert selected.state == ReservationState.ELIGIBLE
        assert selected.amount_ton == 2.0

        pending = machine.start_native_payment(42, 111)
        assert pending.state == ReservationState.PAYMENT_PENDING
        assert pending.stars_amount == 400

        assert machine.precheckout_check(invoice_payload(42)) == 42

        outcome = await machine.confirm_native_payment("charge-42", invoice_payload(42), 111)
        assert outcome.state == ReservationState.RESERVED
        assert not outcome.replayed

        rows = db.query(PaymentRecord).all()
        assert len(rows) == 1
        assert (rows[0].tx_reference, rows[0].parking_space_id, rows[0].status) == ("charge-42", 42, VERIFIED)
        assert rows[0].reservation_id == outcome.reservation.id

        space = machine.store.get(42)
        assert space.status == RESERVED
        assert space.license_plate == "ABC123"

    @pytest.mark.asyncio
    async def test_redelivery_is_a_silent_success(self):
        db = make_session()
        premium_space(db, 42)
        add_account(db, 111, plate="ABC123")
        machine = make_machine(db)

        first = await machine.confirm_native_payment("charge-42", invoice_payload(42), 111)
        again = await machine.confirm_native_payment("charge-42", invoice_payload(42), 111)

        assert again.state == ReservationState.RESERVED
        assert again.replayed
        assert again.reservation.id == first.reservation.id
        assert db.query(PaymentRecord).count() == 1
        assert db.query(Reservation).count() == 1

    @pytest.mark.asyncio
    async def test_amount_comes_from_the_zone_not_the_payload(self):
        db = make_session()
        premium_space(db, 42, rate=2.0)
        add_account(db, 111)
        machine = make_machine(db)

        await machine.confirm_native_payment("charge-42", invoice_payload(42, amount_ton=0.01), 111)
        assert db.query(PaymentRecord).one().amount == 2.0


class TestContestedSpace:
    """Space 7: two users complete payment within milliseconds."""

    @pytest.mark.asyncio
    async def test_exactly_one_wins(self, tmp_path):
        factory = make_session_factory(make_engine(tmp_path / "contested.db"))
        setup = factory()
        premium_space(setup, 7)
        add_account(setup, 1, plate="AAA111")
        add_account(setup, 2, plate="BBB222")
        setup.close()

        db_a, db_b = factory(), factory()
        machine_a, machine_b = make_machine(db_a), make_machine(db_b)
        # Both pass the early check
        assert machine_a.precheckout_check(invoice_payload(7)) == 7
        assert machine_b.precheckout_check(invoice_payload(7)) == 7

        won = await machine_a.confirm_native_payment("charge-a", invoice_payload(7), 1)
        with pytest.raises(SpaceUnavailable) as exc:
            await machine_b.confirm_native_payment("charge-b", invoice_payload(7), 2)

        assert won.state == ReservationState.RESERVED
        assert exc.value.refund_pending
        assert exc.value.message_key == "space_taken_after_payment"

        loser = machine_b.ledger.get("charge-b", 7)
        assert loser.status == VERIFIED
        assert not loser.is_consumed
        assert loser.needs_review
        assert machine_b.store.get(7).license_plate == "AAA111"
        assert db_b.query(Reservation).count() == 1
        db_a.close()
        db_b.close()

    @pytest.mark.asyncio
    async def test_second_user_on_free_space(self):
        db = make_session()
        free_space(db, 8)
        add_account(db, 1, plate="AAA111")
        add_account(db, 2, plate="BBB222")
        machine = make_machine(db)

        await machine.select_space(8, 1)
        with pytest.raises(SpaceUnavailable) as exc:
            await machine.select_space(8, 2)
        assert not exc.value.refund_pending

    @pytest.mark.asyncio
    async def test_stale_eligibility_still_rejected_at_write(self):
        db = make_session()
        premium_space(db, 7)
        add_account(db, 1, plate="AAA111")
        machine = make_machine(db)
        # Occupied by a sensor after the pre-checkout approval
        machine.store.apply_sensor_reading(7, OCCUPIED)

        with pytest.raises(SpaceUnavailable):
            await machine.confirm_native_payment("charge-a", invoice_payload(7), 1)
        assert machine.ledger.get("charge-a", 7).needs_review


class TestNotLinkedAtPaymentTime:
    """Space 10: the payer has no linked plate when the payment lands."""

    @pytest.mark.asyncio
    async def test_payment_kept_and_reused_after_linking(self):
        db = make_session()
        premium_space(db, 10)
        machine = make_machine(db)

        with pytest.raises(NotLinked) as exc:
            await machine.confirm_native_payment("charge-10", invoice_payload(10), 333)
        assert terminal_state(exc.value) == ReservationState.NOT_LINKED
        assert exc.value.tx_reference == "charge-10"
        assert exc.value.message_key == "not_linked_payment_kept"

        row = machine.ledger.get("charge-10", 10)
        assert row.status == VERIFIED
        assert row.license_plate is None
        assert not row.is_consumed
        assert machine.store.get(10).status == VACANT

        machine.resolver.link(333, 333, "XYZ789")
        outcome = await machine.submit_transfer_reference("charge-10", 333)

        assert outcome.state == ReservationState.RESERVED
        assert outcome.payment.id == row.id
        assert db.query(PaymentRecord).count() == 1
        assert machine.ledger.get("charge-10", 10).license_plate == "XYZ789"
        assert machine.store.get(10).license_plate == "XYZ789"

    @pytest.mark.asyncio
    async def test_redelivered_payment_after_linking(self):
        db = make_session()
        premium_space(db, 10)
        machine = make_machine(db)

        with pytest.raises(NotLinked):
            await machine.confirm_native_payment("charge-10", invoice_payload(10), 333)
        machine.resolver.link(333, 333, "XYZ789")

        outcome = await machine.confirm_native_payment("charge-10", invoice_payload(10), 333)
        assert outcome.state == ReservationState.RESERVED
        assert db.query(PaymentRecord).count() == 1

    @pytest.mark.asyncio
    async def test_link_landing_during_backoff(self):
        db = make_session()
        premium_space(db, 10)
        machine = None

        async def link_meanwhile(_delay):
            machine.resolver.link(333, 333, "XYZ789")

        machine = make_machine(db, sleep=link_meanwhile)
        outcome = await machine.confirm_native_payment("charge-10", invoice_payload(10), 333)
        assert outcome.state == ReservationState.RESERVED
        assert outcome.request.license_plate == "XYZ789"


class TestPremiumGating:
    @pytest.mark.asyncio
    async def test_premium_space_needs_verified_payment(self):
        db = make_session()
        premium_space(db, 42)
        add_account(db, 111)
        machine = make_machine(db)

        with pytest.raises(PaymentNotVerified):
            await machine.complete_reservation(ReservationRequest(42, 111))

        pending = machine.ledger.record_or_get("tx-1", 42, 111, "ABC123", 2.0, RAIL_TON)
        with pytest.raises(PaymentNotVerified):
            await machine.complete_reservation(ReservationRequest(42, 111), pending)

        other_space = machine.ledger.record_or_get("tx-2", 99, 111, "ABC123", 2.0, RAIL_TON, verified=True)
        with pytest.raises(PaymentNotVerified):
            await machine.complete_reservation(ReservationRequest(42, 111), other_space)

        assert machine.store.get(42).status == VACANT

    @pytest.mark.asyncio
    async def test_free_space_reserves_without_ledger(self):
        db = make_session()
        free_space(db, 5)
        add_account(db, 111, plate="ABC123")
        machine = make_machine(db)

        outcome = await machine.select_space(5, 111)
        assert outcome.state == ReservationState.RESERVED
        assert outcome.amount_ton == 0.0
        assert machine.store.get(5).status == RESERVED
        assert db.query(PaymentRecord).count() == 0

    @pytest.mark.asyncio
    async def test_select_requires_link_and_vacancy(self):
        db = make_session()
        premium_space(db, 42)
        premium_space(db, 43, status=OCCUPIED)
        machine = make_machine(db)

        with pytest.raises(NotLinked):
            await machine.select_space(42, 111)
        add_account(db, 111)
        with pytest.raises(SpaceUnavailable):
            await machine.select_space(43, 111)
        with pytest.raises(SpaceUnavailable):
            await machine.select_space(404, 111)

    def test_precheckout_declines_taken_space(self):
        db = make_session()
        premium_space(db, 42, status=RESERVED)
        machine = make_machine(db)
        with pytest.raises(SpaceUnavailable):
            machine.precheckout_check(invoice_payload(42))


class TestManualTonRail:
    @pytest.mark.asyncio
    async def test_intent_then_verified_hash(self):
        db = make_session()
        premium_space(db, 42, rate=1.5)
        add_account(db, 111, plate="ABC123")
        verifier = make_verifier(TransferCheck(verified=True))
        machine = make_machine(db, verifier=verifier)

        pending = await machine.start_manual_payment(42, 111)
        assert pending.state == ReservationState.PAYMENT_PENDING
        assert db.query(PaymentIntent).one().amount == 1.5

        outcome = await machine.submit_transfer_reference("a" * 64, 111)
        assert outcome.state == ReservationState.RESERVED
        assert outcome.request.rail == RAIL_TON
        verifier.verify_transfer.assert_awaited_once_with("a" * 64, 1.5)
        assert machine.ledger.get("a" * 64, 42).status == VERIFIED
        assert db.query(PaymentIntent).one().is_consumed

        # Same hash again: replay, indexer not asked twice
        again = await machine.submit_transfer_reference("a" * 64, 111)
        assert again.replayed
        assert verifier.verify_transfer.await_count == 1

    @pytest.mark.asyncio
    async def test_hash_without_intent(self):
        db = make_session()
        add_account(db, 111)
        with pytest.raises(UnknownPaymentReference):
            await make_machine(db).submit_transfer_reference("b" * 64, 111)

    @pytest.mark.asyncio
    async def test_intent_outside_window_is_ignored(self):
        db = make_session()
        premium_space(db, 42)
        add_account(db, 111, plate="ABC123")
        db.add(PaymentIntent(telegram_user_id=111, license_plate="ABC123", parking_space_id=42, amount=2.0,
                             is_consumed=False, created_at=utcnow() - timedelta(minutes=61)))
        db.commit()
        with pytest.raises(UnknownPaymentReference):
            await make_machine(db).submit_transfer_reference("c" * 64, 111)

    @pytest.mark.asyncio
    async def test_rejected_transfer(self):
        db = make_session()
        premium_space(db, 42)
        add_account(db, 111)
        machine = make_machine(db, verifier=make_verifier(TransferCheck(verified=False, reason="amount mismatch")))
        await machine.start_manual_payment(42, 111)

        with pytest.raises(TransferRejected) as exc:
            await machine.submit_transfer_reference("d" * 64, 111)
        assert terminal_state(exc.value) == ReservationState.PAYMENT_REJECTED
        assert exc.value.reason == "amount mismatch"
        row = machine.ledger.get("d" * 64, 42)
        assert row.status == REJECTED
        assert row.review_reason == "amount mismatch"
        assert machine.store.get(42).status == VACANT
        # The intent stays open for a corrected transfer
        assert not db.query(PaymentIntent).one().is_consumed

    @pytest.mark.asyncio
    @pytest.mark.parametrize("verifier", [
        make_verifier(TransferCheck(verified=False, final=False, reason="transaction not found")),
        make_verifier(error=UpstreamTransportFailure("ton_indexer", "timeout")),
    ])
    async def test_unconfirmed_transfer_stays_pending(self, verifier):
        db = make_session()
        premium_space(db, 42)
        add_account(db, 111)
        machine = make_machine(db, verifier=verifier)
        await machine.start_manual_payment(42, 111)

        with pytest.raises(TransferPending) as exc:
            await machine.submit_transfer_reference("e" * 64, 111)
        assert terminal_state(exc.value) == ReservationState.PAYMENT_PENDING
        assert machine.ledger.get("e" * 64, 42).status == PENDING
        assert machine.store.get(42).status == VACANT

    @pytest.mark.asyncio
    async def test_cancel_closes_open_intents(self):
        db = make_session()
        premium_space(db, 42)
        add_account(db, 111)
        machine = make_machine(db)
        await machine.start_manual_payment(42, 111)

        assert machine.cancel_pending(111) == 1
        with pytest.raises(UnknownPaymentReference):
            await machine.submit_transfer_reference("f" * 64, 111)


class TestReplayGuards:
    """A consumed payment only replays the reservation it bought, for the plate it bought it for."""

    @pytest.mark.asyncio
    async def test_ended_reservation_is_not_replayed(self):
        db = make_session()
        premium_space(db, 42)
        add_account(db, 111, plate="ABC123")
        add_account(db, 222, plate="ZZZ999")
        machine = make_machine(db)

        await machine.confirm_native_payment("charge-42", invoice_payload(42), 111)
        space = machine.store.get(42)
        space.reservation_end = utcnow() - timedelta(minutes=1)
        db.commit()
        await machine.confirm_native_payment("charge-77", invoice_payload(42), 222)

        with pytest.raises(SpaceUnavailable) as exc:
            await machine.submit_transfer_reference("charge-42", 111)
        assert not exc.value.refund_pending
        assert not machine.ledger.get("charge-42", 42).needs_review
        assert machine.store.get(42).license_plate == "ZZZ999"

    @pytest.mark.asyncio
    async def test_expired_and_swept_reservation_is_not_replayed(self):
        db = make_session()
        premium_space(db, 42)
        add_account(db, 111, plate="ABC123")
        machine = make_machine(db)

        await machine.confirm_native_payment("charge-42", invoice_payload(42), 111)
        machine.store.get(42).reservation_end = utcnow() - timedelta(minutes=1)
        db.commit()
        machine.store.expire_reservations()

        with pytest.raises(SpaceUnavailable):
            await machine.confirm_native_payment("charge-42", invoice_payload(42), 111)
        assert machine.store.get(42).status == VACANT
        assert db.query(Reservation).count() == 1

    @pytest.mark.asyncio
    async def test_relinked_plate_does_not_rewrite_used_payment(self):
        db = make_session()
        premium_space(db, 42)
        add_account(db, 111, plate="ABC123")
        machine = make_machine(db)

        await machine.confirm_native_payment("charge-42", invoice_payload(42), 111)
        machine.resolver.link(111, 111, "NEW777")

        with pytest.raises(TransferRejected) as exc:
            await machine.confirm_native_payment("charge-42", invoice_payload(42), 111)
        assert "ABC123" in exc.value.reason
        assert machine.ledger.get("charge-42", 42).license_plate == "ABC123"
        assert machine.store.get(42).license_plate == "ABC123"

    @pytest.mark.asyncio
    async def test_hash_from_another_account_is_rejected(self):
        db = make_session()
        premium_space(db, 5, rate=1.0)
        premium_space(db, 6, rate=1.0)
        add_account(db, 111, plate="ABC123")
        add_account(db, 222, plate="ZZZ999")
        verifier = make_verifier(TransferCheck(verified=True))
        machine = make_machine(db, verifier=verifier)

        await machine.start_manual_payment(5, 111)
        await machine.submit_transfer_reference("a" * 64, 111)

        await machine.start_manual_payment(6, 222)
        with pytest.raises(TransferRejected) as exc:
            await machine.submit_transfer_reference("a" * 64, 222)
        assert exc.value.reason == "already used by another account"

        assert db.query(PaymentRecord).count() == 1
        assert machine.store.get(6).status == VACANT
        assert machine.ledger.list(needs_review=True) == []
        assert verifier.verify_transfer.await_count == 1
