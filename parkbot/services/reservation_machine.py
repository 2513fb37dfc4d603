# parkbot/services/reservation_machine.py
"""
Reservation state machine.

    eligible ──(free zone)──────────────────────────────► reserved
        │
        └─(premium)─► payment_pending ─► payment_verified ─► reserved

Terminal failures are raised, not returned: SpaceUnavailable, NotLinked,
PaymentNotVerified (payment_rejected; TransferPending leaves the payment
pending). The webhook dispatcher turns them into one localized message.

Only complete_reservation() mutates a space, through SpaceStore.try_reserve()
(a conditional UPDATE). Every entry point is safe to call again with the same
update: a payment that already bought the live reservation on this space for
this plate is reported as RESERVED with replayed=True. A payment whose
reservation has ended, or that bought it for another plate, buys nothing new.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

from sqlalchemy.orm import Session

from parkbot.config import settings
from parkbot.models.parking_space import ParkingSpace
from parkbot.models.payment_intent import PaymentIntent
from parkbot.models.payment_record import PaymentRecord, RAIL_STARS, RAIL_TON, REJECTED, VERIFIED
from parkbot.models.reservation import Reservation
from parkbot.services.errors import (NotLinked, PaymentNotVerified, SpaceUnavailable, TransferPending,
                                     TransferRejected, UnknownPaymentReference, UpstreamTransportFailure)
from parkbot.services.link_resolver import AccountLinkResolver
from parkbot.services.payment_ledger import PaymentLedger
from parkbot.services.space_store import SpaceStore
from parkbot.services.ton_verifier import TonVerifier
from parkbot.services.update_parser import parse_invoice_payload
from parkbot.utils.clock import utcnow
from parkbot.utils.logger import bind, get_logger


class ReservationState(str, Enum):
    ELIGIBLE = "eligible"
    PAYMENT_PENDING = "payment_pending"
    PAYMENT_VERIFIED = "payment_verified"
    RESERVED = "reserved"
    SPACE_UNAVAILABLE = "space_unavailable"
    PAYMENT_REJECTED = "payment_rejected"
    NOT_LINKED = "not_linked"


@dataclass
class ReservationRequest:
    """In-flight only. Lives for one webhook invocation."""
    space_id: int
    telegram_user_id: int
    rail: Optional[str] = None
    license_plate: Optional[str] = None
    tx_reference: Optional[str] = None


@dataclass
class ReservationOutcome:
    state: ReservationState
    request: ReservationRequest
    zone_name: Optional[str] = None
    is_premium: bool = False
    amount_ton: float = 0.0
    hours: int = 1
    reservation: Optional[Reservation] = None
    payment: Optional[PaymentRecord] = None
    replayed: bool = False
    end_time: Optional[datetime] = None

    @property
    def stars_amount(self) -> int:
        return stars_for(self.amount_ton)


def stars_for(amount_ton: float) -> int:
    return max(1, int(amount_ton * settings.STARS_PER_TON))


def terminal_state(exc: Exception) -> Optional[ReservationState]:
    """Failure state a raised error corresponds to, for logging."""
    if isinstance(exc, SpaceUnavailable):
        return ReservationState.SPACE_UNAVAILABLE
    if isinstance(exc, NotLinked):
        return ReservationState.NOT_LINKED
    if isinstance(exc, TransferPending):
        return ReservationState.PAYMENT_PENDING
    if isinstance(exc, PaymentNotVerified):
        return ReservationState.PAYMENT_REJECTED
    return None


class ReservationMachine:
    def __init__(self, db: Session, ledger: PaymentLedger = None, store: SpaceStore = None,
                 resolver: AccountLinkResolver = None, verifier: TonVerifier = None, logger=None):
        self.db = db
        self.logger = logger or get_logger(__name__)
        self.ledger = ledger or PaymentLedger(db, logger=self.logger)
        self.store = store or SpaceStore(db, logger=self.logger)
        self.resolver = resolver or AccountLinkResolver(db, logger=self.logger)
        self.verifier = verifier or TonVerifier(logger=self.logger)

    # ── Pricing ──────────────────────────────────────────────────────────
    @staticmethod
    def reservation_hours(space: ParkingSpace) -> int:
        hours = settings.DEFAULT_RESERVATION_HOURS
        if space.zone and space.zone.max_duration_hours:
            hours = min(hours, space.zone.max_duration_hours)
        return max(1, hours)

    @classmethod
    def quote(cls, space: ParkingSpace) -> float:
        """Price in TON, always from the zone tariff."""
        if not space.zone or not space.zone.is_premium:
            return 0.0
        return round(space.zone.hourly_rate * cls.reservation_hours(space), 4)

    def _outcome(self, state, request, space, **kwargs) -> ReservationOutcome:
        return ReservationOutcome(
            state=state,
            request=request,
            zone_name=space.zone.name if space.zone else None,
            is_premium=bool(space.zone and space.zone.is_premium),
            amount_ton=self.quote(space),
            hours=self.reservation_hours(space),
            end_time=space.reservation_end,
            **kwargs,
        )

    def _eligible_space(self, space_id: int) -> ParkingSpace:
        space = self.store.get(space_id)
        if space is None or not self.store.is_reservable(space):
            raise SpaceUnavailable(space_id)
        return space

    # ── eligible ─────────────────────────────────────────────────────────
    async def select_space(self, space_id: int, telegram_user_id: int) -> ReservationOutcome:
        """
        User tapped a space. Free zones are reserved right away; premium zones
        return ELIGIBLE with the quote so the caller can offer payment rails.
        """
        log = bind(self.logger, space_id=space_id, tg=telegram_user_id)
        space = self._eligible_space(space_id)
        plate = await self.resolver.resolve(telegram_user_id)
        request = ReservationRequest(space_id, telegram_user_id, license_plate=plate)

        if space.zone and space.zone.is_premium:
            log.info(f"[RSM] eligible, premium zone {space.zone.name} quote={self.quote(space)} TON")
            return self._outcome(ReservationState.ELIGIBLE, request, space)

        log.info("[RSM] eligible, free zone, reserving")
        return await self.complete_reservation(request)

    # ── payment_pending ──────────────────────────────────────────────────
    def start_native_payment(self, space_id: int, telegram_user_id: int) -> ReservationOutcome:
        """Quote for a Stars invoice. The plate is only needed once the payment lands."""
        space = self._eligible_space(space_id)
        request = ReservationRequest(space_id, telegram_user_id, rail=RAIL_STARS)
        bind(self.logger, space_id=space_id, tg=telegram_user_id).info(
            f"[RSM] payment_pending (stars) amount={self.quote(space)} TON")
        return self._outcome(ReservationState.PAYMENT_PENDING, request, space)

    async def start_manual_payment(self, space_id: int, telegram_user_id: int) -> ReservationOutcome:
        """Open a TON payment intent for the user's plate; the hash arrives in a later message."""
        space = self._eligible_space(space_id)
        plate = await self.resolver.resolve(telegram_user_id)
        request = ReservationRequest(space_id, telegram_user_id, rail=RAIL_TON, license_plate=plate)
        outcome = self._outcome(ReservationState.PAYMENT_PENDING, request, space)

        self.db.add(PaymentIntent(
            telegram_user_id=telegram_user_id,
            license_plate=plate,
            parking_space_id=space_id,
            amount=outcome.amount_ton,
            is_consumed=False,
            created_at=utcnow(),
        ))
        self.db.commit()
        bind(self.logger, space_id=space_id, tg=telegram_user_id).info(
            f"[RSM] payment_pending (ton) intent opened for {plate} amount={outcome.amount_ton} TON")
        return outcome

    def _close_intents(self, telegram_user_id: int, space_id: int = None) -> int:
        q = self.db.query(PaymentIntent).filter(
            PaymentIntent.telegram_user_id == telegram_user_id,
            PaymentIntent.is_consumed == False,    # noqa: E712
        )
        if space_id is not None:
            q = q.filter(PaymentIntent.parking_space_id == space_id)
        count = q.update({"is_consumed": True}, synchronize_session=False)
        self.db.commit()
        return count

    def cancel_pending(self, telegram_user_id: int) -> int:
        """User declined payment: close their open TON intents. The space was never touched."""
        return self._close_intents(telegram_user_id)

    # ── pre-checkout (native rail) ───────────────────────────────────────
    def precheckout_check(self, invoice_payload: str) -> int:
        """
        Best-effort early check before Telegram charges the user. Returns the
        space id on approval; raises MalformedEvent or SpaceUnavailable.
        """
        payload = parse_invoice_payload(invoice_payload)
        self._eligible_space(payload.space_id)
        return payload.space_id

    # ── payment_verified (native rail) ───────────────────────────────────
    async def confirm_native_payment(self, charge_id: str, invoice_payload: str,
                                     telegram_user_id: int) -> ReservationOutcome:
        """
        Telegram's successful_payment is the verification. The evidence is
        recorded before the plate is resolved so an unlinked payer keeps it.
        """
        payload = parse_invoice_payload(invoice_payload)
        space_id = payload.space_id
        space = self.store.get(space_id)
        if space is None:
            raise SpaceUnavailable(space_id)

        account = self.resolver.lookup(telegram_user_id)
        payment = self.ledger.record_or_get(
            charge_id, space_id, telegram_user_id,
            account.license_plate if account else None,
            self.quote(space) or payload.amount_ton,
            RAIL_STARS, verified=True, currency="XTR",
        )
        request = ReservationRequest(space_id, telegram_user_id, rail=RAIL_STARS, tx_reference=charge_id)
        return await self.complete_reservation(request, payment)

    # ── payment_verified (manual TON rail) ───────────────────────────────
    def _open_intent(self, license_plate: str) -> Optional[PaymentIntent]:
        # Matches the hash to "the newest open intent for this plate within the
        # window", not to a specific reservation. Known weak point, kept as is.
        since = utcnow() - timedelta(minutes=settings.PAYMENT_INTENT_WINDOW_MINUTES)
        return (
            self.db.query(PaymentIntent)
            .filter(PaymentIntent.license_plate == license_plate,
                    PaymentIntent.is_consumed == False,     # noqa: E712
                    PaymentIntent.created_at >= since)
            .order_by(PaymentIntent.created_at.desc(), PaymentIntent.id.desc())
            .first()
        )

    async def submit_transfer_reference(self, tx_reference: str, telegram_user_id: int) -> ReservationOutcome:
        """
        User sent a transaction reference. An existing ledger row for it (any
        rail) is reused; otherwise it is matched to an open TON intent,
        recorded pending and checked against the indexer.
        """
        log = bind(self.logger, tg=telegram_user_id, tx=tx_reference[:12])
        other = self.ledger.claimed_by_other(tx_reference, telegram_user_id)
        if other is not None:
            log.warning(f"[RSM] reference already recorded by tg={other.telegram_user_id} (row {other.id})")
            raise TransferRejected(tx_reference, other.parking_space_id, "already used by another account")

        plate = await self.resolver.resolve(telegram_user_id)
        payment = self.ledger.find_by_reference(tx_reference, telegram_user_id)
        if payment is None:
            intent = self._open_intent(plate)
            if intent is None:
                log.info("[RSM] no ledger row and no open intent for this reference")
                raise UnknownPaymentReference(tx_reference)
            payment = self.ledger.record_or_get(
                tx_reference, intent.parking_space_id, telegram_user_id, plate,
                intent.amount, RAIL_TON,
            )
        else:
            log.info(f"[RSM] reusing ledger row {payment.id} ({payment.status})")

        if payment.status == REJECTED:
            raise TransferRejected(tx_reference, payment.parking_space_id, payment.review_reason or "rejected")
        if payment.status != VERIFIED and payment.rail == RAIL_TON:
            await self._verify_transfer(payment)
            self._close_intents(telegram_user_id, payment.parking_space_id)

        request = ReservationRequest(payment.parking_space_id, telegram_user_id, rail=payment.rail,
                                     license_plate=plate, tx_reference=tx_reference)
        return await self.complete_reservation(request, payment)

    async def _verify_transfer(self, payment: PaymentRecord):
        tx, space_id = payment.tx_reference, payment.parking_space_id
        try:
            check = await self.verifier.verify_transfer(tx, payment.amount)
        except UpstreamTransportFailure as e:
            # Row stays pending; the user can resubmit the same hash later
            self.logger.warning(f"[RSM] indexer unavailable for tx={tx}: {e}")
            raise TransferPending(tx, space_id, "indexer unavailable") from e

        if check.verified:
            self.ledger.mark_verified(tx, space_id)
            self.logger.info(f"[RSM] {ReservationState.PAYMENT_VERIFIED.value} tx={tx} space={space_id}")
        elif check.final:
            self.ledger.mark_rejected(tx, space_id, check.reason)
            raise TransferRejected(tx, space_id, check.reason)
        else:
            raise TransferPending(tx, space_id, check.reason)

    # ── reserved ─────────────────────────────────────────────────────────
    async def complete_reservation(self, request: ReservationRequest,
                                   payment: Optional[PaymentRecord] = None) -> ReservationOutcome:
        """
        The single mutation point. Premium spaces need a verified ledger row
        for (tx_reference, space_id); the write itself is a compare-and-set.
        """
        space_id = request.space_id
        log = bind(self.logger, space_id=space_id, tg=request.telegram_user_id)

        space = self.store.get(space_id)
        if space is None:
            raise SpaceUnavailable(space_id)
        premium = bool(space.zone and space.zone.is_premium)

        tx = payment.tx_reference if payment is not None else None
        if premium and (tx is None or not self.ledger.is_verified(tx, space_id)):
            log.warning(f"[RSM] premium space without verified payment (tx={tx})")
            raise PaymentNotVerified(tx or "-", space_id)

        if not request.license_plate:
            try:
                request.license_plate = await self.resolver.resolve(request.telegram_user_id)
            except NotLinked as e:
                if tx is None:
                    raise
                raise NotLinked(request.telegram_user_id, tx_reference=tx) from e
        plate = request.license_plate
        request.tx_reference = tx
        # Only evidence recorded before linking gets a plate; a used row is never rewritten
        if payment is not None and payment.license_plate is None:
            self.ledger.attach_plate(payment, plate)

        # Re-entry: this payment already bought a reservation
        if payment is not None and payment.is_consumed:
            if payment.license_plate != plate:
                log.warning(f"[RSM] payment {payment.id} bought a reservation for {payment.license_plate}, not {plate}")
                raise TransferRejected(tx, space_id, f"already used for {payment.license_plate}")
            if not self.store.is_held_by(space, tx, plate):
                log.info(f"[RSM] payment {payment.id} bought reservation {payment.reservation_id}, which is no longer held")
                raise SpaceUnavailable(space_id, "reservation bought with this payment has ended or was replaced")
            log.info(f"[RSM] payment {payment.id} already consumed by reservation {payment.reservation_id}, replay")
            return self._outcome(ReservationState.RESERVED, request, space, payment=payment, replayed=True,
                                 reservation=self.store.get_reservation(payment.reservation_id))

        hours = self.reservation_hours(space)
        reservation = self.store.try_reserve(space_id, plate, request.telegram_user_id, tx, hours)
        if reservation is None:
            space = self.store.get(space_id)
            if space is not None and self.store.is_held_by(space, tx, plate):
                # A concurrent copy of this same event won the write
                log.info("[RSM] space already held by this payment and plate, replay")
                payment = self.ledger.get(tx, space_id) if tx else None
                return self._outcome(ReservationState.RESERVED, request, space, payment=payment, replayed=True)
            if tx is not None and self.store.reservation_for_tx(tx) is not None:
                log.warning(f"[RSM] tx={tx} already backs another reservation")
                raise TransferRejected(tx, space_id, "already used for another reservation")
            if payment is not None and payment.status == VERIFIED:
                self.ledger.flag_for_review(payment, f"space {space_id} taken before reservation")
                raise SpaceUnavailable(space_id, refund_pending=True)
            raise SpaceUnavailable(space_id)

        if payment is not None:
            self.ledger.mark_consumed(payment, reservation.id)
        self.db.commit()
        log.info(f"[RSM] reserved for {plate} until {reservation.end_time:%Y-%m-%d %H:%M} (tx={tx})")
        return self._outcome(ReservationState.RESERVED, request, self.store.get(space_id),
                             reservation=reservation, payment=payment)
