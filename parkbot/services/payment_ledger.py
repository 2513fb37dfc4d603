# parkbot/services/payment_ledger.py
"""
Payment ledger — durable, idempotent record of payment evidence.

Keyed on (tx_reference, parking_space_id). Recording evidence and confirming
it are separate steps so both rails share one shape and one reservation gate:
  - native invoice rail: Telegram's successful_payment *is* the verification,
    rows are inserted already `verified`
  - manual TON rail: the submitted hash is recorded `pending` and only moves to
    `verified` after the indexer check

Every write commits immediately.
"""

from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from parkbot.models.payment_record import PaymentRecord, PENDING, VERIFIED, REJECTED
from parkbot.utils.clock import utcnow
from parkbot.utils.logger import get_logger


class PaymentLedger:
    def __init__(self, db: Session, logger=None):
        self.db = db
        self.logger = logger or get_logger(__name__)

    def get(self, tx_reference: str, space_id: int) -> Optional[PaymentRecord]:
        return (
            self.db.query(PaymentRecord)
            .filter(PaymentRecord.tx_reference == tx_reference,
                    PaymentRecord.parking_space_id == space_id)
            .first()
        )

    def record_or_get(self, tx_reference: str, space_id: int, payer: int,
                      license_plate: Optional[str], amount: float, rail: str,
                      verified: bool = False, currency: str = "TON") -> PaymentRecord:
        """
        Return the row for this key unchanged if it exists, otherwise insert it.
        A concurrent handler that inserts the same key first wins through the
        unique constraint; the loser re-reads and returns the winner's row.
        """
        existing = self.get(tx_reference, space_id)
        if existing:
            self.logger.info(f"[LEDGER] Existing row {existing.id} for tx={tx_reference} space={space_id} ({existing.status})")
            return existing

        now = utcnow()
        row = PaymentRecord(
            tx_reference=tx_reference,
            parking_space_id=space_id,
            telegram_user_id=payer,
            license_plate=license_plate,
            amount=amount,
            currency=currency,
            rail=rail,
            status=VERIFIED if verified else PENDING,
            created_at=now,
            verified_at=now if verified else None,
        )
        self.db.add(row)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            winner = self.get(tx_reference, space_id)
            if winner is None:
                raise
            self.logger.info(f"[LEDGER] Lost insert race for tx={tx_reference} space={space_id}, using row {winner.id}")
            return winner

        self.logger.info(f"[LEDGER] Recorded {row.status} {rail} payment tx={tx_reference} space={space_id} amount={amount}")
        return row

    def mark_verified(self, tx_reference: str, space_id: int) -> Optional[PaymentRecord]:
        """pending → verified. No-op when already verified; rejected rows stay rejected."""
        row = self.get(tx_reference, space_id)
        if row is None:
            self.logger.warning(f"[LEDGER] mark_verified on unknown tx={tx_reference} space={space_id}")
            return None
        if row.status == PENDING:
            row.status = VERIFIED
            row.verified_at = utcnow()
            self.db.commit()
            self.logger.info(f"[LEDGER] Verified tx={tx_reference} space={space_id}")
        return row

    def mark_rejected(self, tx_reference: str, space_id: int, reason: str) -> Optional[PaymentRecord]:
        """pending → rejected. Never touches a verified row."""
        row = self.get(tx_reference, space_id)
        if row is None or row.status != PENDING:
            return row
        row.status = REJECTED
        row.review_reason = reason
        self.db.commit()
        self.logger.warning(f"[LEDGER] Rejected tx={tx_reference} space={space_id}: {reason}")
        return row

    def is_verified(self, tx_reference: str, space_id: int) -> bool:
        return (
            self.db.query(PaymentRecord.id)
            .filter(PaymentRecord.tx_reference == tx_reference,
                    PaymentRecord.parking_space_id == space_id,
                    PaymentRecord.status == VERIFIED)
            .first()
            is not None
        )

    def attach_plate(self, row: PaymentRecord, license_plate: str):
        """Fill in the plate for evidence recorded before the payer was linked. A recorded plate is kept."""
        if row.license_plate is None:
            row.license_plate = license_plate
            self.db.commit()

    def mark_consumed(self, row: PaymentRecord, reservation_id: int):
        """Link the payment to the reservation it bought. Committed by the caller with the reservation."""
        row.reservation_id = reservation_id
        row.needs_review = False

    def flag_for_review(self, row: PaymentRecord, reason: str):
        """Verified payment that could not be turned into a reservation. Needs a manual refund."""
        row.needs_review = True
        row.review_reason = reason
        self.db.commit()
        self.logger.warning(f"[LEDGER] Payment {row.id} tx={row.tx_reference} flagged for review: {reason}")

    def find_by_reference(self, tx_reference: str, payer: int = None) -> Optional[PaymentRecord]:
        """Newest ledger row carrying this reference, optionally only rows of `payer`."""
        q = self.db.query(PaymentRecord).filter(PaymentRecord.tx_reference == tx_reference)
        if payer is not None:
            q = q.filter(PaymentRecord.telegram_user_id == payer)
        return q.order_by(PaymentRecord.created_at.desc(), PaymentRecord.id.desc()).first()

    def claimed_by_other(self, tx_reference: str, payer: int) -> Optional[PaymentRecord]:
        """A row for this reference recorded by anyone but `payer`. One transaction pays for one user."""
        return (
            self.db.query(PaymentRecord)
            .filter(PaymentRecord.tx_reference == tx_reference,
                    PaymentRecord.telegram_user_id != payer)
            .first()
        )

    def list(self, status: str = None, needs_review: bool = None, limit: int = 50):
        q = self.db.query(PaymentRecord)
        if status:
            q = q.filter(PaymentRecord.status == status)
        if needs_review is not None:
            q = q.filter(PaymentRecord.needs_review == needs_review)
        return q.order_by(PaymentRecord.created_at.desc()).limit(limit).all()
