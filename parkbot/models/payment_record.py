# parkbot/models/payment_record.py
"""
Payment ledger table.
One row per (tx_reference, parking_space_id); the unique constraint is the
idempotency key for redelivered payment events. Rows are never deleted.
"""

from sqlalchemy import (BigInteger, Boolean, Column, DateTime, Float, Integer,
                        String, Text, UniqueConstraint)
from parkbot.database import Base

PENDING = "pending"
VERIFIED = "verified"
REJECTED = "rejected"

RAIL_STARS = "stars"   # native in-chat invoice
RAIL_TON = "ton"       # manual on-chain transfer


class PaymentRecord(Base):
    __tablename__ = "payment_records"
    __table_args__ = (
        UniqueConstraint("tx_reference", "parking_space_id", name="uq_payment_tx_space"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    tx_reference = Column(String(255), nullable=False, index=True)
    parking_space_id = Column(Integer, nullable=False, index=True)
    telegram_user_id = Column(BigInteger, nullable=False)
    license_plate = Column(String(20))        # None until the payer is linked
    amount = Column(Float, nullable=False, default=0.0)
    currency = Column(String(10), nullable=False, default="TON")
    rail = Column(String(10), nullable=False)
    status = Column(String(20), nullable=False, default=PENDING, index=True)
    created_at = Column(DateTime, nullable=False)
    verified_at = Column(DateTime)
    reservation_id = Column(Integer)          # set once the payment has bought a reservation
    needs_review = Column(Boolean, default=False, nullable=False, index=True)
    review_reason = Column(Text)

    @property
    def is_consumed(self) -> bool:
        return self.reservation_id is not None

    def __repr__(self):
        return f"<PaymentRecord {self.id} tx={self.tx_reference} space={self.parking_space_id} {self.status}>"
