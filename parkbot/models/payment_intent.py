# parkbot/models/payment_intent.py
"""
Manual TON rail: a user chose to pay for a space by on-chain transfer.
The transaction hash arrives later, in a separate message; it is matched
back to the newest open intent for the user's plate.
"""

from sqlalchemy import BigInteger, Boolean, Column, DateTime, Float, Integer, String
from parkbot.database import Base


class PaymentIntent(Base):
    __tablename__ = "payment_intents"

    id = Column(Integer, primary_key=True, autoincrement=True)
    telegram_user_id = Column(BigInteger, nullable=False, index=True)
    license_plate = Column(String(20), nullable=False, index=True)
    parking_space_id = Column(Integer, nullable=False)
    amount = Column(Float, nullable=False)
    is_consumed = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, nullable=False, index=True)

    def __repr__(self):
        return f"<PaymentIntent {self.id} plate={self.license_plate} space={self.parking_space_id}>"
