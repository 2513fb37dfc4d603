# parkbot/models/reservation.py
"""
Granted reservations — the history behind the read API.
payment_tx_hash is unique so one payment can never buy two reservations.
"""

from sqlalchemy import BigInteger, Column, DateTime, Integer, String
from parkbot.database import Base

ACTIVE = "active"
COMPLETED = "completed"


class Reservation(Base):
    __tablename__ = "reservations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    parking_space_id = Column(Integer, nullable=False, index=True)
    license_plate = Column(String(20), nullable=False, index=True)
    telegram_user_id = Column(BigInteger)
    payment_tx_hash = Column(String(255), unique=True)   # None for free zones
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=False, index=True)
    status = Column(String(20), default=ACTIVE, nullable=False, index=True)
    completed_at = Column(DateTime)

    def __repr__(self):
        return f"<Reservation {self.id} space={self.parking_space_id} plate={self.license_plate} {self.status}>"
