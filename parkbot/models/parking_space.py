# parkbot/models/parking_space.py
"""
Parking spaces table.
Status is written by sensor ingestion (vacant/occupied) and by the
reservation engine (reserved). The engine only ever moves a space to
`reserved` through a conditional UPDATE, see services/space_store.py.
"""

from sqlalchemy import Column, DateTime, Float, ForeignKey, Integer, String
from sqlalchemy.orm import relationship
from parkbot.database import Base

VACANT = "vacant"
OCCUPIED = "occupied"
RESERVED = "reserved"
SPACE_STATUSES = (VACANT, OCCUPIED, RESERVED)


class ParkingSpace(Base):
    __tablename__ = "parking_spaces"

    id = Column(Integer, primary_key=True, autoincrement=True)
    zone_id = Column(Integer, ForeignKey("parking_zones.id"), index=True)
    street_name = Column(String(200))
    latitude = Column(Float)
    longitude = Column(Float)
    status = Column(String(20), default=VACANT, nullable=False, index=True)
    license_plate = Column(String(20))
    reservation_start = Column(DateTime)
    reservation_end = Column(DateTime)
    payment_tx_hash = Column(String(255))    # ledger reference that paid for the current reservation
    updated_at = Column(DateTime)

    zone = relationship("Zone", back_populates="spaces")

    def __repr__(self):
        return f"<ParkingSpace {self.id} status={self.status} plate={self.license_plate}>"
