# parkbot/models/zone.py
"""
Parking zones table.
A zone owns many spaces and carries the tariff. Premium zones require a
verified payment before any of their spaces can be reserved.
"""

from sqlalchemy import Boolean, Column, DateTime, Float, Integer, String, Text
from sqlalchemy.orm import relationship
from parkbot.database import Base


class Zone(Base):
    __tablename__ = "parking_zones"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(100), unique=True, nullable=False)
    description = Column(Text)
    hourly_rate = Column(Float, default=2.0, nullable=False)   # TON per hour
    daily_rate = Column(Float, default=20.0, nullable=False)
    is_premium = Column(Boolean, default=False, nullable=False)
    max_duration_hours = Column(Integer)                        # None = unlimited
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime)

    spaces = relationship("ParkingSpace", back_populates="zone")

    def __repr__(self):
        return f"<Zone {self.id} {self.name} premium={self.is_premium} rate={self.hourly_rate}>"
