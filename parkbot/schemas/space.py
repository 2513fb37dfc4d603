from pydantic import BaseModel
from datetime import datetime
from typing import Literal, Optional


class ZoneOut(BaseModel):
    id: int
    name: str
    hourly_rate: float
    daily_rate: float
    is_premium: bool
    max_duration_hours: Optional[int]

    class Config:
        from_attributes = True


class ParkingSpaceOut(BaseModel):
    id: int
    zone_id: Optional[int]
    zone: Optional[ZoneOut]
    street_name: Optional[str]
    latitude: Optional[float]
    longitude: Optional[float]
    status: str
    license_plate: Optional[str]
    reservation_start: Optional[datetime]
    reservation_end: Optional[datetime]
    updated_at: Optional[datetime]

    class Config:
        from_attributes = True


class SensorReading(BaseModel):
    status: Literal["vacant", "occupied"]
