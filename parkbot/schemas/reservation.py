from pydantic import BaseModel
from datetime import datetime
from typing import Optional


class ReservationOut(BaseModel):
    id: int
    parking_space_id: int
    license_plate: str
    telegram_user_id: Optional[int]
    payment_tx_hash: Optional[str]
    start_time: datetime
    end_time: datetime
    status: str
    completed_at: Optional[datetime]

    class Config:
        from_attributes = True
