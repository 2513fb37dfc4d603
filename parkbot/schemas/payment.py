from pydantic import BaseModel
from datetime import datetime
from typing import Optional


class PaymentRecordOut(BaseModel):
    id: int
    tx_reference: str
    parking_space_id: int
    telegram_user_id: int
    license_plate: Optional[str]
    amount: float
    currency: str
    rail: str
    status: str
    created_at: datetime
    verified_at: Optional[datetime]
    reservation_id: Optional[int]
    needs_review: bool
    review_reason: Optional[str]

    class Config:
        from_attributes = True
