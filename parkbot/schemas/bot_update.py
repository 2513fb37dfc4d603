from pydantic import BaseModel
from datetime import datetime
from typing import Optional


class BotUpdateOut(BaseModel):
    id: int
    update_id: Optional[int]
    event_type: str
    telegram_user_id: Optional[int]
    raw_payload: Optional[str]
    created_at: datetime

    class Config:
        from_attributes = True
