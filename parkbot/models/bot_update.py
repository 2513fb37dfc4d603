# parkbot/models/bot_update.py
"""
Raw Telegram update log table.
Stores every update received by the webhook, redeliveries included.
Used for audit trail, debugging, and event replay.
"""

from sqlalchemy import BigInteger, Column, DateTime, Integer, String, Text
from parkbot.database import Base


class BotUpdate(Base):
    __tablename__ = "bot_updates"

    id = Column(Integer, primary_key=True, autoincrement=True)
    update_id = Column(BigInteger, index=True)
    event_type = Column(String(50), nullable=False, index=True)
    telegram_user_id = Column(BigInteger)
    raw_payload = Column(Text)
    created_at = Column(DateTime, nullable=False, index=True)

    def __repr__(self):
        return f"<BotUpdate {self.id} update_id={self.update_id} type={self.event_type}>"
