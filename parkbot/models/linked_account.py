# parkbot/models/linked_account.py
"""
Telegram users linked to a license plate.
Written by /link (or an implicit link), read by the link resolver.
"""

from sqlalchemy import BigInteger, Boolean, Column, DateTime, Integer, String
from parkbot.database import Base


class LinkedAccount(Base):
    __tablename__ = "telegram_users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    telegram_user_id = Column(BigInteger, unique=True, nullable=False, index=True)
    chat_id = Column(BigInteger, nullable=False)
    username = Column(String(100))
    license_plate = Column(String(20), nullable=False, index=True)
    language = Column(String(5), default="en", nullable=False)
    ton_wallet_address = Column(String(100))
    notifications_enabled = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime)
    updated_at = Column(DateTime)

    def __repr__(self):
        return f"<LinkedAccount tg={self.telegram_user_id} plate={self.license_plate}>"
