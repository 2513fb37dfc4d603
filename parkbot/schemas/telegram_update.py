# parkbot/schemas/telegram_update.py
"""Subset of the Telegram Bot API `Update` object the bot consumes. Unknown fields are ignored."""

from pydantic import BaseModel, Field
from typing import Optional


class TgUser(BaseModel):
    id: int
    is_bot: bool = False
    first_name: Optional[str] = None
    username: Optional[str] = None
    language_code: Optional[str] = None


class TgChat(BaseModel):
    id: int
    type: Optional[str] = None


class TgSuccessfulPayment(BaseModel):
    currency: str
    total_amount: int
    invoice_payload: str
    telegram_payment_charge_id: str
    provider_payment_charge_id: Optional[str] = None


class TgMessage(BaseModel):
    message_id: int
    from_user: Optional[TgUser] = Field(default=None, alias="from")
    chat: TgChat
    date: Optional[int] = None
    text: Optional[str] = None
    successful_payment: Optional[TgSuccessfulPayment] = None


class TgCallbackQuery(BaseModel):
    id: str
    from_user: TgUser = Field(alias="from")
    message: Optional[TgMessage] = None
    data: Optional[str] = None


class TgPreCheckoutQuery(BaseModel):
    id: str
    from_user: TgUser = Field(alias="from")
    currency: str
    total_amount: int
    invoice_payload: str


class TgUpdate(BaseModel):
    update_id: int
    message: Optional[TgMessage] = None
    edited_message: Optional[TgMessage] = None
    callback_query: Optional[TgCallbackQuery] = None
    pre_checkout_query: Optional[TgPreCheckoutQuery] = None
