# parkbot/services/update_parser.py
"""
Decodes a raw Telegram update into exactly one typed event.

Precedence follows how specific the payload is: pre-checkout query, then
successful payment, then callback, then slash-command, then free text.
Anything else (no sender, photos, channel posts, invalid JSON shape) becomes
MalformedEvent instead of falling through to the text handlers.
"""

import json
from dataclasses import dataclass
from typing import Optional, Tuple

from pydantic import ValidationError

from parkbot.schemas.telegram_update import TgUpdate
from parkbot.services import errors


@dataclass
class BaseEvent:
    update_id: Optional[int]
    telegram_user_id: Optional[int]
    chat_id: Optional[int]
    language_code: Optional[str] = None
    username: Optional[str] = None

    kind = "base"


@dataclass
class PreCheckoutEvent(BaseEvent):
    query_id: str = ""
    invoice_payload: str = ""
    total_amount: int = 0
    currency: str = ""

    kind = "pre_checkout"


@dataclass
class SuccessfulPaymentEvent(BaseEvent):
    charge_id: str = ""
    invoice_payload: str = ""
    total_amount: int = 0
    currency: str = ""

    kind = "successful_payment"


@dataclass
class CallbackEvent(BaseEvent):
    callback_id: str = ""
    data: str = ""

    kind = "callback"


@dataclass
class CommandEvent(BaseEvent):
    command: str = ""        # "/reserve"
    args: str = ""           # everything after the command

    kind = "command"


@dataclass
class TextEvent(BaseEvent):
    text: str = ""

    kind = "text"


@dataclass
class MalformedEvent(BaseEvent):
    reason: str = ""

    kind = "malformed"


@dataclass
class InvoicePayload:
    space_id: int
    amount_ton: float = 0.0
    zone_name: Optional[str] = None
    payment_type: str = "stars"


def split_command(text: str) -> Tuple[str, str]:
    """'/link@ParkBot ABC123' → ('/link', 'ABC123')"""
    head, _, rest = text.strip().partition(" ")
    return head.split("@", 1)[0].lower(), rest.strip()


def parse_invoice_payload(raw: str) -> InvoicePayload:
    """Invoice payload is the JSON we put into sendInvoice; space_id must be a positive int."""
    try:
        data = json.loads(raw)
        space_id = int(data["space_id"])
        amount_ton = float(data.get("amount_ton") or 0.0)
    except (TypeError, ValueError, KeyError) as e:
        raise errors.MalformedEvent(f"bad invoice payload: {raw!r}") from e
    if space_id <= 0:
        raise errors.MalformedEvent(f"bad space id in invoice payload: {raw!r}")
    return InvoicePayload(
        space_id=space_id,
        amount_ton=amount_ton,
        zone_name=data.get("zone_name"),
        payment_type=data.get("payment_type") or "stars",
    )


def parse_update(payload) -> BaseEvent:
    update_id = payload.get("update_id") if isinstance(payload, dict) else None
    try:
        update = TgUpdate.model_validate(payload)
    except ValidationError as e:
        return MalformedEvent(update_id, None, None, reason=f"invalid update: {e.error_count()} error(s)")

    if update.pre_checkout_query:
        q = update.pre_checkout_query
        return PreCheckoutEvent(
            update.update_id, q.from_user.id, q.from_user.id, q.from_user.language_code, q.from_user.username,
            query_id=q.id, invoice_payload=q.invoice_payload,
            total_amount=q.total_amount, currency=q.currency,
        )

    message = update.message or update.edited_message
    if message and message.successful_payment and message.from_user:
        sp = message.successful_payment
        user = message.from_user
        return SuccessfulPaymentEvent(
            update.update_id, user.id, message.chat.id, user.language_code, user.username,
            charge_id=sp.telegram_payment_charge_id, invoice_payload=sp.invoice_payload,
            total_amount=sp.total_amount, currency=sp.currency,
        )

    if update.callback_query:
        cq = update.callback_query
        chat_id = cq.message.chat.id if cq.message else cq.from_user.id
        return CallbackEvent(
            update.update_id, cq.from_user.id, chat_id, cq.from_user.language_code, cq.from_user.username,
            callback_id=cq.id, data=cq.data or "",
        )

    if message is None:
        return MalformedEvent(update.update_id, None, None, reason="unsupported update type")

    user = message.from_user
    if user is None:
        return MalformedEvent(update.update_id, None, message.chat.id, reason="message without sender")
    common = (update.update_id, user.id, message.chat.id, user.language_code, user.username)

    text = (message.text or "").strip()
    if not text:
        return MalformedEvent(*common, reason="message without text")
    if text.startswith("/"):
        command, args = split_command(text)
        return CommandEvent(*common, command=command, args=args)
    return TextEvent(*common, text=text)
