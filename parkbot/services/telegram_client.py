# parkbot/services/telegram_client.py
"""
Thin async client for the Telegram Bot API.

Every call is a single POST; a transport error or an `ok: false` answer
raises UpstreamTransportFailure. Nothing here retries: a failed send inside
a webhook handler is logged by the caller and the update is still answered.
"""

import json
from typing import Optional

import httpx

from parkbot.config import settings
from parkbot.services.errors import UpstreamTransportFailure
from parkbot.utils.logger import get_logger


class TelegramClient:
    def __init__(self, base_url: str = None, timeout: float = None, logger=None,
                 transport: httpx.AsyncBaseTransport = None):
        self.base_url = (base_url or settings.TELEGRAM_BOT_URL).rstrip("/")
        self.timeout = timeout or settings.HTTP_TIMEOUT_SECONDS
        self.logger = logger or get_logger(__name__)
        self._transport = transport

    async def call(self, method: str, payload: dict) -> dict:
        url = f"{self.base_url}/{method}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(url, json=payload)
            body = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise UpstreamTransportFailure(method, str(e)) from e

        if not body.get("ok"):
            raise UpstreamTransportFailure(method, body.get("description") or f"HTTP {response.status_code}")
        self.logger.debug(f"[TG] {method} ok")
        return body.get("result")

    async def send_message(self, chat_id: int, text: str, reply_markup: Optional[dict] = None) -> dict:
        payload = {"chat_id": chat_id, "text": text}
        if reply_markup:
            payload["reply_markup"] = reply_markup
        return await self.call("sendMessage", payload)

    async def answer_callback_query(self, callback_query_id: str, text: Optional[str] = None) -> dict:
        payload = {"callback_query_id": callback_query_id}
        if text:
            payload["text"] = text
        return await self.call("answerCallbackQuery", payload)

    async def answer_pre_checkout_query(self, query_id: str, ok: bool,
                                        error_message: Optional[str] = None) -> dict:
        payload = {"pre_checkout_query_id": query_id, "ok": ok}
        if not ok and error_message:
            payload["error_message"] = error_message
        return await self.call("answerPreCheckoutQuery", payload)

    async def send_invoice(self, chat_id: int, title: str, description: str, payload: dict,
                           label: str, amount: int, currency: str = "XTR") -> dict:
        """Stars invoices carry no provider token; amount is in whole Stars."""
        return await self.call("sendInvoice", {
            "chat_id": chat_id,
            "title": title,
            "description": description,
            "payload": json.dumps(payload),
            "currency": currency,
            "prices": [{"label": label, "amount": amount}],
        })
