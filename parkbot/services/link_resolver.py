# parkbot/services/link_resolver.py
"""
Account linking — Telegram user id → license plate.

A user may run /link and pay in the same breath; the payment webhook can be
served before the link commit is visible to this session. resolve() retries
a few times with short non-blocking backoff before giving up with NotLinked.
"""

import asyncio
import re
from typing import Optional

from sqlalchemy.orm import Session

from parkbot.config import settings
from parkbot.models.linked_account import LinkedAccount
from parkbot.services.errors import NotLinked
from parkbot.utils.clock import utcnow
from parkbot.utils.logger import get_logger
from parkbot.utils.retry import RetryPolicy, retry_until_found

# 2-3 letters, 3-4 digits, up to 2 letters (AB123CD, ABC1234; hyphens dropped)
PLATE_PATTERN = re.compile(r"^[A-Z]{2,3}[0-9]{3,4}[A-Z]{0,2}$")

SUPPORTED_LANGUAGES = ("en", "sr", "de")


def normalize_plate(raw: str) -> Optional[str]:
    """Canonical form: uppercase, no spaces or hyphens. Returns None if it is not plate-shaped."""
    if not raw:
        return None
    plate = raw.strip().upper().replace(" ", "").replace("-", "")
    if not 5 <= len(plate) <= 9:
        return None
    if not PLATE_PATTERN.match(plate):
        return None
    return plate


def default_policy() -> RetryPolicy:
    return RetryPolicy(
        max_attempts=settings.LINK_RESOLVE_ATTEMPTS,
        base_delay=settings.LINK_RESOLVE_BACKOFF_MS / 1000.0,
    )


class AccountLinkResolver:
    def __init__(self, db: Session, logger=None, policy: RetryPolicy = None, sleep=asyncio.sleep):
        self.db = db
        self.logger = logger or get_logger(__name__)
        self.policy = policy or default_policy()
        self._sleep = sleep

    def lookup(self, telegram_user_id: int) -> Optional[LinkedAccount]:
        """Single read, no retry."""
        return (
            self.db.query(LinkedAccount)
            .filter(LinkedAccount.telegram_user_id == telegram_user_id)
            .first()
        )

    async def resolve_account(self, telegram_user_id: int) -> LinkedAccount:
        async def fetch():
            account = self.lookup(telegram_user_id)
            return account if account is not None and account.license_plate else None

        def on_miss(attempt):
            self.logger.debug(f"[LINK] tg={telegram_user_id} not linked yet (attempt {attempt}/{self.policy.max_attempts})")
            # Drop cached state so the next read sees rows committed meanwhile
            self.db.expire_all()
            self.db.commit()

        account = await retry_until_found(fetch, self.policy, sleep=self._sleep, on_miss=on_miss)
        if account is None:
            self.logger.info(f"[LINK] tg={telegram_user_id} not linked after {self.policy.max_attempts} attempts")
            raise NotLinked(telegram_user_id)
        return account

    async def resolve(self, telegram_user_id: int) -> str:
        """Linked plate, or NotLinked once the retry budget is spent."""
        account = await self.resolve_account(telegram_user_id)
        return account.license_plate

    def language_for(self, telegram_user_id: int, language_code: Optional[str] = None) -> str:
        """Saved language, else Telegram's language_code, else English."""
        account = self.lookup(telegram_user_id)
        if account and account.language in SUPPORTED_LANGUAGES:
            return account.language
        if language_code:
            base = language_code.split("-")[0].lower()
            if base in SUPPORTED_LANGUAGES:
                return base
        return "en"

    # ── Writes (the /link command and implicit links) ────────────────────
    def link(self, telegram_user_id: int, chat_id: int, license_plate: str,
             username: str = None, language: str = None) -> LinkedAccount:
        now = utcnow()
        account = self.lookup(telegram_user_id)
        if account is None:
            account = LinkedAccount(
                telegram_user_id=telegram_user_id,
                chat_id=chat_id,
                username=username,
                license_plate=license_plate,
                language=language if language in SUPPORTED_LANGUAGES else "en",
                notifications_enabled=True,
                created_at=now,
            )
            self.db.add(account)
        else:
            account.license_plate = license_plate
            account.chat_id = chat_id
            if username:
                account.username = username
        account.updated_at = now
        self.db.commit()
        self.logger.info(f"[LINK] tg={telegram_user_id} linked to {license_plate}")
        return account

    def set_language(self, telegram_user_id: int, language: str) -> bool:
        account = self.lookup(telegram_user_id)
        if account is None or language not in SUPPORTED_LANGUAGES:
            return False
        account.language = language
        account.updated_at = utcnow()
        self.db.commit()
        return True

    def set_wallet(self, telegram_user_id: int, address: Optional[str]) -> bool:
        account = self.lookup(telegram_user_id)
        if account is None:
            return False
        account.ton_wallet_address = address
        account.updated_at = utcnow()
        self.db.commit()
        return True

    def toggle_notifications(self, telegram_user_id: int) -> Optional[bool]:
        account = self.lookup(telegram_user_id)
        if account is None:
            return None
        account.notifications_enabled = not account.notifications_enabled
        account.updated_at = utcnow()
        self.db.commit()
        return account.notifications_enabled
