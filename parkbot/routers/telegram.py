# parkbot/routers/telegram.py
"""
Telegram webhook endpoint + raw update log viewer.
POST /telegram/webhook — receives every update Telegram delivers.
GET  /updates          — lists the raw update log with optional filters.
"""

import json
from typing import Optional

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from parkbot.config import settings
from parkbot.database import get_db
from parkbot.models.bot_update import BotUpdate
from parkbot.schemas.bot_update import BotUpdateOut
from parkbot.services.event_dispatcher import EventDispatcher
from parkbot.services.telegram_client import TelegramClient
from parkbot.services.update_parser import parse_update
from parkbot.utils.clock import utcnow
from parkbot.utils.logger import get_logger

router = APIRouter()
logger = get_logger(__name__)


def get_telegram_client() -> TelegramClient:
    """FastAPI dependency — overridden in tests."""
    return TelegramClient()


@router.post("/telegram/webhook", summary="Telegram webhook — receives all updates")
async def receive_update(request: Request, db: Session = Depends(get_db),
                         telegram: TelegramClient = Depends(get_telegram_client)):
    """
    Single entry point for every Telegram update.
    Always returns HTTP 200. Telegram redelivers anything else.
    """
    try:
        if settings.TELEGRAM_WEBHOOK_SECRET and \
                request.headers.get("X-Telegram-Bot-Api-Secret-Token") != settings.TELEGRAM_WEBHOOK_SECRET:
            logger.warning(f"Webhook call from {request.client.host} with wrong secret token")
            return {"ok": True, "status": "ignored", "reason": "bad secret"}

        raw_body = await request.body()
        if not raw_body:
            return {"ok": True, "status": "ignored", "reason": "empty body"}
        payload = json.loads(raw_body)

        # Decode into one typed event before anything else runs
        event = parse_update(payload)
        logger.info(f"Update {event.update_id} | {event.kind} | tg={event.telegram_user_id}")

        # Persist raw update
        db.add(BotUpdate(
            update_id=event.update_id,
            event_type=event.kind,
            telegram_user_id=event.telegram_user_id,
            raw_payload=raw_body.decode("utf-8", errors="replace"),
            created_at=utcnow(),
        ))
        db.commit()

        dispatcher = EventDispatcher(db, telegram=telegram)
        await dispatcher.dispatch(event)
        return {"ok": True, "status": "ok", "event_type": event.kind}

    except Exception as e:
        logger.error(f"Update processing error: {e}", exc_info=True)
        return {"ok": True, "status": "error", "detail": str(e)}  # Still return 200


@router.get("/updates", response_model=list[BotUpdateOut], summary="List raw Telegram updates")
def list_updates(limit: int = 50, event_type: Optional[str] = None,
                 telegram_user_id: Optional[int] = None, db: Session = Depends(get_db)):
    """Returns the raw update log with optional event_type and telegram_user_id filters."""
    q = db.query(BotUpdate)
    if event_type:
        q = q.filter(BotUpdate.event_type == event_type)
    if telegram_user_id:
        q = q.filter(BotUpdate.telegram_user_id == telegram_user_id)
    return q.order_by(BotUpdate.created_at.desc()).limit(limit).all()
