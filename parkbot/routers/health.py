# parkbot/routers/health.py
"""
System health check endpoint.
Returns status of backend + DB + Telegram Bot API reachability.
"""

import requests
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from sqlalchemy import text
from parkbot.database import get_db
from parkbot.config import settings
from parkbot.utils.clock import utcnow

router = APIRouter()


@router.get("/health", summary="System health check")
def health_check(db: Session = Depends(get_db)):
    """
    Returns:
    - Backend status
    - Database connectivity
    - Telegram reachability (getMe with the bot token)
    """
    result = {
        "status": "ok",
        "timestamp": utcnow().isoformat(),
        "backend": "ok",
        "database": "unknown",
        "telegram": "unknown",
    }

    # Check database
    try:
        db.execute(text("SELECT 1"))
        result["database"] = "ok"
    except Exception as e:
        result["database"] = f"error: {str(e)}"
        result["status"] = "degraded"

    # Ask Telegram who we are
    try:
        resp = requests.get(f"{settings.TELEGRAM_BOT_URL}/getMe", timeout=3)
        result["telegram"] = "ok" if resp.status_code == 200 and resp.json().get("ok") else f"http_{resp.status_code}"
    except requests.exceptions.ConnectionError:
        result["telegram"] = "unreachable"
        result["status"] = "degraded"
    except Exception as e:
        result["telegram"] = f"error: {str(e)}"

    return result
