# parkbot/routers/reservations.py
"""Reservation maintenance."""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from parkbot.database import get_db
from parkbot.services.space_store import SpaceStore

router = APIRouter()


@router.post("/reservations/expire", summary="Complete reservations whose end time has passed")
def expire_reservations(db: Session = Depends(get_db)):
    """Run from cron. Frees each expired space unless it has been reserved again since."""
    completed = SpaceStore(db).expire_reservations()
    return {"completed": completed, "status": "ok"}
