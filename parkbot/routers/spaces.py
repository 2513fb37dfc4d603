# parkbot/routers/spaces.py
"""Parking spaces — read endpoints, reservation history and sensor ingestion."""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from parkbot.database import get_db
from parkbot.schemas.reservation import ReservationOut
from parkbot.schemas.space import ParkingSpaceOut, SensorReading
from parkbot.services.space_store import SpaceStore

router = APIRouter()


@router.get("/spaces", response_model=list[ParkingSpaceOut])
def list_spaces(status: Optional[str] = None, zone_id: Optional[int] = None, limit: int = 200,
                db: Session = Depends(get_db)):
    """All spaces, optionally filtered by status or zone."""
    return SpaceStore(db).list_spaces(status=status, zone_id=zone_id, limit=limit)


@router.get("/spaces/{space_id}", response_model=ParkingSpaceOut)
def get_space(space_id: int, db: Session = Depends(get_db)):
    space = SpaceStore(db).get(space_id)
    if not space:
        raise HTTPException(status_code=404, detail=f"Space {space_id} not found")
    return space


@router.get("/spaces/{space_id}/reservations", response_model=list[ReservationOut])
def get_space_reservations(space_id: int, limit: int = 50, db: Session = Depends(get_db)):
    """Reservation history for one space, newest first."""
    store = SpaceStore(db)
    if not store.get(space_id):
        raise HTTPException(status_code=404, detail=f"Space {space_id} not found")
    return store.reservations_for_space(space_id, limit=limit)


@router.post("/spaces/{space_id}/sensor", summary="Sensor reading — vacant or occupied")
def post_sensor_reading(space_id: int, body: SensorReading, db: Session = Depends(get_db)):
    """
    Applies a bay sensor reading. A `vacant` reading never clears a
    reservation that has not ended yet.
    """
    store = SpaceStore(db)
    if not store.get(space_id):
        raise HTTPException(status_code=404, detail=f"Space {space_id} not found")
    applied = store.apply_sensor_reading(space_id, body.status)
    space = store.get(space_id)
    return {"space_id": space_id, "status": space.status, "applied": applied}
