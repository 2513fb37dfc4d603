# parkbot/services/space_store.py
"""
Space/Reservation store.

All status changes are single conditional UPDATEs keyed on the current
status (compare-and-set). A read of `vacant` earlier in the request is never
trusted at write time: two payers racing for one space both pass the early
check, and only the UPDATE decides who gets it.
"""

from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import and_, or_, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload

from parkbot.models.parking_space import ParkingSpace, VACANT, OCCUPIED, RESERVED
from parkbot.models.reservation import Reservation, ACTIVE, COMPLETED
from parkbot.utils.clock import utcnow
from parkbot.utils.logger import get_logger


def _reservable(now: datetime):
    """Vacant, or holding a reservation that has already ended."""
    return or_(
        ParkingSpace.status == VACANT,
        and_(ParkingSpace.status == RESERVED,
             ParkingSpace.reservation_end != None,    # noqa: E711
             ParkingSpace.reservation_end <= now),
    )


class SpaceStore:
    def __init__(self, db: Session, logger=None):
        self.db = db
        self.logger = logger or get_logger(__name__)

    # ── Reads ────────────────────────────────────────────────────────────
    def get(self, space_id: int) -> Optional[ParkingSpace]:
        return (
            self.db.query(ParkingSpace)
            .options(joinedload(ParkingSpace.zone))
            .filter(ParkingSpace.id == space_id)
            .first()
        )

    def refresh(self, space: ParkingSpace) -> ParkingSpace:
        self.db.refresh(space)
        return space

    @staticmethod
    def is_reservable(space: ParkingSpace, now: datetime = None) -> bool:
        now = now or utcnow()
        if space.status == VACANT:
            return True
        return (space.status == RESERVED and space.reservation_end is not None
                and space.reservation_end <= now)

    @staticmethod
    def is_held_by(space: ParkingSpace, tx_reference: Optional[str], license_plate: str,
                   now: datetime = None) -> bool:
        """True when the space's live reservation was bought with exactly this evidence and plate."""
        now = now or utcnow()
        return (
            space.status == RESERVED
            and space.license_plate == license_plate
            and space.payment_tx_hash == tx_reference
            and space.reservation_end is not None
            and space.reservation_end > now
        )

    def list_spaces(self, status: str = None, zone_id: int = None, limit: int = 200):
        q = self.db.query(ParkingSpace).options(joinedload(ParkingSpace.zone))
        if status:
            q = q.filter(ParkingSpace.status == status)
        if zone_id:
            q = q.filter(ParkingSpace.zone_id == zone_id)
        return q.order_by(ParkingSpace.id).limit(limit).all()

    def vacant_spaces(self, limit: int = 20):
        return self.list_spaces(status=VACANT, limit=limit)

    def reservations_for_space(self, space_id: int, limit: int = 50):
        return (
            self.db.query(Reservation)
            .filter(Reservation.parking_space_id == space_id)
            .order_by(Reservation.start_time.desc())
            .limit(limit)
            .all()
        )

    def active_reservations_for_plate(self, license_plate: str):
        return (
            self.db.query(Reservation)
            .filter(Reservation.license_plate == license_plate,
                    Reservation.status == ACTIVE,
                    Reservation.end_time > utcnow())
            .order_by(Reservation.start_time.desc())
            .all()
        )

    def get_reservation(self, reservation_id: int) -> Optional[Reservation]:
        return self.db.query(Reservation).filter(Reservation.id == reservation_id).first()

    def reservation_for_tx(self, tx_reference: str) -> Optional[Reservation]:
        return self.db.query(Reservation).filter(Reservation.payment_tx_hash == tx_reference).first()

    # ── Writes ───────────────────────────────────────────────────────────
    def try_reserve(self, space_id: int, license_plate: str, telegram_user_id: Optional[int],
                    tx_reference: Optional[str], hours: int) -> Optional[Reservation]:
        """
        Compare-and-set the space to `reserved` and add the reservation row.
        Returns the (flushed, uncommitted) reservation, or None when the space
        was no longer reservable at write time. The caller commits.
        """
        now = utcnow()
        end = now + timedelta(hours=hours)
        result = self.db.execute(
            update(ParkingSpace)
            .where(ParkingSpace.id == space_id, _reservable(now))
            .values(status=RESERVED, license_plate=license_plate,
                    reservation_start=now, reservation_end=end,
                    payment_tx_hash=tx_reference, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            self.db.rollback()
            self.logger.info(f"[CAS] Space {space_id} not reservable at write time")
            return None

        # An expired reservation that the sweeper has not completed yet
        self.db.query(Reservation).filter(
            Reservation.parking_space_id == space_id,
            Reservation.status == ACTIVE,
            Reservation.end_time <= now,
        ).update({"status": COMPLETED, "completed_at": now}, synchronize_session=False)

        reservation = Reservation(
            parking_space_id=space_id,
            license_plate=license_plate,
            telegram_user_id=telegram_user_id,
            payment_tx_hash=tx_reference,
            start_time=now,
            end_time=end,
            status=ACTIVE,
        )
        self.db.add(reservation)
        try:
            self.db.flush()
        except IntegrityError:
            # This payment already bought a reservation elsewhere
            self.db.rollback()
            self.logger.warning(f"[CAS] tx={tx_reference} already backs a reservation, space {space_id} untouched")
            return None

        self.db.expire_all()
        self.logger.info(f"[CAS] Space {space_id} reserved for {license_plate} until {end:%Y-%m-%d %H:%M}")
        return reservation

    def apply_sensor_reading(self, space_id: int, status: str) -> bool:
        """
        Sensor says the bay is vacant or occupied. A vacant reading never
        clears a reservation that is still running.
        """
        now = utcnow()
        stmt = update(ParkingSpace).where(ParkingSpace.id == space_id)
        if status == VACANT:
            stmt = stmt.where(or_(ParkingSpace.status != RESERVED, _reservable(now))).values(
                status=VACANT, license_plate=None, reservation_start=None,
                reservation_end=None, payment_tx_hash=None, updated_at=now)
        elif status == OCCUPIED:
            stmt = stmt.values(status=OCCUPIED, updated_at=now)
        else:
            raise ValueError(f"unsupported sensor status: {status}")

        result = self.db.execute(stmt.execution_options(synchronize_session=False))
        self.db.commit()
        self.db.expire_all()
        changed = result.rowcount == 1
        self.logger.info(f"[SENSOR] Space {space_id} → {status} ({'applied' if changed else 'kept reservation'})")
        return changed

    def expire_reservations(self) -> int:
        """
        Complete every active reservation whose end time has passed and free
        its space, unless the space has since been reserved again.
        """
        now = utcnow()
        expired = (
            self.db.query(Reservation)
            .filter(Reservation.status == ACTIVE, Reservation.end_time <= now)
            .all()
        )
        for reservation in expired:
            self.db.execute(
                update(ParkingSpace)
                .where(ParkingSpace.id == reservation.parking_space_id,
                       ParkingSpace.status == RESERVED,
                       ParkingSpace.license_plate == reservation.license_plate,
                       ParkingSpace.reservation_end <= now)
                .values(status=VACANT, license_plate=None, reservation_start=None,
                        reservation_end=None, payment_tx_hash=None, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            reservation.status = COMPLETED
            reservation.completed_at = now
        self.db.commit()
        self.db.expire_all()
        if expired:
            self.logger.info(f"[EXPIRY] Completed {len(expired)} reservation(s)")
        return len(expired)
