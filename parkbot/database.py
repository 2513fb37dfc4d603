# parkbot/database.py
"""
Database connection, session management, and table creation.
Uses SQLAlchemy; SQLite by default, PostgreSQL via DATABASE_URL. All models
are auto-imported here so create_tables() creates every table in one call.
"""

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from parkbot.config import settings


def _engine_kwargs(url: str) -> dict:
    if url.startswith("sqlite"):
        # One connection per webhook handler thread
        return {"connect_args": {"check_same_thread": False}}
    return {
        "pool_pre_ping": True,          # Auto-reconnect if DB connection drops
        "pool_size": 10,
        "max_overflow": 20,
    }


engine = create_engine(
    settings.DATABASE_URL,
    echo=False,                          # Set True to log all SQL queries (debug only)
    **_engine_kwargs(settings.DATABASE_URL),
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    """FastAPI dependency — yields a DB session and closes it after request."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def create_tables(bind=None):
    """
    Creates all DB tables on startup. Safe to call multiple times.
    Import all models here so SQLAlchemy knows about them.
    """
    from parkbot.models.zone import Zone                        # noqa
    from parkbot.models.parking_space import ParkingSpace       # noqa
    from parkbot.models.linked_account import LinkedAccount     # noqa
    from parkbot.models.payment_record import PaymentRecord     # noqa
    from parkbot.models.payment_intent import PaymentIntent     # noqa
    from parkbot.models.reservation import Reservation          # noqa
    from parkbot.models.bot_update import BotUpdate             # noqa

    Base.metadata.create_all(bind=bind or engine)
