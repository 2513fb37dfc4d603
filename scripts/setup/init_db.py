# scripts/setup/init_db.py
"""
Initialize database — creates all tables and seeds demo zones and spaces.
Run once before first launch, or after adding new models.
Usage: python scripts/setup/init_db.py [--no-seed]
"""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", ".."))

import argparse
from parkbot.database import create_tables, engine, SessionLocal
from parkbot.config import settings
from parkbot.models.zone import Zone
from parkbot.models.parking_space import ParkingSpace, VACANT
from parkbot.utils.clock import utcnow
from sqlalchemy import inspect, text

# name, hourly rate (TON), daily rate, premium, max hours, spaces
DEMO_ZONES = [
    ("Centar", 2.0, 20.0, True, 2, 6),
    ("Stari Grad", 1.0, 10.0, False, 4, 8),
    ("Novi Beograd", 0.5, 5.0, False, None, 10),
]


def seed(db):
    if db.query(Zone).count():
        print("ℹ️  Zones already present — skipping seed")
        return
    now = utcnow()
    for name, hourly, daily, premium, max_hours, count in DEMO_ZONES:
        zone = Zone(name=name, hourly_rate=hourly, daily_rate=daily, is_premium=premium,
                    max_duration_hours=max_hours, is_active=True, created_at=now)
        db.add(zone)
        db.flush()
        for i in range(count):
            db.add(ParkingSpace(zone_id=zone.id, street_name=f"{name} {i + 1}",
                                latitude=44.81 + i * 0.0005, longitude=20.46 + i * 0.0005,
                                status=VACANT, updated_at=now))
        print(f"   ✓ {name}: {count} spaces{' (premium)' if premium else ''}")
    db.commit()


def main():
    parser = argparse.ArgumentParser(description="Create tables and seed demo data")
    parser.add_argument("--no-seed", action="store_true")
    args = parser.parse_args()

    print("🗄️  Parkbot DB Initialization")
    print("=" * 40)
    print(f"📡 Database: {settings.DATABASE_URL}")

    # Test connection
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        print("✅ Database connection OK")
    except Exception as e:
        print(f"❌ Cannot connect to database: {e}")
        sys.exit(1)

    # Create all tables
    print("\n📋 Creating tables...")
    create_tables()
    tables = sorted(inspect(engine).get_table_names())
    print(f"\n📊 Tables in database ({len(tables)} total):")
    for t in tables:
        print(f"   ✓ {t}")

    if not args.no_seed:
        print("\n🌱 Seeding demo zones...")
        db = SessionLocal()
        try:
            seed(db)
        finally:
            db.close()

    print("\n🎉 Database ready! You can now start the backend:")
    print("   uvicorn parkbot.main:app --host 0.0.0.0 --port 8080 --reload")


if __name__ == "__main__":
    main()
