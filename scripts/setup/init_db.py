# scripts/setup/init_db.py
"""
Initialize database — creates all tables, optionally seeds a demo parking lot.
Run once before first launch, or after adding new models.
Usage: python scripts/setup/init_db.py [--seed-owner OWNER_ID]
"""

import argparse
import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", ".."))

from slotgate.database import SessionLocal, create_tables, engine
from slotgate.config import settings
from slotgate.services.parking_service import create_parking
from sqlalchemy import inspect, text


def main():
    parser = argparse.ArgumentParser(description="Create SlotGate tables")
    parser.add_argument("--seed-owner", type=int, default=None,
                        help="Owner id to attach a demo parking lot to")
    args = parser.parse_args()

    print("🗄️  SlotGate DB Initialization")
    print("=" * 40)
    print(f"📡 Database: {settings.DATABASE_URL}")

    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        print("✅ Database connection OK")
    except Exception as e:
        print(f"❌ Cannot connect to database: {e}")
        print("\nMake sure PostgreSQL is running:")
        print("  sudo systemctl start postgresql")
        sys.exit(1)

    print("\n📋 Creating tables...")
    create_tables()
    tables = sorted(inspect(engine).get_table_names())
    print(f"✅ Tables in database ({len(tables)} total):")
    for t in tables:
        print(f"   ✓ {t}")

    if args.seed_owner is not None:
        db = SessionLocal()
        try:
            parking = create_parking(db, args.seed_owner, "Demo Lot — MG Road",
                                     lat=12.9756, lng=77.6050, price=40.0, total_slots=20)
            print(f"\n🅿️  Seeded parking {parking.id} for owner {args.seed_owner}")
        finally:
            db.close()

    print("\n🎉 Database ready! You can now start the backend:")
    print("   uvicorn slotgate.main:app --host 0.0.0.0 --port 8080 --reload")


if __name__ == "__main__":
    main()
