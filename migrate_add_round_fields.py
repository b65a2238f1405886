"""
Round Fields Migration Script
Adds the round window, swap rule and match frequency columns to databases
created before rounds were introduced, and creates the rank history table.

Usage: python migrate_add_round_fields.py
"""

from dotenv import load_dotenv
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

load_dotenv()

COLUMNS = [
    ("matches", "round_label", "VARCHAR(20)"),
    ("matches", "round_start_date", "DATE"),
    ("matches", "round_end_date", "DATE"),
    ("ladders", "swap_on_upset", "BOOLEAN DEFAULT TRUE"),
    ("ladder_memberships", "match_frequency", "INTEGER DEFAULT 1"),
]


def migrate_add_round_fields():
    """Add round tracking fields (PostgreSQL)"""
    from app import app, db
    from models import LadderRankHistory

    with app.app_context():
        print("🔧 Adding round fields...")
        print(f"📍 Database URI: {app.config['SQLALCHEMY_DATABASE_URI'][:50]}...")

        try:
            with db.engine.connect() as conn:
                with conn.begin():
                    print("\n📝 Adding round columns...")
                    for table, column, column_type in COLUMNS:
                        conn.execute(text(
                            f"ALTER TABLE {table} ADD COLUMN IF NOT EXISTS {column} {column_type};"
                        ))
                        print(f"   ✅ {table}.{column}")

            LadderRankHistory.__table__.create(db.engine, checkfirst=True)
            print("   ✅ ladder_rank_history")

            print("\n✅ Migration completed successfully!")

        except SQLAlchemyError as e:
            print(f"❌ Error during migration: {e}")
            raise


if __name__ == "__main__":
    migrate_add_round_fields()
