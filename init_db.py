"""
Database Initialization Script
Creates all tables on first deployment. When SUPER_ADMIN_EMAIL is set and no
player owns that address yet, the first super admin is registered and their
access link printed.

Usage: python init_db.py
"""

import os

from dotenv import load_dotenv

load_dotenv()

from app import app, db, BASE_URL
from ladder_store import get_player_by_email, register_player


def bootstrap_super_admin():
    """Register the super admin from the environment. Returns the player or None."""
    email = os.environ.get("SUPER_ADMIN_EMAIL")
    if not email:
        return None
    existing = get_player_by_email(email)
    if existing:
        print(f"ℹ️  Super admin {existing.email} already exists")
        return existing
    player = register_player(
        {"name": os.environ.get("SUPER_ADMIN_NAME", "Admin"), "email": email},
        is_super_admin=True,
    )
    print(f"👤 Super admin created: {player.email}")
    print(f"🔗 Access link: {BASE_URL}/my-matches/{player.access_token}")
    return player


def init_database():
    with app.app_context():
        print("🔧 Initializing database...")
        print(f"📍 Database URI: {app.config['SQLALCHEMY_DATABASE_URI'][:50]}...")

        db.create_all()

        print("✅ Database initialized successfully!")
        print("📋 Tables:")
        for table in db.metadata.sorted_tables:
            print(f"   - {table.name}")

        bootstrap_super_admin()


if __name__ == "__main__":
    init_database()
