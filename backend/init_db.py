"""
Database initialization script
Creates the payout tables, the default payout settings and two seed accounts
"""
import sys
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent))

from payouts.core.database import engine, Base, SessionLocal
from payouts.models.user import User, UserRole
from payouts.services.payout_settings import PayoutSettingsService
import payouts.models  # noqa: F401

SEED_USERS = [
    {"email": "admin@payouts.local", "full_name": "System Administrator", "role": UserRole.ADMIN.value},
    {"email": "agent@payouts.local", "full_name": "Jane Agent", "phone": "0712345678", "role": UserRole.AGENT.value},
]


def create_tables():
    print("Creating payout tables...")
    Base.metadata.create_all(bind=engine)
    print("✓ Tables ready")


def seed_accounts(db):
    for fields in SEED_USERS:
        if db.query(User).filter(User.email == fields["email"]).first():
            print(f"  {fields['email']} already exists, skipping")
            continue
        db.add(User(**fields))
        print(f"✓ {fields['role'].title()} account created ({fields['email']})")
    db.commit()


def main():
    create_tables()

    db = SessionLocal()
    try:
        seed_accounts(db)
        row = PayoutSettingsService(db).get_current_settings()
        print(f"✓ Payout settings at version {row.version} "
              f"(min KSh {row.min_withdrawal_amount:,.0f}, auto-approve up to KSh {row.auto_approval_threshold:,.0f})")
    except Exception as e:
        print(f"\n✗ Seeding failed: {e}")
        db.rollback()
        raise
    finally:
        db.close()


if __name__ == "__main__":
    print("=" * 60)
    print("Agent Payouts - Database Initialization")
    print("=" * 60)

    main()

    print("\n" + "=" * 60)
    print("Initialization complete. Start the API with:")
    print("  uvicorn payouts.main:app --reload")
    print("Callers identify themselves with the X-User-Id header.")
    print("=" * 60)
