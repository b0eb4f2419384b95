"""
MediTech - Database Seed Script

Creates the initial super admin for a fresh deployment, plus optional
demo users for development. Passwords are generated and printed once.

Usage:
    python -m scripts.seed_users
"""

import secrets

from sqlmodel import Session, select

from meditech.auth.models import DoctorProfile, PatientProfile, Role, User, UserStatus
from meditech.auth.password import hash_password
from meditech.config import get_settings
from meditech.database import get_engine, init_db


SUPER_ADMIN_EMAIL = "admin@meditech.local"

DEMO_USERS = [
    ("doctor@meditech.local", Role.DOCTOR, "Demo", "Doctor"),
    ("nurse@meditech.local", Role.NURSE, "Demo", "Nurse"),
    ("patient@meditech.local", Role.PATIENT, "Demo", "Patient"),
    ("auditor@meditech.local", Role.ADMIN, "Demo", "Admin"),
]


def _create(session: Session, email: str, role: Role, first_name: str, last_name: str, rounds: int) -> str:
    """Add an ACTIVE user with its role profile; return the generated password."""
    password = secrets.token_urlsafe(12)
    user = User(
        email=email,
        password_hash=hash_password(password, rounds),
        role=role,
        status=UserStatus.ACTIVE,
        first_name=first_name,
        last_name=last_name,
    )
    session.add(user)
    
    if role == Role.PATIENT:
        session.add(PatientProfile(user_id=user.id))
    elif role == Role.DOCTOR:
        session.add(DoctorProfile(user_id=user.id, license_number=f"TEMP-{user.id}"))
    
    return password


def seed_super_admin(engine, rounds: int) -> None:
    """Create the super admin unless one exists."""
    with Session(engine) as session:
        existing = session.exec(
            select(User).where(User.email == SUPER_ADMIN_EMAIL)
        ).first()
        
        if existing:
            print("Super admin already exists.")
            return
        
        password = _create(session, SUPER_ADMIN_EMAIL, Role.SUPER_ADMIN, "System", "Administrator", rounds)
        session.commit()
        
        print("Super admin created successfully!")
        print(f"  Email: {SUPER_ADMIN_EMAIL}")
        print(f"  Password: {password}")
        print("  Change this password after first login.")


def seed_demo_users(engine, rounds: int) -> None:
    """Create one demo user per clinical role."""
    with Session(engine) as session:
        for email, role, first_name, last_name in DEMO_USERS:
            existing = session.exec(select(User).where(User.email == email)).first()
            if existing:
                print(f"User {email} already exists.")
                continue
            
            password = _create(session, email, role, first_name, last_name, rounds)
            print(f"Created user: {email} ({role.value}) password: {password}")
        
        session.commit()


if __name__ == "__main__":
    print("=" * 50)
    print("MediTech - User Seed Script")
    print("=" * 50)
    
    settings = get_settings()
    engine = get_engine(settings.DATABASE_URL)
    init_db(engine)
    
    seed_super_admin(engine, settings.BCRYPT_ROUNDS)
    
    print()
    response = input("Create demo users for clinical roles? (y/n): ")
    if response.lower() == "y":
        seed_demo_users(engine, settings.BCRYPT_ROUNDS)
    
    print()
    print("Done!")
