"""
MediTech - Test Configuration

Pytest fixtures shared by the suite:
- Settings with deterministic secrets and a low bcrypt cost
- File-backed SQLite database per test
- fakeredis-backed revocation cache
- Component fixtures (token issuer, authenticator, audit service, codec)
- TestClient over a fully wired app
- User fixtures for each role used in tests
"""

from typing import Generator, Optional

import fakeredis
import pytest
from fakeredis import aioredis
from fastapi.testclient import TestClient
from sqlmodel import Session, select

from meditech.app import create_app
from meditech.audit.service import AuditService
from meditech.auth.authenticator import Authenticator
from meditech.auth.models import DoctorProfile, PatientProfile, Role, User, UserStatus
from meditech.auth.password import hash_password
from meditech.auth.tokens import TokenIssuer
from meditech.cache import RevocationCache
from meditech.config import Settings
from meditech.crypto import EncryptionCodec
from meditech.database import get_engine, get_session_factory, init_db


TEST_ENCRYPTION_KEY = "0123456789abcdef0123456789abcdef"
TEST_PASSWORD = "Passw0rd!"
TEST_ROUNDS = 4


@pytest.fixture(scope="function")
def settings(tmp_path) -> Settings:
    """Settings for a single test, isolated from any .env file."""
    return Settings(
        _env_file=None,
        DATABASE_URL=f"sqlite:///{tmp_path / 'test.db'}",
        JWT_SECRET="test-access-secret",
        JWT_REFRESH_SECRET="test-refresh-secret",
        ENCRYPTION_KEY=TEST_ENCRYPTION_KEY,
        BCRYPT_ROUNDS=TEST_ROUNDS,
        AUDIT_SWEEP_INTERVAL_HOURS=0,
    )


@pytest.fixture(scope="function")
def test_engine(settings):
    """Fresh file-backed database for each test."""
    engine = get_engine(settings.DATABASE_URL)
    init_db(engine)
    
    yield engine
    
    engine.dispose()


@pytest.fixture(scope="function")
def session_factory(test_engine):
    return get_session_factory(test_engine)


@pytest.fixture(scope="function")
def db_session(test_engine) -> Generator[Session, None, None]:
    """Create a database session for testing."""
    with Session(test_engine) as session:
        yield session


@pytest.fixture(scope="function")
def fake_redis():
    """Async fake Redis with its own server, so tests never share keys."""
    return aioredis.FakeRedis(server=fakeredis.FakeServer())


@pytest.fixture(scope="function")
def cache(fake_redis) -> RevocationCache:
    return RevocationCache(fake_redis)


@pytest.fixture(scope="function")
def token_issuer(settings, cache) -> TokenIssuer:
    return TokenIssuer.from_settings(settings, cache)


@pytest.fixture(scope="function")
def authenticator(settings, token_issuer) -> Authenticator:
    return Authenticator.from_settings(settings, token_issuer)


@pytest.fixture(scope="function")
def audit_service(session_factory) -> AuditService:
    return AuditService(session_factory)


@pytest.fixture(scope="function")
def codec() -> EncryptionCodec:
    return EncryptionCodec(TEST_ENCRYPTION_KEY)


@pytest.fixture(scope="function")
def client(settings, test_engine, fake_redis) -> Generator[TestClient, None, None]:
    """Create a test client over the test database and fake cache."""
    app = create_app(settings, redis_client=fake_redis, engine=test_engine)
    
    with TestClient(app) as c:
        yield c


def make_user(
    session: Session,
    email: str,
    role: Role,
    status: UserStatus = UserStatus.ACTIVE,
    password: str = TEST_PASSWORD,
) -> User:
    """Insert a user and, for patients and doctors, its profile."""
    user = User(
        email=email,
        password_hash=hash_password(password, TEST_ROUNDS),
        role=role,
        status=status,
        first_name="Test",
        last_name=role.value.title(),
    )
    session.add(user)
    
    if role == Role.PATIENT:
        session.add(PatientProfile(user_id=user.id))
    elif role == Role.DOCTOR:
        session.add(DoctorProfile(user_id=user.id, license_number=f"LIC-{user.id}"))
    
    session.commit()
    session.refresh(user)
    return user


def patient_profile(session: Session, user: User) -> PatientProfile:
    return session.exec(
        select(PatientProfile).where(PatientProfile.user_id == user.id)
    ).one()


@pytest.fixture(scope="function")
def test_patient(db_session) -> User:
    return make_user(db_session, "patient@test.com", Role.PATIENT)


@pytest.fixture(scope="function")
def other_patient(db_session) -> User:
    return make_user(db_session, "other.patient@test.com", Role.PATIENT)


@pytest.fixture(scope="function")
def test_doctor(db_session) -> User:
    return make_user(db_session, "doctor@test.com", Role.DOCTOR)


@pytest.fixture(scope="function")
def test_receptionist(db_session) -> User:
    return make_user(db_session, "reception@test.com", Role.RECEPTIONIST)


@pytest.fixture(scope="function")
def test_admin(db_session) -> User:
    return make_user(db_session, "admin@test.com", Role.ADMIN)


@pytest.fixture(scope="function")
def test_super_admin(db_session) -> User:
    return make_user(db_session, "root@test.com", Role.SUPER_ADMIN)


@pytest.fixture(scope="function")
def suspended_user(db_session) -> User:
    return make_user(db_session, "suspended@test.com", Role.NURSE, status=UserStatus.SUSPENDED)


@pytest.fixture(scope="function")
def inactive_user(db_session) -> User:
    return make_user(db_session, "inactive@test.com", Role.NURSE, status=UserStatus.INACTIVE)


def login_user(client: TestClient, email: str, password: str = TEST_PASSWORD) -> Optional[dict]:
    """Helper function to login and return the response body."""
    response = client.post(
        "/api/v1/auth/login",
        json={"email": email, "password": password},
    )
    return response.json() if response.status_code == 200 else None


def auth_headers(access_token: str) -> dict:
    """Create authorization headers for authenticated requests."""
    return {"Authorization": f"Bearer {access_token}"}
