"""
MediTech - Credential Authenticator Tests

Tests for:
- Login check order and generic failure wording
- Lockout after consecutive failures and its expiry
- Rehash-on-login
- Registration atomicity and duplicate handling
- Admin provisioning, password change and role assignment

Run with: pytest tests/test_authenticator.py
"""

from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta
from uuid import uuid4

import pytest
from sqlmodel import Session, select

from meditech.auth.authenticator import Authenticator, NewUser
from meditech.auth.errors import (
    AccountInactiveError,
    AccountLockedError,
    AccountSuspendedError,
    EmailAlreadyRegisteredError,
    InvalidCredentialsError,
    PermissionDeniedError,
    UserNotFoundError,
    remaining_lockout_minutes,
)
from meditech.auth.models import DoctorProfile, PatientProfile, RefreshToken, Role, User, UserStatus
from meditech.database import utcnow
from tests.conftest import TEST_PASSWORD, make_user


def _reload(session_factory, user_id) -> User:
    db = session_factory()
    try:
        return db.get(User, user_id)
    finally:
        db.close()


# =============================================================================
# LOGIN
# =============================================================================

class TestAuthenticate:
    
    def test_success_returns_principal_and_tokens(self, authenticator, db_session, test_patient):
        result = authenticator.authenticate(db_session, "patient@test.com", TEST_PASSWORD)
        
        assert result.principal.id == test_patient.id
        assert result.principal.role == Role.PATIENT
        assert result.principal.patient_id is not None
        assert result.tokens.access_token
        assert result.tokens.refresh_token
        assert result.tokens.expires_in == 15 * 60
    
    def test_email_is_case_insensitive(self, authenticator, db_session, test_patient):
        result = authenticator.authenticate(db_session, "Patient@Test.COM", TEST_PASSWORD)
        
        assert result.principal.id == test_patient.id
    
    def test_success_stamps_last_login_and_persists_refresh_token(
        self, authenticator, db_session, session_factory, test_doctor
    ):
        authenticator.authenticate(db_session, "doctor@test.com", TEST_PASSWORD)
        
        stored = _reload(session_factory, test_doctor.id)
        assert stored.last_login is not None
        
        tokens = db_session.exec(
            select(RefreshToken).where(RefreshToken.user_id == test_doctor.id)
        ).all()
        assert len(tokens) == 1
    
    def test_unknown_email_generic_message(self, authenticator, db_session):
        with pytest.raises(UserNotFoundError) as exc_info:
            authenticator.authenticate(db_session, "nobody@test.com", TEST_PASSWORD)
        
        assert str(exc_info.value) == "Invalid credentials"
        assert exc_info.value.user_id is None
    
    def test_wrong_password_same_message(self, authenticator, db_session, test_patient):
        with pytest.raises(InvalidCredentialsError) as exc_info:
            authenticator.authenticate(db_session, "patient@test.com", "Wrong1!pass")
        
        assert str(exc_info.value) == "Invalid credentials"
        assert exc_info.value.user_id == test_patient.id
    
    def test_suspended_checked_before_password(self, authenticator, db_session, suspended_user):
        with pytest.raises(AccountSuspendedError) as exc_info:
            authenticator.authenticate(db_session, "suspended@test.com", "Wrong1!pass")
        
        assert "suspended" in str(exc_info.value)
    
    def test_inactive_rejected(self, authenticator, db_session, inactive_user):
        with pytest.raises(AccountInactiveError):
            authenticator.authenticate(db_session, "inactive@test.com", TEST_PASSWORD)
    
    def test_pending_verification_may_log_in(self, authenticator, db_session):
        make_user(db_session, "pending@test.com", Role.NURSE, status=UserStatus.PENDING_VERIFICATION)
        
        result = authenticator.authenticate(db_session, "pending@test.com", TEST_PASSWORD)
        
        assert result.principal.status == UserStatus.PENDING_VERIFICATION
    
    def test_rehash_on_login_when_cost_is_low(self, token_issuer, db_session, session_factory, test_patient):
        stronger = Authenticator(token_issuer, bcrypt_rounds=5)
        
        stronger.authenticate(db_session, "patient@test.com", TEST_PASSWORD)
        
        stored = _reload(session_factory, test_patient.id)
        assert stored.password_hash.startswith("$2b$05$")
        stronger.authenticate(db_session, "patient@test.com", TEST_PASSWORD)


# =============================================================================
# LOCKOUT
# =============================================================================

class TestLockout:
    
    def _fail(self, authenticator, db, email, times):
        for _ in range(times):
            with pytest.raises(InvalidCredentialsError):
                authenticator.authenticate(db, email, "Wrong1!pass")
    
    def test_counter_increments(self, authenticator, db_session, session_factory, test_patient):
        self._fail(authenticator, db_session, "patient@test.com", 3)
        
        stored = _reload(session_factory, test_patient.id)
        assert stored.failed_login_attempts == 3
        assert stored.account_locked_until is None
    
    def test_fifth_failure_locks_for_thirty_minutes(
        self, authenticator, db_session, session_factory, test_patient
    ):
        before = utcnow()
        self._fail(authenticator, db_session, "patient@test.com", 5)
        
        stored = _reload(session_factory, test_patient.id)
        assert stored.failed_login_attempts == 5
        assert stored.account_locked_until is not None
        window = stored.account_locked_until - before
        assert timedelta(minutes=29) < window <= timedelta(minutes=31)
    
    def test_sixth_attempt_rejected_even_with_correct_password(
        self, authenticator, db_session, test_patient
    ):
        self._fail(authenticator, db_session, "patient@test.com", 5)
        
        with pytest.raises(AccountLockedError) as exc_info:
            authenticator.authenticate(db_session, "patient@test.com", TEST_PASSWORD)
        
        assert exc_info.value.remaining_minutes == 30
        assert "Try again in 30 minutes" in str(exc_info.value)
    
    def test_success_resets_counter(self, authenticator, db_session, session_factory, test_patient):
        self._fail(authenticator, db_session, "patient@test.com", 4)
        
        authenticator.authenticate(db_session, "patient@test.com", TEST_PASSWORD)
        
        stored = _reload(session_factory, test_patient.id)
        assert stored.failed_login_attempts == 0
        assert stored.account_locked_until is None
        
        self._fail(authenticator, db_session, "patient@test.com", 1)
        assert _reload(session_factory, test_patient.id).failed_login_attempts == 1
    
    def test_expired_lock_allows_correct_password(
        self, authenticator, db_session, session_factory, test_patient
    ):
        test_patient.failed_login_attempts = 5
        test_patient.account_locked_until = utcnow() - timedelta(seconds=1)
        db_session.add(test_patient)
        db_session.commit()
        
        authenticator.authenticate(db_session, "patient@test.com", TEST_PASSWORD)
        
        stored = _reload(session_factory, test_patient.id)
        assert stored.failed_login_attempts == 0
        assert stored.account_locked_until is None
    
    def test_concurrent_failures_never_lose_an_increment(
        self, authenticator, test_engine, session_factory, test_patient
    ):
        def attempt(_):
            with Session(test_engine) as db:
                try:
                    authenticator.authenticate(db, "patient@test.com", "Wrong1!pass")
                except (InvalidCredentialsError, AccountLockedError):
                    pass
        
        with ThreadPoolExecutor(max_workers=4) as pool:
            list(pool.map(attempt, range(4)))
        
        stored = _reload(session_factory, test_patient.id)
        assert stored.failed_login_attempts == 4


class TestRemainingMinutes:
    
    def test_rounds_up(self):
        now = datetime(2024, 1, 1, 12, 0, 0)
        
        assert remaining_lockout_minutes(now + timedelta(seconds=90), now) == 2
        assert remaining_lockout_minutes(now + timedelta(minutes=30), now) == 30
    
    def test_never_below_one(self):
        now = datetime(2024, 1, 1, 12, 0, 0)
        
        assert remaining_lockout_minutes(now + timedelta(milliseconds=10), now) == 1


# =============================================================================
# REGISTRATION
# =============================================================================

def _new_user(email: str, role: Role) -> NewUser:
    return NewUser(
        email=email,
        password="Secure1!@",
        role=role,
        first_name="Dana",
        last_name="Reyes",
    )


class TestRegistration:
    
    def test_doctor_gets_pending_status_and_profile_stub(self, authenticator, db_session):
        user = authenticator.register(db_session, _new_user("Doc@Example.com", Role.DOCTOR))
        
        assert user.email == "doc@example.com"
        assert user.status == UserStatus.PENDING_VERIFICATION
        assert user.password_hash != "Secure1!@"
        
        profile = db_session.exec(
            select(DoctorProfile).where(DoctorProfile.user_id == user.id)
        ).one()
        assert profile.license_number == f"TEMP-{user.id}"
        assert profile.specialization == "General"
    
    def test_patient_gets_patient_profile(self, authenticator, db_session):
        user = authenticator.register(db_session, _new_user("pat@example.com", Role.PATIENT))
        
        profile = db_session.exec(
            select(PatientProfile).where(PatientProfile.user_id == user.id)
        ).one()
        assert profile.blood_type is None
    
    def test_other_roles_get_no_profile(self, authenticator, db_session):
        user = authenticator.register(db_session, _new_user("nurse@example.com", Role.NURSE))
        
        assert db_session.exec(select(PatientProfile).where(PatientProfile.user_id == user.id)).first() is None
        assert db_session.exec(select(DoctorProfile).where(DoctorProfile.user_id == user.id)).first() is None
    
    def test_duplicate_email_conflicts_without_new_rows(self, authenticator, db_session):
        authenticator.register(db_session, _new_user("doc@example.com", Role.DOCTOR))
        
        with pytest.raises(EmailAlreadyRegisteredError):
            authenticator.register(db_session, _new_user("DOC@example.com", Role.DOCTOR))
        
        assert len(db_session.exec(select(User)).all()) == 1
        assert len(db_session.exec(select(DoctorProfile)).all()) == 1
    
    def test_registered_user_can_log_in(self, authenticator, db_session):
        authenticator.register(db_session, _new_user("pat@example.com", Role.PATIENT))
        
        result = authenticator.authenticate(db_session, "pat@example.com", "Secure1!@")
        
        assert result.principal.patient_id is not None


# =============================================================================
# ADMINISTRATION
# =============================================================================

class TestAdminProvisioning:
    
    def test_admin_creates_active_user_with_random_password(self, authenticator, db_session, test_admin):
        user, temporary = authenticator.create_user_by_admin(
            db_session, test_admin.id, _new_user("new@example.com", Role.PATIENT)
        )
        
        assert user.status == UserStatus.ACTIVE
        assert temporary != "Secure1!@"
        assert len(temporary) >= 12
        
        result = authenticator.authenticate(db_session, "new@example.com", temporary)
        assert result.principal.patient_id is not None
    
    def test_temporary_passwords_differ(self, authenticator, db_session, test_admin):
        _, first = authenticator.create_user_by_admin(
            db_session, test_admin.id, _new_user("a@example.com", Role.NURSE)
        )
        _, second = authenticator.create_user_by_admin(
            db_session, test_admin.id, _new_user("b@example.com", Role.NURSE)
        )
        
        assert first != second
    
    def test_admin_cannot_create_admin(self, authenticator, db_session, test_admin):
        with pytest.raises(PermissionDeniedError):
            authenticator.create_user_by_admin(
                db_session, test_admin.id, _new_user("boss@example.com", Role.ADMIN)
            )
    
    def test_super_admin_can_create_admin(self, authenticator, db_session, test_super_admin):
        user, _ = authenticator.create_user_by_admin(
            db_session, test_super_admin.id, _new_user("boss@example.com", Role.ADMIN)
        )
        
        assert user.role == Role.ADMIN


class TestChangePassword:
    
    def test_wrong_current_password(self, authenticator, db_session, test_patient):
        with pytest.raises(InvalidCredentialsError):
            authenticator.change_password(db_session, test_patient.id, "Wrong1!pass", "NewPass1!")
    
    def test_change_revokes_refresh_tokens(self, authenticator, db_session, test_patient):
        authenticator.authenticate(db_session, "patient@test.com", TEST_PASSWORD)
        authenticator.authenticate(db_session, "patient@test.com", TEST_PASSWORD)
        
        revoked = authenticator.change_password(db_session, test_patient.id, TEST_PASSWORD, "NewPass1!")
        
        assert revoked == 2
        with pytest.raises(InvalidCredentialsError):
            authenticator.authenticate(db_session, "patient@test.com", TEST_PASSWORD)
        authenticator.authenticate(db_session, "patient@test.com", "NewPass1!")


class TestAssignRole:
    
    def test_admin_cannot_grant_super_admin(self, authenticator, db_session, test_admin, test_patient):
        with pytest.raises(PermissionDeniedError):
            authenticator.assign_role(db_session, test_admin.id, test_patient.id, Role.SUPER_ADMIN)
    
    def test_admin_can_grant_clinical_role(self, authenticator, db_session, test_admin, test_patient):
        updated = authenticator.assign_role(db_session, test_admin.id, test_patient.id, Role.NURSE)
        
        assert updated.role == Role.NURSE
    
    def test_super_admin_can_grant_super_admin(
        self, authenticator, db_session, test_super_admin, test_admin
    ):
        updated = authenticator.assign_role(
            db_session, test_super_admin.id, test_admin.id, Role.SUPER_ADMIN
        )
        
        assert updated.role == Role.SUPER_ADMIN
    
    def test_unknown_target(self, authenticator, db_session, test_super_admin):
        with pytest.raises(UserNotFoundError):
            authenticator.assign_role(db_session, test_super_admin.id, uuid4(), Role.NURSE)
