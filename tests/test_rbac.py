"""
MediTech - RBAC Tests

Unit tests for role-based access control and the permission
dependency on the compliance endpoints.

Run with: pytest tests/test_rbac.py
"""

import pytest

from meditech.auth.models import Role
from meditech.gateway.rbac import Permission, RBACPolicy
from tests.conftest import auth_headers, login_user, patient_profile


class TestRBACPolicy:
    """Tests for RBAC policy enforcement."""
    
    @pytest.mark.parametrize("role", [Role.ADMIN, Role.SUPER_ADMIN])
    def test_admins_read_audit(self, role):
        assert RBACPolicy().has_permission(role.value, Permission.READ_AUDIT)
    
    @pytest.mark.parametrize("role", [
        Role.PATIENT, Role.DOCTOR, Role.NURSE, Role.RECEPTIONIST,
        Role.PHARMACIST, Role.LAB_TECHNICIAN,
    ])
    def test_non_admins_denied_audit(self, role):
        assert not RBACPolicy().has_permission(role.value, Permission.READ_AUDIT)
    
    def test_only_admins_assign_roles(self):
        policy = RBACPolicy()
        
        assert policy.has_permission("SUPER_ADMIN", Permission.ASSIGN_ROLES)
        assert policy.has_permission("ADMIN", Permission.ASSIGN_ROLES)
        assert not policy.has_permission("DOCTOR", Permission.ASSIGN_ROLES)
        assert not policy.has_permission("RECEPTIONIST", Permission.MANAGE_USERS)
    
    def test_clinicians_read_patient_records(self):
        policy = RBACPolicy()
        
        assert policy.has_permission("DOCTOR", Permission.READ_PATIENT_RECORDS)
        assert policy.has_permission("NURSE", Permission.WRITE_PATIENT_RECORDS)
        assert not policy.has_permission("PHARMACIST", Permission.WRITE_PATIENT_RECORDS)
        assert not policy.has_permission("RECEPTIONIST", Permission.READ_PATIENT_RECORDS)
    
    def test_patient_only_own_record(self):
        policy = RBACPolicy()
        
        assert policy.get_role_permissions("PATIENT") == {"read:own_record", "write:own_record"}
    
    def test_unknown_role_denied(self):
        policy = RBACPolicy()
        
        assert not policy.has_permission("unknown_role", Permission.READ_AUDIT)
        assert policy.get_role_permissions("unknown_role") == set()
    
    def test_singleton(self):
        assert RBACPolicy() is RBACPolicy()


class TestAuditEndpointsRequirePermission:
    
    def test_admin_reads_user_logs(self, client, test_admin, test_doctor):
        login_user(client, "doctor@test.com")
        tokens = login_user(client, "admin@test.com")
        
        response = client.get(
            f"/api/v1/audit/users/{test_doctor.id}",
            headers=auth_headers(tokens["access_token"]),
        )
        
        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 1
        assert data["logs"][0]["action"] == "LOGIN"
    
    def test_doctor_forbidden(self, client, test_doctor):
        tokens = login_user(client, "doctor@test.com")
        
        response = client.get(
            "/api/v1/audit/phi",
            headers=auth_headers(tokens["access_token"]),
        )
        
        assert response.status_code == 403
        assert response.json()["detail"] == "Permission denied: read:audit"
    
    def test_unauthenticated(self, client):
        assert client.get("/api/v1/audit/phi").status_code == 401


# =============================================================================
# POLICY-DRIVEN ROUTES
# =============================================================================

class TestRoutesFollowPolicy:
    """Routes consult the policy file rather than hard-coded roles."""
    
    def test_assign_role_requires_assign_permission(self, client, test_admin, test_receptionist, monkeypatch):
        policy = RBACPolicy()
        monkeypatch.setitem(policy._policies, "ADMIN", {"read:audit", "manage:users"})
        tokens = login_user(client, "admin@test.com")
        
        response = client.post(
            "/api/v1/auth/assign-role",
            headers=auth_headers(tokens["access_token"]),
            json={"user_id": str(test_receptionist.id), "role": "NURSE"},
        )
        
        assert response.status_code == 403
        assert response.json()["detail"] == "Permission denied: assign:roles"
    
    def test_own_record_requires_own_record_permission(self, client, db_session, test_patient, monkeypatch):
        profile = patient_profile(db_session, test_patient)
        tokens = login_user(client, "patient@test.com")
        headers = auth_headers(tokens["access_token"])
        
        assert client.get(f"/api/v1/patients/{profile.id}", headers=headers).status_code == 200
        
        monkeypatch.setitem(RBACPolicy()._policies, "PATIENT", set())
        
        response = client.get(f"/api/v1/patients/{profile.id}", headers=headers)
        assert response.status_code == 403
        assert response.json()["detail"] == "Permission denied: read:own_record"
    
    def test_patient_updates_own_record(self, client, db_session, test_patient):
        profile = patient_profile(db_session, test_patient)
        tokens = login_user(client, "patient@test.com")
        
        response = client.put(
            f"/api/v1/patients/{profile.id}",
            headers=auth_headers(tokens["access_token"]),
            json={"emergency_contact_phone": "555-0100"},
        )
        
        assert response.status_code == 200
        assert response.json()["emergency_contact_phone"] == "555-0100"
