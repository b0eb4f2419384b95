"""
MediTech - Role-Based Access Control (RBAC)

Permission checks against the role grants in policies.yaml.

Security:
- Deny-by-default: all actions require an explicit grant
- Role hierarchy is NOT inherited (explicit grants only)
- Denials are logged
"""

from enum import Enum
from pathlib import Path
from typing import Dict, Optional, Set

import yaml
from fastapi import Depends, HTTPException, status

from meditech.auth.dependencies import AuthenticatedUser, get_current_user
from meditech.log import get_logger


logger = get_logger(__name__)

POLICY_PATH = Path(__file__).parent / "policies.yaml"


class Permission(str, Enum):
    """Granular permissions, resource:action."""
    # Patient data
    READ_OWN_RECORD = "read:own_record"
    WRITE_OWN_RECORD = "write:own_record"
    READ_PATIENT_RECORDS = "read:patient_records"
    WRITE_PATIENT_RECORDS = "write:patient_records"
    
    # Compliance
    READ_AUDIT = "read:audit"
    
    # Administration
    MANAGE_USERS = "manage:users"
    ASSIGN_ROLES = "assign:roles"


class RBACPolicy:
    """
    Role-to-permission mappings loaded from policies.yaml.
    
    Singleton; the file is read once per process.
    """
    
    _instance: Optional["RBACPolicy"] = None
    _policies: Dict[str, Set[str]] = {}
    
    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._load_policies(POLICY_PATH)
        return cls._instance
    
    def _load_policies(self, policy_path: Path) -> None:
        if not policy_path.exists():
            # Default deny-all if no policy file
            self._policies = {}
            return
        
        with open(policy_path, "r") as f:
            config = yaml.safe_load(f) or {}
        
        self._policies = {
            role: set(perms or [])
            for role, perms in config.get("roles", {}).items()
        }
    
    def has_permission(self, role: str, permission: Permission) -> bool:
        """
        Check if a role has a specific permission.
        
        Returns:
            True if permitted, False otherwise (deny-by-default)
        """
        return permission.value in self._policies.get(role, set())
    
    def get_role_permissions(self, role: str) -> Set[str]:
        return set(self._policies.get(role, set()))


def require_permission(permission: Permission):
    """
    Dependency factory enforcing a permission.
    
    Usage:
        @router.get("/audit/phi")
        async def phi_logs(user: AuthenticatedUser = Depends(require_permission(Permission.READ_AUDIT))):
            ...
    
    Raises:
        HTTPException 401: Not authenticated
        HTTPException 403: Role lacks the permission
    """
    async def dependency(
        user: AuthenticatedUser = Depends(get_current_user),
    ) -> AuthenticatedUser:
        if not RBACPolicy().has_permission(user.role.value, permission):
            logger.warning(
                "permission_denied",
                user_id=str(user.user_id),
                role=user.role.value,
                permission=permission.value,
            )
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Permission denied: {permission.value}",
            )
        return user
    
    return dependency
