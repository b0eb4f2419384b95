"""
MediTech - Audit Context

Per-request audit state. The security middleware opens a PendingAudit
before the handler runs; handlers and the AuditService helpers enrich
it; the middleware writes it once after the response is produced.
"""

from dataclasses import dataclass
from typing import Any, Optional
from uuid import UUID

from starlette.requests import Request

from meditech.audit.models import AuditAction, AuditEntry


METHOD_ACTIONS = {
    "GET": AuditAction.READ,
    "POST": AuditAction.CREATE,
    "PUT": AuditAction.UPDATE,
    "PATCH": AuditAction.UPDATE,
    "DELETE": AuditAction.DELETE,
}

# Patient-scoped resource types; any request against these touches PHI
PHI_RESOURCES = frozenset({
    "patients",
    "medical-records",
    "prescriptions",
    "lab-results",
    "appointments",
    "vital-signs",
    "allergies",
    "diagnoses",
    "immunizations",
})

REQUEST_STATE_KEY = "audit"


def action_for_method(method: str) -> AuditAction:
    """Map an HTTP method to its audit action. Unknown methods read as READ."""
    return METHOD_ACTIONS.get(method.upper(), AuditAction.READ)


def parse_resource(path: str, api_prefix: str) -> str:
    """
    Resource type is the first path segment after the API prefix.
    
    /api/v1/patients/123 -> "patients"
    """
    if api_prefix and path.startswith(api_prefix):
        path = path[len(api_prefix):]
    segments = [s for s in path.split("/") if s]
    return segments[0] if segments else "unknown"


def is_phi_resource(resource: str) -> bool:
    return resource in PHI_RESOURCES


def get_client_ip(request: Request) -> str:
    """Client IP, honoring X-Forwarded-For from a fronting proxy."""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    if request.client:
        return request.client.host
    return "unknown"


@dataclass
class PendingAudit:
    """Audit entry under construction for the current request."""
    action: AuditAction
    resource: str
    endpoint: str
    method: str
    ip_address: str
    user_agent: Optional[str] = None
    resource_id: Optional[str] = None
    phi_accessed: bool = False
    patient_id: Optional[str] = None
    old_values: Optional[Any] = None
    new_values: Optional[Any] = None
    
    @classmethod
    def from_request(cls, request: Request, api_prefix: str) -> "PendingAudit":
        resource = parse_resource(request.url.path, api_prefix)
        return cls(
            action=action_for_method(request.method),
            resource=resource,
            endpoint=request.url.path,
            method=request.method,
            ip_address=get_client_ip(request),
            user_agent=request.headers.get("user-agent"),
            phi_accessed=is_phi_resource(resource),
        )
    
    def annotate(
        self,
        resource_id: Optional[str] = None,
        patient_id: Optional[str] = None,
        old_values: Optional[Any] = None,
        new_values: Optional[Any] = None,
        phi_accessed: bool = False,
    ) -> None:
        """Attach handler-level detail. The PHI flag can be raised, never cleared."""
        self.phi_accessed = self.phi_accessed or phi_accessed
        if resource_id is not None:
            self.resource_id = resource_id
        if patient_id is not None:
            self.patient_id = patient_id
        if old_values is not None:
            self.old_values = old_values
        if new_values is not None:
            self.new_values = new_values
    
    def to_entry(
        self,
        user_id: Optional[UUID],
        success: bool,
        error_message: Optional[str] = None,
    ) -> AuditEntry:
        return AuditEntry(
            user_id=user_id,
            action=self.action,
            resource=self.resource,
            resource_id=self.resource_id,
            phi_accessed=self.phi_accessed,
            patient_id=self.patient_id,
            ip_address=self.ip_address,
            user_agent=self.user_agent,
            endpoint=self.endpoint,
            method=self.method,
            old_values=self.old_values,
            new_values=self.new_values,
            success=success,
            error_message=None if success else error_message,
        )


def get_pending_audit(request: Optional[Request]) -> Optional[PendingAudit]:
    """The PendingAudit opened for this request, if any."""
    if request is None:
        return None
    return getattr(request.state, REQUEST_STATE_KEY, None)
