"""
MediTech - Security Middleware

Request/response middleware for:
- Request ID injection for tracing
- Audit trail interception of API requests
- Security headers

Every request under the API prefix produces exactly one audit entry,
written after the response is produced. Login and logout are excluded
here because their routes record explicit LOGIN/LOGOUT entries.
"""

import time
import uuid
from typing import Callable, Iterable, Optional

from starlette.background import BackgroundTask, BackgroundTasks
from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp

from meditech.audit.context import REQUEST_STATE_KEY, PendingAudit
from meditech.audit.models import AuditEntry
from meditech.log import get_logger


logger = get_logger(__name__)

ERROR_STATE_KEY = "audit_error"


def record_error(request: Request, message: str) -> None:
    """Remember the failure text of this request for its audit entry."""
    setattr(request.state, ERROR_STATE_KEY, message)


class SecurityMiddleware(BaseHTTPMiddleware):
    """
    Security-focused middleware for all incoming requests.
    
    Responsibilities:
    1. Inject X-Request-ID header for distributed tracing
    2. Open a pending audit entry before the handler runs
    3. Write it after the response (as a background task) or after an
       unhandled exception (then re-raise)
    4. Add security headers to response
    """
    
    def __init__(
        self,
        app: ASGIApp,
        api_prefix: str = "/api/v1",
        exempt_paths: Iterable[str] = ("/auth/login", "/auth/logout"),
    ):
        super().__init__(app)
        self.api_prefix = api_prefix
        self.exempt_paths = frozenset(f"{api_prefix}{p}" for p in exempt_paths)
    
    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        """Process each request through security pipeline."""
        request_id = str(uuid.uuid4())
        request.state.request_id = request_id
        
        start_time = time.perf_counter()
        pending = self._audit_request(request)
        
        try:
            response = await call_next(request)
        except Exception as e:
            if pending is not None:
                entry = self._complete(request, pending, success=False, error=str(e) or type(e).__name__)
                audit = request.app.state.audit
                await run_in_threadpool(audit.record, entry)
            raise
        
        duration_ms = (time.perf_counter() - start_time) * 1000
        
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["X-XSS-Protection"] = "1; mode=block"
        response.headers["Cache-Control"] = "no-store"
        
        if pending is not None:
            self._audit_response(request, pending, response)
        
        logger.debug(
            "request_completed",
            request_id=request_id,
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            duration_ms=round(duration_ms, 2),
        )
        return response
    
    def _audit_request(self, request: Request) -> Optional[PendingAudit]:
        """Open the pending audit entry, or None when not audited."""
        path = request.url.path
        if not path.startswith(self.api_prefix) or path in self.exempt_paths:
            return None
        if getattr(request.app.state, "audit", None) is None:
            return None
        
        pending = PendingAudit.from_request(request, self.api_prefix)
        setattr(request.state, REQUEST_STATE_KEY, pending)
        return pending
    
    def _audit_response(self, request: Request, pending: PendingAudit, response: Response) -> None:
        """Schedule the audit write after the response is sent."""
        success = response.status_code < 400
        error = None
        if not success:
            error = getattr(request.state, ERROR_STATE_KEY, None) or f"HTTP {response.status_code}"
        
        entry = self._complete(request, pending, success=success, error=error)
        task = BackgroundTask(request.app.state.audit.record, entry)
        
        if response.background is None:
            response.background = task
        else:
            response.background = BackgroundTasks(tasks=[response.background, task])
    
    def _complete(
        self,
        request: Request,
        pending: PendingAudit,
        success: bool,
        error: Optional[str],
    ) -> AuditEntry:
        user = getattr(request.state, "user", None)
        return pending.to_entry(
            user_id=user.user_id if user is not None else None,
            success=success,
            error_message=error,
        )
