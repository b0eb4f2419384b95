"""
MediTech - FastAPI Application Entrypoint

This module builds the FastAPI application with:
- CORS and security middleware (request IDs, headers, audit interception)
- Authentication, audit and patient routes
- Database, revocation cache and codec lifecycle management
- Optional in-process audit retention sweep

Startup aborts with a ConfigurationError when signing secrets or the
encryption key are missing or invalid.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exception_handlers import (
    http_exception_handler,
    request_validation_exception_handler,
)
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from redis.asyncio import Redis
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException as StarletteHTTPException

from meditech import __version__
from meditech.audit.routes import router as audit_router
from meditech.audit.service import AuditService
from meditech.auth.authenticator import Authenticator
from meditech.auth.routes import router as auth_router
from meditech.auth.tokens import TokenIssuer
from meditech.cache import RevocationCache
from meditech.config import ConfigurationError, Settings, get_settings
from meditech.crypto import EncryptionCodec, EncryptionKeyError
from meditech.database import get_engine, get_session_factory, init_db
from meditech.gateway.middleware import SecurityMiddleware, record_error
from meditech.log import configure_logging, get_logger
from meditech.patients.routes import router as patients_router


logger = get_logger(__name__)


async def audit_retention_loop(audit: AuditService, retention_days: int, interval_hours: float) -> None:
    """Purge expired audit entries every interval_hours until cancelled."""
    while True:
        await asyncio.sleep(interval_hours * 3600)
        try:
            await run_in_threadpool(audit.purge_expired, retention_days)
        except SQLAlchemyError as e:
            logger.error("audit_purge_failed", error=str(e))


def create_app(
    settings: Optional[Settings] = None,
    redis_client: Optional[Redis] = None,
    engine=None,
) -> FastAPI:
    """
    Application factory.
    
    Args:
        settings: Configuration; read from the environment when omitted
        redis_client: Pre-built async Redis client (tests pass fakeredis)
        engine: Pre-built SQLAlchemy engine
    """
    settings = settings or get_settings()
    
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Startup:
            - Validate secrets and the encryption key
            - Initialize the record store and the revocation cache
            - Build the token issuer, authenticator and audit service
            - Start the retention sweep when enabled
        
        Shutdown:
            - Stop the sweep, close the cache, dispose the engine
        """
        configure_logging(use_json=settings.LOG_JSON, level=settings.LOG_LEVEL)
        settings.validate_security()
        
        try:
            codec = EncryptionCodec(settings.ENCRYPTION_KEY)
        except EncryptionKeyError as e:
            raise ConfigurationError(f"Invalid ENCRYPTION_KEY: {e}") from e
        
        db_engine = engine if engine is not None else get_engine(settings.DATABASE_URL)
        init_db(db_engine)
        session_factory = get_session_factory(db_engine)
        
        client = redis_client if redis_client is not None else Redis.from_url(settings.REDIS_URL)
        cache = RevocationCache(client)
        
        token_issuer = TokenIssuer.from_settings(settings, cache)
        audit = AuditService(session_factory)
        
        app.state.settings = settings
        app.state.db_engine = db_engine
        app.state.db_session_factory = session_factory
        app.state.cache = cache
        app.state.codec = codec
        app.state.token_issuer = token_issuer
        app.state.authenticator = Authenticator.from_settings(settings, token_issuer)
        app.state.audit = audit
        
        sweep = None
        if settings.AUDIT_SWEEP_INTERVAL_HOURS > 0:
            sweep = asyncio.create_task(audit_retention_loop(
                audit,
                settings.AUDIT_RETENTION_DAYS,
                settings.AUDIT_SWEEP_INTERVAL_HOURS,
            ))
        
        logger.info("application_started", version=__version__)
        
        yield
        
        if sweep is not None:
            sweep.cancel()
            try:
                await sweep
            except asyncio.CancelledError:
                pass
        
        if redis_client is None:
            await cache.close()
        if engine is None:
            db_engine.dispose()
    
    app = FastAPI(
        title="MediTech",
        description="Clinical records backend: authentication, audit trail and PHI encryption",
        version=__version__,
        lifespan=lifespan,
    )
    
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE", "PUT", "PATCH"],
        allow_headers=["Authorization", "Content-Type"],
    )
    
    # Security middleware for request IDs, headers and audit interception
    app.add_middleware(SecurityMiddleware, api_prefix=settings.API_PREFIX)
    
    @app.exception_handler(StarletteHTTPException)
    async def audited_http_exception_handler(request: Request, exc: StarletteHTTPException):
        record_error(request, str(exc.detail))
        return await http_exception_handler(request, exc)
    
    @app.exception_handler(RequestValidationError)
    async def audited_validation_exception_handler(request: Request, exc: RequestValidationError):
        fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in exc.errors())
        record_error(request, f"Validation failed: {fields}")
        return await request_validation_exception_handler(request, exc)
    
    app.include_router(auth_router, prefix=settings.API_PREFIX)
    app.include_router(audit_router, prefix=settings.API_PREFIX)
    app.include_router(patients_router, prefix=settings.API_PREFIX)
    
    @app.get("/health")
    async def health_check(request: Request):
        """Service status and dependency reachability."""
        database_healthy = True
        db = request.app.state.db_session_factory()
        try:
            db.exec(text("SELECT 1"))
        except SQLAlchemyError:
            database_healthy = False
        finally:
            db.close()
        
        cache_healthy = await request.app.state.cache.ping()
        
        return {
            "status": "healthy" if database_healthy else "degraded",
            "version": __version__,
            "services": {
                "database": database_healthy,
                "cache": cache_healthy,
            },
        }
    
    @app.get("/")
    async def root():
        """Root endpoint with API information."""
        return {
            "name": "MediTech",
            "version": __version__,
            "docs": "/docs",
            "health": "/health",
        }
    
    return app


app = create_app()
