"""
MediTech - Audit Retention Sweep

Deletes audit entries older than the retention window. Intended for
cron when the in-process sweep is disabled (AUDIT_SWEEP_INTERVAL_HOURS=0).

Usage:
    python -m scripts.purge_audit_logs
    python -m scripts.purge_audit_logs --retention-days 3650
"""

import argparse

from meditech.audit.service import AuditService
from meditech.config import get_settings
from meditech.database import get_engine, get_session_factory, init_db
from meditech.log import configure_logging


def main() -> int:
    settings = get_settings()
    
    parser = argparse.ArgumentParser(description="Purge expired audit log entries")
    parser.add_argument(
        "--retention-days",
        type=int,
        default=settings.AUDIT_RETENTION_DAYS,
        help=f"Keep entries newer than this many days (default {settings.AUDIT_RETENTION_DAYS})",
    )
    args = parser.parse_args()
    
    configure_logging(use_json=settings.LOG_JSON, level=settings.LOG_LEVEL)
    
    engine = get_engine(settings.DATABASE_URL)
    init_db(engine)
    
    removed = AuditService(get_session_factory(engine)).purge_expired(args.retention_days)
    print(f"Removed {removed} audit entries older than {args.retention_days} days.")
    
    engine.dispose()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
