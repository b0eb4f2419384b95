"""
MediTech - Operational Logging

Structured logging with structlog.
- Development: human-readable console renderer
- Production/CI: JSON renderer for log shipping

This is the operational log, not the audit trail. Audit write failures
land here so log-shipping and alerting can pick them up.
"""

import logging
import sys

import structlog


def configure_logging(use_json: bool = False, level: str = "INFO") -> None:
    """
    Configure structlog once at process start.
    
    Args:
        use_json: Emit JSON lines instead of colored console output
        level: Minimum level name (DEBUG, INFO, WARNING, ...)
    """
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]
    
    if use_json:
        processors.append(structlog.processors.format_exc_info)
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=False))
    
    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(level.upper())
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stdout),
        cache_logger_on_first_use=False,
    )


def get_logger(name: str):
    """Get a logger bound to a component name."""
    return structlog.get_logger(component=name)
