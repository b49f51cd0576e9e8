"""
Structured logging configuration with correlation IDs and case context.
"""
import logging
import sys
import time
import uuid
from typing import Any, Dict, Optional
from contextlib import contextmanager
from contextvars import ContextVar
import structlog

# Context variables for request-scoped data
correlation_id_var: ContextVar[Optional[str]] = ContextVar('correlation_id', default=None)
case_id_var: ContextVar[Optional[str]] = ContextVar('case_id', default=None)
job_name_var: ContextVar[Optional[str]] = ContextVar('job_name', default=None)

_service_context: Dict[str, str] = {
    "service": "compliance-orchestrator",
    "version": "1.0.0",
    "environment": "development",
}


def add_correlation_id(
    logger, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """Add correlation ID to log events."""
    correlation_id = correlation_id_var.get()
    if not correlation_id:
        correlation_id = str(uuid.uuid4())[:8]
        correlation_id_var.set(correlation_id)

    event_dict.setdefault("correlation_id", correlation_id)
    return event_dict


def add_case_context(
    logger, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """Add case and scheduled-job context to log events."""
    case_id = case_id_var.get()
    if case_id:
        event_dict.setdefault("case_id", case_id)

    job_name = job_name_var.get()
    if job_name:
        event_dict.setdefault("job", job_name)

    return event_dict


def add_service_context(
    logger, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """Add service context to log events."""
    event_dict.update(_service_context)
    return event_dict


def add_timestamp(
    logger, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """Add ISO format timestamp to log events."""
    event_dict["timestamp"] = time.time()
    event_dict["iso_timestamp"] = time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())
    return event_dict


def setup_logging(
    log_level: str = "INFO",
    service_name: str = "compliance-orchestrator",
    version: str = "1.0.0",
    environment: str = "development",
) -> None:
    """
    Configure structured JSON logging.

    Args:
        log_level: Minimum level passed to the stdlib root logger
        service_name: Service name stamped on every event
        version: Service version stamped on every event
        environment: Deployment environment stamped on every event
    """
    _service_context.update(
        {"service": service_name, "version": version, "environment": environment}
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper(), logging.INFO),
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            add_timestamp,
            add_service_context,
            add_case_context,
            add_correlation_id,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer(),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)


def get_business_logger() -> structlog.stdlib.BoundLogger:
    """Get a business event logger instance."""
    return structlog.get_logger("business")


def set_correlation_id(correlation_id: str) -> None:
    """Set correlation ID in the current context."""
    correlation_id_var.set(correlation_id)


def get_correlation_id() -> Optional[str]:
    """Get correlation ID from current context."""
    return correlation_id_var.get()


@contextmanager
def correlation_context(
    correlation_id: Optional[str] = None,
    case_id: Optional[str] = None,
    job_name: Optional[str] = None,
):
    """
    Context manager for setting correlation context.

    Values are restored on exit, so nested contexts (a scan cycle and the
    per-case work inside it) log with the innermost identifiers.
    """
    tokens = []
    if correlation_id:
        tokens.append((correlation_id_var, correlation_id_var.set(correlation_id)))
    if case_id:
        tokens.append((case_id_var, case_id_var.set(case_id)))
    if job_name:
        tokens.append((job_name_var, job_name_var.set(job_name)))

    try:
        yield
    finally:
        for var, token in reversed(tokens):
            var.reset(token)


def log_business_event(event_type: str, **kwargs):
    """
    Log a structured business event.

    Args:
        event_type: Type of business event
        **kwargs: Additional event data
    """
    logger = get_business_logger()
    logger.info("Business event", event_type=event_type, **kwargs)
