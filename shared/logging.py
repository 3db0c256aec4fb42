"""
Structured logging for the Portico services.

Events are rendered as JSON lines carrying the service name, the logger name
and the current request/user correlation ids.
"""

import asyncio
import logging
import os
import sys
import uuid
from contextvars import ContextVar
from typing import Any, Dict, Optional

import structlog

request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
user_id_var: ContextVar[Optional[str]] = ContextVar("user_id", default=None)


def _service_and_correlation(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    # Logger names are "<service>.<component>"
    service, dot, _ = event_dict.get("logger", "").partition(".")
    if dot:
        event_dict.setdefault("service", service)

    for key, var in (("request_id", request_id_var), ("user_id", user_id_var)):
        value = var.get()
        if value:
            event_dict.setdefault(key, value)
    return event_dict


def configure_logging(service_name: str, log_level: str = "info") -> None:
    """Route structlog through stdlib logging with a JSON renderer."""
    level = getattr(logging, log_level.upper(), logging.INFO)
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", key="timestamp"),
            _service_and_correlation,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
    structlog.get_logger(f"{service_name}.logging").debug("Logging configured", level=log_level)


def set_request_id(request_id: Optional[str] = None) -> str:
    """Bind the request id for the current context, generating one if absent."""
    request_id = request_id or str(uuid.uuid4())
    request_id_var.set(request_id)
    return request_id


def set_user_context(user_id: Optional[str] = None):
    if user_id:
        user_id_var.set(user_id)


def clear_context():
    request_id_var.set(None)
    user_id_var.set(None)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def install_crash_handlers(service_name: str) -> None:
    """Log uncaught faults and terminate so the supervisor restarts the process.

    Covers exceptions escaping the main thread and exceptions raised by
    asyncio tasks nobody awaited. Must be called from inside the running loop
    for the asyncio part to take effect.
    """
    logger = get_logger(f"{service_name}.process")

    def _excepthook(exc_type, exc_value, exc_traceback):
        logger.critical(
            "Uncaught exception, exiting",
            error=str(exc_value),
            exc_info=(exc_type, exc_value, exc_traceback),
        )
        os._exit(1)

    sys.excepthook = _excepthook

    def _loop_exception_handler(loop: asyncio.AbstractEventLoop, context: Dict[str, Any]) -> None:
        exception = context.get("exception")
        if exception is None:
            logger.warning("Asyncio loop reported a problem", message=context.get("message"))
            return
        logger.critical(
            "Unhandled asyncio exception, exiting",
            message=context.get("message"),
            error=str(exception),
            exc_info=exception,
        )
        os._exit(1)

    try:
        asyncio.get_running_loop().set_exception_handler(_loop_exception_handler)
    except RuntimeError:
        logger.debug("No running loop; asyncio crash handler not installed")
