"""
Structured logging configuration using structlog.

Event names are dotted, "<component>.<what happened>", and the component
prefix is emitted as its own field so logs can be filtered per pipeline
stage. Customer email addresses are masked before rendering.

Standardized log format:
{
    "ts": "2026-10-19T04:30:00.123456Z",
    "level": "info",
    "service": "orderevents",
    "component": "queue",
    "event": "queue.message_dead_lettered",
    "request_id": "uuid-v4",
    "queue": "order-events",
    "message_id": "uuid-v4",
    "module": "orderevents.queue.base",
    "function": "_dead_lettered",
    "line": 42,
    ...additional context...
}
"""
import structlog
import logging
from typing import Any

_service_name = "orderevents"

EMAIL_FIELDS = ("email", "recipient")


def add_service_name(logger: Any, method_name: str, event_dict: dict) -> dict:
    """Add service name to all log entries."""
    event_dict["service"] = _service_name
    return event_dict


def add_component(logger: Any, method_name: str, event_dict: dict) -> dict:
    """Derive the pipeline component from a dotted event name (queue.message_sent -> queue)."""
    event = event_dict.get("event")
    if isinstance(event, str) and "." in event:
        event_dict.setdefault("component", event.split(".", 1)[0])
    return event_dict


def mask_email(value: str) -> str:
    local, sep, domain = value.partition("@")
    if not sep:
        return value
    return f"{local[:1]}***@{domain}"


def mask_emails(logger: Any, method_name: str, event_dict: dict) -> dict:
    """Mask customer addresses carried by order events and notifications."""
    for key in EMAIL_FIELDS:
        value = event_dict.get(key)
        if isinstance(value, str):
            event_dict[key] = mask_email(value)
    return event_dict


def add_module_info(logger: Any, method_name: str, event_dict: dict) -> dict:
    """Add module, function, and line number to log entries."""
    frame = structlog._frames._find_first_app_frame_and_name()[0]
    if frame:
        event_dict["module"] = frame.f_globals.get("__name__", "unknown")
        event_dict["function"] = frame.f_code.co_name
        event_dict["line"] = frame.f_lineno
    return event_dict


def setup_logging(json_output: bool = True, service_name: str = "orderevents", level: str = "INFO"):
    """
    Configure structured logging with standardized fields.

    Args:
        json_output: If True, output JSON logs. If False, use console format.
        service_name: Name of the service.
        level: Minimum level name (DEBUG shows filtered deliveries and index pruning).
    """
    global _service_name
    _service_name = service_name
    min_level = logging.getLevelName(level.upper())
    if not isinstance(min_level, int):
        raise ValueError(f"unknown log level: {level!r}")

    shared_processors = [
        # request_id from the HTTP middleware; consumer, queue, message_id while a handler runs
        structlog.contextvars.merge_contextvars,
        add_service_name,
        add_component,
        mask_emails,
        structlog.processors.TimeStamper(fmt="iso", key="ts"),
        structlog.processors.add_log_level,
        add_module_info,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if json_output:
        processors = shared_processors + [structlog.processors.JSONRenderer()]
    else:
        processors = shared_processors + [structlog.dev.ConsoleRenderer()]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(min_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(format="%(message)s", level=min_level)

    # uvicorn access lines would duplicate http_request events
    logging.getLogger("uvicorn.access").handlers = []


def get_logger():
    """Get a configured structlog logger."""
    return structlog.get_logger()
