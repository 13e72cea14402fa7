"""Structured logging for estate.

Events are structlog dicts rendered by a stdlib handler, so records from
SQLAlchemy, asyncpg and uvicorn go through the same pipeline as estate's
own. Every line carries:

- ``request_id`` while an HTTP request is being served
- ``tenant_id`` and ``namespace`` once the request's connection is routed
- ``estate_version`` and ``hostname``

Values under credential-like keys, and DSN passwords embedded in error
strings, are redacted before rendering.

Example usage:
    from estate.core.logging import configure_logging, get_logger, log_context

    configure_logging(level="DEBUG", json_output=True)
    logger = get_logger(__name__)

    with log_context(tenant_id=42, namespace="client_42"):
        logger.info("search_path_set")  # includes tenant_id and namespace
"""

import logging
import socket
import sys
import uuid
from contextvars import ContextVar
from functools import lru_cache
from typing import TYPE_CHECKING, Any

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

from estate import __version__
from estate.core.security import REDACTED, redact_secrets, sanitize_log_message

if TYPE_CHECKING:
    from estate.core.settings import EstateSettings

REQUEST_ID_HEADER = "X-Request-ID"

CREDENTIAL_KEYS = (
    "password",
    "passwd",
    "secret",
    "token",
    "authorization",
    "database_url",
    "dsn",
)

_log_context: ContextVar[dict[str, Any]] = ContextVar("estate_log_context", default={})


def new_request_id() -> str:
    """Generate an id for a request that arrived without one."""
    return uuid.uuid4().hex


def current_log_context() -> dict[str, Any]:
    """Fields bound by the enclosing :class:`log_context` blocks."""
    return dict(_log_context.get())


class log_context:
    """Bind fields to every log line emitted inside the block.

    Blocks nest; inner fields win and are dropped again on exit. The fields
    live in a ContextVar, so they follow the request across ``await``.

    Example:
        with log_context(request_id="3f2a"):
            with log_context(tenant_id=7, namespace="client_7"):
                logger.info("query_executed")
    """

    def __init__(self, **fields: Any) -> None:
        self.fields = fields
        self._token: Any = None

    def __enter__(self) -> dict[str, Any]:
        merged = {**_log_context.get(), **self.fields}
        self._token = _log_context.set(merged)
        return merged

    def __exit__(self, *args: Any) -> None:
        _log_context.reset(self._token)


# Processors


def merge_log_context(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Add the bound request and tenant fields; explicit keys win."""
    for key, value in _log_context.get().items():
        event_dict.setdefault(key, value)
    return event_dict


@lru_cache(maxsize=1)
def _hostname() -> str:
    try:
        return socket.gethostname()
    except OSError:
        return "unknown"


def add_service_fields(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    event_dict.setdefault("estate_version", __version__)
    event_dict.setdefault("hostname", _hostname())
    return event_dict


def redact_credentials(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Blank credential-like keys and scrub secrets out of string values."""
    for key, value in event_dict.items():
        lowered = key.lower()
        if any(marker in lowered for marker in CREDENTIAL_KEYS):
            event_dict[key] = REDACTED
        elif isinstance(value, str):
            event_dict[key] = redact_secrets(value)
    return event_dict


def escape_event(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    event = event_dict.get("event")
    if isinstance(event, str):
        event_dict["event"] = sanitize_log_message(event)
    return event_dict


def _pre_chain() -> list[Processor]:
    return [
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        merge_log_context,
        add_service_fields,
        redact_credentials,
        escape_event,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.format_exc_info,
    ]


def _renderer(json_output: bool) -> Processor:
    if json_output:
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())


def _level_number(level: str | int) -> int:
    if isinstance(level, int):
        return level
    return logging.getLevelNamesMapping().get(level.upper(), logging.INFO)


def configure_logging(
    level: str | int = "INFO",
    json_output: bool | None = None,
    log_file: str | None = None,
) -> None:
    """Route structlog and stdlib logging through one set of handlers.

    Args:
        level: Root log level, by name or number.
        json_output: Render JSON lines. When None, JSON is used unless
            stdout is a terminal.
        log_file: Also write every line to this file.
    """
    if json_output is None:
        json_output = not sys.stdout.isatty()
    level_number = _level_number(level)
    pre_chain = _pre_chain()

    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=pre_chain,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            _renderer(json_output),
        ],
    )

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))

    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
        handler.close()
    for handler in handlers:
        handler.setLevel(level_number)
        handler.setFormatter(formatter)
        root_logger.addHandler(handler)
    root_logger.setLevel(level_number)

    # Statement echo carries tenant data; keep it out of INFO
    logging.getLogger("sqlalchemy.engine").setLevel(max(level_number, logging.WARNING))


def configure_logging_from_settings(settings: "EstateSettings | None" = None) -> None:
    """Configure logging from ``settings`` (the cached settings by default)."""
    if settings is None:
        # Import here to avoid circular imports
        from estate.core.settings import get_settings

        settings = get_settings()
    configure_logging(
        level=settings.log_level,
        json_output=settings.log_json,
        log_file=settings.log_file,
    )


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a structured logger.

    Example:
        logger = get_logger(__name__)
        logger.info("schema_created", namespace="client_42")
    """
    return structlog.get_logger(name)


def reset_logging() -> None:
    """Drop bound fields, structlog configuration and root handlers (tests)."""
    _log_context.set({})
    structlog.reset_defaults()

    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
        handler.close()
    root_logger.setLevel(logging.WARNING)
