"""Redaction of credentials in log lines and error messages.

Database errors are the usual leak: asyncpg and SQLAlchemy echo the
connection URL, password included, in some connection failures, and those
messages end up in logs and in provisioning warnings.
"""

import re

from sqlalchemy.engine import make_url
from sqlalchemy.exc import ArgumentError

REDACTED = "[REDACTED]"

MAX_LOG_MESSAGE = 10_000
MAX_ERROR_MESSAGE = 1_000

_TRUNCATION_MARK = "... [TRUNCATED]"

# (pattern, replacement) pairs, applied in order
_REDACTIONS: tuple[tuple[re.Pattern[str], str], ...] = (
    # user:password@ in postgres URLs, with or without a driver suffix
    (
        re.compile(r"\b(postgres(?:ql)?(?:\+\w+)?://[^:/@\s]+):[^@\s]+@", re.I),
        r"\1:***@",
    ),
    # password=..., PGPASSWORD=..., pwd: ...
    (
        re.compile(r"\b(\w*(?:password|passwd|pwd))\s*[=:]\s*['\"]?[^\s'\",;]+['\"]?", re.I),
        rf"\1={REDACTED}",
    ),
    (
        re.compile(r"\b(bearer)\s+[\w.~+/-]{16,}=*", re.I),
        rf"\1 {REDACTED}",
    ),
    (
        re.compile(r"\b(\w*(?:secret|token))\s*[=:]\s*['\"]?[\w.-]{8,}['\"]?", re.I),
        rf"\1={REDACTED}",
    ),
)

_TERMINAL_ESCAPE = re.compile(r"\x1b\[[0-9;]*[A-Za-z]")


def _truncate(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[: limit - len(_TRUNCATION_MARK)] + _TRUNCATION_MARK


def redact_secrets(text: str) -> str:
    """Replace the credentials found in ``text``."""
    for pattern, replacement in _REDACTIONS:
        text = pattern.sub(replacement, text)
    return text


def mask_database_url(url: str) -> str:
    """Render a database URL with its password replaced by ``***``.

    Strings SQLAlchemy cannot parse are passed through :func:`redact_secrets`
    instead.
    """
    try:
        return make_url(url).render_as_string(hide_password=True)
    except ArgumentError:
        return redact_secrets(url)


def sanitize_log_message(message: str) -> str:
    """Keep one event on one line: escape line breaks, drop terminal escapes."""
    escaped = message.replace("\r", "\\r").replace("\n", "\\n")
    return _truncate(_TERMINAL_ESCAPE.sub("", escaped), MAX_LOG_MESSAGE)


def sanitize_error_message(error: BaseException | str, include_type: bool = True) -> str:
    """Redacted, length-bounded rendering of an error.

    Example:
        >>> sanitize_error_message(OSError("password=hunter2"))
        'OSError: password=[REDACTED]'
    """
    if isinstance(error, BaseException):
        message, kind = str(error), type(error).__name__
    else:
        message, kind = error, "Error"

    message = _truncate(redact_secrets(message), MAX_ERROR_MESSAGE)
    if include_type:
        return f"{kind}: {message}"
    return message
