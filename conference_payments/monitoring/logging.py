"""
Structured logging configuration.

Uses structlog for JSON-formatted logs. Card data never reaches a log line:
every event passes through the same redaction used by the audit trail.
"""
import logging
import re
import sys
from collections.abc import Mapping
from typing import Any, Optional

import structlog
from pythonjsonlogger import jsonlogger

from conference_payments.config import Settings, get_settings

# Normalized forms: lowercase with separators removed, so card_number,
# cardNumber and Card-Number all collapse to "cardnumber". A key is
# sensitive when any of these appears anywhere in it (card_number_last4,
# raw_cvv).
SENSITIVE_FIELDS = frozenset(
    {
        "cardnumber",
        "cvv",
        "cvc",
        "securitycode",
        "expiry",
        "expiration",
        "expmonth",
        "expyear",
    }
)

# Too short to match inside other words ("company", "panel"); these only
# count as a whole word of the key (pan, pan_token, cardPAN).
SENSITIVE_WORDS = frozenset({"pan"})

_SEPARATORS = re.compile(r"[^a-z0-9]")
_WORDS = re.compile(r"[A-Z]+(?![a-z])|[A-Z]?[a-z]+|\d+")


def is_sensitive_field(key: Any) -> bool:
    """Check a field name against the card-data denylist, ignoring casing convention."""
    text = str(key)
    normalized = _SEPARATORS.sub("", text.lower())
    if any(token in normalized for token in SENSITIVE_FIELDS):
        return True
    return any(word.lower() in SENSITIVE_WORDS for word in _WORDS.findall(text))


def _redact_value(value: Any) -> Any:
    if isinstance(value, Mapping):
        return redact_sensitive_fields(value)
    if isinstance(value, (list, tuple)):
        return type(value)(_redact_value(item) for item in value)
    return value


def redact_sensitive_fields(details: Mapping[str, Any]) -> dict[str, Any]:
    """
    Return a copy of ``details`` without card data.

    Nested mappings and lists are scrubbed as well, so a raw gateway
    payload passed through as a single field cannot leak a PAN.
    """
    return {
        key: _redact_value(value)
        for key, value in details.items()
        if not is_sensitive_field(key)
    }


def scrub_sensitive_data(
    logger: Any, method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    """structlog processor applying :func:`redact_sensitive_fields`."""
    return redact_sensitive_fields(event_dict)


def add_app_context(
    logger: Any, method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    """
    Add application context to log events.

    Args:
        logger: Logger instance
        method_name: Log method name
        event_dict: Event dictionary

    Returns:
        dict[str, Any]: Enhanced event dictionary
    """
    settings = get_settings()
    event_dict["app_name"] = settings.app_name
    event_dict["app_env"] = settings.app_env
    return event_dict


def setup_logging(settings: Optional[Settings] = None) -> None:
    """
    Configure structured logging with JSON formatter.

    Sets up:
    - JSON-formatted logs on stdout
    - Context variables merged into every event
    - Card-data redaction before rendering
    """
    settings = settings or get_settings()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            add_app_context,
            scrub_sensitive_data,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, settings.log_level))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    json_handler = logging.StreamHandler(sys.stdout)
    formatter = jsonlogger.JsonFormatter(
        "%(timestamp)s %(level)s %(name)s %(message)s",
        rename_fields={
            "timestamp": "@timestamp",
            "level": "level",
            "name": "logger",
            "message": "message",
        },
    )
    json_handler.setFormatter(formatter)
    root_logger.addHandler(json_handler)

    logger = structlog.get_logger(__name__)
    logger.info(
        "logging_configured",
        log_level=settings.log_level,
        app_env=settings.app_env,
    )
