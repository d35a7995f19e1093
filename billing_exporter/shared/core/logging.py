import sys
import logging
from typing import Any

import structlog

from billing_exporter.shared.core.config import get_settings

SECRET_FIELDS = frozenset({
    "aws_access_key_id", "aws_secret_access_key", "aws_session_token",
    "token", "secret", "password", "service_account_json", "credentials",
})

# SDK loggers that are chatty at DEBUG even when the exporter is not
NOISY_LOGGERS = ("botocore", "aiobotocore", "urllib3", "google.auth", "google.api_core")


def _redact(value: Any) -> Any:
    if isinstance(value, dict):
        return {
            key: "[REDACTED]" if key in SECRET_FIELDS else _redact(item)
            for key, item in value.items()
        }
    return value


def secret_redactor(logger, method_name, event_dict):
    """Replace credential fields, including ones nested in dict values, before rendering."""
    return _redact(event_dict)


def setup_logging():
    settings = get_settings()
    level = logging.DEBUG if settings.DEBUG else logging.INFO
    renderer = structlog.dev.ConsoleRenderer() if settings.DEBUG else structlog.processors.JSONRenderer()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            secret_redactor,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
