"""structlog configuration for the notification service."""

from __future__ import annotations

import logging
import re
import sys

import structlog

REDACTED = "***REDACTED***"

# Keys that carry webhook secrets, owner tokens or signatures.
_SECRET_KEYS = frozenset({
    "secret", "token", "token_secret", "admin_token", "signature", "authorization",
})

# Owner tokens ride in socket URLs, bearer headers and error strings.
_INLINE_SECRETS = (
    re.compile(r"([?&](?:token|secret)=)[^&\s]+", re.IGNORECASE),
    re.compile(r"(Bearer\s+)[\w\-.]+", re.IGNORECASE),
    re.compile(r"((?:token|secret|signature)\s*[:=]\s*)[\"']?[\w\-.]+", re.IGNORECASE),
)

_NOISY_LOGGERS = ("httpx", "httpcore", "aiohttp.access", "aiosqlite")


def redact_secrets(
    _logger: structlog.types.WrappedLogger,
    _method: str,
    event_dict: structlog.types.EventDict,
) -> structlog.types.EventDict:
    for key, value in list(event_dict.items()):
        if key.lower() in _SECRET_KEYS:
            event_dict[key] = REDACTED
        elif isinstance(value, str):
            for pattern in _INLINE_SECRETS:
                value = pattern.sub(rf"\1{REDACTED}", value)
            event_dict[key] = value
    return event_dict


def setup_logging(level: str = "INFO", json_output: bool = False) -> None:
    """Route structlog and stdlib records through one stderr handler."""
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    # Sweep and delivery code binds schedule/subscription ids via contextvars.
    pre_chain: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        redact_secrets,
    ]
    renderer: structlog.types.Processor
    if json_output:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            # aiohttp and httpx log through stdlib; redact them too.
            foreign_pre_chain=pre_chain,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                renderer,
            ],
        )
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(numeric_level)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(numeric_level, logging.WARNING))


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
