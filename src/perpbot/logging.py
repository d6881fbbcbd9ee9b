"""structlog setup for the gateway.

Events are snake_case strings with keyword context, e.g.
``logger.info("request_retry", path=path, attempt=2)``. Every event passes
through ``redact_credentials`` before rendering, so API keys, secrets and
signatures never reach a log sink in full.
"""

import logging
import os
import sys
from collections.abc import MutableMapping
from typing import Any

import structlog

# Event keys whose values carry credentials or request signatures.
_SENSITIVE_KEYS = frozenset({"api_key", "apiKey", "api_secret", "secret", "signature"})

# Third-party loggers that are noisy below WARNING.
_QUIET_LOGGERS = ("aiohttp", "asyncio")


def _mask(value: Any) -> str:
    text = str(value)
    if len(text) <= 8:
        return "***"
    return f"{text[:4]}***{text[-2:]}"


def redact_credentials(
    logger: Any, method_name: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    """Mask credential-bearing values so keys are never logged in full.

    Also walks one level into dict values (e.g. a logged params mapping).
    """
    for key, value in list(event_dict.items()):
        if key in _SENSITIVE_KEYS and value:
            event_dict[key] = _mask(value)
        elif isinstance(value, dict):
            event_dict[key] = {
                k: (_mask(v) if k in _SENSITIVE_KEYS and v else v)
                for k, v in value.items()
            }
    return event_dict


def _pre_chain() -> list[structlog.types.Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        redact_credentials,
        structlog.processors.StackInfoRenderer(),
    ]


def _renderers(log_format: str) -> list[structlog.types.Processor]:
    if log_format == "json":
        return [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    return [structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())]


def setup_logging(log_level: str = "INFO") -> None:
    """Route structlog through a single stdlib handler on stderr.

    LOG_FORMAT=json selects machine-readable output; anything else renders
    for a terminal. Request context bound with structlog.contextvars stays
    local to the task that bound it.
    """
    log_format = os.environ.get("LOG_FORMAT", "console").lower()
    level = getattr(logging, log_level.upper(), logging.INFO)

    structlog.configure(
        processors=[
            *_pre_chain(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=_pre_chain(),
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                *_renderers(log_format),
            ],
        )
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Return a bound structlog logger with the given name."""
    return structlog.get_logger(name)
