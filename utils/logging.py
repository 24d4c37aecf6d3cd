"""
Structured logging configuration for the Nexus Discord relay.

structlog is routed through stdlib logging with a ProcessorFormatter so
that discord.py and httpx records share the same output. Every rendered
line passes through a RedactingRenderer built with an explicit list of
secret values.
"""
from __future__ import annotations

import logging
import sys
from typing import Any, Callable, Iterable

import structlog
from structlog.stdlib import ProcessorFormatter

REDACTED = "[REDACTED]"

_NOISY_LOGGERS: tuple[str, ...] = (
    "httpx",
    "httpcore",
    "discord",
    "discord.gateway",
    "discord.http",
)


class RedactingRenderer:
    """Wraps a renderer and scrubs known secret values from its output."""

    def __init__(self, renderer: Callable[..., Any], secrets: Iterable[str] = ()):
        self._renderer = renderer
        # longest first so a secret containing another is replaced whole
        self._secrets = sorted({s for s in secrets if s}, key=len, reverse=True)

    def redact(self, text: str) -> str:
        for secret in self._secrets:
            text = text.replace(secret, REDACTED)
        return text

    def __call__(self, logger: Any, method_name: str, event_dict: Any) -> Any:
        rendered = self._renderer(logger, method_name, event_dict)
        if isinstance(rendered, bytes):
            return self.redact(rendered.decode("utf-8")).encode("utf-8")
        return self.redact(str(rendered))


def secrets_from_settings(settings) -> list[str]:
    """Values that must never appear in log output."""
    candidates = [
        settings.discord.token,
        settings.discord.client_id,
        settings.discord.guild_id,
        settings.backend.base_url,
        settings.backend.api_key,
    ]
    return [str(v).strip() for v in candidates if v and str(v).strip() and not str(v).startswith("${")]


def _remove_internal_fields(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    event_dict.pop("_record", None)
    event_dict.pop("_from_structlog", None)
    return event_dict


def configure_logging(
    *,
    level: str = "INFO",
    json_output: bool = False,
    redact: Iterable[str] = (),
) -> RedactingRenderer:
    """Configure structlog and stdlib logging; returns the installed renderer."""
    log_level = getattr(logging, str(level).upper(), logging.INFO)

    shared_processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
    ]

    if json_output:
        inner = structlog.processors.JSONRenderer()
        final_processors: list[Any] = [_remove_internal_fields, structlog.processors.format_exc_info]
    else:
        inner = structlog.dev.ConsoleRenderer(colors=False)
        final_processors = [_remove_internal_fields]
    renderer = RedactingRenderer(inner, redact)
    final_processors.append(renderer)

    structlog.configure(
        processors=[*shared_processors, ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(ProcessorFormatter(processors=final_processors, foreign_pre_chain=shared_processors))

    root = logging.getLogger()
    root.handlers = []
    root.addHandler(handler)
    root.setLevel(log_level)

    noisy_level = max(log_level, logging.WARNING)
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(noisy_level)

    return renderer
