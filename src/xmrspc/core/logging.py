"""Structured logging built on structlog.

The application calls configure_logging() once at import. Records from
structlog and from the standard library (uvicorn, fastapi) share one processor
chain and are rendered either for a terminal or as JSON lines, depending on
XMRSPC_LOG_FORMAT. Engine modules log at debug level only.

Every API request binds the submetric it analyses with bind_series_context(),
so all lines logged while handling that request carry it.
"""

import logging
import sys

import structlog

_NOISY_LOGGERS = ("uvicorn.access",)


def _shared_processors() -> list[structlog.types.Processor]:
    """Processors applied to structlog and foreign stdlib records alike."""
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]


def _renderer(log_format: str) -> structlog.types.Processor:
    if log_format == "json":
        return structlog.processors.JSONRenderer(sort_keys=True)
    return structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())


def configure_logging(log_format: str = "console", log_level: str = "INFO") -> None:
    """Install the structlog configuration and the root stdlib handler.

    Args:
        log_format: "console" or "json"
        log_level: Minimum level name; unknown names fall back to INFO
    """
    shared = _shared_processors()
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *shared,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=shared,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                _renderer(log_format),
            ],
        )
    )

    level = getattr(logging, log_level.upper(), None)
    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(level if isinstance(level, int) else logging.INFO)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def bind_series_context(label: str, points: int) -> None:
    """Replace the request-scoped log context with the submetric being analysed."""
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(submetric=label or None, points=points)
