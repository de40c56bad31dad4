"""structlog configuration for posterExtract.

One processor chain, two renderers: coloured console lines while working
locally, JSON lines when ``APP_ENV=production`` or when JSON is asked for
explicitly.  The stdlib root logger is routed through the same chain, so
records from the SDK clients (openai, anthropic, httpx, musicbrainzngs)
look like ours.

Everything goes to stderr; ``--json`` runs of the CLI write only results
to stdout.
"""

import logging
import os
import sys

import structlog

# Chatty at INFO: one line per HTTP request.
NOISY_LOGGERS = ("httpx", "httpcore", "musicbrainzngs", "urllib3")


def _shared_processors() -> list[structlog.types.Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="iso"),
    ]


def configure_logging(
    log_level: str = "INFO",
    json_output: bool = False,
    quiet_libraries: bool = True,
) -> structlog.BoundLogger:
    """Install the structlog and stdlib logging configuration.

    Args:
        log_level: Minimum level name (DEBUG, INFO, WARNING, ERROR).
        json_output: Render JSON even outside production.
        quiet_libraries: Raise the HTTP client loggers in
            :data:`NOISY_LOGGERS` to WARNING.

    Returns:
        An unnamed bound logger.
    """
    level = logging.getLevelName(log_level.upper())
    processors = _shared_processors()

    if json_output or os.environ.get("APP_ENV", "development") == "production":
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())

    structlog.configure(
        processors=[*processors, renderer],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                *processors,
                renderer,
            ],
        )
    )
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    if quiet_libraries:
        for name in NOISY_LOGGERS:
            logging.getLogger(name).setLevel(max(level, logging.WARNING))

    return structlog.get_logger()


def get_logger(name: str) -> structlog.BoundLogger:
    """Logger bound with ``logger_name``; configures defaults on first use."""
    if not structlog.is_configured():
        configure_logging()
    return structlog.get_logger(logger_name=name)
