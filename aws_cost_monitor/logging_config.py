"""
Logging setup.

Configures structlog for the command-line front end.
"""

import logging
import sys

import structlog


def _stderr_logger(*args) -> structlog.PrintLogger:
    # Look up sys.stderr per call so a replaced stream is always honoured
    return structlog.PrintLogger(file=sys.stderr)


def setup_logging(verbose: bool = False) -> None:
    """Configure structlog and the standard library loggers.

    Verbose runs render readable console lines at DEBUG; otherwise logs
    are JSON at WARNING so they stay out of the way of command output.

    Args:
        verbose: Enable debug-level console logging
    """
    if verbose:
        renderer = structlog.dev.ConsoleRenderer()
        min_level = logging.DEBUG
    else:
        renderer = structlog.processors.JSONRenderer()
        min_level = logging.WARNING

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(min_level),
        logger_factory=_stderr_logger,
        cache_logger_on_first_use=False,
    )

    # boto3 and botocore log through the standard library
    logging.getLogger().setLevel(min_level)
    if verbose:
        logging.basicConfig(format="%(message)s", stream=sys.stderr, level=min_level)
