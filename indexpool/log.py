"""Logging setup.

Modules log through `structlog.get_logger()` with snake_case event names and
key/value context. Applications call configure_logging() once at startup.
"""

import logging

import structlog


def configure_logging(verbose: bool = False) -> None:
    """Configure structlog console output.

    Args:
        verbose: Emit debug events (skipped weight steps, no-op gulps) when True
    """
    log_level = logging.DEBUG if verbose else logging.INFO
    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
    )
