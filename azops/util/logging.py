"""
Logging configuration.

All modules log through ``logging.getLogger(__name__)``; the CLI calls
:func:`setup_logging` once so records are rendered by rich on stderr.
"""

import logging

from rich.console import Console
from rich.logging import RichHandler

from azops.util.redact import redact_sensitive

LOG_FORMAT = "%(message)s"
DATE_FORMAT = "[%X]"


class RedactingFilter(logging.Filter):
    """Scrub SAS signatures, account keys and passwords from log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = redact_sensitive(record.msg)
        if record.args:
            if isinstance(record.args, dict):
                record.args = {
                    k: redact_sensitive(v) if isinstance(v, str) else v
                    for k, v in record.args.items()
                }
            else:
                record.args = tuple(
                    redact_sensitive(a) if isinstance(a, str) else a for a in record.args
                )
        return True


def setup_logging(level: str | int = "WARNING", verbose: bool = False) -> logging.Logger:
    """
    Configure the ``azops`` logger hierarchy.

    Args:
        level: Log level name or number (from config ``logging.level``)
        verbose: Force DEBUG level (``--verbose``)

    Returns:
        The configured ``azops`` logger
    """
    if verbose:
        level = logging.DEBUG
    elif isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.WARNING

    logger = logging.getLogger("azops")
    logger.setLevel(level)

    for handler in list(logger.handlers):
        if getattr(handler, "_azops_handler", False):
            logger.removeHandler(handler)

    handler = RichHandler(
        console=Console(stderr=True),
        show_path=False,
        rich_tracebacks=verbose,
        markup=False,
    )
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
    handler.addFilter(RedactingFilter())
    handler._azops_handler = True  # type: ignore[attr-defined]
    logger.addHandler(handler)

    # Azure SDK HTTP logging is very chatty below WARNING
    logging.getLogger("azure").setLevel(logging.DEBUG if verbose else logging.WARNING)

    return logger
