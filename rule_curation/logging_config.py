"""Console logging for the command-line front end."""

import logging

from rich.console import Console
from rich.logging import RichHandler

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


def setup_logging(level: str = "WARNING", verbose: bool = False) -> logging.Logger:
    """Send rule_curation log records to stderr through a rich handler.

    ``verbose`` forces DEBUG and adds source paths and local variables to
    tracebacks.
    """
    if verbose:
        level = "DEBUG"
    numeric_level = getattr(logging, level.upper(), logging.WARNING)

    handler = RichHandler(
        console=Console(stderr=True),
        rich_tracebacks=True,
        tracebacks_show_locals=verbose,
        show_time=True,
        show_path=verbose,
    )
    handler.setFormatter(logging.Formatter("%(message)s", datefmt="[%X]"))

    logger = logging.getLogger("rule_curation")
    for existing in list(logger.handlers):
        if isinstance(existing, RichHandler):
            logger.removeHandler(existing)
    logger.addHandler(handler)
    logger.setLevel(numeric_level)
    return logger
