"""Logging setup shared by the API and command-line entry points."""

import logging

from stock_intake.shared.config import Settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(settings: Settings) -> None:
    """Configure root logging at the configured level.

    Args:
        settings: Application settings
    """
    logging.basicConfig(level=getattr(logging, settings.log_level), format=LOG_FORMAT)
