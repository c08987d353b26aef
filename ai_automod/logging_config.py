"""
Logging configuration.

Provides a consistent logging format for the CLI and embedding services.
"""

import logging
import sys


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging with the pipeline's standard format."""
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        stream=sys.stdout,
        force=True,
    )
