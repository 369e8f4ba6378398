"""Logging helpers."""

import logging


def configure_logging(level: str = "INFO") -> None:
    """Configure root logger once."""
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    # Request URLs to the classifier carry the API key as a query parameter.
    logging.getLogger("urllib3").setLevel(logging.WARNING)
