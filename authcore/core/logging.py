import logging
import sys


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging with a single stdout format."""
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        stream=sys.stdout,
    )


__all__ = ["configure_logging"]
