import logging
import sys

from storyline.core.config import Settings


def configure_logging(settings: Settings) -> None:
    """Basic structured logging to stdout for ops visibility."""
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )
