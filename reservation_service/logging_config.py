import logging
import sys

from .config import settings


def setup_logging() -> None:
    """
    Configures stdlib logging for the service: one stdout handler at
    LOG_LEVEL, with chatty client libraries turned down.
    """
    logging.basicConfig(
        format="[%(asctime)s] %(levelname)s in %(name)s:%(lineno)d: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stdout,
        level=settings.LOG_LEVEL.upper(),
    )

    # Suppress noise from common libraries
    for noisy_logger in ["httpx", "httpcore", "stripe", "uvicorn.access"]:
        logging.getLogger(noisy_logger).setLevel(logging.WARNING)
