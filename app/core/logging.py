import logging
import os
import sys
from pathlib import Path

from app.core.config import settings


def setup_logging() -> logging.Logger:
    """Configure application logging."""
    log_level = getattr(logging, settings.log_level.upper(), logging.INFO)

    handlers: list = [logging.StreamHandler(sys.stdout)]
    if settings.log_file:
        os.makedirs(Path(settings.log_file).parent, exist_ok=True)
        handlers.append(logging.FileHandler(settings.log_file))

    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=handlers,
    )

    # Noisy libraries
    logging.getLogger("uvicorn").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)

    logger = logging.getLogger("app")
    logger.setLevel(log_level)
    return logger
