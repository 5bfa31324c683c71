"""
Logging setup — console plus the rotating server log under LOG_DIR.
"""
import logging
import os
from logging.handlers import RotatingFileHandler

from cemetery.config import get_settings

LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"

_configured = False


def configure_logging(level: str | None = None) -> None:
    """Attach console and file handlers to the ``cemetery`` logger once."""
    global _configured
    if _configured:
        return

    settings = get_settings()
    os.makedirs(settings.LOG_DIR, exist_ok=True)

    formatter = logging.Formatter(LOG_FORMAT)

    console = logging.StreamHandler()
    console.setFormatter(formatter)

    file_handler = RotatingFileHandler(
        os.path.join(settings.LOG_DIR, "server.log"),
        maxBytes=5 * 1024 * 1024,
        backupCount=5,
        encoding="utf-8",
    )
    file_handler.setFormatter(formatter)

    root = logging.getLogger("cemetery")
    root.setLevel((level or settings.LOG_LEVEL).upper())
    root.addHandler(console)
    root.addHandler(file_handler)
    _configured = True
