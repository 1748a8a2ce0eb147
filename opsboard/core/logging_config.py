"""
Logging setup — called once from the FastAPI lifespan.

Every module owns ``logger = logging.getLogger(__name__)``; this module
only wires the root handlers from ``LOG_LEVEL`` / ``LOG_FILE``.
"""

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from opsboard.core.config import settings

_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(
    level: Optional[str] = None,
    log_file: Optional[str] = None,
) -> None:
    """Attach a console handler and a rotating file handler to the root logger."""
    level_name = (level or settings.LOG_LEVEL).upper()
    target = log_file if log_file is not None else settings.LOG_FILE

    root = logging.getLogger()
    root.setLevel(level_name)

    formatter = logging.Formatter(_FORMAT)
    if not any(getattr(h, "_opsboard", False) for h in root.handlers):
        console = logging.StreamHandler()
        console.setFormatter(formatter)
        console._opsboard = True
        root.addHandler(console)

        if target:
            path = Path(target)
            path.parent.mkdir(parents=True, exist_ok=True)
            file_handler = RotatingFileHandler(
                path, maxBytes=5 * 1024 * 1024, backupCount=3, encoding="utf-8",
            )
            file_handler.setFormatter(formatter)
            file_handler._opsboard = True
            root.addHandler(file_handler)

    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
