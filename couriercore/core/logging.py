from __future__ import annotations

import logging

from couriercore.core.config import get_settings


_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def configure_logging() -> None:
    # Configure the root logger once per process; uvicorn and arq reuse it.
    settings = get_settings()
    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(level=level, format=_LOG_FORMAT)
    root.setLevel(level)
    # SQL echo is noisy at INFO; keep it behind DEBUG.
    logging.getLogger("sqlalchemy.engine").setLevel(max(level, logging.WARNING))
