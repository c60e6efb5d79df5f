"""Logging configuration.

Call ``configure_logging()`` once from the embedding application before the
service is constructed. Module code only ever does
``logging.getLogger(__name__)``; activity and performance events use the
``activity`` and ``performance`` loggers with ``extra=`` payloads.
"""

from __future__ import annotations

import logging
import logging.handlers
import os
import sys
from typing import Optional

from quizgen.core.config import settings

LOG_FORMAT = "%(asctime)s %(name)s %(levelname)s %(message)s"

_configured = False


def configure_logging(level: Optional[str] = None, log_dir: Optional[str] = None) -> None:
    """Install stdout + rotating file handlers on the root logger (idempotent)."""
    global _configured
    if _configured:
        return

    log_dir = log_dir or settings.LOG_DIR
    os.makedirs(log_dir, exist_ok=True)

    _fmt = logging.Formatter(LOG_FORMAT)
    _stream_handler = logging.StreamHandler(sys.stdout)
    _stream_handler.setFormatter(_fmt)
    _file_handler = logging.handlers.RotatingFileHandler(
        os.path.join(log_dir, "quizgen.log"),
        maxBytes=settings.LOG_FILE_MAX_BYTES,
        backupCount=settings.LOG_FILE_BACKUP_COUNT,
    )
    _file_handler.setFormatter(_fmt)

    logging.basicConfig(
        level=(level or settings.LOG_LEVEL).upper(),
        handlers=[_stream_handler, _file_handler],
    )
    # Quieten noisy third-party loggers
    for _noisy in ("httpx", "httpcore", "urllib3"):
        logging.getLogger(_noisy).setLevel(logging.WARNING)

    _configured = True
