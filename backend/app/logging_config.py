"""Logging configuration for the venue backend."""
from __future__ import annotations

import logging
import os
from logging.handlers import RotatingFileHandler
from typing import Optional

from app.config import AppConfig

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def configure_logging(config: Optional[AppConfig] = None) -> None:
    """Configure console (and optional rotating file) logging once per process."""
    log_cfg = (config.logging if config else {}) or {}
    level_name = os.getenv("LOG_LEVEL") or str(log_cfg.get("level", "INFO"))
    level = getattr(logging, level_name.upper(), logging.INFO)

    formatter = logging.Formatter(LOG_FORMAT)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    console_handler.setLevel(level)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()
    root_logger.addHandler(console_handler)

    log_file = log_cfg.get("file")
    if log_file:
        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=int(log_cfg.get("max_bytes", 1048576)),
            backupCount=int(log_cfg.get("backup_count", 3)),
            encoding="utf-8",
        )
        file_handler.setFormatter(formatter)
        file_handler.setLevel(level)
        root_logger.addHandler(file_handler)
