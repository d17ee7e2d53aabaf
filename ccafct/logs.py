from __future__ import annotations

import logging
from pathlib import Path

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
    )


def configure_logger(log_path: Path) -> logging.Handler:
    """Mirror everything logged under ``ccafct`` into ``log_path``."""
    log_path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(log_path, mode="w", encoding="utf-8")
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logging.getLogger("ccafct").addHandler(handler)
    return handler


def remove_handler(handler: logging.Handler) -> None:
    logger = logging.getLogger("ccafct")
    logger.removeHandler(handler)
    handler.close()
