from __future__ import annotations

import logging
import logging.config
from pathlib import Path
from typing import Optional


def setup_logging(level: str = "info", log_dir: Optional[Path] = None) -> logging.Logger:
    """Console handler always; file handler under ``log_dir`` when given."""
    debug_mode = level.lower() == "debug"
    loglevel = logging.DEBUG if debug_mode else getattr(logging, level.upper(), logging.INFO)

    handlers = {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "standard",
            "level": loglevel,
            "stream": "ext://sys.stdout",
        },
    }
    if log_dir is not None:
        log_dir.mkdir(parents=True, exist_ok=True)
        handlers["file"] = {
            "class": "logging.FileHandler",
            "formatter": "standard",
            "level": loglevel,
            "filename": str(log_dir / "portal.log"),
            "encoding": "utf-8",
        }

    logging.config.dictConfig({
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "standard": {
                "format": "%(asctime)s - %(levelname)s - %(name)s - %(message)s",
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
        },
        "handlers": handlers,
        "root": {"handlers": list(handlers), "level": loglevel},
    })

    # Suppress httpx request logs unless in debug mode
    logging.getLogger("httpx").setLevel(logging.DEBUG if debug_mode else logging.WARNING)
    return logging.getLogger("dissportal")
