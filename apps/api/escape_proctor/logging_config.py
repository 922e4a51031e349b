"""
Logging configuration for the escape proctoring API
"""
import logging
import logging.handlers
import os
import sys
from pathlib import Path

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)-32s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def setup_logging(
    service_name: str = "escape-proctor",
    level: str = None,
    log_dir: str = None
) -> logging.Logger:
    """Console logging always; rotating files only when a log directory is configured."""
    level = level or os.getenv("LOG_LEVEL", "INFO")
    log_dir = log_dir or os.getenv("LOG_DIR")

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    for h in list(root_logger.handlers):
        if getattr(h, "_escape_proctor", False): root_logger.removeHandler(h)

    formatter = logging.Formatter(LOG_FORMAT, DATE_FORMAT)
    handlers = [logging.StreamHandler(sys.stdout)]

    if log_dir:
        path = Path(log_dir); path.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.handlers.RotatingFileHandler(
            path / f"{service_name}.log", maxBytes=10*1024*1024, backupCount=5, encoding="utf-8"
        ))
        # penalties and failures only
        warn_handler = logging.handlers.RotatingFileHandler(
            path / f"{service_name}_violations.log", maxBytes=5*1024*1024, backupCount=3, encoding="utf-8"
        )
        warn_handler.setLevel(logging.WARNING)
        handlers.append(warn_handler)

    for h in handlers:
        h.setFormatter(formatter); h._escape_proctor = True
        root_logger.addHandler(h)

    logger = logging.getLogger(service_name)
    logger.info(f"=== {service_name.upper()} STARTED ===")
    return logger
