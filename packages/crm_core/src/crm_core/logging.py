import logging
import sys
import time
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional, Union

from .config import crm_settings


class EntityFormatter(logging.Formatter):
    """
    UTC formatter that prefixes ORM records with their entity type.

    Records logged with ``extra={"entity_type": ...}`` render as
    ``[Account] message``; any other record is left untouched.
    """

    def __init__(self, fmt: str | None = None, datefmt: str | None = None):
        super().__init__(fmt, datefmt)
        self.converter = time.gmtime

    def formatTime(self, record, datefmt=None):  # noqa: N802
        ct = self.converter(record.created)
        if datefmt:
            return time.strftime(datefmt, ct)
        t = time.strftime("%Y-%m-%d %H:%M:%S", ct)
        return "%s.%03dZ" % (t, record.msecs)

    def format(self, record: logging.LogRecord) -> str:
        entity_type = getattr(record, "entity_type", None)
        record.entity_str = f"[{entity_type}] " if entity_type else ""
        return super().format(record)


def get_logger(name: str) -> logging.Logger:
    """
    Return the logger for a module.

    >>> logger = get_logger(__name__)
    >>> logger.info("Locked table", extra={"entity_type": "Account"})
    """
    return logging.getLogger(name)


def setup_logging(
    level: Union[int, str, None] = None,
    log_file: Optional[Union[str, Path]] = None,
    max_bytes: int = 10_485_760,  # 10MB
    backup_count: int = 10,
    capture_roots: bool = True,
    module_name: str = "crm_orm",
) -> None:
    """
    Configure console (and optionally rotating file) logging.

    Args:
        level: Logging level; defaults to ``LOG_LEVEL`` from the settings.
        log_file: Path to write logs to.
        capture_roots: If True, configures the root logger.
                       If False, only configures the ``module_name`` loggers.
        module_name: Namespace configured when ``capture_roots`` is False.
    """
    if level is None:
        level = crm_settings.LOG_LEVEL
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)

    target_logger = (
        logging.getLogger() if capture_roots else logging.getLogger(module_name)
    )

    # Reset handlers so repeated calls reconfigure instead of duplicating output
    target_logger.handlers.clear()
    target_logger.setLevel(level)

    log_format = "%(asctime)s %(levelname)-8s %(name)s: %(entity_str)s%(message)s"
    formatter = EntityFormatter(log_format)

    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(formatter)
    target_logger.addHandler(console)

    if log_file:
        file_path = Path(log_file).resolve()
        try:
            file_path.parent.mkdir(parents=True, exist_ok=True)
            file_handler = RotatingFileHandler(
                file_path,
                maxBytes=max_bytes,
                backupCount=backup_count,
                encoding="utf-8",
            )
            file_handler.setFormatter(formatter)
            target_logger.addHandler(file_handler)
        except OSError as e:
            sys.stderr.write(f"Failed to set up log file: {e}\n")

    if not capture_roots:
        target_logger.propagate = False
