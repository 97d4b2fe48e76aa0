import logging
import logging.handlers
from typing import Union

from mineworker.paths import log_dir

LOG_FILE_NAME = "mineworker.log"
LOG_FORMAT = "[%(asctime)s] [%(short_name)s] %(levelname)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class ShortNameFilter(logging.Filter):
    """MineWorker.DriveTransport is logged as DriveTransport."""

    def filter(self, record):
        record.short_name = record.name.rsplit(".", 1)[-1]
        return True


def _prepare(handler: logging.Handler, level: Union[str, int]) -> logging.Handler:
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, DATE_FORMAT))
    handler.addFilter(ShortNameFilter())
    return handler


def setup_logging(console_level: Union[str, int] = logging.WARNING):
    """
    Log everything to a file in the data directory that rolls over at midnight.
    The terminal belongs to the menu, so it only gets console_level and up.
    Does nothing when the MineWorker logger already has handlers.
    """
    root = logging.getLogger("MineWorker")
    if root.handlers:
        return
    root.setLevel(logging.DEBUG)
    log_dir.mkdir(parents=True, exist_ok=True)
    file_handler = logging.handlers.TimedRotatingFileHandler(
        log_dir / LOG_FILE_NAME, when="midnight", backupCount=14
    )
    root.addHandler(_prepare(file_handler, logging.DEBUG))
    root.addHandler(_prepare(logging.StreamHandler(), console_level))
