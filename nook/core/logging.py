import os
import logging
from contextlib import contextmanager
from logging.handlers import RotatingFileHandler
from datetime import datetime
import pytz

from nook.core.config import settings

LOG_FORMAT = '%(asctime)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(funcName)s() - %(message)s'
MDM_CALL_FORMAT = '%(asctime)s - %(levelname)s - %(message)s'
MAX_LOG_BYTES = 1 * 1024 * 1024
LOG_BACKUPS = 3

class TimezoneFormatter(logging.Formatter):
    """Renders timestamps in the configured timezone on a 12-hour clock."""
    def __init__(self, fmt=None, datefmt=None, tz_name: str = "US/Eastern"):
        super().__init__(fmt, datefmt)
        self.tz = pytz.timezone(tz_name)

    def formatTime(self, record, datefmt=None):
        stamp = datetime.fromtimestamp(record.created, tz=self.tz)
        return stamp.strftime(datefmt or '%Y-%m-%d %I:%M:%S %p %Z')

def _rotating_handler(path: str, formatter: logging.Formatter) -> RotatingFileHandler:
    handler = RotatingFileHandler(path, maxBytes=MAX_LOG_BYTES, backupCount=LOG_BACKUPS)
    handler.setFormatter(formatter)
    return handler

def setup_logging():
    """
    Configure the root logger (nook.log plus console) and the SimpleMDM call
    log (simplemdm.log). Safe to call more than once; handlers are replaced.
    """
    os.makedirs(settings.LOG_DIRECTORY, exist_ok=True)

    formatter = TimezoneFormatter(LOG_FORMAT, tz_name=settings.LOG_TIMEZONE)

    root = logging.getLogger()
    root.setLevel(settings.LOG_LEVEL.upper())
    for handler in root.handlers[:]:
        root.removeHandler(handler)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    root.addHandler(_rotating_handler(os.path.join(settings.LOG_DIRECTORY, "nook.log"), formatter))
    root.addHandler(console_handler)

    # Every SimpleMDM call also lands in its own file, so outages can be
    # reconstructed without wading through the application log
    for handler in mdm_call_logger.handlers[:]:
        mdm_call_logger.removeHandler(handler)
    mdm_call_logger.setLevel(logging.INFO)
    mdm_call_logger.addHandler(
        _rotating_handler(
            os.path.join(settings.LOG_DIRECTORY, "simplemdm.log"),
            TimezoneFormatter(MDM_CALL_FORMAT, tz_name=settings.LOG_TIMEZONE),
        )
    )

    return root

@contextmanager
def log_exception(logger_name: str = None):
    """Log any exception escaping the block with its traceback, then re-raise it."""
    try:
        yield
    except Exception:
        logging.getLogger(logger_name or "nook").exception("Unhandled exception")
        raise

# Shared by services and endpoints; handlers come from setup_logging()
logger = logging.getLogger("nook")
mdm_call_logger = logging.getLogger("nook.simplemdm")
