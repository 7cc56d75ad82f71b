"""
FILE DESCRIPTION: Foundational module for global configuration and logging.
KEY FUNCTIONS/CLASSES: setup_logger, CompanyFormatter, crawl timing and pool constants
"""

import logging
import sys
import os
from datetime import datetime
from dotenv import load_dotenv

# === CONFIGURATION SECTION ===

# Load .env from the working directory
load_dotenv()


def _env_flag(name, default):
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


# Navigation timeout per phase (seconds)
MAX_LOAD_TIME = float(os.getenv("MAX_LOAD_TIME", 30))

# Whole-session hard limit is a multiple of the navigation timeout
TOTAL_TIME_FACTOR = int(os.getenv("TOTAL_TIME_FACTOR", 3))
MAX_TOTAL_TIME = MAX_LOAD_TIME * TOTAL_TIME_FACTOR

# Settle time after each navigation (seconds)
EXECUTION_WAIT_TIME = float(os.getenv("EXECUTION_WAIT_TIME", 10))

# How long an expired session's thread gets to unwind once its browser is killed
KILL_GRACE_TIME = float(os.getenv("KILL_GRACE_TIME", 5))

# Second load catches redirect/CNAME effects that only show up on a warm visit
RELOAD_PAGE = _env_flag("RELOAD_PAGE", True)

# Worker pool parameters.
# More than ~38 browsers at once saturates bandwidth and skews timing data.
MAX_NUMBER_OF_CRAWLERS = int(os.getenv("MAX_NUMBER_OF_CRAWLERS", 38))
MAX_NUMBER_OF_RETRIES = int(os.getenv("MAX_NUMBER_OF_RETRIES", 2))
CPU_FRACTION = float(os.getenv("CPU_FRACTION", 0.8))

# Upper bound for each unmatched extra-info buffer
MAX_PENDING_EXTRA_INFO = int(os.getenv("MAX_PENDING_EXTRA_INFO", 1000))

HEADLESS = _env_flag("HEADLESS", True)

DEFAULT_USER_AGENT = "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_5) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/83.0.4103.97 Safari/537.36"
MOBILE_USER_AGENT = "Mozilla/5.0 (Linux; Android 10; Pixel 2 XL) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/80.0.3987.117 Mobile Safari/537.36"

DEFAULT_VIEWPORT = {"width": 1440, "height": 812}
MOBILE_VIEWPORT = {"width": 412, "height": 691}
MOBILE_DEVICE_SCALE_FACTOR = 2

# Response headers kept in the request export (lower-case)
DEFAULT_SAVE_HEADERS = [
    "etag",
    "set-cookie",
    "cache-control",
    "expires",
    "pragma",
    "p3p",
    "timing-allow-origin",
    "access-control-allow-origin",
]


# === LOGGING SECTION ===

class CompanyFormatter(logging.Formatter):
    """
    FLOW: Receives a log record -> Extracts timestamp -> Formats according to company standard
    (e.g., [ Tue Jan 06 05:32:41 AM UTC 2026 ]) -> Prepends level and context -> Returns final string.
    """
    def format(self, record):
        dt = datetime.fromtimestamp(record.created)
        timestamp = dt.strftime("%a %b %d %I:%M:%S %p UTC %Y")
        context = getattr(record, 'context', 'root')
        message = f"[ {timestamp} ] : {record.levelname} : {context} : {record.getMessage()}"
        if record.exc_info:
            message = f"{message}\n{self.formatException(record.exc_info)}"
        return message


def setup_logger(name="tracker", log_file=None, level=logging.INFO):
    """
    FLOW: Initializes/Retrieves logger -> Checks for existing handlers to prevent duplicates ->
    Sets propagation for child loggers -> Attaches Console and optional File handlers with CompanyFormatter.
    """
    logger = logging.getLogger(name)
    logger.setLevel(level)

    if logger.handlers:
        return logger

    if name != "tracker":
        logger.propagate = True
        setup_logger("tracker", log_file=log_file, level=level)
        return logger

    formatter = CompanyFormatter()

    # Console handler
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    # File handler (optional)
    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    return logger


def add_log_file(log_file, logger_name="tracker"):
    """Attaches an extra FileHandler to an already configured logger."""
    logger = logging.getLogger(logger_name)
    file_handler = logging.FileHandler(log_file)
    file_handler.setFormatter(CompanyFormatter())
    logger.addHandler(file_handler)
    return file_handler


def session_logger(hostname, base=None):
    """Wraps a logger so every record carries the crawled hostname as its context."""
    return logging.LoggerAdapter(base or logger, {"context": hostname})


# Global logger instance
logger = setup_logger()
