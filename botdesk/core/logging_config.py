# botdesk/core/logging_config.py
"""
Logging configuration for the botdesk client.
Console output plus rotating log files, with a dedicated logger for REST traffic.
"""
import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Any, Dict, Optional

from botdesk.core.config import LOG_DIR, LOG_LEVEL

API_LOGGER_NAME = "botdesk.api"
SENSITIVE_KEYS = ('authorization', 'token', 'password', 'secret')


class ColoredFormatter(logging.Formatter):
    """Colored console formatter for better readability"""

    COLORS = {
        'DEBUG': '\033[36m',      # Cyan
        'INFO': '\033[32m',       # Green
        'WARNING': '\033[33m',    # Yellow
        'ERROR': '\033[31m',      # Red
        'CRITICAL': '\033[35m',   # Magenta
        'RESET': '\033[0m'
    }

    def format(self, record):
        log_color = self.COLORS.get(record.levelname, self.COLORS['RESET'])
        levelname = record.levelname
        record.levelname = f"{log_color}{levelname}{self.COLORS['RESET']}"
        try:
            return super().format(record)
        finally:
            # other handlers share the record
            record.levelname = levelname


def setup_logging(app_name: str = "botdesk", level: str = LOG_LEVEL, log_dir: Optional[Path] = None):
    """
    Setup console and file logging.

    Creates two log files:
    - error.log: Only ERROR and CRITICAL messages
    - debug.log: All DEBUG and above messages
    """
    log_dir = Path(log_dir or LOG_DIR)
    log_dir.mkdir(parents=True, exist_ok=True)
    error_log_file = log_dir / "error.log"
    debug_log_file = log_dir / "debug.log"

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)

    # Remove existing handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    # ═══════════════════════════════════════════════════════════
    # Console Handler - with colors
    # ═══════════════════════════════════════════════════════════
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(getattr(logging, str(level).upper(), logging.INFO))
    console_handler.setFormatter(ColoredFormatter('%(levelname)s | %(name)s | %(message)s'))
    root_logger.addHandler(console_handler)

    # ═══════════════════════════════════════════════════════════
    # ERROR Log File - Rotating, only errors
    # ═══════════════════════════════════════════════════════════
    error_handler = logging.handlers.RotatingFileHandler(
        error_log_file,
        maxBytes=10 * 1024 * 1024,  # 10 MB
        backupCount=5,
        encoding='utf-8'
    )
    error_handler.setLevel(logging.ERROR)
    error_handler.setFormatter(logging.Formatter(
        '%(asctime)s | %(levelname)s | %(name)s | %(filename)s:%(lineno)d | %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    ))
    root_logger.addHandler(error_handler)

    # ═══════════════════════════════════════════════════════════
    # DEBUG Log File - Rotating, all messages
    # ═══════════════════════════════════════════════════════════
    debug_handler = logging.handlers.RotatingFileHandler(
        debug_log_file,
        maxBytes=20 * 1024 * 1024,  # 20 MB
        backupCount=5,
        encoding='utf-8'
    )
    debug_handler.setLevel(logging.DEBUG)
    debug_handler.setFormatter(logging.Formatter(
        '%(asctime)s | %(levelname)-8s | %(name)-30s | %(filename)s:%(lineno)d | %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    ))
    root_logger.addHandler(debug_handler)

    logger = logging.getLogger(__name__)
    logger.info(f"{'='*60}")
    logger.info(f"Logging initialized for {app_name}")
    logger.info(f"Log directory: {log_dir}")
    logger.info(f"{'='*60}")

    return root_logger


def get_api_logger():
    """Get logger specifically for REST traffic"""
    return logging.getLogger(API_LOGGER_NAME)


def mask_sensitive(data: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Copy of ``data`` with credential-looking values hidden"""
    if not data:
        return data
    return {
        key: ('***HIDDEN***' if str(key).lower() in SENSITIVE_KEYS else value)
        for key, value in data.items()
    }


# ═══════════════════════════════════════════════════════════
# Helper functions for detailed logging
# ═══════════════════════════════════════════════════════════

def log_api_request(logger, method: str, endpoint: str, data: dict = None, headers: dict = None):
    """Log outgoing API request details"""
    logger.debug(f"🌐 API REQUEST: {method} {endpoint}")
    if headers:
        logger.debug(f"Headers: {mask_sensitive(headers)}")
    if data:
        logger.debug(f"Request Data: {data}")


def log_api_response(logger, status_code: Optional[int], response_data: Any = None, error: Exception = None):
    """Log API response details"""
    logger.debug(f"📥 API RESPONSE: Status {status_code}")
    if error:
        logger.error(f"❌ Error: {error} ({type(error).__name__})")
    else:
        logger.debug(f"Response Data: {response_data}")
