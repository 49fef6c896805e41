# Centralized logging configuration for the kpay_gateway package.

import logging
import sys
from typing import Any, Dict, Mapping

from kpay_gateway.settings import Settings

# Recommended format
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Default level if LOG_LEVEL env var is not set
DEFAULT_LOG_LEVEL = "INFO"

# Valid log levels
VALID_LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]

# Libraries known to be noisy that we might want to quiet down
NOISY_LIBRARIES = ["httpx", "httpcore", "aiosqlite"]

# Protocol fields whose values must never reach a log line
SENSITIVE_FIELDS = {"password", "hash", "trandata", "resource_key", "tranportal_password"}

MASK = "***"


def setup_logging():
    """
    Configures logging for the application.

    Reads the desired log level from the LOG_LEVEL environment variable.
    Defaults to INFO if not set or invalid.
    Sets a standard format and directs logs to stderr.
    Sets louder libraries to WARNING level.
    """
    settings = Settings()
    log_level_name = settings.get_log_level(default=DEFAULT_LOG_LEVEL)

    if log_level_name not in VALID_LOG_LEVELS:
        print(
            f"WARNING: Invalid LOG_LEVEL '{log_level_name}'. "
            f"Defaulting to {DEFAULT_LOG_LEVEL}. "
            f"Valid levels are: {', '.join(VALID_LOG_LEVELS)}",
            file=sys.stderr,
        )
        log_level_name = DEFAULT_LOG_LEVEL

    log_level = logging.getLevelName(log_level_name)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root_logger.addHandler(console_handler)

    for lib_name in NOISY_LIBRARIES:
        logging.getLogger(lib_name).setLevel(logging.WARNING)

    logging.getLogger(__name__).info(f"Logging configured with level {log_level_name}.")


def mask_sensitive(params: Mapping[str, Any]) -> Dict[str, Any]:
    """Copy of ``params`` with secret-bearing values replaced, safe to log."""
    return {key: (MASK if str(key).lower() in SENSITIVE_FIELDS and value else value) for key, value in params.items()}


def log_gateway_message(direction: str, channel: str, fields: Mapping[str, Any], **details: Any) -> None:
    """Log an inbound or outbound gateway message with secrets masked."""
    logger = logging.getLogger("kpay_gateway.gateway.traffic")
    logger.info(
        f"KPay {direction} message ({channel})",
        extra={"direction": direction, "channel": channel, "fields": mask_sensitive(fields), **details},
    )
