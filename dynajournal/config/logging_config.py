# =============================================================================
# File: dynajournal/config/logging_config.py
# Description: Logging configuration using Rich framework
# =============================================================================

import json
import logging
import logging.handlers
import os
import sys
from datetime import datetime
from typing import Optional

from rich.box import HEAVY
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.theme import Theme


def get_env_bool(key: str, default: bool = False) -> bool:
    """Get boolean value from environment variable."""
    value = os.getenv(key, '').lower()
    return value in ('true', '1', 'yes', 'on') if value else default


def get_env_int(key: str, default: int) -> int:
    """Get integer value from environment variable."""
    try:
        return int(os.getenv(key, str(default)))
    except ValueError:
        return default


JOURNAL_THEME = Theme({
    "debug": "magenta dim",
    "info": "green",
    "warning": "dark_goldenrod",
    "error": "red",
    "critical": "bold red",
    "timestamp": "grey70",
    "logger_name": "grey35",
    "message": "grey85",
})

PLAIN_FORMAT = "[%(asctime)s] [%(levelname)-8s] [%(name)-40s] %(message)s"
PLAIN_DATEFMT = "%Y-%m-%d %H:%M:%S"


class ProductionFormatter(logging.Formatter):
    """JSON formatter for production environments"""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON"""
        log_obj = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if get_env_bool('LOG_JSON_INCLUDE_EXTRAS', True):
            for extra in ('stream_id', 'correlation_token', 'table'):
                if hasattr(record, extra):
                    log_obj[extra] = getattr(record, extra)

        if record.exc_info:
            log_obj["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_obj)


def get_logger_level_from_env(logger_name: str, default_level: int) -> int:
    """Get logger level from environment variable."""
    # e.g., "dynajournal.journal.replay" -> "LOGLEVEL_DYNAJOURNAL_JOURNAL_REPLAY"
    env_name = f"LOGLEVEL_{logger_name.replace('.', '_').upper()}"

    level_str = os.getenv(env_name, '').upper()
    if level_str:
        level_map = {
            'DEBUG': logging.DEBUG,
            'INFO': logging.INFO,
            'WARNING': logging.WARNING,
            'WARN': logging.WARNING,
            'ERROR': logging.ERROR,
            'CRITICAL': logging.CRITICAL,
        }
        return level_map.get(level_str, default_level)

    return default_level


def setup_logging(
        service_name: str = "dynajournal",
        log_level: Optional[str] = None,
        log_file: Optional[str] = None,
        enable_json: Optional[bool] = None,
) -> None:
    """
    Configure logging with Rich framework.

    Args:
        service_name: Name of the embedding service
        log_level: Override log level
        log_file: Optional log file path
        enable_json: Enable JSON formatting for production
    """
    level = (log_level or os.getenv("LOG_LEVEL", "INFO")).upper()
    log_file = log_file or os.getenv("LOG_FILE")

    if enable_json is None:
        enable_json = get_env_bool('LOG_JSON_FORMAT', False)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    use_rich = not enable_json and (sys.stdout.isatty() or get_env_bool("FORCE_COLOR", False))

    if use_rich:
        console = Console(
            theme=JOURNAL_THEME,
            force_terminal=get_env_bool("FORCE_COLOR", False),
            width=get_env_int('LOG_CONSOLE_WIDTH', 0) or None,
        )
        root_logger.addHandler(RichHandler(console=console, rich_tracebacks=True, show_path=False))

    elif enable_json:
        json_handler = logging.StreamHandler(sys.stdout)
        json_handler.setFormatter(ProductionFormatter())
        root_logger.addHandler(json_handler)

    else:
        plain_handler = logging.StreamHandler(sys.stdout)
        plain_handler.setFormatter(logging.Formatter(PLAIN_FORMAT, datefmt=PLAIN_DATEFMT))
        root_logger.addHandler(plain_handler)

    if log_file:
        file_handler = logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=get_env_int('LOG_MAX_SIZE_MB', 100) * 1024 * 1024,
            backupCount=get_env_int('LOG_BACKUP_COUNT', 5),
            encoding=os.getenv('LOG_FILE_ENCODING', 'utf-8')
        )
        # Always use plain formatter for files
        file_handler.setFormatter(logging.Formatter(PLAIN_FORMAT, datefmt=PLAIN_DATEFMT))
        root_logger.addHandler(file_handler)

    default_noise_config = {
        "botocore": logging.WARNING,
        "aiobotocore": logging.WARNING,
        "aioboto3": logging.WARNING,
        "urllib3": logging.WARNING,
        "asyncio": logging.WARNING,

        "dynajournal.dynamodb.client": logging.INFO,
        "dynajournal.reliability.retry": logging.WARNING,
        "dynajournal.reliability.circuit_breaker": logging.INFO,
    }

    for logger_name, default_level in default_noise_config.items():
        logging.getLogger(logger_name).setLevel(get_logger_level_from_env(logger_name, default_level))

    logging.getLogger(f"{service_name}.startup").info(f"Logging configured for {service_name}")


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance with the given name.

    Args:
        name: Logger name

    Returns:
        Configured logger instance
    """
    return logging.getLogger(name)


def log_error_box(logger: logging.Logger, error_msg: str, error_type: str = "Error"):
    """Log an error, and print it in a highlighted box on interactive consoles"""
    logger.error(f"{error_type}: {error_msg}")

    if not (sys.stderr.isatty() or get_env_bool("FORCE_COLOR", False)):
        return

    console = Console(theme=JOURNAL_THEME, stderr=True)
    console.print()
    console.print(Panel(
        f"[bold red]{error_type}:[/bold red]\n\n{error_msg}",
        border_style="red",
        box=HEAVY,
        padding=(1, 2),
        width=min(console.width - 2, 80),
    ))
    console.print()
