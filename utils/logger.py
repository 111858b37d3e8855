import logging
import os
import json
from datetime import UTC, datetime
from typing import Optional, Dict, Any
from colorama import Fore, Style, init

init(autoreset=True)

DEFAULT_LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logger(
    name="pipeline", level=logging.INFO, log_file: Optional[str] = None, console=True
):
    """Setup logger with optional file and colored console handlers"""

    logger = logging.getLogger(name)
    logger.setLevel(level)

    # Avoid duplicate handlers
    if logger.hasHandlers():
        logger.handlers.clear()

    if log_file:
        log_dir = os.path.dirname(log_file)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(level)
        file_handler.setFormatter(logging.Formatter(DEFAULT_LOG_FORMAT))
        logger.addHandler(file_handler)

    if console:
        console_handler = logging.StreamHandler()
        console_handler.setLevel(level)
        console_handler.setFormatter(
            ColoredFormatter(
                "%(asctime)s - %(levelname_colored)s - [%(event_type_colored)s] - %(message)s"
            )
        )
        logger.addHandler(console_handler)

    logger.addFilter(DefaultEventMetadataFilter())
    return logger


# ============================================================================
# PIPELINE EVENT LOGGING
# ============================================================================


class StructuredFormatter(logging.Formatter):
    """JSON formatter for structured pipeline events"""

    def format(self, record):
        log_entry = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "event_type": getattr(record, "event_type", "general"),
            "source": getattr(record, "source", None),
            "event_data": getattr(record, "event_data", {}),
        }

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, ensure_ascii=False, default=str)


class ColoredFormatter(logging.Formatter):
    """Colored formatter for console output with event highlighting"""

    COLORS = {
        "DEBUG": Fore.CYAN,
        "INFO": Fore.BLUE,
        "WARNING": Fore.YELLOW,
        "ERROR": Fore.RED,
        "CRITICAL": Fore.MAGENTA + Style.BRIGHT,
    }

    EVENT_COLORS = {
        "circuit_opened": Fore.RED + Style.BRIGHT,
        "emergency_stop": Fore.MAGENTA + Style.BRIGHT,
        "request_queued": Fore.YELLOW,
        "queue_timeout": Fore.YELLOW + Style.BRIGHT,
        "cascade": Fore.GREEN,
        "general": Fore.WHITE,
    }

    def format(self, record):
        record.levelname_colored = (
            self.COLORS.get(record.levelname, Fore.WHITE)
            + record.levelname
            + Style.RESET_ALL
        )

        event_type = getattr(record, "event_type", "general")
        record.event_type_colored = (
            self.EVENT_COLORS.get(event_type, Fore.WHITE)
            + event_type.upper()
            + Style.RESET_ALL
        )

        return super().format(record)


class DefaultEventMetadataFilter(logging.Filter):
    """Ensure log records contain the event metadata expected by the formatters."""

    def filter(self, record: logging.LogRecord) -> bool:  # noqa: D401 (doc inherited)
        if not hasattr(record, "event_type"):
            record.event_type = "general"
        if not hasattr(record, "event_data"):
            record.event_data = {}
        return True


def setup_event_logger(
    name="pipeline.events",
    level=logging.INFO,
    structured_file: Optional[str] = None,
    console=True,
):
    """Setup the pipeline event logger with optional JSONL output

    Args:
        name: Logger name
        level: Logging level
        structured_file: Path to structured JSON log file, or None
        console: Whether to enable console logging
    """
    logger = setup_logger(name, level, log_file=None, console=console)

    if structured_file:
        log_dir = os.path.dirname(structured_file)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        json_handler = logging.FileHandler(structured_file)
        json_handler.setFormatter(StructuredFormatter())
        logger.addHandler(json_handler)

    return logger


def get_event_logger() -> logging.Logger:
    """Get the pipeline event logger, configuring it on first use"""
    logger = logging.getLogger("pipeline.events")
    if not logger.handlers:
        return setup_event_logger(
            level=_level_from_env(),
            structured_file=os.getenv("PIPELINE_EVENT_LOG_FILE") or None,
        )
    return logger


def log_pipeline_event(
    event_type: str,
    source: Optional[str],
    event_data: Dict[str, Any],
    level: str = "INFO",
):
    """Structured pipeline event logging"""
    logger = get_event_logger()

    log_level = getattr(logging, level.upper(), logging.INFO)
    record = logger.makeRecord(
        logger.name,
        log_level,
        __file__,
        0,
        f"Pipeline event: {event_type} ({source or 'global'})",
        (),
        None,
    )
    record.event_type = event_type
    record.source = source
    record.event_data = event_data

    logger.handle(record)


def _level_from_env() -> int:
    level_name = os.getenv("PIPELINE_LOG_LEVEL", "INFO").upper()
    return getattr(logging, level_name, logging.INFO)


def get_logger(name: str) -> logging.Logger:
    """Get logger instance for the given name.

    Loggers are configured once; later calls return the configured instance.
    """
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger
    return setup_logger(
        name,
        level=_level_from_env(),
        log_file=os.getenv("PIPELINE_LOG_FILE") or None,
    )
