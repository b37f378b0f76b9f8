"""Configures logging for the optimizer, including JSON formatting."""

import json
import logging
import os
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from .config_manager import LoggingConfiguration

TEXT_LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class JsonFormatter(logging.Formatter):
    """Formats log records as JSON objects."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "name": record.name,
            "message": record.getMessage(),
            "pathname": record.pathname,
            "lineno": record.lineno,
        }
        if record.exc_info:
            log_entry["exc_info"] = self.formatException(record.exc_info)
        if record.stack_info:
            log_entry["stack_info"] = self.formatStack(record.stack_info)

        # Args that json cannot encode are logged by repr
        if record.args:
            try:
                json.dumps(record.args)
                log_entry["args"] = record.args
            except TypeError:
                log_entry["args"] = tuple(repr(arg) for arg in record.args)

        return json.dumps(log_entry, ensure_ascii=False)


def setup_logging(
    level: Optional[str] = None,
    structured: Optional[bool] = None,
    log_file: Optional[str] = None,
    config: Optional[LoggingConfiguration] = None,
    console_handler: Optional[logging.Handler] = None,
) -> None:
    """Configures the root logger.

    Explicit arguments win over ``config``; ``config`` wins over the defaults in
    ``LoggingConfiguration``.

    Args:
        level: Log level name (e.g. "DEBUG", "INFO").
        structured: Emit JSON instead of plain text.
        log_file: Optional path for a rotating log file.
        config: Logging section of an ``OptimizerConfiguration``.
        console_handler: Replacement for the default stderr handler (the CLI
            passes a ``RichHandler``).
    """
    log_config = config or LoggingConfiguration()

    effective_level = level if level is not None else log_config.level
    use_json_formatter = structured if structured is not None else log_config.enable_structured_logging
    log_file_path = log_file if log_file is not None else log_config.log_file

    log_level_val = getattr(logging, effective_level.upper(), None)
    if not isinstance(log_level_val, int):
        logging.getLogger(__name__).warning(f"Invalid log level '{effective_level}'. Defaulting to INFO.")
        log_level_val = logging.INFO

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level_val)

    # Avoid duplicate handlers when called more than once
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)

    if use_json_formatter:
        formatter: logging.Formatter = JsonFormatter()
    else:
        formatter = logging.Formatter(TEXT_LOG_FORMAT)

    if console_handler is None:
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(formatter)
    console_handler.setLevel(log_level_val)
    root_logger.addHandler(console_handler)

    if log_file_path:
        resolved = Path(log_file_path).expanduser()
        try:
            if resolved.parent and not resolved.parent.exists():
                os.makedirs(resolved.parent, exist_ok=True)

            file_handler = RotatingFileHandler(
                str(resolved),
                maxBytes=log_config.max_log_size_mb * 1024 * 1024,
                backupCount=log_config.backup_count,
                encoding="utf-8",
            )
            file_handler.setFormatter(formatter)
            file_handler.setLevel(logging.DEBUG)
            root_logger.addHandler(file_handler)
            logging.getLogger(__name__).info(f"File logging configured to {resolved}")
        except OSError as e:
            logging.getLogger(__name__).error(
                f"Error setting up file logging: {e}. File logging disabled.", exc_info=True
            )

    logging.getLogger(__name__).debug("Logging setup complete. Effective Level: %s", effective_level.upper())
