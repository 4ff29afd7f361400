from datetime import datetime
import re
import sys
import json
import logging
import traceback
import contextvars
from contextlib import contextmanager

from dbxfer.core.config import Settings, get_settings


SUCCESS_LEVEL = 25
LOG_SEVERITY = {
    "DEBUG": "DEBUG",
    "INFO": "INFO",
    "SUCCESS": "SUCCESS",
    "WARNING": "WARNING",
    "ERROR": "ERROR",
    "CRITICAL": "CRITICAL"
}

LOG_COLORS = {
    "DEBUG": "\033[36m",      # Cyan
    "INFO": "\033[37m",       # White
    "SUCCESS": "\033[32m",    # Green
    "WARNING": "\033[33m",    # Yellow
    "ERROR": "\033[31m",      # Red
    "CRITICAL": "\033[35m"    # Magenta
}
RESET_COLOR = "\033[0m"

_RESERVED_RECORD_KEYS = [
    "msg", "args", "levelname", "levelno", "pathname",
    "filename", "module", "exc_info", "exc_text", "stack_info",
    "lineno", "funcName", "created", "msecs", "relativeCreated",
    "thread", "threadName", "process", "processName", "scope", "name", "taskName"
]

logging.addLevelName(SUCCESS_LEVEL, "SUCCESS")


class CustomLogger(logging.Logger):
    def success(self, message, *args, **kwargs):
        if self.isEnabledFor(SUCCESS_LEVEL):
            self.log(SUCCESS_LEVEL, message, *args, **kwargs, stacklevel=2)


def stringify_extra(value):
    if isinstance(value, (list, dict)):
        return str(value)
    else:
        return value


# fields stamped on every record of the running transfer
_log_fields = contextvars.ContextVar("dbxfer_log_fields", default={})


class ContextFilter(logging.Filter):
    def filter(self, record):
        for key, value in _log_fields.get().items():
            setattr(record, key, value)
        return True


@contextmanager
def transfer_context(transfer_id: str, destination_table: str, **fields):
    """
    Stamp transfer_id and destination_table on every record logged in the block.

        with transfer_context(run_id, "dbo.Customers"):
            logger.info("Loading")
    """
    current = dict(_log_fields.get())
    current.update(fields, transfer_id=transfer_id, destination_table=destination_table)
    token = _log_fields.set(current)
    try:
        yield
    finally:
        _log_fields.reset(token)


def _logging_settings() -> Settings:
    try:
        return get_settings()
    except ValueError:
        # invalid DBXFER_* values are reported where settings are used
        return Settings()


class CustomFormatter(logging.Formatter):

    def __init__(self, fmt="%(message)s", include_location=False, with_color=False):
        super().__init__(fmt)
        self.include_location = include_location
        self.with_color = with_color

    def format(self, record):
        level_name = LOG_SEVERITY.get(record.levelname, record.levelname)
        scope = f"{record.scope}" if hasattr(record, "scope") else ""
        location = ""
        if self.include_location and hasattr(record, "module") and hasattr(record, "funcName") and hasattr(record, "lineno"):
            location = f"({record.module}:{record.funcName}:{record.lineno})"

        if self.with_color:
            level_color = LOG_COLORS.get(record.levelname, "")
            if scope:
                scope = f"\033[32m{scope}\033[0m"
            if location:
                location = f"\033[1;33m{location}\033[0m"
            metadata_line = f"{level_color}[{level_name}]{RESET_COLOR} {scope} {location}".strip()
        else:
            metadata_line = f"{datetime.now().isoformat()} [{level_name}] {scope} {location}".strip()

        message = record.getMessage()
        message_split = message.splitlines()
        if len(message_split) > 1:
            message_line = f"     Message: {message_split[0]}"
            for line in message_split[1:]:
                message_line += f"\n             {line}"
        else:
            message_line = f"     Message: {message}"

        extra_items = [
            f"{key}: {stringify_extra(value)}"
            for key, value in record.__dict__.items()
            if key not in _RESERVED_RECORD_KEYS
        ]
        extra_info = ""
        if extra_items:
            extra_info = f"\n     {' '.join(extra_items)}"
        formatted_log = f"{metadata_line}\n{message_line}{extra_info}"
        if record.exc_info:
            # clickable "File path:line" stack frames
            format_exception = traceback.format_exception(*record.exc_info)
            format_exception = "".join(
                re.sub(r'File "([^"]+)", line (\d+),', r'File "\1:\2"', line)
                for line in format_exception
            )
            formatted_log += f"\n{format_exception}"
        return formatted_log


class JSONFormatter(logging.Formatter):
    def format(self, record):
        log_dict = {
            "level": record.levelname,
            "message": record.getMessage(),
            "time": self.formatTime(record, self.datefmt),
            "logger": record.name,
        }
        if hasattr(record, "scope"):
            log_dict["scope"] = record.scope
        if hasattr(record, "module") and hasattr(record, "funcName") and hasattr(record, "lineno"):
            log_dict["location"] = {
                "module": record.module,
                "function": record.funcName,
                "line": record.lineno,
            }
        for key, value in record.__dict__.items():
            if key not in _RESERVED_RECORD_KEYS and key not in log_dict:
                log_dict[key] = stringify_extra(value)
        if record.exc_info:
            log_dict["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_dict, ensure_ascii=False, default=str)


def setup_logger(name: str, include_location=False, use_json=None):
    """
    Build a stdout logger with the dbxfer formatters.

    Level and `use_json` default to the DBXFER_LOG_LEVEL and DBXFER_LOG_JSON
    settings.
    """
    settings = _logging_settings()
    if use_json is None:
        use_json = settings.log_json
    logging.setLoggerClass(CustomLogger)
    logger = logging.getLogger(name)
    if not any(isinstance(f, ContextFilter) for f in logger.filters):
        logger.addFilter(ContextFilter())

    if not any(isinstance(h, logging.StreamHandler) for h in logger.handlers):
        stream_handler = logging.StreamHandler(sys.stdout)
        stream_handler.setLevel(logging.DEBUG)
        if use_json:
            stream_handler.setFormatter(JSONFormatter())
        else:
            stream_handler.setFormatter(CustomFormatter(include_location=include_location))
        logger.addHandler(stream_handler)
    logger.setLevel(logging.getLevelName(settings.log_level))
    logger.propagate = False
    return logger


def sql_summary(command: str) -> str:
    """Operation keyword and length of a statement, safe to log."""
    trimmed = (command or "").strip()
    if not trimmed:
        return "UNKNOWN len=0"
    operation = trimmed.split(None, 1)[0].upper()
    return f"{operation} len={len(trimmed)}"


__all__ = [
    "SUCCESS_LEVEL",
    "CustomLogger",
    "CustomFormatter",
    "JSONFormatter",
    "ContextFilter",
    "transfer_context",
    "setup_logger",
    "sql_summary",
]
