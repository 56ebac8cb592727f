from datetime import datetime
from pytz import timezone
import logging.config
import logging
import os
from logging import Logger


debug_mode = os.getenv("LOG_LEVEL", "info").lower() == "debug"
loglevel = logging.INFO if not debug_mode else logging.DEBUG

LOGGER_NAME = "embedding_sync"

# ANSI colours accepted by the color= keyword
_ANSI_RESET = "\033[0m"
_COLOR_MAP: dict[str, str] = {
    "green":  "\033[32m",
    "yellow": "\033[33m",
    "red":    "\033[31m",
}
_LEVEL_PREFIX = ((logging.ERROR, "⛔ "), (logging.WARNING, "⚠️ "))


class SyncContextFilter(logging.Filter):
    """Makes sure every record carries an ``organization_id`` attribute.

    Records logged with ``extra={"organization_id": ...}`` keep their value,
    everything else is tagged with "-" so the format string never breaks.
    """

    def filter(self, record):
        if not hasattr(record, "organization_id"):
            record.organization_id = "-"
        return True


class CustomFormatter(logging.Formatter):
    """Timestamps in the configured timezone, warnings and errors get a marker."""

    def __init__(self, tz_name, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.tz = timezone(tz_name)

    def formatTime(self, record, datefmt=None):
        dt = datetime.fromtimestamp(record.created, self.tz)
        return dt.strftime(datefmt) if datefmt else dt.isoformat()

    def format(self, record):
        try:
            message = record.getMessage()
        except (TypeError, ValueError):
            # a broken format string must not take the sync down with it
            message = f"{record.msg} {record.args}"

        prefix = next((mark for level, mark in _LEVEL_PREFIX if record.levelno >= level), "")
        record.msg, record.args = prefix + message, ()
        return super().format(record)


class ColoredFormatter(CustomFormatter):
    """Console variant: wraps the line in the record's ``color``, if any."""

    def format(self, record) -> str:
        line = super().format(record)
        ansi = _COLOR_MAP.get(getattr(record, "color", None) or "")
        return f"{ansi}{line}{_ANSI_RESET}" if ansi and line else line


class ColorLogger:
    """Logger wrapper whose log methods accept ``color=``.

    The colour name travels as ``record.color``; only the console handler
    renders it. Everything else is delegated to the wrapped logger.
    """

    def __init__(self, logger: Logger):
        self._logger = logger

    def _emit(self, level: int, msg, args: tuple, color: str | None, kwargs: dict) -> None:
        if color is not None:
            kwargs["extra"] = {**(kwargs.get("extra") or {}), "color": color}
        self._logger.log(level, msg, *args, **kwargs)

    def debug(self, msg, *args, color: str | None = None, **kwargs):
        self._emit(logging.DEBUG, msg, args, color, kwargs)

    def info(self, msg, *args, color: str | None = None, **kwargs):
        self._emit(logging.INFO, msg, args, color, kwargs)

    def warning(self, msg, *args, color: str | None = None, **kwargs):
        self._emit(logging.WARNING, msg, args, color, kwargs)

    def error(self, msg, *args, color: str | None = None, **kwargs):
        self._emit(logging.ERROR, msg, args, color, kwargs)

    def __getattr__(self, name):
        return getattr(self._logger, name)


def setup_logging(log_to_file: bool = True) -> ColorLogger:
    """Configure console and file logging and return the engine logger.

    The log directory is ``$ROOT_DIR/logs`` (current working directory when
    ROOT_DIR is unset). Pass ``log_to_file=False`` for short-lived processes
    that should not touch the filesystem.
    """
    tz_name = os.getenv("TIMEZONE", "Europe/Berlin")
    fmt = "%(asctime)s - %(levelname)s - [%(organization_id)s] %(message)s"

    handlers: dict = {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "colored",
            "level": loglevel,
            "stream": "ext://sys.stdout",
            "filters": ["sync_context"],
        },
    }
    if log_to_file:
        log_dir = os.path.join(os.getenv("ROOT_DIR", os.getcwd()), "logs")
        os.makedirs(log_dir, exist_ok=True)
        handlers["file"] = {
            "class": "logging.FileHandler",
            "formatter": "standard",
            "level": loglevel,
            "filename": os.path.join(log_dir, "app.log"),
            "encoding": "utf-8",
            "filters": ["sync_context"],
        }

    logging_config = {
        "version": 1,
        "disable_existing_loggers": False,
        "filters": {
            "sync_context": {"()": SyncContextFilter},
        },
        "formatters": {
            "standard": {
                "()": CustomFormatter,
                "format": fmt,
                "datefmt": "%Y-%m-%d %H:%M:%S",
                "tz_name": tz_name,
            },
            "colored": {
                "()": ColoredFormatter,
                "format": fmt,
                "datefmt": "%Y-%m-%d %H:%M:%S",
                "tz_name": tz_name,
            },
        },
        "handlers": handlers,
        "root": {
            "handlers": list(handlers.keys()),
            "level": loglevel,
        },
    }

    logging.config.dictConfig(logging_config)

    # Suppress httpx request logs unless in debug mode
    logging.getLogger("httpx").setLevel(logging.DEBUG if debug_mode else logging.WARNING)

    return ColorLogger(logging.getLogger(LOGGER_NAME))
