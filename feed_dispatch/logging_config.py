import logging
import logging.handlers

from rich.console import Console
from rich.logging import RichHandler

from .config import Settings

FILE_LOG_FORMAT = "%(asctime)s - %(levelname)s - %(name)s - %(filename)s:%(lineno)d - %(message)s"

# Third-party loggers that are too chatty at INFO
QUIET_LOGGERS = ("uvicorn.access", "botocore", "boto3", "urllib3")


def _console_handler(settings: Settings) -> RichHandler:
    handler = RichHandler(
        console=Console(width=120),
        show_path=True,
        markup=False,  # object keys may contain square brackets
        rich_tracebacks=True,
        tracebacks_show_locals=False,
    )
    handler.setLevel(settings.log_level)
    return handler


def _file_handler(settings: Settings) -> logging.Handler:
    """Daily rotated log file, ``log_retention_days`` files kept."""
    settings.log_directory.mkdir(parents=True, exist_ok=True)
    handler = logging.handlers.TimedRotatingFileHandler(
        filename=settings.log_file_path,
        when="midnight",
        backupCount=settings.log_retention_days,
        encoding="utf-8",
    )
    handler.setLevel(settings.log_level)
    handler.setFormatter(logging.Formatter(FILE_LOG_FORMAT))
    return handler


def setup_logging(settings: Settings) -> None:
    root_logger = logging.getLogger()
    root_logger.setLevel(settings.log_level)

    # Replace whatever uvicorn or a previous call installed
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
        handler.close()

    root_logger.addHandler(_console_handler(settings))
    root_logger.addHandler(_file_handler(settings))

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.info(
        f"Logging initialiseret: {settings.log_file_path} "
        f"(level={settings.log_level}, retention={settings.log_retention_days} dage)"
    )
