import logging
import logging.handlers
from typing import Iterable

from rich.console import Console
from rich.logging import RichHandler

from .config import Settings

FILE_FORMAT = "%(asctime)s - %(levelname)s - %(name)s - %(filename)s:%(lineno)d - %(message)s"

# Third-party loggers that drown the storage checks at INFO
NOISY_LOGGERS = ("uvicorn.access", "asyncio")


def _console_handler(level: str) -> RichHandler:
    handler = RichHandler(
        console=Console(width=120, stderr=True),
        show_time=True,
        show_path=False,
        markup=True,
        rich_tracebacks=True,
        tracebacks_show_locals=False,
    )
    handler.setLevel(level)
    return handler


def _file_handler(settings: Settings) -> logging.Handler:
    settings.log_directory.mkdir(parents=True, exist_ok=True)
    handler = logging.handlers.TimedRotatingFileHandler(
        filename=settings.log_file_path,
        when="midnight",
        backupCount=settings.log_retention_days,
        encoding="utf-8",
    )
    handler.setLevel(settings.log_level)
    handler.setFormatter(logging.Formatter(FILE_FORMAT))
    return handler


def setup_logging(settings: Settings, quiet_loggers: Iterable[str] = NOISY_LOGGERS) -> None:
    """Root logger: rich console output plus a midnight-rotated log file."""
    root_logger = logging.getLogger()
    root_logger.setLevel(settings.log_level)
    root_logger.handlers.clear()
    root_logger.addHandler(_console_handler(settings.log_level))
    root_logger.addHandler(_file_handler(settings))

    for name in quiet_loggers:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.info(
        f"[bold green]Storage engine logging ready[/] - "
        f"file [cyan]{settings.log_file_path}[/], level [yellow]{settings.log_level}[/], "
        f"keeping [blue]{settings.log_retention_days}[/] days"
    )
