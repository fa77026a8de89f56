"""PrintFlow: job lifecycle tracking and analytics for a print shop.

Importing the package sets up the ``printflow`` logger with a rotating file
under ``.logs/`` and a stderr handler for warnings. The ``[Logging]`` section
of ``config.ini`` can later move the file and change the level through
:func:`configure_logging`.
"""

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional, Union


PROJECT_ROOT = Path(__file__).resolve().parents[2]
DEFAULT_LOG_DIR = PROJECT_ROOT / ".logs"
LOG_FILE_NAME = "printflow.log"
DEFAULT_LOG_LEVEL = "INFO"

_FORMATTER = logging.Formatter(
    fmt="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)


def resolve_log_level(level: Union[str, int]) -> int:
    """Map a level name such as ``"debug"`` (or a numeric level) to its value.

    Raises:
        ValueError: If ``level`` is not a standard logging level.
    """

    if isinstance(level, int):
        return level
    value = logging.getLevelName(str(level).strip().upper())
    if not isinstance(value, int):
        raise ValueError(f"Unknown log level: {level!r}")
    return value


def _file_handler(logger: logging.Logger) -> Optional[RotatingFileHandler]:
    for handler in logger.handlers:
        if isinstance(handler, RotatingFileHandler):
            return handler
    return None


def _attach_file_handler(logger: logging.Logger, log_dir: Path) -> None:
    log_file = log_dir / LOG_FILE_NAME
    try:
        log_dir.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(
            log_file,
            maxBytes=1_000_000,
            backupCount=5,
            encoding="utf-8",
        )
    except OSError as exc:
        print(f"Warning: unable to initialize log file at '{log_file}': {exc}", file=sys.stderr)
        return
    handler.setFormatter(_FORMATTER)
    logger.addHandler(handler)


def configure_logging(
    level: Union[str, int] = DEFAULT_LOG_LEVEL,
    log_dir: Optional[Path] = None,
) -> logging.Logger:
    """Apply ``level`` to the package logger and optionally move its log file.

    The stderr handler always stays at WARNING; ``level`` decides what reaches
    the log file. When ``log_dir`` differs from the current file location the
    old file handler is closed and a new one opened under ``log_dir``.
    """

    logger = logging.getLogger(__name__)
    logger.setLevel(resolve_log_level(level))
    if log_dir is None:
        return logger

    target = Path(log_dir).expanduser().resolve() / LOG_FILE_NAME
    current = _file_handler(logger)
    if current is not None and Path(current.baseFilename) == target:
        return logger
    if current is not None:
        logger.removeHandler(current)
        current.close()
    _attach_file_handler(logger, target.parent)
    return logger


def current_log_file() -> Optional[Path]:
    handler = _file_handler(logging.getLogger(__name__))
    return Path(handler.baseFilename) if handler is not None else None


def _init_logging() -> logging.Logger:
    logger = logging.getLogger(__name__)
    if logger.handlers:
        return logger

    logger.setLevel(resolve_log_level(DEFAULT_LOG_LEVEL))
    _attach_file_handler(logger, DEFAULT_LOG_DIR)

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(logging.WARNING)
    console.setFormatter(_FORMATTER)
    logger.addHandler(console)
    return logger


log = _init_logging()
