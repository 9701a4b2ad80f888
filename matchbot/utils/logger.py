import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import List

from matchbot.config import Config

PACKAGE_LOGGER = 'matchbot'


def build_handlers(log_dir: Path, level: int) -> List[logging.Handler]:
    """Console output at `level` plus a daily DEBUG file in `log_dir`"""
    formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    # Console handler
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)

    # File handler, one per day
    log_dir.mkdir(parents=True, exist_ok=True)
    file_handler = logging.FileHandler(
        log_dir / f'matchbot_{datetime.now().strftime("%Y%m%d")}.log',
        encoding='utf-8'
    )
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(formatter)

    return [console_handler, file_handler]


def setup_logger(name: str) -> logging.Logger:
    """
    Get a logger inside the matchbot hierarchy.

    Handlers are attached once, to the package logger; module loggers reach
    them through propagation. Names outside the package (``__main__``) are
    nested under it.
    """
    package_logger = logging.getLogger(PACKAGE_LOGGER)
    if not package_logger.handlers:
        level = logging.DEBUG if Config.DEBUG else logging.INFO
        package_logger.setLevel(level)
        for handler in build_handlers(Path(Config.LOG_DIR), level):
            package_logger.addHandler(handler)

    if name == PACKAGE_LOGGER or name.startswith(PACKAGE_LOGGER + '.'):
        return logging.getLogger(name)
    return logging.getLogger(f'{PACKAGE_LOGGER}.{name}')
