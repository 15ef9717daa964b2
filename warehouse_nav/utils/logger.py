"""
Logging setup
Shared logger configuration for the navigation stack
"""

import functools
import logging
import sys
import time
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path

DEFAULT_FORMAT = '[%(asctime)s] %(name)s - %(levelname)s - %(message)s'
DEFAULT_DATE_FORMAT = '%Y-%m-%d %H:%M:%S'


def setup_logger(
    name: str,
    log_file: str = None,
    level: int = logging.INFO,
    console: bool = True,
    max_bytes: int = 10*1024*1024,  # 10MB
    backup_count: int = 5,
    fmt: str = DEFAULT_FORMAT,
    datefmt: str = DEFAULT_DATE_FORMAT
) -> logging.Logger:
    """Configure a logger

    Args:
        name: logger name
        log_file: log file path (None logs to the console only)
        level: logging level
        console: also log to stdout
        max_bytes: size of one log file before rotation
        backup_count: rotated files kept
        fmt: record format
        datefmt: timestamp format

    Returns:
        the configured Logger

    Example:
        >>> nav_logger = setup_logger('warehouse_nav', 'data/logs/nav.log')
        >>> nav_logger.info('exploration started')
    """
    logger = logging.getLogger(name)
    logger.setLevel(level)

    # Never stack handlers on repeated calls
    if logger.handlers:
        return logger

    formatter = logging.Formatter(fmt=fmt, datefmt=datefmt)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = RotatingFileHandler(
            log_path,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding='utf-8'
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    if console:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)

    return logger


def setup_all_loggers(base_dir: str = 'data/logs', level: int = logging.INFO,
                      console: bool = True):
    """Configure the package logger and one file per subsystem

    Subsystem loggers propagate to the package logger, so console output is
    configured once on 'warehouse_nav'.

    Args:
        base_dir: log directory
        level: logging level
        console: log to stdout as well

    Returns:
        dict of name -> Logger
    """
    base_path = Path(base_dir)
    base_path.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime('%Y%m%d')

    loggers = {
        'main': setup_logger('warehouse_nav', base_path / f'main_{timestamp}.log',
                             level, console=console),
        'slam': setup_logger('warehouse_nav.slam', base_path / f'slam_{timestamp}.log',
                             level, console=False),
        'navigation': setup_logger('warehouse_nav.navigation', base_path / f'nav_{timestamp}.log',
                                   level, console=False),
    }

    return loggers


def log_performance(logger: logging.Logger):
    """Decorator: log how long each call takes (DEBUG level)

    Example:
        >>> @log_performance(logger)
        ... def extract(grid):
        ...     ...
    """
    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            start = time.perf_counter()
            result = func(*args, **kwargs)
            duration = time.perf_counter() - start

            logger.debug(f"{func.__qualname__} took {duration*1000:.2f}ms")
            return result
        return wrapper
    return decorator
