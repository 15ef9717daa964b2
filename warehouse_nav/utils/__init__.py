"""
Utilities
Logging setup and helpers
"""

from .logger import setup_logger, setup_all_loggers, log_performance

__all__ = ['setup_logger', 'setup_all_loggers', 'log_performance']
