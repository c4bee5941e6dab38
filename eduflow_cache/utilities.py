#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Utility helpers for the translation cache: logging setup, retry decorator
and time helpers.
"""

import os
import sys
import time
import logging
import functools
from typing import Any, Callable, List, Optional, Tuple, Type


LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

# Environment markers set by hosting platforms with a read-only project directory
SERVERLESS_ENV_MARKERS = ('VERCEL', 'AWS_LAMBDA_FUNCTION_NAME', 'NETLIFY')

_installed_handlers: List[logging.Handler] = []


def set_up_logging(level: str = 'INFO', log_file: Optional[str] = None) -> logging.Logger:
    """
    Configure the root logger with a console handler and an optional file handler.

    Args:
        level: Logging level name (DEBUG, INFO, WARNING, ERROR)
        log_file: Optional path of a log file

    Returns:
        Logger for the calling application
    """
    numeric_level = getattr(logging, str(level).upper(), logging.INFO)

    root = logging.getLogger()
    root.setLevel(numeric_level)

    # Replace handlers installed by a previous call
    while _installed_handlers:
        handler = _installed_handlers.pop()
        root.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(LOG_FORMAT)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(formatter)
    root.addHandler(console_handler)
    _installed_handlers.append(console_handler)

    if log_file:
        try:
            log_dir = os.path.dirname(os.path.abspath(log_file))
            os.makedirs(log_dir, exist_ok=True)
            file_handler = logging.FileHandler(log_file, encoding='utf-8')
            file_handler.setFormatter(formatter)
            root.addHandler(file_handler)
            _installed_handlers.append(file_handler)
        except OSError as e:
            root.warning(f"Could not open log file {log_file}: {str(e)}")

    return logging.getLogger('eduflow_cache')


def retry(max_attempts: int = 3, backoff_factor: float = 2,
          exceptions: Tuple[Type[BaseException], ...] = (Exception,)) -> Callable:
    """
    Retry a function with exponential backoff.

    Args:
        max_attempts: Total number of attempts before giving up
        backoff_factor: Base of the exponential wait between attempts (seconds)
        exceptions: Exception types that trigger a retry

    Returns:
        Decorator
    """
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            logger = logging.getLogger(func.__module__)
            attempt = 1
            while True:
                try:
                    return func(*args, **kwargs)
                except exceptions as e:
                    if attempt >= max_attempts:
                        logger.error(f"{func.__name__} failed after {attempt} attempts: {str(e)}")
                        raise
                    wait = backoff_factor ** (attempt - 1)
                    logger.warning(
                        f"{func.__name__} failed (attempt {attempt}/{max_attempts}): {str(e)}. "
                        f"Retrying in {wait:.1f}s"
                    )
                    time.sleep(wait)
                    attempt += 1
        return wrapper
    return decorator


def current_millis() -> int:
    """Current time as epoch milliseconds."""
    return int(time.time() * 1000)


def is_serverless() -> bool:
    """Whether the process runs on a serverless host with a read-only project directory."""
    return any(os.environ.get(marker) for marker in SERVERLESS_ENV_MARKERS)
