"""Utility functions for the ksRepo pipeline."""

import logging
from pathlib import Path


def setup_logging(log_dir=None, level=logging.INFO):
    """Set up logging configuration.

    Args:
        log_dir: Directory to store log files
        level: Logging level

    Returns:
        The package logger
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    if log_dir:
        log_dir = Path(log_dir)
        log_dir.mkdir(parents=True, exist_ok=True)
        log_file = log_dir / 'pipeline.log'

        file_handler = logging.FileHandler(log_file, mode='w')
        file_handler.setFormatter(logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        ))
        root_logger.addHandler(file_handler)
        # Write immediately so the file exists even if nothing else is logged
        root_logger.info("Logging initialized")

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(logging.Formatter(
        '%(asctime)s - %(levelname)s - %(message)s'
    ))
    root_logger.addHandler(console_handler)

    return logging.getLogger('ksrepo')


def ensure_dir(path: Path) -> Path:
    """Ensure a directory exists, creating it if necessary.

    Args:
        path: Directory path

    Returns:
        Path object for the directory
    """
    path = Path(path)
    path.mkdir(parents=True, exist_ok=True)
    return path
