import logging
import os

from rich.logging import RichHandler

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logger(name, log_dir=None, log_filename=None, level=logging.INFO, console=True):
    """
    Set up and return a logger with a file and (optionally) a console handler.

    Args:
        name (str): The logger name.
        log_dir (str): Directory for the log file; no file handler if None.
        log_filename (str): Log file name (defaults to "<name>.log").
        level (int): Logging level.
        console (bool): Whether to add a rich console handler.

    Returns:
        logging.Logger: The configured logger.
    """
    logger = logging.getLogger(name)
    logger.setLevel(level)
    logger.propagate = False

    # Clear out any existing handlers.
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
        filename = log_filename or f"{name.replace(' ', '_').replace('/', '_')}.log"
        file_handler = logging.FileHandler(os.path.join(log_dir, filename))
        file_handler.setLevel(level)
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(file_handler)

    if console:
        console_handler = RichHandler(show_path=False, rich_tracebacks=True)
        console_handler.setLevel(level)
        console_handler.setFormatter(logging.Formatter("%(name)s: %(message)s"))
        logger.addHandler(console_handler)

    return logger


def parse_level(level_name, default=logging.INFO):
    """Map a level name such as "debug" to its numeric value."""
    return getattr(logging, str(level_name).upper(), default)
