import sys
import logging

from tqdm import tqdm

LOGGER_NAME = "workspace_archiver"
SUCCESS = 25
SEPARATOR = "=" * 40

logging.addLevelName(SUCCESS, "SUCCESS")
logging.addLevelName(logging.WARNING, "WARN")

FORMAT = "[%(asctime)s] [%(levelname)s] %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class TqdmConsoleHandler(logging.Handler):
    """Routes console log lines through tqdm so an active progress bar stays intact."""

    def emit(self, record):
        try:
            tqdm.write(self.format(record), file=sys.stderr)
        except Exception:
            self.handleError(record)


def setup_logging(log_file=None, console=True, level=logging.INFO):
    """
    Configures the package logger for one run.

    The file handler gets plain timestamped lines; the console handler gets the
    same lines via tqdm.write(). Calling this again replaces earlier handlers.
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)
    logger.propagate = False

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(FORMAT, datefmt=DATE_FORMAT)

    if log_file:
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    if console:
        console_handler = TqdmConsoleHandler()
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)

    return logger


def log_success(logger, message, *args):
    logger.log(SUCCESS, message, *args)


def log_separator(logger, title=None):
    logger.info(SEPARATOR)
    if title:
        logger.info(title)
        logger.info(SEPARATOR)
