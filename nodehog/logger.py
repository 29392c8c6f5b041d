import logging
import os

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def init_logger(level: str | None = None, log_file: str | None = None) -> logging.Logger:
    """Configure the `all` logger tree used by every nodehog module."""
    level = (level or os.environ.get("NODEHOG_LOG_LEVEL", "INFO")).upper()
    root = logging.getLogger("all")
    root.setLevel(level)
    root.propagate = False

    for handler in list(root.handlers):
        root.removeHandler(handler)

    formatter = logging.Formatter(LOG_FORMAT)
    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(formatter)
    root.addHandler(stream_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    # The kubernetes client logs every request at DEBUG.
    logging.getLogger("kubernetes").setLevel(logging.WARNING)
    return root
