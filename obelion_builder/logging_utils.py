from __future__ import annotations

import logging
from pathlib import Path
from typing import Tuple

DEFAULT_LOG_PATH = "logs/obelion-build.log"
FALLBACK_LOG_NAME = "obelion-build.log"

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%dT%H:%M:%S%z"

# Held at WARNING unless the console itself is at DEBUG.
QUIET_LOGGERS = ("urllib3", "requests")

_LOG_PATH_ATTR = "_obelion_log_path"


def _open_log_file(log_path: str) -> Tuple[logging.Handler, str]:
    """Open ``log_path``, or a file in the working directory if it can't be created."""
    try:
        Path(log_path).parent.mkdir(parents=True, exist_ok=True)
        return logging.FileHandler(log_path), log_path
    except OSError:
        fallback = str(Path.cwd() / FALLBACK_LOG_NAME)
        return logging.FileHandler(fallback), fallback


def configure_logging(
    log_path: str = DEFAULT_LOG_PATH,
    level: int = logging.INFO,
    also_console: bool = True,
) -> str:
    """Attach the build log file and, optionally, a console handler to the root logger.

    The file always records DEBUG, so every ``CMD`` line and its output is kept
    for a failed architecture. ``level`` only gates the console.

    A second call leaves the handlers alone and returns the file already in use.
    """
    root = logging.getLogger()
    in_use = getattr(root, _LOG_PATH_ATTR, None)
    if in_use is not None:
        return in_use

    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT)

    file_handler, chosen_path = _open_log_file(log_path)
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(formatter)
    root.addHandler(file_handler)

    if also_console:
        console = logging.StreamHandler()
        console.setLevel(level)
        console.setFormatter(formatter)
        root.addHandler(console)

    root.setLevel(logging.DEBUG)
    if level > logging.DEBUG:
        for name in QUIET_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    setattr(root, _LOG_PATH_ATTR, chosen_path)
    if chosen_path != log_path:
        logging.getLogger(__name__).warning("Cannot write %s, logging to %s", log_path, chosen_path)
    else:
        logging.getLogger(__name__).info("Logging to %s", chosen_path)
    return chosen_path
