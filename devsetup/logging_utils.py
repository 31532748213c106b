from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import List

from .lib.env import PATHS

DEFAULT_LOG_PATH = PATHS.log_default

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
LOG_DATEFMT = "%Y-%m-%dT%H:%M:%S%z"

_CONFIGURED = "_devsetup_configured"
_LOG_PATH = "_devsetup_log_path"
_HANDLERS = "_devsetup_handlers"


def _open_log_file(log_path: str) -> logging.FileHandler:
    try:
        Path(os.path.dirname(log_path) or ".").mkdir(parents=True, exist_ok=True)
        return logging.FileHandler(log_path, encoding="utf-8")
    except OSError:
        fallback = Path.cwd() / PATHS.log_fallback_name
        return logging.FileHandler(fallback, encoding="utf-8")


def configure_logging(
    log_path: str = DEFAULT_LOG_PATH,
    level: int = logging.INFO,
    also_console: bool = True,
) -> str:
    """Send devsetup's records to a log file and, optionally, stderr.

    The run log holds the plan, every task transition, each retry and the
    final summary. When log_path's directory cannot be created the log goes
    to devsetup.log in the working directory instead.

    Only the first call installs handlers; later calls just adjust the level.
    Returns the path of the file actually written.
    """

    root = logging.getLogger()
    root.setLevel(level)

    if getattr(root, _CONFIGURED, False):
        return getattr(root, _LOG_PATH, log_path)

    fmt = logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATEFMT)
    file_handler = _open_log_file(log_path)
    handlers: List[logging.Handler] = [file_handler]
    if also_console:
        handlers.append(logging.StreamHandler())

    for h in handlers:
        h.setFormatter(fmt)
        root.addHandler(h)

    chosen_path = file_handler.baseFilename
    setattr(root, _CONFIGURED, True)
    setattr(root, _LOG_PATH, chosen_path)
    setattr(root, _HANDLERS, handlers)

    if chosen_path != os.path.abspath(log_path):
        logging.getLogger(__name__).warning("Cannot write %s; logging to %s", log_path, chosen_path)
    return chosen_path


def reset_logging() -> None:
    """Detach the handlers installed by configure_logging()."""

    root = logging.getLogger()
    for h in getattr(root, _HANDLERS, []):
        root.removeHandler(h)
        h.close()
    for attr in (_CONFIGURED, _LOG_PATH, _HANDLERS):
        if hasattr(root, attr):
            delattr(root, attr)
