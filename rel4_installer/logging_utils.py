from __future__ import annotations

import logging
from pathlib import Path

from .lib.env import PATHS

DEFAULT_LOG_PATH = PATHS.log_default
FALLBACK_LOG_NAME = "rel4-installer.log"

_FILE_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
_CONSOLE_FORMAT = "%(levelname)s %(name)s: %(message)s"


def _open_log_file(log_path: str) -> logging.FileHandler:
    try:
        Path(log_path).parent.mkdir(parents=True, exist_ok=True)
        return logging.FileHandler(log_path)
    except OSError:
        return logging.FileHandler(Path.cwd() / FALLBACK_LOG_NAME)


def configure_logging(
    log_path: str = DEFAULT_LOG_PATH,
    *,
    verbose: bool = False,
    also_console: bool = True,
) -> str:
    """Send installer logs to a file and, optionally, the terminal.

    The file always gets DEBUG, which includes each command's working
    directory and environment changes next to its ``CMD`` line. The console
    shows INFO and up unless ``verbose``. Tool output itself goes straight to
    the terminal and is never captured.

    If ``log_path`` cannot be opened, ``./rel4-installer.log`` is used
    instead. A second call only re-applies ``verbose`` to the console.

    Returns the file path actually in use.
    """

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    console_level = logging.DEBUG if verbose else logging.INFO

    console = getattr(root, "_rel4_console", None)
    if getattr(root, "_rel4_log_path", None):
        if console is not None:
            console.setLevel(console_level)
        return root._rel4_log_path  # type: ignore[attr-defined]

    file_handler = _open_log_file(log_path)
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(logging.Formatter(fmt=_FILE_FORMAT, datefmt="%Y-%m-%dT%H:%M:%S%z"))
    root.addHandler(file_handler)

    if also_console:
        console = logging.StreamHandler()
        console.setLevel(console_level)
        console.setFormatter(logging.Formatter(fmt=_CONSOLE_FORMAT))
        root.addHandler(console)

    chosen_path = file_handler.baseFilename
    setattr(root, "_rel4_log_path", chosen_path)
    setattr(root, "_rel4_console", console)

    logging.getLogger(__name__).info("Logging to %s (requested %s)", chosen_path, log_path)
    return chosen_path
