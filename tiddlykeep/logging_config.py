"""
Logging configuration for tiddlykeep.

Suppress verbose library output by default for better UX.
"""

import logging
import os
import sys
import warnings

# Libraries whose INFO chatter is noise on the command line
_NOISY_LOGGERS = ("werkzeug", "httpx", "httpcore")


def configure_quiet_mode(quiet: bool = True):
    """
    Configure logging to suppress verbose library output.

    This silences:
    - werkzeug per-request lines (tiddlykeep logs its own)
    - httpx/httpcore connection messages
    - Library warnings (deprecation, etc.)

    Args:
        quiet: If True, suppress verbose output. If False, show everything.
    """
    if quiet:
        warnings.filterwarnings("ignore")
        for name in _NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)


def _stderr_handler(level: int, fmt: str, datefmt: str) -> None:
    root_logger = logging.getLogger()
    if not any(isinstance(h, logging.StreamHandler) and h.stream == sys.stderr
               for h in root_logger.handlers):
        handler = logging.StreamHandler(sys.stderr)
        handler.setLevel(level)
        handler.setFormatter(logging.Formatter(fmt, datefmt=datefmt))
        root_logger.addHandler(handler)


def enable_debug_mode():
    """Enable debug-level logging to stderr."""
    warnings.filterwarnings("default")

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)
    _stderr_handler(logging.DEBUG, "%(asctime)s %(levelname)s %(name)s: %(message)s", "%H:%M:%S")

    for name in ("tiddlykeep",) + _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.DEBUG)


def configure_server_log():
    """Log tiddlykeep INFO messages (requests, preload timing) to stderr."""
    if os.environ.get("TIDDLYKEEP_VERBOSE") == "1":
        return  # debug mode already logs everything
    _stderr_handler(logging.INFO, "%(asctime)s %(message)s", "%Y/%m/%d %H:%M:%S")
    logging.getLogger().setLevel(logging.INFO)
    keep_logger = logging.getLogger("tiddlykeep")
    if keep_logger.level == logging.NOTSET or keep_logger.level > logging.INFO:
        keep_logger.setLevel(logging.INFO)


def configure_ops_log(store_path):
    """Configure a persistent operations log for a tiddlykeep store.

    Writes to {store_path}/tiddlykeep-ops.log using a rotating file handler
    (1MB max, 3 backups). Always active regardless of --verbose.
    Returns the handler so it can be removed on close().
    """
    from logging.handlers import RotatingFileHandler
    from pathlib import Path

    Path(store_path).mkdir(parents=True, exist_ok=True)
    log_path = Path(store_path) / "tiddlykeep-ops.log"
    handler = RotatingFileHandler(
        str(log_path),
        maxBytes=1_000_000,
        backupCount=3,
    )
    handler.setLevel(logging.INFO)
    handler.setFormatter(logging.Formatter(
        "%(asctime)s %(levelname)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    ))

    keep_logger = logging.getLogger("tiddlykeep")
    keep_logger.addHandler(handler)
    # Ensure tiddlykeep logger allows INFO through even in quiet mode
    if keep_logger.level == logging.NOTSET or keep_logger.level > logging.INFO:
        keep_logger.setLevel(logging.INFO)

    return handler
