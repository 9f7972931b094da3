"""
Error types and error logging utilities for tiddlykeep.

Every failure the core surfaces is a TiddlyKeepError subclass carrying the
HTTP status the web layer answers with.  The CLI logs full stack traces
for debugging while showing clean messages to users.
"""

import os
import traceback
from datetime import datetime, timezone
from pathlib import Path


class TiddlyKeepError(Exception):
    """Base class for tiddlykeep failures."""
    status_code = 500


class InvalidReference(TiddlyKeepError):
    """A tiddler ref lacks a title or both bag and recipe."""
    status_code = 400


class UnsupportedRecipe(TiddlyKeepError):
    """Recipe name outside {all, system}."""
    status_code = 400

    def __init__(self, recipe: str):
        super().__init__(f"recipe {recipe!r} not supported")
        self.recipe = recipe


class NotFound(TiddlyKeepError):
    """Resolution or fetch against a missing or tombstoned node."""
    status_code = 404


class MalformedInput(TiddlyKeepError):
    """Codec decode failure."""
    status_code = 400


class AssemblyError(TiddlyKeepError):
    """The bootstrap document could not be assembled."""
    status_code = 500


class StoreError(TiddlyKeepError):
    """Failure reported by the content store (I/O, auth, quota)."""
    status_code = 502


def _error_log_path() -> Path:
    """Resolve error log path, respecting TIDDLYKEEP_STORE_PATH."""
    store = os.environ.get("TIDDLYKEEP_STORE_PATH")
    if store:
        return Path(store) / "tiddlykeep-errors.log"
    return Path.home() / ".tiddlykeep" / "tiddlykeep-errors.log"


def log_exception(exc: Exception, context: str = "") -> Path:
    """
    Log exception with full traceback to file.

    Args:
        exc: The exception that occurred
        context: Optional context string (e.g., command name)

    Returns:
        Path to the error log file
    """
    log_path = _error_log_path()
    timestamp = datetime.now(timezone.utc).isoformat()
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(log_path, os.O_WRONLY | os.O_CREAT | os.O_APPEND, 0o600)
        with os.fdopen(fd, "a") as f:
            f.write(f"\n{'='*60}\n")
            f.write(f"[{timestamp}]")
            if context:
                f.write(f" {context}")
            f.write(f" {type(exc).__name__}: {exc}\n")
            f.write(traceback.format_exc())
    except OSError:
        pass  # error log is best effort
    return log_path
