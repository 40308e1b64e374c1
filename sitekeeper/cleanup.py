"""
cleanup.py

Responsibility: Remove a directory tree even when the OS briefly holds on to it.

Two phases, composed in `remove_tree`:
- fast path: `shutil.rmtree` with bounded retries and a short settle delay
- slow path: depth-first manual walk that salvages whatever can be removed

Removal is best-effort: nothing here raises past `remove_tree`.
"""

from __future__ import annotations

import logging
import os
import shutil
import time
import warnings
from pathlib import Path

log = logging.getLogger(__name__)


class CleanupWarning(UserWarning):
    """A path could not be removed; the pipeline carries on."""


def _warn(message: str) -> None:
    log.warning(message)
    try:
        warnings.warn(message, CleanupWarning, stacklevel=3)
    except CleanupWarning:
        # Raised when warnings are filtered to errors; removal still never raises.
        pass


def _exists(path: Path) -> bool:
    return os.path.lexists(path)


def _bulk_remove(path: Path, *, max_retries: int, backoff: float, settle: float) -> bool:
    for attempt in range(1, max_retries + 1):
        try:
            shutil.rmtree(path)
        except FileNotFoundError:
            pass
        except OSError as e:
            log.debug("rmtree attempt %d/%d on %s failed: %s", attempt, max_retries, path, e)
        time.sleep(settle)
        if not _exists(path):
            return True
        if attempt < max_retries:
            time.sleep(backoff)
    return False


def _manual_remove(path: Path, *, backoff: float, settle: float) -> bool:
    try:
        with os.scandir(path) as it:
            entries = list(it)
    except OSError as e:
        _warn(f"Could not list {path}: {e}")
        return False

    for entry in entries:
        child = Path(entry.path)
        try:
            is_dir = entry.is_dir(follow_symlinks=False)
        except OSError:
            is_dir = False
        if is_dir:
            remove_tree(child, max_retries=1, backoff=backoff, settle=settle)
            continue
        try:
            os.unlink(child)
        except FileNotFoundError:
            pass
        except OSError as e:
            _warn(f"Could not delete {child}: {e}")

    try:
        os.rmdir(path)
    except FileNotFoundError:
        pass
    except OSError as e:
        _warn(f"Could not fully delete {path}, continuing anyway: {e}")
        return False
    return True


def remove_tree(path: str | Path, max_retries: int = 3, *, backoff: float = 0.1, settle: float = 0.05) -> bool:
    """
    Remove `path` recursively. Returns True when the path no longer exists.

    A missing path is a no-op. Files and symlinks are unlinked directly.
    """
    target = Path(path)
    if not _exists(target):
        return True

    if target.is_symlink() or not target.is_dir():
        try:
            target.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            _warn(f"Could not delete {target}: {e}")
            return False
        return True

    if _bulk_remove(target, max_retries=max(1, max_retries), backoff=backoff, settle=settle):
        return True

    log.debug("Falling back to manual removal of %s", target)
    _manual_remove(target, backoff=backoff, settle=settle)
    return not _exists(target)
