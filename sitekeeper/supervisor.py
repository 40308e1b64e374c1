"""
supervisor.py

Responsibility: Own the one long-lived dev server process.

The handle lives on a `DevServer` instance, never in module scope. The process
inherits the terminal's stdin/stdout/stderr.
"""

from __future__ import annotations

import logging
import subprocess
from collections.abc import Sequence
from pathlib import Path

from sitekeeper.runner import split_command

log = logging.getLogger(__name__)


class DevServer:
    def __init__(self, command: str | Sequence[str], *, cwd: str | Path, stop_timeout: float = 10.0) -> None:
        self._argv = split_command(command)
        self._cwd = Path(cwd)
        self._stop_timeout = stop_timeout
        self._proc: subprocess.Popen[bytes] | None = None

    @property
    def running(self) -> bool:
        return self._proc is not None and self._proc.poll() is None

    @property
    def pid(self) -> int | None:
        return self._proc.pid if self._proc is not None else None

    def start(self) -> None:
        """Start the dev server, stopping any tracked instance first."""
        if self._proc is not None:
            self.stop()
        log.info("Starting dev server: %s", " ".join(self._argv))
        try:
            self._proc = subprocess.Popen(self._argv, cwd=str(self._cwd))
        except OSError as e:
            log.error("Could not start dev server: %s", e)
            self._proc = None

    def stop(self) -> None:
        """
        Send SIGTERM and forget the handle. No-op when nothing is tracked.
        A process that ignores SIGTERM for `stop_timeout` seconds is killed.
        """
        proc, self._proc = self._proc, None
        if proc is None:
            return
        log.info("Stopping dev server...")
        if proc.poll() is not None:
            return
        proc.terminate()
        try:
            proc.wait(timeout=self._stop_timeout)
        except subprocess.TimeoutExpired:
            proc.kill()
            proc.wait()
