"""
runner.py

Responsibility: Run one external command to completion and capture its output.

There is no streaming and no timeout: a hung tool hangs the caller.
Callers render the captured streams verbatim when a command fails.
"""

from __future__ import annotations

import logging
import shlex
import subprocess
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path

log = logging.getLogger(__name__)

# Verbose tools (npm, next build) can print a lot; anything past this is an error,
# never a silent truncation.
MAX_OUTPUT_BYTES = 10 * 1024 * 1024


class CommandError(RuntimeError):
    """An external command could not be run or exited non-zero."""

    def __init__(
        self,
        cmd: Sequence[str],
        returncode: int | None,
        stdout: str = "",
        stderr: str = "",
        reason: str | None = None,
    ) -> None:
        self.cmd = list(cmd)
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        if reason is None:
            reason = f"exit status {returncode}"
        self.reason = reason
        super().__init__(f"Command failed: {' '.join(self.cmd)} ({reason})")


@dataclass(frozen=True)
class CommandResult:
    cmd: list[str]
    stdout: str
    stderr: str


def split_command(cmd: str | Sequence[str]) -> list[str]:
    if isinstance(cmd, str):
        return shlex.split(cmd)
    return list(cmd)


def run_command(
    cmd: str | Sequence[str],
    *,
    cwd: str | Path | None = None,
    env: Mapping[str, str] | None = None,
    max_output: int = MAX_OUTPUT_BYTES,
) -> CommandResult:
    """
    Run a command, returning its captured stdout/stderr.

    Raises CommandError if the executable is missing, the command exits non-zero,
    or either stream exceeds `max_output` bytes.
    """
    argv = split_command(cmd)
    if not argv:
        raise CommandError(argv, None, reason="empty command")

    log.debug("Running %s (cwd=%s)", " ".join(argv), cwd or ".")
    try:
        proc = subprocess.run(
            argv,
            cwd=str(cwd) if cwd is not None else None,
            env=dict(env) if env is not None else None,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            errors="replace",
            check=False,
        )
    except OSError as e:
        raise CommandError(argv, None, reason=str(e)) from e

    stdout = proc.stdout or ""
    stderr = proc.stderr or ""

    if max(len(stdout.encode("utf-8")), len(stderr.encode("utf-8"))) > max_output:
        raise CommandError(argv, proc.returncode, stdout, stderr, reason=f"output exceeded {max_output} bytes")
    if proc.returncode != 0:
        raise CommandError(argv, proc.returncode, stdout, stderr)

    return CommandResult(cmd=argv, stdout=stdout, stderr=stderr)
