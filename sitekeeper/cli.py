"""
cli.py

Responsibility: CLI entrypoint for sitekeeper.

`sitekeeper run` (the default) starts the dev server and reads one-letter
commands from stdin:

    G  build + deploy + backup, then restart the dev server
    B  build + backup (no push), then restart the dev server
    C  clear the terminal and reprint help

A failing command is reported and the prompt comes back; only Ctrl+C (or end
of input) ends the process, always with status 0.

The one-shot subcommands `build`, `release` and `backup` run a single pipeline
and exit 0/1.
"""

from __future__ import annotations

import argparse
import logging
import sys
from collections.abc import Callable
from typing import TextIO

from sitekeeper.backup import ArchiveCreationError, ArchivePlacementError
from sitekeeper.config import ConfigError, load_config
from sitekeeper.deploy import DeployError
from sitekeeper.logs import setup_logging
from sitekeeper.orchestrator import (
    DependencyInstallError,
    Orchestrator,
    StepError,
    log_tool_output,
)
from sitekeeper.runner import CommandError
from sitekeeper.supervisor import DevServer

log = logging.getLogger(__name__)

HELP_TEXT = """\
Commands:
  G      -> Build + Deploy + Restart dev server
  B      -> Build only (no git push) + Restart dev server
  C      -> Clear terminal
  Ctrl+C -> Exit
"""

CLEAR_SCREEN = "\x1bc"

# Failures a command is expected to produce; anything else is logged with a traceback.
COMMAND_ERRORS = (StepError, DeployError, ArchiveCreationError, ArchivePlacementError, CommandError, OSError)


def report_failure(err: BaseException) -> None:
    log.error("%s", err)
    if isinstance(err, StepError):
        log_tool_output(err.stdout, err.stderr)


class CommandLoop:
    def __init__(
        self,
        orchestrator: Orchestrator,
        server: DevServer,
        *,
        stdin: TextIO | None = None,
        stdout: TextIO | None = None,
    ) -> None:
        self.orchestrator = orchestrator
        self.server = server
        self._stdin = stdin if stdin is not None else sys.stdin
        self._stdout = stdout if stdout is not None else sys.stdout
        self._commands: dict[str, Callable[[], bool]] = {
            "G": self._release,
            "B": self._build,
            "C": self._clear,
        }

    def _say(self, text: str) -> None:
        self._stdout.write(text + "\n")
        self._stdout.flush()

    def print_help(self) -> None:
        self._say(HELP_TEXT)

    def _with_server_stopped(self, action: Callable[[], object], done: str, failed: str) -> bool:
        # Ctrl+C propagates to run() without restarting the server.
        self.server.stop()
        try:
            action()
        except COMMAND_ERRORS as e:
            report_failure(e)
            ok = False
        except Exception as e:  # noqa: BLE001 - the loop must outlive any command
            log.exception("Unexpected error: %s", e)
            ok = False
        else:
            ok = True

        self._say(f"\n{done}" if ok else f"\n{failed} Restarting dev server...")
        self.server.start()
        return ok

    def _release(self) -> bool:
        return self._with_server_stopped(
            self.orchestrator.release,
            "Build and deploy completed successfully!",
            "Build/Deploy failed.",
        )

    def _build(self) -> bool:
        return self._with_server_stopped(
            self.orchestrator.build,
            "Build completed successfully!",
            "Build failed.",
        )

    def _clear(self) -> bool:
        self._stdout.write(CLEAR_SCREEN)
        self._say("Terminal cleared.")
        self.print_help()
        return True

    def handle(self, line: str) -> bool:
        """Dispatch one input line. Returns False for failed or unknown commands."""
        command = self._commands.get(line.strip().upper())
        if command is None:
            self._say("Unknown command. Use 'G', 'B', or 'C'.")
            return False
        return command()

    def run(self) -> int:
        self.print_help()
        try:
            for line in iter(self._stdin.readline, ""):
                self.handle(line)
        except KeyboardInterrupt:
            self._say("\nReceived Ctrl+C. Stopping dev server...")
        finally:
            self.server.stop()
        return 0


def _load(args: argparse.Namespace):
    overrides = {
        "backup_root": args.backup_root,
        "remote_url": args.remote_url,
        "deploy_branch": args.branch,
        "keep_count": args.keep,
    }
    return load_config(args.project_dir, config_path=args.config, overrides=overrides)


def run_cmd(args: argparse.Namespace) -> int:
    config = _load(args)
    orchestrator = Orchestrator(config)
    server = DevServer(config.dev_command, cwd=config.project_dir)

    try:
        try:
            orchestrator.install_if_missing()
        except DependencyInstallError as e:
            report_failure(e)
        server.start()
    except KeyboardInterrupt:
        log.info("Received Ctrl+C. Stopping dev server...")
        server.stop()
        return 0

    return CommandLoop(orchestrator, server).run()


def _one_shot(action: Callable[[Orchestrator], object]) -> Callable[[argparse.Namespace], int]:
    def cmd(args: argparse.Namespace) -> int:
        orchestrator = Orchestrator(_load(args))
        try:
            action(orchestrator)
        except COMMAND_ERRORS as e:
            report_failure(e)
            return 1
        log.info("Done.")
        return 0

    return cmd


build_cmd = _one_shot(lambda o: o.build())
release_cmd = _one_shot(lambda o: o.release())
backup_cmd = _one_shot(lambda o: o.backup())


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="sitekeeper", description="Build, deploy and back up a static site")
    p.add_argument("--project-dir", default=".", help="Project directory (default: current directory)")
    p.add_argument("--config", default=None, help="YAML config file (default: <project-dir>/sitekeeper.yml)")
    p.add_argument("--backup-root", default=None, help="Directory holding per-project backup folders")
    p.add_argument("--remote-url", default=None, help="Git remote the build output is pushed to")
    p.add_argument("--branch", default=None, help="Deploy branch (default: main)")
    p.add_argument("--keep", type=int, default=None, help="Archives kept per kind and directory (default: 10)")
    p.add_argument("--log-level", default="INFO", help="Logging level (default: INFO)")
    p.set_defaults(func=run_cmd)

    sub = p.add_subparsers(dest="command")
    sub.add_parser("run", help="Start the dev server and the interactive command prompt").set_defaults(func=run_cmd)
    sub.add_parser("build", help="Build and back up once").set_defaults(func=build_cmd)
    sub.add_parser("release", help="Build, deploy and back up once").set_defaults(func=release_cmd)
    sub.add_parser("backup", help="Back up the project and build output once").set_defaults(func=backup_cmd)
    return p


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    setup_logging(args.log_level)
    try:
        return int(args.func(args))
    except ConfigError as e:
        log.error("%s", e)
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
