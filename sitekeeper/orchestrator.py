"""
orchestrator.py

Responsibility: Sequence one build command end to end.

    clean -> install (if needed) -> build -> verify output -> [deploy] -> backup

Install, build and output verification abort the command. A failed deploy is
held back until the backup has run, then raised. Backup failures are raised.
"""

from __future__ import annotations

import enum
import logging
from collections.abc import Callable

from sitekeeper.backup import ArchiveRecord, run_backup
from sitekeeper.cleanup import remove_tree
from sitekeeper.config import Config
from sitekeeper.deploy import DeployError, publish_output
from sitekeeper.runner import CommandError, CommandResult, run_command

log = logging.getLogger(__name__)


class StepError(RuntimeError):
    def __init__(self, message: str, *, stdout: str = "", stderr: str = "") -> None:
        super().__init__(message)
        self.stdout = stdout
        self.stderr = stderr


class DependencyInstallError(StepError):
    pass


class BuildCommandError(StepError):
    pass


class MissingOutputError(StepError):
    pass


class BuildState(str, enum.Enum):
    IDLE = "idle"
    CLEANING = "cleaning"
    INSTALLING = "installing"
    BUILDING = "building"
    VERIFYING = "verifying"
    DEPLOYING = "deploying"
    BACKING_UP = "backing-up"
    DONE = "done"
    FAILED = "failed"


def log_tool_output(stdout: str, stderr: str) -> None:
    """Log captured tool output verbatim so failures can be diagnosed."""
    if stdout.strip():
        log.error("%s", stdout.rstrip())
    if stderr.strip():
        log.error("%s", stderr.rstrip())


class Orchestrator:
    def __init__(
        self,
        config: Config,
        *,
        run: Callable[..., CommandResult] = run_command,
        deploy: Callable[[Config], None] = publish_output,
        backup: Callable[[Config], list[ArchiveRecord]] = run_backup,
    ) -> None:
        self.config = config
        self._run = run
        self._deploy = deploy
        self._backup = backup
        self.state = BuildState.IDLE

    def build(self) -> list[ArchiveRecord]:
        """Build and back up, without deploying."""
        return self._pipeline(deploy=False)

    def release(self) -> list[ArchiveRecord]:
        """Build, deploy, back up. A deploy failure is raised after the backup."""
        return self._pipeline(deploy=True)

    def backup(self) -> list[ArchiveRecord]:
        self.state = BuildState.BACKING_UP
        try:
            records = self._backup(self.config)
        except Exception:
            self.state = BuildState.FAILED
            raise
        self.state = BuildState.DONE
        return records

    def install_if_missing(self) -> bool:
        """
        Run the install command unless the dependency marker directory exists.
        Returns True when an install ran.
        """
        if self.config.dependency_marker_path.exists():
            log.debug("%s present, skipping install", self.config.dependency_marker_dir)
            return False
        log.info("Installing dependencies...")
        try:
            self._run(self.config.install_command, cwd=self.config.project_dir)
        except CommandError as e:
            raise DependencyInstallError(
                f"Dependency install failed: {e}", stdout=e.stdout, stderr=e.stderr
            ) from e
        return True

    def _pipeline(self, *, deploy: bool) -> list[ArchiveRecord]:
        try:
            self._clean()
            self.state = BuildState.INSTALLING
            self.install_if_missing()
            self._build_and_verify()

            deploy_error: DeployError | None = None
            if deploy:
                self.state = BuildState.DEPLOYING
                try:
                    self._deploy(self.config)
                except DeployError as e:
                    log.error("Deployment failed, continuing with backup: %s", e)
                    log_tool_output(e.stdout, e.stderr)
                    deploy_error = e
                else:
                    log.info("Deployed %s to %s", self.config.output_dir, self.config.deploy_branch)

            self.state = BuildState.BACKING_UP
            records = self._backup(self.config)
            if deploy_error is not None:
                raise deploy_error
        except Exception:
            self.state = BuildState.FAILED
            raise

        self.state = BuildState.DONE
        return records

    def _clean(self) -> None:
        self.state = BuildState.CLEANING
        remove_tree(self.config.build_cache_path)
        remove_tree(self.config.output_path)

    def _build_and_verify(self) -> None:
        self.state = BuildState.BUILDING
        log.info("Building project...")
        try:
            self._run(self.config.build_command, cwd=self.config.project_dir)
        except CommandError as e:
            raise BuildCommandError(f"Build command failed: {e}", stdout=e.stdout, stderr=e.stderr) from e

        self.state = BuildState.VERIFYING
        if not self.config.output_path.is_dir():
            raise MissingOutputError(
                f'"{self.config.output_dir}" folder missing after build. '
                'Make sure static export is enabled (output: "export" in next.config.js).'
            )
