"""
deploy.py

Responsibility: Make the build output the sole content of a remote git branch.

The output directory is its own throwaway repository: it is wiped before every
build, re-initialized here, and force-pushed so the remote branch is replaced,
never merged. No retries; git's diagnostics are surfaced as-is.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Callable
from datetime import datetime, timezone

from jinja2 import Environment, StrictUndefined, TemplateError

from sitekeeper.config import Config
from sitekeeper.runner import CommandError, CommandResult, run_command

log = logging.getLogger(__name__)

Runner = Callable[..., CommandResult]


class DeployError(RuntimeError):
    def __init__(self, message: str, *, stdout: str = "", stderr: str = "") -> None:
        super().__init__(message)
        self.stdout = stdout
        self.stderr = stderr


def _git_env(config: Config, base_env: dict[str, str]) -> dict[str, str]:
    """
    Fill in a commit identity so `git commit` works on machines without one.
    Values already present in the environment win.
    """
    env = dict(base_env)
    env.setdefault("GIT_AUTHOR_NAME", config.git_author_name)
    env.setdefault("GIT_AUTHOR_EMAIL", config.git_author_email)
    env.setdefault("GIT_COMMITTER_NAME", config.git_author_name)
    env.setdefault("GIT_COMMITTER_EMAIL", config.git_author_email)
    return env


def render_commit_message(config: Config, *, now: datetime | None = None) -> str:
    env = Environment(autoescape=False, undefined=StrictUndefined)
    moment = now or datetime.now(timezone.utc)
    try:
        return env.from_string(config.commit_message).render(
            project=config.folder_name,
            branch=config.deploy_branch,
            timestamp=moment.isoformat(timespec="seconds"),
        ).strip()
    except TemplateError as e:
        raise DeployError(f"Invalid commit_message template: {e}") from e


def publish_output(config: Config, *, run: Runner = run_command, now: datetime | None = None) -> None:
    """
    Commit the output directory and force-push it to `config.deploy_branch` on
    `config.remote_url`. Raises DeployError on any failure that matters.
    """
    out_dir = config.output_path
    if not out_dir.is_dir():
        raise DeployError(f"Output folder not found: {out_dir}")
    if not config.remote_url:
        raise DeployError("No remote_url configured; set it in sitekeeper.yml or SITEKEEPER_REMOTE_URL")

    env = _git_env(config, os.environ.copy())
    branch = config.deploy_branch
    url = config.remote_url

    def git(*args: str) -> CommandResult:
        return run(["git", *args], cwd=out_dir, env=env)

    try:
        if not (out_dir / ".git").exists():
            git("init")

        try:
            git("branch", "-M", branch)
        except CommandError as e:
            log.debug("git branch -M %s failed (ignored): %s", branch, e.stderr.strip())

        git("add", "-A")
        if git("status", "--porcelain").stdout.strip():
            git("commit", "-m", render_commit_message(config, now=now))
        else:
            log.info("Nothing to commit in %s", out_dir)

        try:
            current = git("remote", "get-url", "origin").stdout.strip()
        except CommandError:
            git("remote", "add", "origin", url)
        else:
            if current != url:
                log.info("Repointing origin from %s to %s", current, url)
                git("remote", "remove", "origin")
                git("remote", "add", "origin", url)
    except CommandError as e:
        raise DeployError(f"Deployment error: {e}", stdout=e.stdout, stderr=e.stderr) from e

    log.info("Pushing %s to %s (%s)", out_dir.name, url, branch)
    try:
        git("push", "--force", "--set-upstream", "origin", branch)
    except CommandError as e:
        raise DeployError("Git push failed", stdout=e.stdout, stderr=e.stderr) from e
