from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timezone

import pytest

from sitekeeper.config import Config
from sitekeeper.deploy import DeployError, publish_output, render_commit_message
from sitekeeper.runner import CommandError, CommandResult


class FakeGit:
    def __init__(self, *, outputs: dict[tuple[str, ...], str] | None = None, fail: set[tuple[str, ...]] | None = None) -> None:
        self.outputs = outputs or {}
        self.fail = fail or set()
        self.calls: list[tuple[str, ...]] = []
        self.envs: list[dict[str, str]] = []

    def __call__(self, cmd, *, cwd=None, env=None) -> CommandResult:
        args = tuple(cmd[1:])
        self.calls.append(args)
        self.envs.append(env or {})
        if args in self.fail:
            raise CommandError(cmd, 128, stderr=f"fatal: {' '.join(args)}")
        return CommandResult(cmd=list(cmd), stdout=self.outputs.get(args, ""), stderr="")


@pytest.fixture
def built(config: Config) -> Config:
    config.output_path.mkdir()
    (config.output_path / "index.html").write_text("<html></html>", encoding="utf-8")
    return config


def test_fresh_repo_adds_remote_and_force_pushes(built: Config) -> None:
    git = FakeGit(
        outputs={("status", "--porcelain"): "?? index.html\n"},
        fail={("remote", "get-url", "origin")},
    )

    publish_output(built, run=git)

    assert git.calls[0] == ("init",)
    assert ("branch", "-M", "main") in git.calls
    assert ("add", "-A") in git.calls
    assert ("commit", "-m", "Deploy: updated build") in git.calls
    assert ("remote", "add", "origin", built.remote_url) in git.calls
    assert git.calls[-1] == ("push", "--force", "--set-upstream", "origin", "main")
    assert git.envs[0]["GIT_AUTHOR_NAME"]


def test_nothing_to_commit_is_not_an_error(built: Config) -> None:
    git = FakeGit(outputs={("remote", "get-url", "origin"): built.remote_url + "\n"})

    publish_output(built, run=git)

    assert not any(c[0] == "commit" for c in git.calls)
    assert not any(c[:2] == ("remote", "add") for c in git.calls)
    assert git.calls[-1][0] == "push"


def test_remote_pointing_elsewhere_is_replaced(built: Config) -> None:
    git = FakeGit(outputs={("remote", "get-url", "origin"): "https://old.invalid/x.git\n"})

    publish_output(built, run=git)

    i = git.calls.index(("remote", "remove", "origin"))
    assert git.calls[i + 1] == ("remote", "add", "origin", built.remote_url)


def test_push_failure_surfaces_stderr(built: Config) -> None:
    git = FakeGit(fail={("push", "--force", "--set-upstream", "origin", "main")})

    with pytest.raises(DeployError) as excinfo:
        publish_output(built, run=git)

    assert "fatal: push" in excinfo.value.stderr
    assert sum(1 for c in git.calls if c[0] == "push") == 1


def test_missing_output_folder(config: Config) -> None:
    with pytest.raises(DeployError, match="Output folder not found"):
        publish_output(config, run=FakeGit())


def test_missing_remote_url(built: Config) -> None:
    with pytest.raises(DeployError, match="remote_url"):
        publish_output(replace(built, remote_url=None), run=FakeGit())


def test_commit_message_template(config: Config) -> None:
    cfg = replace(config, commit_message="Deploy {{ project }} to {{ branch }} at {{ timestamp }}")
    now = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)
    assert render_commit_message(cfg, now=now) == "Deploy mysite to main at 2024-05-01T12:00:00+00:00"


def test_commit_message_unknown_variable(config: Config) -> None:
    with pytest.raises(DeployError):
        render_commit_message(replace(config, commit_message="{{ nope }}"))
