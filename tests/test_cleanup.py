from __future__ import annotations

import os
import warnings
from pathlib import Path

import pytest

from sitekeeper import cleanup
from sitekeeper.cleanup import CleanupWarning, remove_tree


def _make_tree(root: Path) -> None:
    (root / "a" / "b").mkdir(parents=True)
    (root / "a" / "b" / "deep.txt").write_text("x", encoding="utf-8")
    (root / "a" / "file.txt").write_text("y", encoding="utf-8")
    (root / "top.txt").write_text("z", encoding="utf-8")


def test_absent_path_is_noop_twice(tmp_path: Path) -> None:
    missing = tmp_path / "missing"
    assert remove_tree(missing) is True
    assert remove_tree(missing) is True


def test_removes_nested_tree(tmp_path: Path) -> None:
    root = tmp_path / "out"
    _make_tree(root)
    assert remove_tree(root, settle=0, backoff=0) is True
    assert not root.exists()
    assert remove_tree(root, settle=0, backoff=0) is True


def test_manual_walk_after_bulk_removal_keeps_failing(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    root = tmp_path / ".next"
    _make_tree(root)
    calls: list[Path] = []

    def broken_rmtree(path, *args, **kwargs):
        calls.append(Path(path))
        raise PermissionError("locked")

    monkeypatch.setattr(cleanup.shutil, "rmtree", broken_rmtree)

    assert remove_tree(root, max_retries=3, settle=0, backoff=0) is True
    assert not root.exists()
    assert calls.count(root) == 3


def test_never_raises_when_nothing_is_deletable(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    root = tmp_path / "out"
    _make_tree(root)

    def deny(*args, **kwargs):
        raise PermissionError("denied")

    monkeypatch.setattr(cleanup.shutil, "rmtree", deny)
    monkeypatch.setattr(cleanup.os, "unlink", deny)
    monkeypatch.setattr(cleanup.os, "rmdir", deny)

    with pytest.warns(CleanupWarning):
        result = remove_tree(root, settle=0, backoff=0)

    monkeypatch.undo()
    assert result is False
    assert (root / "a" / "b" / "deep.txt").exists()
    assert (root / "top.txt").exists()


def test_single_file_path(tmp_path: Path) -> None:
    target = tmp_path / "stray.txt"
    target.write_text("x", encoding="utf-8")
    assert remove_tree(target) is True
    assert not os.path.lexists(target)


def test_never_raises_when_warnings_are_errors(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    root = tmp_path / "out"
    _make_tree(root)

    def deny(*args, **kwargs):
        raise PermissionError("denied")

    monkeypatch.setattr(cleanup.shutil, "rmtree", deny)
    monkeypatch.setattr(cleanup.os, "unlink", deny)
    monkeypatch.setattr(cleanup.os, "rmdir", deny)

    with warnings.catch_warnings():
        warnings.simplefilter("error", CleanupWarning)
        result = remove_tree(root, settle=0, backoff=0)

    monkeypatch.undo()
    assert result is False
    assert (root / "top.txt").exists()
