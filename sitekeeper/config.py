"""
config.py

Responsibility: Resolve sitekeeper settings into a single typed, immutable model.

Sources, later ones win:
1) Built-in defaults (a Next.js static-export project)
2) YAML mapping in `sitekeeper.yml` (or an explicit `--config` file)
3) SITEKEEPER_* environment variables
4) CLI overrides

Every other module receives a `Config` and treats it as the single source of truth.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any

import yaml

CONFIG_FILENAME = "sitekeeper.yml"

DEFAULT_EXCLUDE = ("node_modules", ".next", "out", ".git", ".vscode", "backups")

ENV_OVERRIDES = {
    "SITEKEEPER_BACKUP_ROOT": "backup_root",
    "SITEKEEPER_REMOTE_URL": "remote_url",
    "SITEKEEPER_BRANCH": "deploy_branch",
    "SITEKEEPER_KEEP": "keep_count",
}


class ConfigError(ValueError):
    pass


@dataclass(frozen=True)
class Config:
    """Resolved settings for one project."""

    project_dir: Path
    backup_root: Path = field(default_factory=lambda: Path.home() / "backups")
    remote_url: str | None = None
    deploy_branch: str = "main"
    keep_count: int = 10
    output_dir: str = "out"
    build_cache_dir: str = ".next"
    dependency_marker_dir: str = "node_modules"
    fallback_dir: str = "backups"
    exclude: tuple[str, ...] = DEFAULT_EXCLUDE
    install_command: str = "npm install --silent"
    build_command: str = "npx next build"
    dev_command: str = "npm run dev"
    commit_message: str = "Deploy: updated build"
    git_author_name: str = "sitekeeper"
    git_author_email: str = "sitekeeper@localhost"

    @property
    def folder_name(self) -> str:
        return self.project_dir.name

    @property
    def output_path(self) -> Path:
        return self.project_dir / self.output_dir

    @property
    def build_cache_path(self) -> Path:
        return self.project_dir / self.build_cache_dir

    @property
    def dependency_marker_path(self) -> Path:
        return self.project_dir / self.dependency_marker_dir

    @property
    def primary_backup_dir(self) -> Path:
        return self.backup_root / self.folder_name

    @property
    def fallback_backup_dir(self) -> Path:
        return self.project_dir / self.fallback_dir


_FIELD_NAMES = {f.name for f in fields(Config)} - {"project_dir"}


def _read_yaml_mapping(path: Path) -> dict[str, Any]:
    """
    Load a YAML file whose top level must be a mapping.
    An empty file is treated as an empty mapping.
    """
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in config file {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must be a mapping/object at the top level.")
    return data


def _coerce(values: Mapping[str, Any]) -> dict[str, Any]:
    """
    Validate keys and normalize value types for the `Config` constructor.
    None values are dropped so they fall through to the previous layer.
    """
    out: dict[str, Any] = {}
    for key, value in values.items():
        if value is None:
            continue
        if key not in _FIELD_NAMES:
            raise ConfigError(f"Unknown config key: {key!r}")

        if key == "backup_root":
            out[key] = Path(str(value)).expanduser()
        elif key == "keep_count":
            try:
                count = int(value)
            except (TypeError, ValueError) as e:
                raise ConfigError(f"`keep_count` must be an integer, got {value!r}") from e
            if count < 1:
                raise ConfigError(f"`keep_count` must be at least 1, got {count}")
            out[key] = count
        elif key == "exclude":
            if isinstance(value, str) or not isinstance(value, (list, tuple)):
                raise ConfigError("`exclude` must be a list of glob patterns when provided.")
            out[key] = tuple(str(v).strip() for v in value if str(v).strip())
        else:
            text = str(value).strip()
            if not text and key != "remote_url":
                raise ConfigError(f"`{key}` must not be empty.")
            out[key] = text or None
    return out


def _env_values(env: Mapping[str, str]) -> dict[str, Any]:
    return {attr: env[name] for name, attr in ENV_OVERRIDES.items() if env.get(name)}


def load_config(
    project_dir: str | Path,
    *,
    config_path: str | Path | None = None,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> Config:
    """
    Build a `Config` for `project_dir`.

    If `config_path` is given it must exist; otherwise `sitekeeper.yml` in the
    project directory is read when present.
    """
    root = Path(project_dir).resolve()
    if not root.is_dir():
        raise ConfigError(f"Project directory does not exist: {root}")

    if config_path is not None:
        path = Path(config_path)
        if not path.exists():
            raise ConfigError(f"Config file does not exist: {path}")
    else:
        path = root / CONFIG_FILENAME

    values: dict[str, Any] = {}
    if path.exists():
        values.update(_coerce(_read_yaml_mapping(path)))
    values.update(_coerce(_env_values(os.environ if env is None else env)))
    values.update(_coerce(overrides or {}))

    return replace(Config(project_dir=root), **values)
