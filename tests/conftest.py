from __future__ import annotations

from pathlib import Path

import pytest

from sitekeeper.config import Config, load_config


@pytest.fixture
def project_dir(tmp_path: Path) -> Path:
    root = tmp_path / "mysite"
    root.mkdir()
    (root / "package.json").write_text('{"name": "mysite"}\n', encoding="utf-8")
    (root / "src").mkdir()
    (root / "src" / "index.js").write_text("export default 1\n", encoding="utf-8")
    return root


@pytest.fixture
def config(tmp_path: Path, project_dir: Path) -> Config:
    return load_config(
        project_dir,
        env={},
        overrides={
            "backup_root": tmp_path / "vault",
            "remote_url": "https://example.invalid/site.git",
            "install_command": "npm install",
            "build_command": "npx next build",
        },
    )
