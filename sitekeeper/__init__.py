"""
sitekeeper package

This package implements a local build/deploy helper for static sites.

Key responsibilities are split across modules:
- `config.py`: load settings from YAML, environment and CLI flags
- `runner.py`: run an external command to completion and capture its output
- `supervisor.py`: start/stop the long-lived dev server process
- `cleanup.py`: robust directory removal with a manual fallback walk
- `backup.py`: archive creation, primary/fallback placement and retention pruning
- `deploy.py`: force-push the build output to a remote git branch
- `orchestrator.py`: clean -> install -> build -> verify -> deploy -> backup
- `cli.py`: CLI entrypoint and the interactive single-keystroke loop
"""

from __future__ import annotations

__all__ = ["__version__"]

__version__ = "0.1.0"
