"""
backup.py

Responsibility: Snapshot the project and its build output into timestamped zip
archives, place them durably, and keep each retention set bounded.

Rules:
- Archives are written next to the project first, then moved into place.
- Placement tries the primary directory, then the fallback; both failing is an error
  and the archive stays where it was written.
- Full-project and output-only archives are pruned independently, per directory.
"""

from __future__ import annotations

import enum
import fnmatch
import glob
import logging
import os
import re
import zipfile
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path, PurePosixPath

from sitekeeper.config import Config

log = logging.getLogger(__name__)

_TIMESTAMP_RE = r"\d{4}-\d{2}-\d{2}_\d{2}-\d{2}-\d{2}-\d{3}"


class ArchiveCreationError(RuntimeError):
    pass


class ArchivePlacementError(RuntimeError):
    pass


class ArchiveKind(str, enum.Enum):
    FULL_PROJECT = "full-project"
    OUTPUT_ONLY = "output-only"


@dataclass(frozen=True)
class ArchiveRecord:
    kind: ArchiveKind
    folder_name: str
    timestamp: str
    path: Path


def format_timestamp(moment: datetime) -> str:
    """UTC, millisecond precision, safe for file names: 2024-05-01_13-45-09-123."""
    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc)
    return moment.strftime("%Y-%m-%d_%H-%M-%S-") + f"{moment.microsecond // 1000:03d}"


def archive_name(folder_name: str, kind: ArchiveKind, timestamp: str) -> str:
    if kind is ArchiveKind.OUTPUT_ONLY:
        return f"{folder_name}_out_{timestamp}.zip"
    return f"{folder_name}_{timestamp}.zip"


def kind_pattern(folder_name: str, kind: ArchiveKind) -> re.Pattern[str]:
    infix = "_out_" if kind is ArchiveKind.OUTPUT_ONLY else "_"
    return re.compile(rf"^{re.escape(folder_name)}{infix}{_TIMESTAMP_RE}\.zip$")


def _is_excluded(rel: PurePosixPath, patterns: Sequence[str]) -> bool:
    text = rel.as_posix()
    for pattern in patterns:
        if fnmatch.fnmatch(text, pattern):
            return True
        if any(fnmatch.fnmatch(part, pattern) for part in rel.parts):
            return True
    return False


def _iter_archive_files(source: Path, exclude: Sequence[str], skip: Path) -> Iterable[tuple[Path, str]]:
    """
    Yield (absolute path, archive name) pairs in deterministic order, pruning
    excluded directories before descending into them.
    """
    for root, dirs, filenames in os.walk(source):
        root_path = Path(root)
        rel_root = PurePosixPath(root_path.relative_to(source).as_posix())
        dirs[:] = sorted(d for d in dirs if not _is_excluded(rel_root / d, exclude))
        for name in sorted(filenames):
            path = root_path / name
            rel = rel_root / name
            if path == skip or _is_excluded(rel, exclude):
                continue
            yield path, rel.as_posix()


def create_archive(source_tree: str | Path, destination: str | Path, exclude: Sequence[str] = ()) -> Path:
    """
    Zip everything under `source_tree` into `destination`, skipping paths whose
    relative path or any path component matches one of the `exclude` globs.

    On failure the partial archive is deleted and ArchiveCreationError is raised.
    """
    src = Path(source_tree).resolve()
    dst = Path(destination).resolve()
    if not src.is_dir():
        raise ArchiveCreationError(f"Archive source is not a directory: {src}")

    try:
        with zipfile.ZipFile(dst, "w", compression=zipfile.ZIP_DEFLATED) as zf:
            for path, arcname in _iter_archive_files(src, exclude, dst):
                zf.write(path, arcname)
    except (OSError, zipfile.BadZipFile, ValueError) as e:
        try:
            dst.unlink()
        except FileNotFoundError:
            pass
        except OSError as cleanup_error:
            log.warning("Could not remove partial archive %s: %s", dst, cleanup_error)
        raise ArchiveCreationError(f"Failed creating archive {dst.name} from {src}: {e}") from e

    return dst


def create_output_archive(output_dir: str | Path, destination: str | Path) -> Path:
    return create_archive(output_dir, destination)


def _move_into(temp_path: Path, target_dir: Path) -> Path:
    target_dir.mkdir(parents=True, exist_ok=True)
    if not target_dir.is_dir():
        raise NotADirectoryError(f"Not a directory: {target_dir}")
    if not os.access(target_dir, os.W_OK | os.X_OK):
        raise PermissionError(f"Directory is not writable: {target_dir}")
    dest = target_dir / temp_path.name
    os.replace(temp_path, dest)
    return dest


def place_archive(temp_path: str | Path, primary_dir: str | Path, fallback_dir: str | Path) -> Path:
    """
    Move `temp_path` into the first usable directory of [primary, fallback].

    Returns the final path. If neither directory accepts the file,
    ArchivePlacementError is raised and the file stays at `temp_path`.
    """
    src = Path(temp_path)
    if not src.is_file():
        raise ArchivePlacementError(f"Archive to place does not exist: {src}")

    failures: list[str] = []
    for target_dir in (Path(primary_dir), Path(fallback_dir)):
        try:
            dest = _move_into(src, target_dir)
        except OSError as e:
            log.warning("Could not place %s in %s: %s", src.name, target_dir, e)
            failures.append(f"{target_dir}: {e}")
            continue
        if failures:
            log.warning("Archive stored in fallback location %s", dest)
        return dest

    raise ArchivePlacementError(f"Could not place {src.name}; left at {src}. Tried " + "; ".join(failures))


def prune_retained(directory: str | Path, pattern: re.Pattern[str] | str, keep_count: int) -> list[Path]:
    """
    Keep the `keep_count` newest (by mtime) entries matching `pattern`; delete the rest.

    Returns the deleted paths. Individual deletion failures are logged and skipped.
    """
    root = Path(directory)
    if not root.is_dir():
        return []
    regex = re.compile(pattern) if isinstance(pattern, str) else pattern

    candidates: list[tuple[float, Path]] = []
    with os.scandir(root) as it:
        for entry in it:
            if not regex.match(entry.name):
                continue
            try:
                candidates.append((entry.stat().st_mtime, Path(entry.path)))
            except OSError as e:
                log.warning("Could not stat %s: %s", entry.path, e)

    candidates.sort(key=lambda c: c[0], reverse=True)

    deleted: list[Path] = []
    for _mtime, path in candidates[max(0, keep_count) :]:
        try:
            path.unlink()
        except OSError as e:
            log.warning("Could not delete old archive %s: %s", path, e)
            continue
        log.debug("Pruned %s", path)
        deleted.append(path)
    return deleted


def full_project_exclusions(config: Config) -> tuple[str, ...]:
    """
    `config.exclude` plus the directories sitekeeper itself manages, plus archives
    left at the project root by an earlier failed placement.
    """
    managed = (config.output_dir, config.build_cache_dir, config.dependency_marker_dir, config.fallback_dir)
    leftovers = tuple(
        archive_name(glob.escape(config.folder_name), kind, "[0-9][0-9][0-9][0-9]-*") for kind in ArchiveKind
    )
    extra = tuple(p for p in (*managed, *leftovers) if p not in config.exclude)
    return (*config.exclude, *extra)


def _snapshot(
    config: Config,
    kind: ArchiveKind,
    timestamp: str,
    source: Path,
    exclude: Sequence[str],
) -> ArchiveRecord:
    temp_path = config.project_dir / archive_name(config.folder_name, kind, timestamp)
    create_archive(source, temp_path, exclude)
    final = place_archive(temp_path, config.primary_backup_dir, config.fallback_backup_dir)
    log.info("Created %s archive %s", kind.value, final)
    return ArchiveRecord(kind=kind, folder_name=config.folder_name, timestamp=timestamp, path=final.resolve())


def run_backup(config: Config, *, now: datetime | None = None) -> list[ArchiveRecord]:
    """
    Full backup: project archive, output archive (when the output exists), then
    pruning of both kinds in both the primary and the fallback directory.
    """
    timestamp = format_timestamp(now or datetime.now(timezone.utc))
    exclude = full_project_exclusions(config)
    records = [_snapshot(config, ArchiveKind.FULL_PROJECT, timestamp, config.project_dir, exclude)]

    if config.output_path.is_dir():
        records.append(_snapshot(config, ArchiveKind.OUTPUT_ONLY, timestamp, config.output_path, ()))

    for directory in (config.primary_backup_dir, config.fallback_backup_dir):
        for kind in ArchiveKind:
            try:
                prune_retained(directory, kind_pattern(config.folder_name, kind), config.keep_count)
            except OSError as e:
                log.warning("Pruning %s archives in %s failed: %s", kind.value, directory, e)

    return records
