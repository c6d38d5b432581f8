"""TopoMap – artifact helpers.

Artifacts are addressed purely by path. A stage counts as complete when
its target artifact exists and is non-empty. To keep that check honest,
stages never write to their final location directly: tools write into a
staging directory beside the target, so the move into place with
:func:`os.replace` stays on one filesystem and happens only after the
tool has exited successfully. The target artifact is always published
last.
"""

from __future__ import annotations

import os
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

from topomap.core.logging import get_logger


logger = get_logger(__name__)


@dataclass(frozen=True)
class OutputFile:
    """One entry of the output directory listing."""

    name: str
    size_bytes: int


def artifact_ready(path: Path) -> bool:
    """Return True if ``path`` is an existing, non-empty regular file."""

    try:
        return path.is_file() and path.stat().st_size > 0
    except OSError:
        return False


def fresh_staging_dir(staging: Path) -> Path:
    """Return ``staging`` as an empty directory.

    Leftovers from an interrupted earlier attempt are discarded.
    """

    if staging.exists():
        shutil.rmtree(staging)
    staging.mkdir(parents=True)
    return staging


def publish(source: Path, destination: Path) -> Path:
    """Atomically move a finished file into its final location."""

    destination.parent.mkdir(parents=True, exist_ok=True)
    os.replace(source, destination)
    logger.debug("published %s -> %s", source, destination)
    return destination


def publish_all(files: Iterable[Path], destination_dir: Path, target: Path) -> list[Path]:
    """Move ``files`` into ``destination_dir``, publishing ``target`` last.

    ``target`` must be the final path of one of ``files``. Publishing it
    last means a run interrupted half-way leaves the stage incomplete.
    """

    published: list[Path] = []
    deferred: Path | None = None
    for source in sorted(files):
        final = destination_dir / source.name
        if final == target:
            deferred = source
            continue
        published.append(publish(source, final))
    if deferred is not None:
        published.append(publish(deferred, target))
    return published


def copy_file(source: Path, destination: Path) -> Path:
    """Copy ``source`` to ``destination`` through a temporary sibling."""

    destination.parent.mkdir(parents=True, exist_ok=True)
    partial = destination.with_name(f".{destination.name}.partial")
    shutil.copyfile(source, partial)
    return publish(partial, destination)


def newest_match(directory: Path, pattern: str) -> Path | None:
    """Return the most recently modified file in ``directory`` matching ``pattern``."""

    matches = [p for p in directory.glob(pattern) if p.is_file()]
    if not matches:
        return None
    return max(matches, key=lambda p: p.stat().st_mtime)


def list_outputs(directory: Path) -> list[OutputFile]:
    """List regular files in ``directory`` sorted by name."""

    if not directory.is_dir():
        return []
    return [
        OutputFile(name=p.name, size_bytes=p.stat().st_size)
        for p in sorted(directory.iterdir())
        if p.is_file()
    ]


def human_size(size_bytes: int) -> str:
    """Format a byte count the way ``du -h`` does (1K, 3.4M, ...)."""

    if size_bytes < 1024:
        return f"{size_bytes}B"
    value = size_bytes / 1024
    for unit in ("K", "M"):
        if round(value, 1) < 1024:
            return f"{value:.1f}{unit}"
        value /= 1024
    return f"{value:.1f}G"
