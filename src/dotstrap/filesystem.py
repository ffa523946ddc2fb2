"""Filesystem helpers for dotstrap."""

from __future__ import annotations

import logging
import os
import shutil
import stat
from pathlib import Path
from typing import Protocol

logger = logging.getLogger(__name__)

_EXTENDED_PREFIX = "\\\\?\\"
_EXTENDED_UNC_PREFIX = "\\\\?\\UNC\\"


class Filesystem(Protocol):
    """Operations the prober and engine need from the filesystem."""

    def exists(self, path: Path) -> bool: ...

    def is_link(self, path: Path) -> bool: ...

    def link_target(self, path: Path) -> Path | None: ...

    def create_link(self, path: Path, target: Path) -> None: ...

    def copy(self, source: Path, destination: Path) -> None: ...

    def remove(self, path: Path) -> None: ...

    def ensure_dir(self, path: Path) -> None: ...


class LocalFilesystem:
    """``Filesystem`` backed by the local disk.

    ``exists`` and ``is_link`` never follow the final symlink, so a dangling link
    still counts as something occupying the path. Errors other than "not found"
    propagate so callers can tell a missing path from an unreadable one.
    """

    def exists(self, path: Path) -> bool:
        return _lstat(path) is not None

    def is_link(self, path: Path) -> bool:
        result = _lstat(path)
        return result is not None and stat.S_ISLNK(result.st_mode)

    def link_target(self, path: Path) -> Path | None:
        if not self.is_link(path):
            return None
        return Path(_strip_extended_prefix(os.readlink(path)))

    def create_link(self, path: Path, target: Path) -> None:
        logger.info("Linking %s -> %s", path, target)
        path.symlink_to(target, target_is_directory=target.is_dir())

    def copy(self, source: Path, destination: Path) -> None:
        """Copy ``source`` to ``destination`` preserving metadata.

        Directories are merged into an existing ``destination``.
        """

        logger.info("Copying %s to %s", source, destination)
        if source.is_symlink():
            destination.symlink_to(os.readlink(source))
        elif source.is_dir():
            shutil.copytree(source, destination, symlinks=True, copy_function=shutil.copy2, dirs_exist_ok=True)
        else:
            shutil.copy2(source, destination)

    def remove(self, path: Path) -> None:
        """Delete ``path`` whether it is a file, directory, or symlink."""

        if not self.exists(path):
            return
        logger.info("Removing %s", path)
        if path.is_symlink() or not path.is_dir():
            path.unlink()
            return
        shutil.rmtree(path)

    def ensure_dir(self, path: Path) -> None:
        path.mkdir(parents=True, exist_ok=True)


def _lstat(path: Path) -> os.stat_result | None:
    try:
        return os.lstat(path)
    except (FileNotFoundError, NotADirectoryError):
        return None


def _strip_extended_prefix(raw: str) -> str:
    """Drop the ``\\\\?\\`` prefix Windows ``readlink`` puts on absolute targets."""

    if raw.startswith(_EXTENDED_UNC_PREFIX):
        return "\\\\" + raw[len(_EXTENDED_UNC_PREFIX) :]
    if raw.startswith(_EXTENDED_PREFIX):
        return raw[len(_EXTENDED_PREFIX) :]
    return raw


def link_points_to(link_target: Path, link_path: Path, expected: Path) -> bool:
    """Return ``True`` if a recorded ``link_target`` at ``link_path`` names ``expected``.

    Relative targets are joined to the link's parent and normalised lexically;
    nothing is resolved through the filesystem.
    """

    recorded = _strip_extended_prefix(os.fspath(link_target))
    if not os.path.isabs(recorded):
        recorded = os.path.join(os.path.dirname(os.fspath(link_path)), recorded)
    return os.path.normcase(os.path.normpath(recorded)) == os.path.normcase(os.path.normpath(os.fspath(expected)))
