"""Refreshing the process environment after packages are installed."""

from __future__ import annotations

import logging
import os
import sys
from pathlib import Path
from typing import MutableMapping, Sequence

logger = logging.getLogger(__name__)


class Environment:
    """Owns updates to ``PATH`` so newly installed tools can be found.

    On Windows the machine and user ``Path`` values are re-read from the
    registry, since installers write there rather than to the running process.
    Configured ``path_entries`` that exist are then prepended.
    """

    def __init__(self, path_entries: Sequence[Path] = (), environ: MutableMapping[str, str] | None = None) -> None:
        self.path_entries = tuple(path_entries)
        self.environ = os.environ if environ is None else environ

    def refresh(self) -> None:
        parts = self._current_path()
        if sys.platform == "win32":
            parts = _merge(_registry_path(), parts)

        extra = [str(entry) for entry in self.path_entries if entry.is_dir()]
        parts = _merge(extra, parts)

        self.environ["PATH"] = os.pathsep.join(parts)
        logger.info("Refreshed PATH (%d entries)", len(parts))

    def _current_path(self) -> list[str]:
        return [part for part in self.environ.get("PATH", "").split(os.pathsep) if part]


def _merge(first: Sequence[str], rest: Sequence[str]) -> list[str]:
    merged: list[str] = []
    for part in [*first, *rest]:
        if part not in merged:
            merged.append(part)
    return merged


def _registry_path() -> list[str]:
    import winreg

    locations = [
        (winreg.HKEY_LOCAL_MACHINE, r"SYSTEM\CurrentControlSet\Control\Session Manager\Environment"),
        (winreg.HKEY_CURRENT_USER, r"Environment"),
    ]
    parts: list[str] = []
    for hive, key_path in locations:
        try:
            with winreg.OpenKey(hive, key_path) as key:
                value, _ = winreg.QueryValueEx(key, "Path")
        except OSError as exc:
            logger.debug("No Path value under %s: %s", key_path, exc)
            continue
        parts.extend(os.path.expandvars(part) for part in str(value).split(os.pathsep) if part)
    return parts
