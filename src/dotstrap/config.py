"""TOML configuration loading for dotstrap."""

from __future__ import annotations

import os
import tomllib
from pathlib import Path
from typing import Any, Mapping

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_CONFIG_FILENAME = "dotstrap.toml"
DEFAULT_PACKAGE_MANAGER = "choco"


class ConfigError(RuntimeError):
    """Raised when a configuration file cannot be parsed or validated."""


class MissingLinkSourcesError(ConfigError):
    """Raised when link declarations reference source files that do not exist."""

    def __init__(self, missing: list[Path]) -> None:
        self.missing = list(missing)
        listing = ", ".join(f"'{path}'" for path in self.missing)
        super().__init__(f"Missing link source(s): {listing}")


def expand_path(raw: str | os.PathLike[str] | Path, *, base_dir: Path, resolve: bool = True) -> Path:
    """Return an absolute ``Path`` by expanding env vars and user segments.

    With ``resolve=False`` the final component is left alone, so a path that is
    itself a symlink keeps naming the link rather than what it points to.
    """

    text = str(raw)
    expanded = Path(os.path.expandvars(text)).expanduser()
    if not expanded.is_absolute():
        expanded = base_dir / expanded
    if resolve:
        return expanded.resolve(strict=False)
    return Path(os.path.normpath(expanded))


def _path_list(raw: Any, *, key: str, base_dir: Path) -> tuple[Path, ...]:
    if raw is None:
        return ()
    if not isinstance(raw, list) or not all(isinstance(item, str) for item in raw):
        raise ConfigError(f"Setting '{key}' must be a list of paths")
    return tuple(expand_path(item, base_dir=base_dir) for item in raw)


class Settings(BaseModel):
    """Global configuration options."""

    model_config = ConfigDict(frozen=True)

    package_manager: str = DEFAULT_PACKAGE_MANAGER
    reboot_exit_codes: tuple[int, ...] | None = None
    package_lists: tuple[Path, ...] = ()
    dotfiles_root: Path
    state_dir: Path
    path_entries: tuple[Path, ...] = ()
    log_file: Path | None = None

    @classmethod
    def from_raw(cls, raw: Mapping[str, Any], *, base_dir: Path) -> "Settings":
        manager = raw.get("package_manager", DEFAULT_PACKAGE_MANAGER)
        if not isinstance(manager, str) or not manager.strip():
            raise ConfigError("Setting 'package_manager' must be a non-empty string")

        reboot_raw = raw.get("reboot_exit_codes")
        reboot_codes: tuple[int, ...] | None = None
        if reboot_raw is not None:
            if not isinstance(reboot_raw, list) or not all(
                isinstance(code, int) and not isinstance(code, bool) for code in reboot_raw
            ):
                raise ConfigError("Setting 'reboot_exit_codes' must be a list of integers")
            reboot_codes = tuple(reboot_raw)

        log_raw = raw.get("log_file")
        return cls(
            package_manager=manager.strip(),
            reboot_exit_codes=reboot_codes,
            package_lists=_path_list(raw.get("package_lists"), key="package_lists", base_dir=base_dir),
            dotfiles_root=expand_path(raw.get("dotfiles_root", "."), base_dir=base_dir),
            state_dir=expand_path(raw.get("state_dir", "./.dotstrap"), base_dir=base_dir),
            path_entries=_path_list(raw.get("path_entries"), key="path_entries", base_dir=base_dir),
            log_file=expand_path(log_raw, base_dir=base_dir) if log_raw is not None else None,
        )

    @property
    def journal_path(self) -> Path:
        return self.state_dir / "backups.toml"


class Config(BaseModel):
    """Parsed configuration file.

    ``groups`` and ``links`` are kept as raw TOML tables so the declaration store
    can report every malformed entry instead of stopping at the first one.
    """

    model_config = ConfigDict(frozen=True)

    config_path: Path
    settings: Settings
    groups: tuple[Any, ...] = Field(default_factory=tuple)
    links: tuple[Any, ...] = Field(default_factory=tuple)

    @property
    def base_dir(self) -> Path:
        return self.config_path.parent


def load_config(path: Path | None = None) -> Config:
    """Load and validate a configuration file.

    Args:
        path: Optional path to the TOML file, or a directory containing
            ``dotstrap.toml``. Defaults to ``dotstrap.toml`` in the current
            working directory.
    """

    config_path = _resolve_config_path(path)
    base_dir = config_path.parent

    try:
        with config_path.open("rb") as handle:
            data = tomllib.load(handle)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Configuration file '{config_path}' is not valid TOML: {exc}") from exc

    settings_raw = data.get("settings", {})
    if not isinstance(settings_raw, dict):
        raise ConfigError("[settings] must be a table")
    settings = Settings.from_raw(settings_raw, base_dir=base_dir)

    groups = data.get("groups", [])
    links = data.get("links", [])
    if not isinstance(groups, list):
        raise ConfigError("'groups' must be an array of tables ([[groups]])")
    if not isinstance(links, list):
        raise ConfigError("'links' must be an array of tables ([[links]])")

    return Config(config_path=config_path, settings=settings, groups=tuple(groups), links=tuple(links))


def _resolve_config_path(path: Path | None) -> Path:
    if path is None:
        path = Path.cwd() / DEFAULT_CONFIG_FILENAME
    else:
        path = Path(path)

    if not path.exists():
        raise ConfigError(f"Configuration file '{path}' does not exist")
    if path.is_dir():
        candidate = path / DEFAULT_CONFIG_FILENAME
        if not candidate.exists():
            raise ConfigError(f"Expected to find '{DEFAULT_CONFIG_FILENAME}' inside '{path}', but none was located")
        path = candidate

    return path.resolve(strict=False)
