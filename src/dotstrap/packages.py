"""Package manager collaborators."""

from __future__ import annotations

import logging
import shlex
import shutil
import subprocess
from dataclasses import dataclass, replace
from typing import Protocol, Sequence

from .config import ConfigError
from .models import ExitKind, ExitStatus

logger = logging.getLogger(__name__)

NAME_PLACEHOLDER = "{name}"


class PrerequisiteError(RuntimeError):
    """Raised when a required external tool is not available."""


class PackageManagerError(RuntimeError):
    """Raised when the package manager cannot be queried."""


class PackageManager(Protocol):
    def ensure_available(self) -> None: ...

    def is_installed(self, name: str) -> bool: ...

    def install(self, name: str) -> ExitStatus: ...


@dataclass(frozen=True)
class Preset:
    """Commands used to drive one package manager.

    ``list_command`` prints installed packages one per line; the package name is
    the text before ``separator`` (or the whole line when ``separator`` is
    ``None``). With ``installed_status`` set, only lines whose second field equals
    it count as installed.
    """

    executable: str
    list_command: tuple[str, ...]
    install_command: tuple[str, ...]
    separator: str | None = None
    installed_status: str | None = None
    reboot_exit_codes: tuple[int, ...] = ()
    case_sensitive: bool = True


PRESETS: dict[str, Preset] = {
    "choco": Preset(
        executable="choco",
        list_command=("choco", "list", "--limit-output"),
        install_command=("choco", "install", NAME_PLACEHOLDER, "-y", "--no-progress"),
        separator="|",
        # ERROR_SUCCESS_REBOOT_REQUIRED and ERROR_SUCCESS_REBOOT_INITIATED
        reboot_exit_codes=(3010, 1641),
        case_sensitive=False,
    ),
    "apt": Preset(
        executable="apt-get",
        list_command=("dpkg-query", "-W", "-f=${Package}\\t${db:Status-Status}\\n"),
        separator="\t",
        installed_status="installed",
        install_command=("apt-get", "install", "-y", NAME_PLACEHOLDER),
    ),
    "brew": Preset(
        executable="brew",
        list_command=("brew", "list", "-1"),
        install_command=("brew", "install", NAME_PLACEHOLDER),
    ),
}


@dataclass(frozen=True)
class CmdResult:
    argv: list[str]
    returncode: int
    stdout: str
    stderr: str


def _fmt_argv(argv: Sequence[str]) -> str:
    return " ".join(shlex.quote(a) for a in argv)


def run_cmd(argv: Sequence[str]) -> CmdResult:
    """Run a command with consistent logging. Never raises on a non-zero exit."""

    argv_list = list(argv)
    logger.info("CMD %s", _fmt_argv(argv_list))

    p = subprocess.run(
        argv_list,
        text=True,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
    )

    if p.stdout:
        logger.debug("STDOUT %s", p.stdout.strip())
    if p.stderr:
        logger.debug("STDERR %s", p.stderr.strip())

    return CmdResult(argv=argv_list, returncode=p.returncode, stdout=p.stdout, stderr=p.stderr)


class CommandPackageManager:
    """Drives a package manager's command line according to a ``Preset``.

    The installed-package listing is fetched once and reused until the next
    ``ensure_available`` call, which starts every run.
    """

    def __init__(self, name: str, preset: Preset) -> None:
        self.name = name
        self.preset = preset
        self._installed: set[str] | None = None

    @classmethod
    def from_settings(cls, name: str, reboot_exit_codes: Sequence[int] | None = None) -> "CommandPackageManager":
        try:
            preset = PRESETS[name]
        except KeyError:
            known = ", ".join(sorted(PRESETS))
            raise ConfigError(f"Unknown package manager '{name}' (expected one of: {known})") from None
        if reboot_exit_codes is not None:
            preset = replace(preset, reboot_exit_codes=tuple(reboot_exit_codes))
        return cls(name, preset)

    def ensure_available(self) -> None:
        """Check the executables are on PATH and drop any cached package listing."""

        self._installed = None
        for executable in {self.preset.executable, self.preset.list_command[0]}:
            if shutil.which(executable) is None:
                raise PrerequisiteError(f"Package manager '{self.name}' is not available: '{executable}' not found on PATH")

    def installed_names(self) -> set[str]:
        try:
            result = run_cmd(self.preset.list_command)
        except OSError as exc:
            raise PackageManagerError(f"Cannot run '{self.preset.list_command[0]}': {exc}") from exc
        if result.returncode != 0:
            raise PackageManagerError(
                f"Listing installed packages failed ({result.returncode}): {result.stderr.strip()}"
            )

        names: set[str] = set()
        for line in result.stdout.splitlines():
            fields = line.split(self.preset.separator) if self.preset.separator else [line]
            name = fields[0].strip()
            if self.preset.installed_status is not None:
                if len(fields) < 2 or fields[1].strip() != self.preset.installed_status:
                    continue
            if name:
                names.add(self._normalize(name))
        return names

    def is_installed(self, name: str) -> bool:
        if self._installed is None:
            self._installed = self.installed_names()
        return self._normalize(name) in self._installed

    def install(self, name: str) -> ExitStatus:
        argv = [name if part == NAME_PLACEHOLDER else part for part in self.preset.install_command]
        result = run_cmd(argv)
        status = self.classify_exit(result.returncode)
        if status.succeeded and self._installed is not None:
            self._installed.add(self._normalize(name))
        return status

    def classify_exit(self, code: int) -> ExitStatus:
        if code == 0:
            return ExitStatus(ExitKind.SUCCESS, code)
        if code in self.preset.reboot_exit_codes:
            return ExitStatus(ExitKind.SUCCESS_REBOOT_REQUIRED, code)
        return ExitStatus(ExitKind.FAILURE, code)

    def _normalize(self, name: str) -> str:
        return name if self.preset.case_sensitive else name.casefold()
