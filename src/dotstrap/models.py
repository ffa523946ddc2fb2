"""Shared models and enums for dotstrap."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Union

if TYPE_CHECKING:
    from .prompts import Confirmer


@dataclass(frozen=True, slots=True)
class PackageDeclaration:
    """A package that must be installed."""

    name: str
    group: str | None = None
    description: str | None = None

    def key(self) -> tuple[str, str]:
        return ("package", self.name)

    def label(self) -> str:
        return self.name


@dataclass(frozen=True, slots=True)
class LinkDeclaration:
    """A symlink at ``link_path`` that must point to ``target_path``."""

    link_path: Path
    target_path: Path
    description: str = ""

    def key(self) -> tuple[str, str]:
        return ("link", str(self.link_path))

    def label(self) -> str:
        return str(self.link_path)


Declaration = Union[PackageDeclaration, LinkDeclaration]


@dataclass(frozen=True, slots=True)
class ParseError:
    """A problem found while reading a declaration source."""

    source: str
    location: str
    message: str

    def __str__(self) -> str:
        return f"{self.source} ({self.location}): {self.message}"


class ProbeState(str, Enum):
    """Current reality of a declared resource."""

    ABSENT = "absent"
    SATISFIES = "satisfies"
    CONFLICTING = "conflicting"
    PROBE_FAILED = "probe_failed"


@dataclass(frozen=True, slots=True)
class ProbedState:
    state: ProbeState
    detail: str | None = None

    @classmethod
    def absent(cls) -> "ProbedState":
        return cls(ProbeState.ABSENT)

    @classmethod
    def satisfied(cls) -> "ProbedState":
        return cls(ProbeState.SATISFIES)

    @classmethod
    def conflicting(cls, detail: str) -> "ProbedState":
        return cls(ProbeState.CONFLICTING, detail)

    @classmethod
    def failed(cls, detail: str) -> "ProbedState":
        return cls(ProbeState.PROBE_FAILED, detail)


class ExitKind(str, Enum):
    SUCCESS = "success"
    SUCCESS_REBOOT_REQUIRED = "success_reboot_required"
    FAILURE = "failure"


@dataclass(frozen=True, slots=True)
class ExitStatus:
    """Installer exit status mapped onto the package manager's conventions."""

    kind: ExitKind
    code: int = 0

    @property
    def succeeded(self) -> bool:
        return self.kind is not ExitKind.FAILURE


class OutcomeKind(str, Enum):
    """Outcome of converging a single declaration."""

    SKIPPED = "skipped"
    CREATED = "created"
    REPLACED = "replaced"
    FAILED = "failed"


class ErrorKind(str, Enum):
    PROBE_ERROR = "probe_error"
    INSTALL_ERROR = "install_error"
    LINK_ERROR = "link_error"
    LINK_VALIDATION_ERROR = "link_validation_error"


@dataclass(frozen=True, slots=True)
class BackupRecord:
    """Copy of a conflicting file taken before it was removed."""

    original_path: Path
    backup_path: Path
    timestamp: datetime


SKIP_SATISFIED = "already satisfies declaration"
SKIP_DRY_RUN = "dry-run"
SKIP_DECLINED = "user declined"


@dataclass(frozen=True, slots=True)
class ResourceOutcome:
    """Result recorded once per declaration per run."""

    declaration: Declaration
    kind: OutcomeKind
    reason: str | None = None
    backup: BackupRecord | None = None
    error_kind: ErrorKind | None = None
    message: str | None = None
    reboot_required: bool = False

    @classmethod
    def skipped(cls, declaration: Declaration, reason: str, message: str | None = None) -> "ResourceOutcome":
        return cls(declaration, OutcomeKind.SKIPPED, reason=reason, message=message)

    @classmethod
    def created(cls, declaration: Declaration, *, reboot_required: bool = False) -> "ResourceOutcome":
        return cls(declaration, OutcomeKind.CREATED, reboot_required=reboot_required)

    @classmethod
    def replaced(cls, declaration: Declaration, backup: BackupRecord | None) -> "ResourceOutcome":
        return cls(declaration, OutcomeKind.REPLACED, backup=backup)

    @classmethod
    def failed(cls, declaration: Declaration, error_kind: ErrorKind, message: str) -> "ResourceOutcome":
        return cls(declaration, OutcomeKind.FAILED, error_kind=error_kind, message=message)


@dataclass(frozen=True, slots=True)
class Policy:
    """How the engine treats dry-runs and conflicting files."""

    assume_yes: bool = False
    dry_run: bool = False
    confirmer: "Confirmer | None" = None


@dataclass(frozen=True, slots=True)
class RunResult:
    """Collection of outcomes for a coordinator run."""

    outcomes: tuple[ResourceOutcome, ...]
    reboot_required: bool = False

    def counts(self) -> dict[OutcomeKind, int]:
        counter = Counter(outcome.kind for outcome in self.outcomes)
        return {kind: counter.get(kind, 0) for kind in OutcomeKind}

    def backups(self) -> list[BackupRecord]:
        return [outcome.backup for outcome in self.outcomes if outcome.backup is not None]

    def failures(self) -> list[ResourceOutcome]:
        return [outcome for outcome in self.outcomes if outcome.kind is OutcomeKind.FAILED]


@dataclass(slots=True)
class DeclarationSet:
    """Declarations split by resource kind, preserving order."""

    packages: list[PackageDeclaration] = field(default_factory=list)
    links: list[LinkDeclaration] = field(default_factory=list)

    @classmethod
    def split(cls, declarations: list[Declaration]) -> "DeclarationSet":
        result = cls()
        for declaration in declarations:
            if isinstance(declaration, PackageDeclaration):
                result.packages.append(declaration)
            else:
                result.links.append(declaration)
        return result
