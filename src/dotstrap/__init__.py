"""Core package for the dotstrap project."""

from .cli import app, run
from .config import Config, ConfigError, MissingLinkSourcesError, Settings, load_config
from .coordinator import RunCoordinator
from .declarations import load_declarations, parse_groups, parse_package_lines
from .engine import ConvergenceEngine
from .models import (
    BackupRecord,
    ErrorKind,
    ExitStatus,
    LinkDeclaration,
    OutcomeKind,
    PackageDeclaration,
    Policy,
    ProbedState,
    ProbeState,
    ResourceOutcome,
    RunResult,
)
from .packages import CommandPackageManager, PrerequisiteError
from .prober import StateProber

__all__ = [
    "Config",
    "ConfigError",
    "MissingLinkSourcesError",
    "Settings",
    "load_config",
    "RunCoordinator",
    "ConvergenceEngine",
    "StateProber",
    "CommandPackageManager",
    "PrerequisiteError",
    "load_declarations",
    "parse_groups",
    "parse_package_lines",
    "BackupRecord",
    "ErrorKind",
    "ExitStatus",
    "LinkDeclaration",
    "OutcomeKind",
    "PackageDeclaration",
    "Policy",
    "ProbedState",
    "ProbeState",
    "ResourceOutcome",
    "RunResult",
    "app",
    "run",
]
