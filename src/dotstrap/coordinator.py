"""High level orchestration of a provisioning run."""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import Callable, Sequence

from .config import Config, MissingLinkSourcesError
from .engine import ConvergenceEngine
from .environment import Environment
from .filesystem import Filesystem, LocalFilesystem
from .journal import BackupJournal
from .models import (
    Declaration,
    DeclarationSet,
    OutcomeKind,
    Policy,
    ProbedState,
    ResourceOutcome,
    RunResult,
)
from .packages import CommandPackageManager, PackageManager
from .prober import StateProber

logger = logging.getLogger(__name__)


class RunCoordinator:
    """Runs every declaration through probe and convergence, in order.

    Packages are processed first and never stop the run; link sources are
    validated before anything is touched.
    """

    def __init__(
        self,
        package_manager: PackageManager,
        filesystem: Filesystem,
        environment: Environment | None = None,
        journal: BackupJournal | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.package_manager = package_manager
        self.filesystem = filesystem
        self.environment = environment
        self.journal = journal
        self.prober = StateProber(package_manager, filesystem)
        self.engine = ConvergenceEngine(package_manager, filesystem, self.prober, clock=clock)

    @classmethod
    def from_config(cls, config: Config) -> "RunCoordinator":
        settings = config.settings
        return cls(
            package_manager=CommandPackageManager.from_settings(settings.package_manager, settings.reboot_exit_codes),
            filesystem=LocalFilesystem(),
            environment=Environment(settings.path_entries),
            journal=BackupJournal.load(settings.journal_path),
        )

    def run(self, declarations: Sequence[Declaration], policy: Policy) -> RunResult:
        split = DeclarationSet.split(list(declarations))
        self.validate_link_sources(split)

        if split.packages:
            self.package_manager.ensure_available()

        outcomes: list[ResourceOutcome] = []

        for package in split.packages:
            outcomes.append(self._process(package, policy))

        if split.packages and not policy.dry_run and self.environment is not None:
            self.environment.refresh()

        for link in split.links:
            outcomes.append(self._process(link, policy))

        result = RunResult(
            outcomes=tuple(outcomes),
            reboot_required=any(outcome.reboot_required for outcome in outcomes),
        )

        backups = result.backups()
        if backups and self.journal is not None:
            self.journal.extend(backups)
            try:
                self.journal.save()
            except OSError as exc:
                logger.error("Could not record backups in '%s': %s", self.journal.path, exc)

        counts = result.counts()
        logger.info(
            "Run finished: %d created, %d replaced, %d skipped, %d failed",
            counts[OutcomeKind.CREATED],
            counts[OutcomeKind.REPLACED],
            counts[OutcomeKind.SKIPPED],
            counts[OutcomeKind.FAILED],
        )
        return result

    def probe_all(self, declarations: Sequence[Declaration]) -> list[tuple[Declaration, ProbedState]]:
        split = DeclarationSet.split(list(declarations))
        if split.packages:
            self.package_manager.ensure_available()
        return [(declaration, self.prober.probe(declaration)) for declaration in [*split.packages, *split.links]]

    def validate_link_sources(self, declarations: DeclarationSet) -> None:
        missing: list[Path] = []
        for link in declarations.links:
            try:
                present = self.filesystem.exists(link.target_path)
            except OSError:
                present = False
            if not present and link.target_path not in missing:
                missing.append(link.target_path)
        if missing:
            raise MissingLinkSourcesError(missing)

    def _process(self, declaration: Declaration, policy: Policy) -> ResourceOutcome:
        probed = self.prober.probe(declaration)
        outcome = self.engine.converge(declaration, probed, policy)
        logger.info("%s: %s%s", declaration.label(), outcome.kind.value, f" ({outcome.reason})" if outcome.reason else "")
        return outcome
