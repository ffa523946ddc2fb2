"""Convergence of a single declaration towards its declared state."""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import Callable

from .filesystem import Filesystem
from .models import (
    SKIP_DECLINED,
    SKIP_DRY_RUN,
    SKIP_SATISFIED,
    BackupRecord,
    Declaration,
    ErrorKind,
    ExitKind,
    LinkDeclaration,
    PackageDeclaration,
    Policy,
    ProbedState,
    ProbeState,
    ResourceOutcome,
)
from .packages import PackageManager
from .prober import StateProber

logger = logging.getLogger(__name__)

BACKUP_MARKER = ".dotstrap-backup-"
BACKUP_TIMESTAMP_FORMAT = "%Y%m%d-%H%M%S"


class ConvergenceEngine:
    """Decides and executes the action for one probed declaration.

    Resource-level failures are returned as ``Failed`` outcomes; nothing raised by
    the package manager or the filesystem escapes ``converge``.
    """

    def __init__(
        self,
        package_manager: PackageManager,
        filesystem: Filesystem,
        prober: StateProber,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.package_manager = package_manager
        self.filesystem = filesystem
        self.prober = prober
        self.clock = clock

    def converge(self, declaration: Declaration, probed: ProbedState, policy: Policy) -> ResourceOutcome:
        if probed.state is ProbeState.SATISFIES:
            return ResourceOutcome.skipped(declaration, SKIP_SATISFIED)
        if probed.state is ProbeState.PROBE_FAILED:
            return ResourceOutcome.failed(declaration, ErrorKind.PROBE_ERROR, probed.detail or "probe failed")

        if isinstance(declaration, PackageDeclaration):
            if probed.state is not ProbeState.ABSENT:
                return ResourceOutcome.failed(
                    declaration, ErrorKind.PROBE_ERROR, f"unexpected package state '{probed.state.value}'"
                )
            return self._install_package(declaration, policy)

        if probed.state is ProbeState.ABSENT:
            return self._create_link(declaration, policy)
        return self._replace_conflict(declaration, probed, policy)

    # ------------------------------------------------------------------
    # Packages

    def _install_package(self, declaration: PackageDeclaration, policy: Policy) -> ResourceOutcome:
        if policy.dry_run:
            return ResourceOutcome.skipped(declaration, SKIP_DRY_RUN, "would install")

        logger.info("Installing package '%s'", declaration.name)
        try:
            status = self.package_manager.install(declaration.name)
        except OSError as exc:
            return ResourceOutcome.failed(declaration, ErrorKind.INSTALL_ERROR, f"cannot run installer: {exc}")

        if status.kind is ExitKind.FAILURE:
            logger.warning("Installing '%s' failed with exit code %d", declaration.name, status.code)
            return ResourceOutcome.failed(
                declaration, ErrorKind.INSTALL_ERROR, f"installer exited with code {status.code}"
            )
        if status.kind is ExitKind.SUCCESS_REBOOT_REQUIRED:
            logger.warning("Package '%s' requires a reboot (exit code %d)", declaration.name, status.code)
            return ResourceOutcome.created(declaration, reboot_required=True)
        return ResourceOutcome.created(declaration)

    # ------------------------------------------------------------------
    # Links

    def _create_link(self, declaration: LinkDeclaration, policy: Policy) -> ResourceOutcome:
        if policy.dry_run:
            return ResourceOutcome.skipped(declaration, SKIP_DRY_RUN, "would create link")

        try:
            self._link(declaration)
        except OSError as exc:
            return ResourceOutcome.failed(declaration, ErrorKind.LINK_ERROR, f"cannot create link: {exc}")

        failure = self._validate(declaration)
        return failure or ResourceOutcome.created(declaration)

    def _replace_conflict(self, declaration: LinkDeclaration, probed: ProbedState, policy: Policy) -> ResourceOutcome:
        path = declaration.link_path
        if policy.dry_run:
            return ResourceOutcome.skipped(declaration, SKIP_DRY_RUN, f"would replace: {probed.detail}")

        if not policy.assume_yes:
            confirmer = policy.confirmer
            prompt = f"'{path}' exists ({probed.detail}). Back it up and replace it with a link?"
            if confirmer is None or not confirmer.confirm(prompt):
                return ResourceOutcome.skipped(declaration, SKIP_DECLINED, probed.detail)

        try:
            previous_target = self.filesystem.link_target(path)
        except OSError as exc:
            return ResourceOutcome.failed(declaration, ErrorKind.LINK_ERROR, f"cannot inspect '{path}': {exc}")

        backup: BackupRecord | None = None
        if previous_target is None:
            try:
                backup = self._backup(path)
            except OSError as exc:
                return ResourceOutcome.failed(
                    declaration, ErrorKind.LINK_ERROR, f"backup failed, '{path}' left in place: {exc}"
                )

        try:
            self.filesystem.remove(path)
        except OSError as exc:
            # a directory may be half deleted; copy the backup back over what is left
            restored = f"; {self._put_back(path, backup, None)}" if backup else ""
            return ResourceOutcome.failed(declaration, ErrorKind.LINK_ERROR, f"cannot remove '{path}': {exc}{restored}")

        try:
            self._link(declaration)
        except OSError as exc:
            return ResourceOutcome.failed(
                declaration,
                ErrorKind.LINK_ERROR,
                f"cannot create link: {exc}; {self._put_back(path, backup, previous_target)}",
            )

        failure = self._validate(declaration)
        return failure or ResourceOutcome.replaced(declaration, backup)

    def _link(self, declaration: LinkDeclaration) -> None:
        self.filesystem.ensure_dir(declaration.link_path.parent)
        self.filesystem.create_link(declaration.link_path, declaration.target_path)

    def _validate(self, declaration: LinkDeclaration) -> ResourceOutcome | None:
        after = self.prober.probe(declaration)
        if after.state is ProbeState.SATISFIES:
            return None
        detail = after.detail or after.state.value
        return ResourceOutcome.failed(
            declaration, ErrorKind.LINK_VALIDATION_ERROR, f"link does not match after creation: {detail}"
        )

    def _backup(self, path: Path) -> BackupRecord:
        timestamp = self.clock()
        backup_path = self._backup_path(path, timestamp)
        self.filesystem.copy(path, backup_path)
        logger.info("Backed up '%s' to '%s'", path, backup_path)
        return BackupRecord(original_path=path, backup_path=backup_path, timestamp=timestamp)

    def _backup_path(self, path: Path, timestamp: datetime) -> Path:
        stem = f"{path.name}{BACKUP_MARKER}{timestamp.strftime(BACKUP_TIMESTAMP_FORMAT)}"
        candidate = path.with_name(stem)
        counter = 1
        while self.filesystem.exists(candidate):
            counter += 1
            candidate = path.with_name(f"{stem}-{counter}")
        return candidate

    def _put_back(self, path: Path, backup: BackupRecord | None, previous_target: Path | None) -> str:
        """Return ``path`` to what it was before removal; describe the result."""

        try:
            if backup is not None:
                self.filesystem.copy(backup.backup_path, path)
                return f"restored '{path}' from backup"
            if previous_target is not None:
                self.filesystem.create_link(path, previous_target)
                return f"restored previous link to '{previous_target}'"
        except OSError as exc:
            logger.error("Could not restore '%s': %s", path, exc)
            where = f" (backup at '{backup.backup_path}')" if backup else ""
            return f"could not restore original: {exc}{where}"
        return "nothing to restore"
