"""Read-only inspection of the machine for a single declaration."""

from __future__ import annotations

import logging

from .filesystem import Filesystem, link_points_to
from .models import Declaration, LinkDeclaration, PackageDeclaration, ProbedState
from .packages import PackageManager, PackageManagerError

logger = logging.getLogger(__name__)


class StateProber:
    """Determines whether a declaration is already satisfied.

    Probing never creates, modifies or deletes anything. Failures are reported as
    ``ProbeState.PROBE_FAILED`` instead of being raised.
    """

    def __init__(self, package_manager: PackageManager, filesystem: Filesystem) -> None:
        self.package_manager = package_manager
        self.filesystem = filesystem

    def probe(self, declaration: Declaration) -> ProbedState:
        if isinstance(declaration, PackageDeclaration):
            return self._probe_package(declaration)
        return self._probe_link(declaration)

    def _probe_package(self, declaration: PackageDeclaration) -> ProbedState:
        try:
            installed = self.package_manager.is_installed(declaration.name)
        except (PackageManagerError, OSError) as exc:
            logger.warning("Could not query package '%s': %s", declaration.name, exc)
            return ProbedState.failed(str(exc))
        return ProbedState.satisfied() if installed else ProbedState.absent()

    def _probe_link(self, declaration: LinkDeclaration) -> ProbedState:
        path = declaration.link_path
        try:
            if not self.filesystem.exists(path):
                return ProbedState.absent()
            current = self.filesystem.link_target(path)
        except OSError as exc:
            logger.warning("Could not inspect '%s': %s", path, exc)
            return ProbedState.failed(str(exc))

        if current is None:
            return ProbedState.conflicting("a file or directory occupies the link path")
        if link_points_to(current, path, declaration.target_path):
            return ProbedState.satisfied()
        return ProbedState.conflicting(f"link points to '{current}'")
