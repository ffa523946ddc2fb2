from __future__ import annotations

from datetime import datetime
from pathlib import Path

import pytest

from dotstrap.engine import ConvergenceEngine
from dotstrap.filesystem import LocalFilesystem
from dotstrap.models import ExitKind, ExitStatus
from dotstrap.packages import PackageManagerError, PrerequisiteError
from dotstrap.prober import StateProber

FIXED_NOW = datetime(2026, 10, 19, 12, 30, 45)


class FakePackageManager:
    """In-memory package manager that records every call."""

    def __init__(self, installed: tuple[str, ...] = ()) -> None:
        self.installed = set(installed)
        self.results: dict[str, ExitStatus] = {}
        self.broken: set[str] = set()
        self.available = True
        self.query_calls: list[str] = []
        self.install_calls: list[str] = []

    def ensure_available(self) -> None:
        if not self.available:
            raise PrerequisiteError("Package manager 'fake' is not available")

    def is_installed(self, name: str) -> bool:
        self.query_calls.append(name)
        if name in self.broken:
            raise PackageManagerError(f"cannot query {name}")
        return name in self.installed

    def install(self, name: str) -> ExitStatus:
        self.install_calls.append(name)
        status = self.results.get(name, ExitStatus(ExitKind.SUCCESS, 0))
        if status.succeeded:
            self.installed.add(name)
        return status


class RecordingFilesystem(LocalFilesystem):
    """Local filesystem that keeps a log of mutating calls."""

    def __init__(self) -> None:
        self.mutations: list[tuple[str, Path]] = []

    def create_link(self, path: Path, target: Path) -> None:
        self.mutations.append(("create_link", path))
        super().create_link(path, target)

    def copy(self, source: Path, destination: Path) -> None:
        self.mutations.append(("copy", destination))
        super().copy(source, destination)

    def remove(self, path: Path) -> None:
        self.mutations.append(("remove", path))
        super().remove(path)

    def ensure_dir(self, path: Path) -> None:
        self.mutations.append(("ensure_dir", path))
        super().ensure_dir(path)


@pytest.fixture
def fake_home(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Path:
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("USERPROFILE", str(home))
    return home


@pytest.fixture
def package_manager() -> FakePackageManager:
    return FakePackageManager()


@pytest.fixture
def filesystem() -> RecordingFilesystem:
    return RecordingFilesystem()


@pytest.fixture
def prober(package_manager: FakePackageManager, filesystem: RecordingFilesystem) -> StateProber:
    return StateProber(package_manager, filesystem)


@pytest.fixture
def engine(
    package_manager: FakePackageManager, filesystem: RecordingFilesystem, prober: StateProber
) -> ConvergenceEngine:
    return ConvergenceEngine(package_manager, filesystem, prober, clock=lambda: FIXED_NOW)
