from __future__ import annotations

import tomllib
from pathlib import Path

import pytest
from typer.testing import CliRunner

from dotstrap.cli import app
from dotstrap.config import DEFAULT_CONFIG_FILENAME, Config
from dotstrap.coordinator import RunCoordinator
from dotstrap.environment import Environment
from dotstrap.journal import BackupJournal
from dotstrap.models import ExitKind, ExitStatus

from conftest import FakePackageManager, RecordingFilesystem

runner = CliRunner()


def _write_config(directory: Path, body: str) -> Path:
    config_path = directory / DEFAULT_CONFIG_FILENAME
    config_path.write_text(body)
    return config_path


@pytest.fixture
def fake_manager(monkeypatch: pytest.MonkeyPatch) -> FakePackageManager:
    manager = FakePackageManager()

    def build(config: Config) -> RunCoordinator:
        return RunCoordinator(
            manager,
            RecordingFilesystem(),
            Environment(environ={}),
            BackupJournal.load(config.settings.journal_path),
        )

    monkeypatch.setattr("dotstrap.cli._build_coordinator", build)
    return manager


GROUP_CONFIG = """
[[groups]]
name = "essentials"
packages = ["git", "jq", "vcredist"]
"""


def test_apply_reports_outcomes_and_reboot(tmp_path: Path, fake_manager: FakePackageManager) -> None:
    fake_manager.installed = {"git"}
    fake_manager.results["vcredist"] = ExitStatus(ExitKind.SUCCESS_REBOOT_REQUIRED, 3010)
    config_path = _write_config(tmp_path, GROUP_CONFIG)

    result = runner.invoke(app, ["apply", "--config", str(config_path)])

    assert result.exit_code == 0
    assert "2 created" in result.stdout
    assert "1 skipped" in result.stdout
    assert "Reboot required" in result.stdout
    assert fake_manager.install_calls == ["jq", "vcredist"]


def test_apply_package_failure_is_not_fatal(tmp_path: Path, fake_manager: FakePackageManager) -> None:
    fake_manager.results["jq"] = ExitStatus(ExitKind.FAILURE, 1)
    config_path = _write_config(tmp_path, GROUP_CONFIG)

    result = runner.invoke(app, ["apply", "--config", str(config_path)])

    assert result.exit_code == 0
    assert "1 failed" in result.stdout
    assert fake_manager.install_calls == ["git", "jq", "vcredist"]


def test_apply_dry_run_installs_nothing(tmp_path: Path, fake_manager: FakePackageManager) -> None:
    config_path = _write_config(tmp_path, GROUP_CONFIG)

    result = runner.invoke(app, ["apply", "--config", str(config_path), "--dry-run"])

    assert result.exit_code == 0
    assert "Dry run" in result.stdout
    assert "3 skipped" in result.stdout
    assert fake_manager.install_calls == []


def test_apply_with_package_list_override_and_group_filter(tmp_path: Path, fake_manager: FakePackageManager) -> None:
    config_path = _write_config(tmp_path, GROUP_CONFIG)
    override = tmp_path / "extra.txt"
    override.write_text("ripgrep # search\n")

    result = runner.invoke(app, ["apply", "--config", str(config_path), "--packages", str(override)])
    assert result.exit_code == 0
    assert fake_manager.install_calls == ["git", "jq", "vcredist", "ripgrep"]

    fake_manager.install_calls.clear()
    fake_manager.installed.clear()
    result = runner.invoke(app, ["apply", "--config", str(config_path), "--group", "essentials", "--skip-links"])
    assert result.exit_code == 0
    assert fake_manager.install_calls == ["git", "jq", "vcredist"]


def test_apply_rejects_malformed_declarations(tmp_path: Path, fake_manager: FakePackageManager) -> None:
    config_path = _write_config(
        tmp_path,
        """
[[groups]]
name = "broken"
packages = "git"

[[links]]
target = "bashrc"
""",
    )

    result = runner.invoke(app, ["apply", "--config", str(config_path)])

    assert result.exit_code == 1
    assert "2 problem(s)" in result.stdout
    assert fake_manager.install_calls == []


def test_apply_unknown_group_exits(tmp_path: Path, fake_manager: FakePackageManager) -> None:
    config_path = _write_config(tmp_path, GROUP_CONFIG)

    result = runner.invoke(app, ["apply", "--config", str(config_path), "--group", "games"])

    assert result.exit_code == 1
    assert "Unknown group" in result.stdout


def test_apply_missing_package_manager_exits(tmp_path: Path, fake_manager: FakePackageManager) -> None:
    fake_manager.available = False
    config_path = _write_config(tmp_path, GROUP_CONFIG)

    result = runner.invoke(app, ["apply", "--config", str(config_path)])

    assert result.exit_code == 1
    assert "not available" in result.stdout


def test_apply_missing_config_exits(tmp_path: Path) -> None:
    result = runner.invoke(app, ["apply", "--config", str(tmp_path / "absent.toml")])

    assert result.exit_code == 1
    assert "dotstrap init" in result.stdout


def test_select_prompts_per_group(tmp_path: Path, fake_manager: FakePackageManager) -> None:
    config_path = _write_config(
        tmp_path,
        """
[[groups]]
name = "cli"
packages = ["git"]

[[groups]]
name = "desktop"
packages = ["gimp"]
""",
    )

    result = runner.invoke(app, ["apply", "--config", str(config_path), "--select"], input="n\ny\n")

    assert result.exit_code == 0
    assert fake_manager.install_calls == ["gimp"]


def test_status_lists_states(tmp_path: Path, fake_manager: FakePackageManager) -> None:
    fake_manager.installed = {"git", "jq", "vcredist"}
    config_path = _write_config(tmp_path, GROUP_CONFIG)

    result = runner.invoke(app, ["status", "--config", str(config_path)])

    assert result.exit_code == 0
    assert "satisfies" in result.stdout
    assert "All declared resources are in place" in result.stdout
    assert fake_manager.install_calls == []


def test_init_writes_loadable_config(tmp_path: Path) -> None:
    config_path = tmp_path / "dotstrap.toml"

    result = runner.invoke(app, ["init", "--config", str(config_path), "--package-manager", "apt"])

    assert result.exit_code == 0
    data = tomllib.loads(config_path.read_text())
    assert data["settings"]["package_manager"] == "apt"
    assert data["groups"][0]["name"] == "essentials"
    assert data["links"][0]["path"] == "~/.wezterm.lua"

    again = runner.invoke(app, ["init", "--config", str(config_path)])
    assert again.exit_code == 1
    assert "already" in again.stdout


def test_init_rejects_unknown_package_manager(tmp_path: Path) -> None:
    result = runner.invoke(app, ["init", "--config", str(tmp_path / "dotstrap.toml"), "--package-manager", "pacman"])

    assert result.exit_code == 1
    assert not (tmp_path / "dotstrap.toml").exists()


def test_backups_without_records(tmp_path: Path) -> None:
    config_path = _write_config(tmp_path, "[settings]\n")

    result = runner.invoke(app, ["backups", "--config", str(config_path)])

    assert result.exit_code == 0
    assert "No backups recorded" in result.stdout


def test_apply_reports_results_when_journal_cannot_be_written(
    tmp_path: Path, fake_manager: FakePackageManager, monkeypatch: pytest.MonkeyPatch
) -> None:
    fake_manager.results["vcredist"] = ExitStatus(ExitKind.SUCCESS_REBOOT_REQUIRED, 3010)
    (tmp_path / "bashrc").write_text("alias ll='ls -al'\n")
    home = tmp_path / "home"
    home.mkdir()
    (home / ".bashrc").write_text("local edits\n")
    config_path = _write_config(
        tmp_path,
        GROUP_CONFIG + f'\n[[links]]\npath = "{(home / ".bashrc").as_posix()}"\ntarget = "bashrc"\n',
    )

    def read_only_save(_self: BackupJournal) -> None:
        raise PermissionError("state directory is read-only")

    monkeypatch.setattr(BackupJournal, "save", read_only_save)

    result = runner.invoke(app, ["apply", "--config", str(config_path), "--yes"])

    assert result.exit_code == 0
    assert "1 replaced" in result.stdout
    assert "Reboot required" in result.stdout
    assert (home / ".bashrc").is_symlink()


def test_backups_with_corrupt_journal_exits(tmp_path: Path) -> None:
    config_path = _write_config(tmp_path, "[settings]\n")
    journal_path = tmp_path / ".dotstrap" / "backups.toml"
    journal_path.parent.mkdir()
    journal_path.write_text("backups = [")

    result = runner.invoke(app, ["backups", "--config", str(config_path)])

    assert result.exit_code == 1
    assert "corrupt" in result.stdout
