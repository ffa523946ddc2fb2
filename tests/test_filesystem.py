from __future__ import annotations

import ntpath
import os
from pathlib import Path

import pytest

from dotstrap.filesystem import LocalFilesystem, _strip_extended_prefix, link_points_to


@pytest.fixture
def fs() -> LocalFilesystem:
    return LocalFilesystem()


def test_exists_counts_dangling_links(tmp_path: Path, fs: LocalFilesystem) -> None:
    link = tmp_path / "dangling"
    link.symlink_to(tmp_path / "nowhere")

    assert fs.exists(link)
    assert fs.is_link(link)
    assert not fs.exists(tmp_path / "missing")
    assert not fs.exists(tmp_path / "missing" / "child")


def test_link_target_returns_recorded_target(tmp_path: Path, fs: LocalFilesystem) -> None:
    target = tmp_path / "target.txt"
    target.write_text("value\n")
    link = tmp_path / "link.txt"
    link.symlink_to(target)
    plain = tmp_path / "plain.txt"
    plain.write_text("data\n")

    assert fs.link_target(link) == target
    assert fs.link_target(plain) is None
    assert fs.link_target(tmp_path / "missing") is None


def test_create_link_uses_absolute_target(tmp_path: Path, fs: LocalFilesystem) -> None:
    target = tmp_path / "target.txt"
    target.write_text("value\n")
    link = tmp_path / "link.txt"

    fs.create_link(link, target)

    assert os.readlink(link) == str(target)
    assert link.read_text() == "value\n"


def test_copy_directory_and_file(tmp_path: Path, fs: LocalFilesystem) -> None:
    source_dir = tmp_path / "src"
    (source_dir / "nested").mkdir(parents=True)
    (source_dir / "nested" / "file.txt").write_text("data\n")
    source_file = tmp_path / "single.txt"
    source_file.write_text("one\n")

    fs.copy(source_dir, tmp_path / "dst")
    fs.copy(source_file, tmp_path / "single.copy")

    assert (tmp_path / "dst" / "nested" / "file.txt").read_text() == "data\n"
    assert (tmp_path / "single.copy").read_text() == "one\n"


def test_copy_preserves_symlink(tmp_path: Path, fs: LocalFilesystem) -> None:
    target = tmp_path / "target.txt"
    target.write_text("content\n")
    link = tmp_path / "link.txt"
    link.symlink_to(target)

    fs.copy(link, tmp_path / "copy.txt")

    assert (tmp_path / "copy.txt").is_symlink()
    assert os.readlink(tmp_path / "copy.txt") == os.readlink(link)


def test_remove_handles_files_dirs_and_links(tmp_path: Path, fs: LocalFilesystem) -> None:
    directory = tmp_path / "dir"
    (directory / "child").mkdir(parents=True)
    (directory / "child" / "data").write_text("x")
    target_dir = tmp_path / "target_dir"
    target_dir.mkdir()
    dir_link = tmp_path / "dir_link"
    dir_link.symlink_to(target_dir)

    fs.remove(directory)
    fs.remove(dir_link)
    fs.remove(tmp_path / "missing")

    assert not directory.exists()
    assert not dir_link.is_symlink()
    assert target_dir.is_dir()


def test_ensure_dir_creates_parents(tmp_path: Path, fs: LocalFilesystem) -> None:
    deep = tmp_path / "a" / "b" / "c"
    fs.ensure_dir(deep)
    fs.ensure_dir(deep)

    assert deep.is_dir()


def test_link_points_to_normalises_relative_targets(tmp_path: Path) -> None:
    link_path = tmp_path / "home" / ".bashrc"
    expected = tmp_path / "dotfiles" / "bashrc"

    assert link_points_to(Path("../dotfiles/bashrc"), link_path, expected)
    assert link_points_to(expected, link_path, expected)
    assert not link_points_to(Path("../dotfiles/bashrc.bak"), link_path, expected)


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        (r"\\?\C:\dotfiles\wezterm.lua", r"C:\dotfiles\wezterm.lua"),
        (r"\\?\UNC\server\share\wezterm.lua", r"\\server\share\wezterm.lua"),
        (r"C:\dotfiles\wezterm.lua", r"C:\dotfiles\wezterm.lua"),
        ("../dotfiles/bashrc", "../dotfiles/bashrc"),
    ],
)
def test_strip_extended_prefix(raw: str, expected: str) -> None:
    assert _strip_extended_prefix(raw) == expected


def test_link_points_to_accepts_windows_extended_targets(monkeypatch: pytest.MonkeyPatch) -> None:
    link_path = Path(r"C:\Users\me\.wezterm.lua")
    expected = Path(r"C:\dotfiles\wezterm.lua")

    with monkeypatch.context() as patched:
        patched.setattr(os, "path", ntpath)
        matches = link_points_to(Path(r"\\?\C:\dotfiles\wezterm.lua"), link_path, expected)
        differs = link_points_to(Path(r"\\?\C:\dotfiles\other.lua"), link_path, expected)

    assert matches
    assert not differs
