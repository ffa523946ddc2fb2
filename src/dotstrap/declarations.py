"""Reading package groups, package lists and link mappings into declarations."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Iterable, Sequence

from .config import Config, ConfigError, expand_path
from .models import Declaration, LinkDeclaration, PackageDeclaration, ParseError

logger = logging.getLogger(__name__)

COMMENT_MARKER = "#"


def parse_package_lines(text: str, *, source: str = "<list>") -> list[PackageDeclaration]:
    """Parse a line-oriented package list.

    Blank lines and comment-only lines are ignored, ``#`` truncates the rest of a
    line and surrounding whitespace is trimmed.
    """

    declarations: list[PackageDeclaration] = []
    for line in text.splitlines():
        name = line.split(COMMENT_MARKER, 1)[0].strip()
        if name:
            declarations.append(PackageDeclaration(name=name))
    logger.debug("Read %d package(s) from %s", len(declarations), source)
    return declarations


def parse_groups(raw_groups: Sequence[Any], *, source: str = "groups") -> tuple[list[PackageDeclaration], list[ParseError]]:
    """Parse ``[[groups]]`` tables into package declarations tagged with their group."""

    declarations: list[PackageDeclaration] = []
    errors: list[ParseError] = []

    for index, group in enumerate(raw_groups):
        location = f"groups[{index}]"
        if not isinstance(group, dict):
            errors.append(ParseError(source, location, "group must be a table"))
            continue

        name = group.get("name")
        if not isinstance(name, str) or not name.strip():
            errors.append(ParseError(source, location, "group requires a non-empty 'name'"))
            continue
        name = name.strip()
        location = f"groups[{index}] '{name}'"

        description = group.get("description")
        if description is not None and not isinstance(description, str):
            errors.append(ParseError(source, location, "'description' must be a string"))

        packages = group.get("packages", [])
        if not isinstance(packages, list):
            errors.append(ParseError(source, location, "'packages' must be an array"))
            continue

        for position, entry in enumerate(packages):
            entry_location = f"{location} packages[{position}]"
            if isinstance(entry, str):
                package_name, package_description = entry, None
            elif isinstance(entry, dict):
                package_name = entry.get("name")
                package_description = entry.get("description")
                if package_description is not None and not isinstance(package_description, str):
                    errors.append(ParseError(source, entry_location, "'description' must be a string"))
                    continue
            else:
                errors.append(ParseError(source, entry_location, "package entry must be a table or a string"))
                continue

            if not isinstance(package_name, str) or not package_name.strip():
                errors.append(ParseError(source, entry_location, "package requires a non-empty 'name'"))
                continue

            declarations.append(
                PackageDeclaration(name=package_name.strip(), group=name, description=package_description)
            )

    return declarations, errors


def parse_links(
    raw_links: Sequence[Any],
    *,
    dotfiles_root: Path,
    source: str = "links",
) -> tuple[list[LinkDeclaration], list[ParseError]]:
    """Parse ``[[links]]`` tables. Link paths must be absolute (``~`` allowed)."""

    declarations: list[LinkDeclaration] = []
    errors: list[ParseError] = []

    for index, link in enumerate(raw_links):
        location = f"links[{index}]"
        if not isinstance(link, dict):
            errors.append(ParseError(source, location, "link must be a table"))
            continue

        raw_path = link.get("path")
        raw_target = link.get("target")
        description = link.get("description", "")
        if not isinstance(raw_path, str) or not raw_path.strip():
            errors.append(ParseError(source, location, "link requires a non-empty 'path'"))
            continue
        if not isinstance(raw_target, str) or not raw_target.strip():
            errors.append(ParseError(source, location, "link requires a non-empty 'target'"))
            continue
        if not isinstance(description, str):
            errors.append(ParseError(source, location, "'description' must be a string"))
            continue

        if not Path(os.path.expandvars(raw_path.strip())).expanduser().is_absolute():
            errors.append(ParseError(source, location, f"link path '{raw_path}' must be absolute"))
            continue

        declarations.append(
            LinkDeclaration(
                link_path=expand_path(raw_path.strip(), base_dir=dotfiles_root, resolve=False),
                target_path=expand_path(raw_target.strip(), base_dir=dotfiles_root),
                description=description,
            )
        )

    return declarations, errors


def deduplicate(declarations: Iterable[Declaration]) -> list[Declaration]:
    """Drop repeated identities, keeping the first occurrence and its position."""

    seen: set[tuple[str, str]] = set()
    unique: list[Declaration] = []
    for declaration in declarations:
        key = declaration.key()
        if key in seen:
            logger.debug("Ignoring duplicate declaration %s", declaration.label())
            continue
        seen.add(key)
        unique.append(declaration)
    return unique


def load_declarations(
    config: Config,
    package_lists: Sequence[Path] | None = None,
) -> tuple[list[Declaration], list[ParseError]]:
    """Collect every declaration from ``config``.

    Order is groups, then line lists (``package_lists`` overrides the configured
    ones), then links. Problems are returned rather than raised.
    """

    source = str(config.config_path)
    declarations: list[Declaration] = []
    errors: list[ParseError] = []

    group_packages, group_errors = parse_groups(config.groups, source=source)
    declarations.extend(group_packages)
    errors.extend(group_errors)

    lists = config.settings.package_lists if package_lists is None else tuple(package_lists)
    for list_path in lists:
        try:
            text = list_path.read_text(encoding="utf-8-sig")
        except FileNotFoundError:
            errors.append(ParseError(str(list_path), "file", "package list does not exist"))
            continue
        except (OSError, UnicodeDecodeError) as exc:
            errors.append(ParseError(str(list_path), "file", f"cannot read package list: {exc}"))
            continue
        declarations.extend(parse_package_lines(text, source=str(list_path)))

    links, link_errors = parse_links(config.links, dotfiles_root=config.settings.dotfiles_root, source=source)
    declarations.extend(links)
    errors.extend(link_errors)

    return deduplicate(declarations), errors


def group_names(declarations: Iterable[Declaration]) -> list[str]:
    """Return group names in first-seen order."""

    names: list[str] = []
    for declaration in declarations:
        if isinstance(declaration, PackageDeclaration) and declaration.group and declaration.group not in names:
            names.append(declaration.group)
    return names


def select_groups(declarations: Sequence[Declaration], names: Iterable[str]) -> list[Declaration]:
    """Keep package declarations from the named groups; links are always kept."""

    wanted = list(names)
    known = set(group_names(declarations))
    for name in wanted:
        if name not in known:
            raise ConfigError(f"Unknown group '{name}'")

    return [
        declaration
        for declaration in declarations
        if not isinstance(declaration, PackageDeclaration) or declaration.group in wanted
    ]
