"""Backup journal persistence for dotstrap."""

from __future__ import annotations

import tomllib
from datetime import datetime
from pathlib import Path
from typing import Iterable

from tomli_w import dump as toml_dump

from .config import ConfigError
from .models import BackupRecord


class BackupJournal:
    """Records every backup taken so operators can find and prune them.

    Entries are only ever appended; dotstrap never deletes backups.
    """

    def __init__(self, path: Path, records: list[BackupRecord] | None = None) -> None:
        self.path = path
        self._records: list[BackupRecord] = records or []

    @classmethod
    def load(cls, path: Path) -> "BackupJournal":
        if not path.exists():
            return cls(path, [])

        try:
            with path.open("rb") as handle:
                data = tomllib.load(handle)
            records = [
                BackupRecord(
                    original_path=Path(item["original_path"]),
                    backup_path=Path(item["backup_path"]),
                    timestamp=_as_datetime(item["timestamp"]),
                )
                for item in data.get("backups", [])
            ]
        except (tomllib.TOMLDecodeError, KeyError, TypeError, ValueError) as exc:
            raise ConfigError(f"Backup journal '{path}' is corrupt: {exc}") from exc
        return cls(path, records)

    def extend(self, records: Iterable[BackupRecord]) -> None:
        self._records.extend(records)

    def save(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = {"backups": [self._record_to_dict(record) for record in self._records]}
        with self.path.open("wb") as handle:
            toml_dump(payload, handle)

    def records(self) -> list[BackupRecord]:
        return list(self._records)

    @staticmethod
    def _record_to_dict(record: BackupRecord) -> dict[str, object]:
        return {
            "original_path": str(record.original_path),
            "backup_path": str(record.backup_path),
            "timestamp": record.timestamp,
        }


def _as_datetime(value: object) -> datetime:
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))
