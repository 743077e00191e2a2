"""Project registry.

Records live in memory as an insertion-ordered mapping keyed by project
path; every mutation is written through a ``RegistryStore``. The file store
keeps the historical ``path|name|schedule|status`` format and replaces the
file atomically so concurrent readers never observe a partial write.
"""

from __future__ import annotations

import dataclasses
import os
from pathlib import Path
from typing import Protocol

from compose_updater.logging import get_logger
from compose_updater.models import ProjectRecord, ProjectStatus

log = get_logger("compose_updater.registry")

_FIELD_SEPARATOR = "|"


class RegistryStore(Protocol):
    """Persistence port for the registry."""

    def load(self) -> list[ProjectRecord]: ...

    def save(self, records: list[ProjectRecord]) -> None: ...


class InMemoryRegistryStore:
    """Volatile store, used by tests and dry runs."""

    def __init__(self, records: list[ProjectRecord] | None = None) -> None:
        self.records: list[ProjectRecord] = list(records or [])
        self.save_count = 0

    def load(self) -> list[ProjectRecord]:
        return list(self.records)

    def save(self, records: list[ProjectRecord]) -> None:
        self.records = list(records)
        self.save_count += 1


class FileRegistryStore:
    """Line-oriented, pipe-delimited registry file."""

    def __init__(self, path: Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> list[ProjectRecord]:
        if not self._path.exists():
            return []

        records: list[ProjectRecord] = []
        for lineno, line in enumerate(self._path.read_text(encoding="utf-8").splitlines(), 1):
            if not line.strip():
                continue
            record = self._parse_line(line)
            if record is None:
                log.warning("registry_line_skipped", path=str(self._path), line=lineno)
                continue
            records.append(record)
        return records

    def save(self, records: list[ProjectRecord]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_name(f".{self._path.name}.{os.getpid()}.tmp")
        content = "".join(self._format_line(record) + "\n" for record in records)
        try:
            tmp_path.write_text(content, encoding="utf-8")
            tmp_path.replace(self._path)
        except OSError:
            tmp_path.unlink(missing_ok=True)
            raise

    @staticmethod
    def _parse_line(line: str) -> ProjectRecord | None:
        # Paths come first and may not contain "|"; schedules may contain
        # spaces but never "|", so splitting from the right is unambiguous.
        parts = line.rsplit(_FIELD_SEPARATOR, 3)
        if len(parts) != 4:
            return None
        path, name, schedule, status = parts
        if not path or not schedule:
            return None
        try:
            project_status = ProjectStatus(status.strip())
        except ValueError:
            return None
        return ProjectRecord(path=path, name=name, schedule=schedule, status=project_status)

    @staticmethod
    def _format_line(record: ProjectRecord) -> str:
        return _FIELD_SEPARATOR.join(
            (record.path, record.name, record.schedule, record.status.value)
        )


class ProjectRegistry:
    """Durable set of registered projects, keyed by path."""

    def __init__(self, store: RegistryStore) -> None:
        self._store = store
        self._records: dict[str, ProjectRecord] = {}
        self.reload()

    def reload(self) -> None:
        """Re-read the backing store, dropping in-memory state."""
        self._records = {}
        for record in self._store.load():
            # Later duplicates win, matching upsert semantics
            self._records[record.path] = record

    def list(self) -> list[ProjectRecord]:
        """Return all records in insertion order."""
        return list(self._records.values())

    def get(self, path: str) -> ProjectRecord | None:
        return self._records.get(path)

    def __contains__(self, path: object) -> bool:
        return path in self._records

    def __len__(self) -> int:
        return len(self._records)

    def add(self, record: ProjectRecord) -> None:
        """Insert ``record``, replacing any existing record for the same path."""
        records = dict(self._records)
        records[record.path] = record
        self._persist(records)
        log.info("registry_project_added", path=record.path, schedule=record.schedule)

    def remove(self, path: str) -> bool:
        """Delete the record for ``path``. Returns False if it was not registered."""
        if path not in self._records:
            return False
        records = dict(self._records)
        del records[path]
        self._persist(records)
        log.info("registry_project_removed", path=path)
        return True

    def set_status(self, path: str, status: ProjectStatus) -> bool:
        """Change a record's status. Returns False if ``path`` is unknown."""
        record = self._records.get(path)
        if record is None:
            return False
        records = dict(self._records)
        records[path] = dataclasses.replace(record, status=status)
        self._persist(records)
        log.info("registry_status_changed", path=path, status=status.value)
        return True

    def names_for(self, name: str) -> list[str]:
        """Return every registered path whose derived name equals ``name``."""
        return [record.path for record in self._records.values() if record.name == name]

    def _persist(self, records: dict[str, ProjectRecord]) -> None:
        # In-memory state changes only after a successful save
        self._store.save(list(records.values()))
        self._records = records
