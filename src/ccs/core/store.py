"""Settings store — durable sparse per-directory overrides.

Thin wrapper around SQLite.  Every public method:

1. Normalises the directory through :class:`ProjectScope` (``OutOfScope``
   is raised before any I/O).
2. Validates field names and values (``InvalidField`` / ``InvalidValue``).
3. Runs its SQL under the store lock, mutations inside one
   ``BEGIN IMMEDIATE`` transaction.

A partial write upserts only the rows it names, inside the transaction, so
it always merges into the latest committed state: two writers touching
different fields of the same directory both survive.

This module never resolves inheritance; that is ``resolver.py``'s job.
"""

from __future__ import annotations

import json
import sqlite3
import threading
from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from types import MappingProxyType
from typing import Any

import structlog

from ccs.core.db import open_db
from ccs.core.errors import InvalidField, InvalidValue, RecordCorrupt, ServiceClosed, StoreCorrupt
from ccs.core.models import SettingField, expand_selector, validate_fields, validate_value
from ccs.core.paths import ProjectScope
from ccs.core.settings import Settings

logger = structlog.get_logger()

_UPSERT = """
    INSERT INTO directory_settings (directory_path, field, value_json, updated_utc)
    VALUES (?, ?, ?, ?)
    ON CONFLICT(directory_path, field)
    DO UPDATE SET value_json = excluded.value_json, updated_utc = excluded.updated_utc
"""


@dataclass(frozen=True)
class SettingsRecord:
    """The sparse overrides stored for one directory.

    ``values`` maps field names (``"emojis.normal"``) to values; a missing
    key means "inherit".
    """

    directory: str
    values: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))

    def __contains__(self, name: object) -> bool:
        if not isinstance(name, str):
            return False
        return SettingField.parse(name).value in self.values

    def get(self, name: str | SettingField, default: Any = None) -> Any:
        return self.values.get(SettingField.parse(name).value, default)

    @property
    def is_empty(self) -> bool:
        return not self.values


class SettingsStore:
    """SQLite-backed settings records for one project root."""

    def __init__(self, scope: ProjectScope, conn: sqlite3.Connection) -> None:
        self.scope = scope
        self._conn = conn
        self._lock = threading.RLock()
        self._closed = False

    @classmethod
    def open(cls, settings: Settings) -> SettingsStore:
        """Open the store described by *settings*.

        Raises
        ------
        StoreCorrupt
            If the database file is not a usable SQLite database.
        """
        assert settings.project_root is not None  # guaranteed by model_validator
        conn = open_db(settings.db_path, busy_timeout_s=settings.busy_timeout_s)
        return cls(ProjectScope(settings.project_root), conn)

    @property
    def project_root(self) -> str:
        return self.scope.root_path

    # ── Writes ──────────────────────────────────────────────
    def write(self, path: str | Path, fields: Mapping[str, Any]) -> list[SettingField]:
        """Merge *fields* into the record for *path*, creating it if needed.

        Fields not named in *fields* are left untouched.  An empty *fields*
        writes nothing (and creates no record).  Returns the fields written.

        Raises
        ------
        OutOfScope
            If *path* is outside the project root.
        InvalidField / InvalidValue
            If any field name or value is not acceptable.
        """
        key = self.scope.key_for(path)
        validated = validate_fields(dict(fields))
        if not validated:
            return []

        now = datetime.now(timezone.utc).isoformat()
        with self._transaction():
            self._conn.executemany(
                _UPSERT,
                [(key, f.value, _encode(value), now) for f, value in validated.items()],
            )

        logger.info(
            "settings_written",
            directory=key or "<root>",
            fields=sorted(f.value for f in validated),
        )
        return list(validated)

    def reset_field(self, path: str | Path, name: str | SettingField) -> list[SettingField]:
        """Remove *name* (a field or a group like ``emojis``) from *path*'s record.

        The record disappears when its last field is removed.  Resetting a
        field that is not set is a no-op.  Returns the fields actually
        removed.
        """
        key = self.scope.key_for(path)
        targets = expand_selector(name)
        with self._transaction():
            present = {
                row["field"]
                for row in self._conn.execute(
                    "SELECT field FROM directory_settings WHERE directory_path = ?", (key,)
                )
            }
            removed = [f for f in targets if f.value in present]
            if removed:
                self._conn.executemany(
                    "DELETE FROM directory_settings WHERE directory_path = ? AND field = ?",
                    [(key, f.value) for f in removed],
                )

        if removed:
            logger.info(
                "field_reset",
                directory=key or "<root>",
                fields=[f.value for f in removed],
                record_deleted=len(present) == len(removed),
            )
        return removed

    def delete(self, path: str | Path) -> bool:
        """Remove the whole record for *path*.  Returns whether one existed."""
        key = self.scope.key_for(path)
        with self._transaction():
            cursor = self._conn.execute(
                "DELETE FROM directory_settings WHERE directory_path = ?", (key,)
            )
            deleted = cursor.rowcount > 0
        if deleted:
            logger.info("settings_deleted", directory=key or "<root>")
        return deleted

    def append_to_list(
        self,
        path: str | Path,
        name: str | SettingField,
        item: str,
        *,
        default: Sequence[str] = (),
    ) -> tuple[str, ...]:
        """Store at *path* the list in effect there plus *item*.

        The list in effect is read from the nearest directory in the chain
        that defines *name* (else *default*) inside the same ``BEGIN
        IMMEDIATE`` transaction that writes the result, so a concurrent
        append through any connection is never lost.  *item* is not
        duplicated.  Returns the stored list.

        Raises
        ------
        InvalidField
            If *name* is not a list field.
        """
        setting = SettingField.parse(name)
        if not setting.is_list:
            raise InvalidField(setting.value, reason="not a pattern list field")
        (item,) = validate_value(setting, [item])
        keys = [self.scope.key_for(p) for p in self.scope.chain(path)]

        now = datetime.now(timezone.utc).isoformat()
        with self._transaction():
            patterns = tuple(default)
            for key in reversed(keys):
                row = self._conn.execute(
                    "SELECT directory_path, field, value_json FROM directory_settings "
                    "WHERE directory_path = ? AND field = ?",
                    (key, setting.value),
                ).fetchone()
                if row is not None:
                    _, patterns = _decode_row(row)
                    break
            if item not in patterns:
                patterns = (*patterns, item)
            self._conn.execute(_UPSERT, (keys[-1], setting.value, _encode(patterns), now))

        logger.info(
            "pattern_added",
            directory=keys[-1] or "<root>",
            field=setting.value,
            count=len(patterns),
        )
        return patterns

    # ── Reads ───────────────────────────────────────────────
    def read(self, path: str | Path) -> SettingsRecord:
        """Return the raw sparse record for *path* (empty if none).

        Raises
        ------
        RecordCorrupt
            If a stored row cannot be decoded.
        StoreCorrupt
            If SQLite reports a database error.
        ServiceClosed
            If the store has been closed.
        """
        key = self.scope.key_for(path)
        with self._guard():
            return self._read_key(key)

    def has_record(self, path: str | Path) -> bool:
        key = self.scope.key_for(path)
        with self._guard():
            row = self._conn.execute(
                "SELECT 1 FROM directory_settings WHERE directory_path = ? LIMIT 1", (key,)
            ).fetchone()
        return row is not None

    def list_directories_with_settings(self) -> list[str]:
        """DirectoryPaths that currently have at least one field set."""
        with self._guard():
            rows = self._conn.execute(
                "SELECT DISTINCT directory_path FROM directory_settings ORDER BY directory_path"
            ).fetchall()
        return [self.scope.path_for_key(row["directory_path"]) for row in rows]

    def records(self) -> list[SettingsRecord]:
        """Every stored record, ordered by directory."""
        with self._guard():
            rows = self._conn.execute(
                "SELECT directory_path, field, value_json FROM directory_settings "
                "ORDER BY directory_path, field"
            ).fetchall()
        grouped: dict[str, dict[str, Any]] = {}
        for row in rows:
            name, value = _decode_row(row)
            grouped.setdefault(row["directory_path"], {})[name] = value
        return [
            SettingsRecord(self.scope.path_for_key(key), MappingProxyType(values))
            for key, values in grouped.items()
        ]

    def close(self) -> None:
        with self._lock:
            self._closed = True
            self._conn.close()

    # ── Internal helpers ────────────────────────────────────
    def _read_key(self, key: str) -> SettingsRecord:
        rows = self._conn.execute(
            "SELECT directory_path, field, value_json FROM directory_settings "
            "WHERE directory_path = ? ORDER BY field",
            (key,),
        ).fetchall()
        values = dict(_decode_row(row) for row in rows)
        return SettingsRecord(self.scope.path_for_key(key), MappingProxyType(values))

    @contextmanager
    def _guard(self) -> Iterator[None]:
        """Serialise access and translate SQLite failures into StoreCorrupt.

        A closed store raises :class:`ServiceClosed` before touching SQLite.
        """
        with self._lock:
            if self._closed:
                raise ServiceClosed(self.project_root)
            try:
                yield
            except sqlite3.Error as exc:
                raise StoreCorrupt(f"settings database error: {exc}") from exc

    @contextmanager
    def _transaction(self) -> Iterator[None]:
        with self._guard():
            self._conn.execute("BEGIN IMMEDIATE")
            try:
                yield
            except BaseException:
                if self._conn.in_transaction:
                    self._conn.execute("ROLLBACK")
                raise
            self._conn.execute("COMMIT")


def _encode(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, separators=(",", ":"))


def _decode_row(row: sqlite3.Row) -> tuple[str, Any]:
    """Decode one stored row into ``(field_name, value)``.

    Raises
    ------
    RecordCorrupt
        Unknown field name, malformed JSON or a mistyped value.
    """
    directory = row["directory_path"] or "<root>"
    try:
        setting = SettingField.parse(row["field"])
        value = validate_value(setting, json.loads(row["value_json"]))
    except json.JSONDecodeError as exc:
        raise RecordCorrupt(directory, f"malformed value for {row['field']}: {exc}") from exc
    except (InvalidField, InvalidValue) as exc:
        raise RecordCorrupt(directory, f"unexpected row {row['field']}: {exc}") from exc
    return setting.value, value

