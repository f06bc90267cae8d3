"""Settings service: the collaborator-facing API for one project root.

Bundles the durable store, the global defaults and a memo of resolved
directories.  Every mutation goes through :meth:`SettingsService.mark_changed`,
which drops the memo and emits a change event before the mutating call
returns; there is no public way to change settings without both.

Services are normally obtained from :mod:`ccs.core.registry`, which keeps at
most one live instance per project root.
"""

from __future__ import annotations

import threading
from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog

from ccs.core.defaults import load_global_defaults
from ccs.core.errors import CCSError, InvalidField, ServiceClosed
from ccs.core.events import ChangeReason, SettingsChangeBus, SettingsChanged
from ccs.core.models import SettingField
from ccs.core.paths import ProjectScope
from ccs.core.provenance import PatternSource, patterns_with_sources
from ccs.core.reset import reset_field
from ccs.core.resolver import Resolution, resolve
from ccs.core.settings import Settings
from ccs.core.store import SettingsRecord, SettingsStore

if TYPE_CHECKING:
    from ccs.legacy import MigrationResult

logger = structlog.get_logger()


class SettingsService:
    """Read, write, reset and resolve settings under one project root."""

    def __init__(
        self,
        settings: Settings,
        store: SettingsStore,
        *,
        defaults: Mapping[str, Any],
        bus: SettingsChangeBus | None = None,
    ) -> None:
        self.settings = settings
        self.store = store
        self.defaults = defaults
        self.bus = bus or SettingsChangeBus()
        self._resolutions: dict[str, Resolution] = {}
        self._generation = 0
        self._closed = False
        self._lock = threading.RLock()

    @classmethod
    def open(
        cls,
        settings: Settings,
        *,
        bus: SettingsChangeBus | None = None,
        migrate_legacy: bool = False,
    ) -> SettingsService:
        """Open the store and load global defaults for *settings*.

        With *migrate_legacy*, legacy settings files are imported before the
        service is returned, so no resolution can run ahead of them.

        Raises
        ------
        StoreCorrupt
            If the settings database cannot be opened.
        DefaultsInvalid
            If the user-level defaults file is malformed.
        """
        defaults = load_global_defaults(settings.defaults_file)
        store = SettingsStore.open(settings)
        logger.debug("settings_service_opened", project_root=store.project_root)
        service = cls(settings, store, defaults=defaults, bus=bus)
        if migrate_legacy:
            try:
                service.migrate()
            except CCSError:
                service.close()
                raise
        return service

    @property
    def scope(self) -> ProjectScope:
        return self.store.scope

    @property
    def project_root(self) -> str:
        return self.store.project_root

    @property
    def closed(self) -> bool:
        return self._closed

    # ── Reads ───────────────────────────────────────────────
    def resolve(self, path: str | Path) -> Resolution:
        """Effective settings, local record, parent view and provenance for *path*.

        Raises :class:`ServiceClosed` if the service was closed at any point
        before the result is returned.  A result that ignored corrupt
        records is returned but not memoised.
        """
        self._ensure_open()
        target = self.scope.normalize(path)
        with self._lock:
            cached = self._resolutions.get(target)
            generation = self._generation
        if cached is not None:
            return cached

        resolution = resolve(self.scope, self.store.read, self.defaults, target)
        with self._lock:
            if self._closed:
                raise ServiceClosed(self.project_root)
            # A mutation that landed while we were reading makes this stale.
            if generation == self._generation and not resolution.dropped:
                self._resolutions[target] = resolution
        return resolution

    def read(self, path: str | Path) -> SettingsRecord:
        """Raw sparse record for *path* (empty if the directory has none)."""
        self._ensure_open()
        return self.store.read(path)

    def list_directories_with_settings(self) -> list[str]:
        self._ensure_open()
        return self.store.list_directories_with_settings()

    def patterns_with_sources(
        self,
        path: str | Path,
        name: str | SettingField = SettingField.EXCLUDE_PATTERNS,
    ) -> list[PatternSource]:
        return patterns_with_sources(self.resolve(path), name)

    def nearest_configured_directory(self, path: str | Path) -> str:
        """Closest directory at or above *path* that has a record, else the root.

        A file path is mapped to its directory first.
        """
        self._ensure_open()
        directory = self.scope.directory_for(path)
        configured = set(self.store.list_directories_with_settings())
        for candidate in reversed(self.scope.chain(directory)):
            if candidate in configured:
                return candidate
        return self.scope.root_path

    # ── Writes ──────────────────────────────────────────────
    def write(self, path: str | Path, fields: Mapping[str, Any]) -> list[SettingField]:
        """Merge *fields* into *path*'s record; see :meth:`SettingsStore.write`."""
        self._ensure_open()
        directory = self.scope.normalize(path)
        written = self.store.write(directory, fields)
        if written:
            self.mark_changed((directory,), written, reason="write")
        return written

    def reset_field(self, path: str | Path, name: str | SettingField) -> list[SettingField]:
        """Make *path* inherit *name* (a field or group) again."""
        self._ensure_open()
        return reset_field(self, path, name)

    def delete(self, path: str | Path) -> bool:
        """Drop every local setting of *path*."""
        self._ensure_open()
        directory = self.scope.normalize(path)
        deleted = self.store.delete(directory)
        if deleted:
            self.mark_changed((directory,), list(SettingField), reason="delete")
        return deleted

    def add_pattern(
        self,
        path: str | Path,
        pattern: str,
        name: str | SettingField = SettingField.EXCLUDE_PATTERNS,
    ) -> tuple[str, ...]:
        """Copy the pattern list in effect at *path*, append *pattern*, store it at *path*.

        Returns the list now stored at *path*.  A pattern already present
        is not duplicated, but the copied list is still written so *path*
        stops depending on its ancestors for this field.  The read and the
        write happen in one store transaction; see
        :meth:`SettingsStore.append_to_list`.
        """
        self._ensure_open()
        field = SettingField.parse(name)
        if not field.is_list:
            raise InvalidField(field.value, reason="not a pattern list field")
        directory = self.scope.normalize(path)
        patterns = self.store.append_to_list(
            directory, field, pattern, default=self.defaults[field.value]
        )
        self.mark_changed((directory,), [field], reason="write")
        return patterns

    def migrate(self) -> MigrationResult:
        """Import legacy per-directory settings files; see :func:`ccs.legacy.migrate`."""
        from ccs.legacy import migrate

        self._ensure_open()
        return migrate(self)

    # ── Cache / lifecycle ───────────────────────────────────
    def mark_changed(
        self,
        directories: Iterable[str],
        fields: Iterable[SettingField],
        *,
        reason: ChangeReason,
    ) -> None:
        """Post-step of every mutation: drop derived resolutions, then notify."""
        self.invalidate_cache()
        self.bus.emit(
            SettingsChanged(
                project_root=self.project_root,
                directories=tuple(directories),
                fields=tuple(f.value for f in fields),
                reason=reason,
            )
        )

    def invalidate_cache(self) -> None:
        """Forget every memoised resolution for this root."""
        with self._lock:
            self._generation += 1
            self._resolutions.clear()

    def close(self) -> None:
        """Release the database; any later call raises :class:`ServiceClosed`."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._generation += 1
            self._resolutions.clear()
        self.store.close()
        logger.debug("settings_service_closed", project_root=self.project_root)

    def _ensure_open(self) -> None:
        if self._closed:
            raise ServiceClosed(self.project_root)
