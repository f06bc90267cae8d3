"""Inheritance resolution: effective settings for one directory.

How it works
------------
1. Build the ancestor chain ``[root, ..., target]`` by path decomposition.
2. Read each directory's sparse record.  A directory whose rows cannot be
   decoded is logged and treated as having no settings; the resolution
   lists it in ``dropped``.  Any other store failure propagates.
3. For every field, scan the chain from the target upward; the first record
   that defines the field wins.  Nothing defines it → global default.
4. List fields (``excludePatterns``, ``includePatterns``) are inherited as a
   whole: the nearest definer's list is the list in effect, never a union
   with lists further up the chain.

Resolution is read-only.  It never writes to the store, and provenance is a
derived view that is never stored.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Any

import structlog

from ccs.core.errors import RecordCorrupt
from ccs.core.models import SettingField
from ccs.core.paths import ProjectScope
from ccs.core.store import SettingsRecord

logger = structlog.get_logger()

# Provenance marker for values that come from the global defaults.
GLOBAL_SOURCE = "global"

RecordReader = Callable[[str], SettingsRecord]


@dataclass(frozen=True)
class Resolution:
    """Result of resolving one directory.

    ``parent`` is what the directory would inherit with no local settings;
    it is ``None`` at the project root.  ``dropped`` names directories whose
    corrupt records were ignored.
    """

    directory: str
    resolved: Mapping[str, Any]
    current: SettingsRecord
    parent: Mapping[str, Any] | None
    provenance: Mapping[str, str]
    dropped: tuple[str, ...] = ()

    def __getitem__(self, name: str | SettingField) -> Any:
        return self.resolved[SettingField.parse(name).value]

    def source_of(self, name: str | SettingField) -> str:
        return self.provenance[SettingField.parse(name).value]

    def is_local(self, name: str | SettingField) -> bool:
        return name in self.current


def read_chain(
    scope: ProjectScope, read: RecordReader, directory: str | Path
) -> tuple[list[SettingsRecord], tuple[str, ...]]:
    """Records for every directory in the ancestor chain, root first.

    Returns ``(records, dropped)`` where *dropped* lists the directories
    whose records could not be decoded and were replaced by empty ones.
    """
    records: list[SettingsRecord] = []
    dropped: list[str] = []
    for path in scope.chain(directory):
        try:
            records.append(read(path))
        except RecordCorrupt as exc:
            logger.warning("settings_store_corrupt", directory=path, error=str(exc))
            records.append(SettingsRecord(path))
            dropped.append(path)
    return records, tuple(dropped)


def merge_chain(
    records: Sequence[SettingsRecord],
    defaults: Mapping[str, Any],
) -> tuple[dict[str, Any], dict[str, str]]:
    """Merge a root-first chain of records over *defaults*.

    Returns ``(resolved, provenance)``.
    """
    resolved: dict[str, Any] = {}
    provenance: dict[str, str] = {}
    for field in SettingField:
        for record in reversed(records):
            if field.value in record.values:
                resolved[field.value] = record.values[field.value]
                provenance[field.value] = record.directory
                break
        else:
            resolved[field.value] = defaults[field.value]
            provenance[field.value] = GLOBAL_SOURCE
    return resolved, provenance


def resolve(
    scope: ProjectScope,
    read: RecordReader,
    defaults: Mapping[str, Any],
    directory: str | Path,
) -> Resolution:
    """Resolve *directory* against the records returned by *read*.

    Raises
    ------
    OutOfScope
        If *directory* is outside the project root (checked before any read).
    StoreCorrupt / ServiceClosed
        Propagated from *read* for anything other than an undecodable record.
    """
    target = scope.normalize(directory)
    records, dropped = read_chain(scope, read, target)
    resolved, provenance = merge_chain(records, defaults)

    parent: Mapping[str, Any] | None = None
    if len(records) > 1:
        parent_resolved, _ = merge_chain(records[:-1], defaults)
        parent = MappingProxyType(parent_resolved)

    return Resolution(
        directory=target,
        resolved=MappingProxyType(resolved),
        current=records[-1],
        parent=parent,
        provenance=MappingProxyType(provenance),
        dropped=dropped,
    )
