"""Field reset: make a directory inherit a field again.

Two steps, always together:

1. Remove the field from the directory's record (the store deletes the
   record once it is empty).
2. Drop every derived resolution for the project root and emit a
   ``reset`` change event, so the UI re-displays the inherited value with
   its new provenance.

The service exposes reset only through :func:`reset_field`.
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

from ccs.core.models import SettingField

if TYPE_CHECKING:
    from ccs.core.service import SettingsService


def reset_field(
    service: SettingsService,
    path: str | Path,
    name: str | SettingField,
) -> list[SettingField]:
    """Reset *name* (a field or a group) at *path*.

    Returns the fields that were actually removed; an empty list means the
    field was not set there and nothing changed (no event is emitted).
    """
    directory = service.scope.normalize(path)
    removed = service.store.reset_field(directory, name)
    if removed:
        service.mark_changed((directory,), removed, reason="reset")
    return removed
