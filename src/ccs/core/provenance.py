"""Per-pattern provenance for the list-valued fields.

Lists are inherited whole, so every entry in the list in effect comes from
the same place: the nearest directory that set the field, or the global
defaults.  This view exists so a UI can label each pattern with where it
came from before the user copies the list down and edits it.
"""

from __future__ import annotations

from dataclasses import dataclass

from ccs.core.errors import InvalidField
from ccs.core.models import SettingField
from ccs.core.resolver import Resolution


@dataclass(frozen=True)
class PatternSource:
    pattern: str
    source: str  # DirectoryPath or "global"


def patterns_with_sources(
    resolution: Resolution,
    name: str | SettingField = SettingField.EXCLUDE_PATTERNS,
) -> list[PatternSource]:
    """Attribute each pattern in effect for ``resolution.directory``.

    Raises
    ------
    InvalidField
        If *name* is not a list-valued field.
    """
    field = SettingField.parse(name)
    if not field.is_list:
        raise InvalidField(field.value, reason="not a pattern list field")
    source = resolution.provenance[field.value]
    return [PatternSource(pattern, source) for pattern in resolution.resolved[field.value]]
