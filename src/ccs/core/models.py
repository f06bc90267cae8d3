"""Settings fields: the closed set of overridable keys and their value types.

Field names are dotted (``emojis.folders.danger``).  The legacy per-directory
files and the editor configuration use the same names behind a
``codeCounter.`` prefix; :meth:`SettingField.parse` accepts both spellings.

Values are checked per field with pydantic ``TypeAdapter``s.  List-valued
fields come back as tuples so cached resolutions can be shared without
callers mutating them.
"""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Any

from pydantic import AfterValidator, Field, TypeAdapter, ValidationError

from ccs.core.errors import InvalidField, InvalidValue

LEGACY_PREFIX = "codeCounter."


class SettingField(str, Enum):
    MID_THRESHOLD = "lineThresholds.midThreshold"
    HIGH_THRESHOLD = "lineThresholds.highThreshold"
    EMOJI_NORMAL = "emojis.normal"
    EMOJI_WARNING = "emojis.warning"
    EMOJI_DANGER = "emojis.danger"
    FOLDER_EMOJI_NORMAL = "emojis.folders.normal"
    FOLDER_EMOJI_WARNING = "emojis.folders.warning"
    FOLDER_EMOJI_DANGER = "emojis.folders.danger"
    EXCLUDE_PATTERNS = "excludePatterns"
    INCLUDE_PATTERNS = "includePatterns"
    SHOW_NOTIFICATION = "showNotificationOnAutoGenerate"

    @classmethod
    def parse(cls, name: str | SettingField) -> SettingField:
        """Look up a field by name, with or without the ``codeCounter.`` prefix.

        Raises
        ------
        InvalidField
            If *name* is not one of the recognised fields.
        """
        if isinstance(name, SettingField):
            return name
        key = name.strip()
        if key.startswith(LEGACY_PREFIX):
            key = key[len(LEGACY_PREFIX):]
        try:
            return cls(key)
        except ValueError:
            raise InvalidField(name) from None

    @property
    def is_list(self) -> bool:
        return self in LIST_FIELDS


LIST_FIELDS = frozenset({SettingField.EXCLUDE_PATTERNS, SettingField.INCLUDE_PATTERNS})

# Reset accepts these group names as shorthand for several fields.
FIELD_GROUPS: dict[str, tuple[SettingField, ...]] = {
    "emojis": (
        SettingField.EMOJI_NORMAL,
        SettingField.EMOJI_WARNING,
        SettingField.EMOJI_DANGER,
        SettingField.FOLDER_EMOJI_NORMAL,
        SettingField.FOLDER_EMOJI_WARNING,
        SettingField.FOLDER_EMOJI_DANGER,
    ),
    "lineThresholds": (SettingField.MID_THRESHOLD, SettingField.HIGH_THRESHOLD),
}


def expand_selector(name: str | SettingField) -> tuple[SettingField, ...]:
    """Resolve a field name or group name into the fields it covers."""
    if isinstance(name, str) and not isinstance(name, SettingField):
        key = name.strip()
        if key.startswith(LEGACY_PREFIX):
            key = key[len(LEGACY_PREFIX):]
        if key in FIELD_GROUPS:
            return FIELD_GROUPS[key]
    return (SettingField.parse(name),)


# ── Value types ─────────────────────────────────────────────
def _normalize_pattern(pattern: str) -> str:
    cleaned = pattern.strip().lstrip("/")
    if not cleaned:
        raise ValueError("glob pattern must not be empty")
    return cleaned


_Threshold = Annotated[int, Field(strict=True, ge=1)]
_Emoji = Annotated[str, Field(strict=True, min_length=1)]
_Pattern = Annotated[str, Field(strict=True), AfterValidator(_normalize_pattern)]
_Patterns = tuple[_Pattern, ...]
_Flag = Annotated[bool, Field(strict=True)]

_ADAPTERS: dict[SettingField, TypeAdapter[Any]] = {
    SettingField.MID_THRESHOLD: TypeAdapter(_Threshold),
    SettingField.HIGH_THRESHOLD: TypeAdapter(_Threshold),
    SettingField.EMOJI_NORMAL: TypeAdapter(_Emoji),
    SettingField.EMOJI_WARNING: TypeAdapter(_Emoji),
    SettingField.EMOJI_DANGER: TypeAdapter(_Emoji),
    SettingField.FOLDER_EMOJI_NORMAL: TypeAdapter(_Emoji),
    SettingField.FOLDER_EMOJI_WARNING: TypeAdapter(_Emoji),
    SettingField.FOLDER_EMOJI_DANGER: TypeAdapter(_Emoji),
    SettingField.EXCLUDE_PATTERNS: TypeAdapter(_Patterns),
    SettingField.INCLUDE_PATTERNS: TypeAdapter(_Patterns),
    SettingField.SHOW_NOTIFICATION: TypeAdapter(_Flag),
}


def validate_value(field: SettingField, value: Any) -> Any:
    """Check *value* against *field*'s type and return the normalised value.

    Raises
    ------
    InvalidValue
        If the value has the wrong type or violates the field's bounds.
    """
    if field.is_list and isinstance(value, (str, bytes)):
        raise InvalidValue(field.value, "expected a list of glob patterns, not a string")
    try:
        return _ADAPTERS[field].validate_python(value)
    except ValidationError as exc:
        reason = "; ".join(err["msg"] for err in exc.errors())
        raise InvalidValue(field.value, reason) from exc


def validate_fields(fields: dict[str, Any]) -> dict[SettingField, Any]:
    """Parse and validate a partial record given as ``{name: value}``."""
    out: dict[SettingField, Any] = {}
    for name, value in fields.items():
        field = SettingField.parse(name)
        out[field] = validate_value(field, value)
    return out
