"""Global defaults: the bottom of every inheritance chain.

Built-in values can be overridden by a user-level YAML file (outside any
project), e.g. ``~/.config/code-counter/defaults.yaml``::

    lineThresholds:
      midThreshold: 250
    emojis.normal: "✅"
    codeCounter.excludePatterns:
      - "**/vendor/**"

Keys may be dotted, carry the ``codeCounter.`` prefix, or be nested
mappings.  Unknown keys are ignored (and logged) so an editor-wide config
can be shared with newer tool versions.
"""

from __future__ import annotations

from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping

import structlog
import yaml

from ccs.core.errors import DefaultsInvalid, InvalidField, InvalidValue
from ccs.core.models import SettingField, validate_value

logger = structlog.get_logger()

BUILTIN_DEFAULTS: Mapping[str, Any] = MappingProxyType({
    SettingField.MID_THRESHOLD.value: 300,
    SettingField.HIGH_THRESHOLD.value: 1000,
    SettingField.EMOJI_NORMAL.value: "🟢",
    SettingField.EMOJI_WARNING.value: "🟡",
    SettingField.EMOJI_DANGER.value: "🔴",
    SettingField.FOLDER_EMOJI_NORMAL.value: "🟩",
    SettingField.FOLDER_EMOJI_WARNING.value: "🟨",
    SettingField.FOLDER_EMOJI_DANGER.value: "🟥",
    SettingField.EXCLUDE_PATTERNS.value: (
        "**/node_modules/**",
        "**/out/**",
        "**/bin/**",
        "**/dist/**",
        "**/.git/**",
        "**/.*/**",
        "**/.*",
        "**/**-lock.json",
    ),
    SettingField.INCLUDE_PATTERNS.value: (),
    SettingField.SHOW_NOTIFICATION.value: False,
})

# Default max defaults-file size (bytes).
_DEFAULT_MAX_SIZE_BYTES = 64 * 1024


def _flatten(data: Mapping[str, Any], prefix: str = "") -> dict[str, Any]:
    """Flatten nested mappings into dotted keys.

    A mapping under a key that is itself a field name is kept as the value
    (so the field validator can reject it) instead of being flattened away.
    """
    flat: dict[str, Any] = {}
    for key, value in data.items():
        dotted = f"{prefix}{key}"
        if isinstance(value, Mapping) and not _is_field(dotted):
            flat.update(_flatten(value, prefix=f"{dotted}."))
        else:
            flat[dotted] = value
    return flat


def _is_field(name: str) -> bool:
    try:
        SettingField.parse(name)
    except InvalidField:
        return False
    return True


def load_global_defaults(
    path: Path | None,
    *,
    max_size_bytes: int = _DEFAULT_MAX_SIZE_BYTES,
) -> Mapping[str, Any]:
    """Return built-in defaults overlaid with the user-level YAML file.

    Parameters
    ----------
    path:
        User-level defaults file.  ``None`` or a missing file means
        "built-ins only".
    max_size_bytes:
        Reject files larger than this.

    Raises
    ------
    DefaultsInvalid
        Unreadable file, YAML parse error, non-mapping document, or a
        recognised key with a value of the wrong type.
    """
    merged = dict(BUILTIN_DEFAULTS)
    if path is None or not path.is_file():
        return MappingProxyType(merged)

    size = path.stat().st_size
    if size > max_size_bytes:
        raise DefaultsInvalid(f"defaults file {path.name} is {size:,} bytes (limit {max_size_bytes:,})")

    try:
        raw: Any = yaml.safe_load(path.read_text(encoding="utf-8"))
    except UnicodeDecodeError as exc:
        raise DefaultsInvalid(f"defaults file is not valid UTF-8: {exc}") from exc
    except yaml.YAMLError as exc:
        raise DefaultsInvalid(f"YAML parse error in {path}: {exc}") from exc

    if raw is None:
        return MappingProxyType(merged)
    if not isinstance(raw, Mapping):
        raise DefaultsInvalid(f"defaults file {path} must contain a mapping")

    for key, value in _flatten(raw).items():
        try:
            field = SettingField.parse(key)
        except InvalidField:
            logger.info("defaults_key_ignored", key=key, path=str(path))
            continue
        try:
            merged[field.value] = validate_value(field, value)
        except InvalidValue as exc:
            raise DefaultsInvalid(str(exc)) from exc

    logger.debug("global_defaults_loaded", path=str(path))
    return MappingProxyType(merged)
