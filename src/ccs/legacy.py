"""Legacy ``.code-counter.json`` import.

Older releases kept one JSON file per configured directory, with flat
``codeCounter.``-prefixed keys::

    {
      "codeCounter.lineThresholds.midThreshold": 200,
      "codeCounter.excludePatterns": ["**/generated/**"]
    }

:func:`migrate` moves every such file into the settings store:

* Files are loaded with the same guards as the defaults file (size limit,
  UTF-8, must be a JSON object) and validated per field.
* A directory that already has a record is skipped, so running the
  migration twice never overwrites newer settings.
* After a successful import the file is deleted, renamed to
  ``<name>.migrated`` or kept, per ``Settings.legacy_action``.  A skipped
  file gets the same treatment only when every value it holds is already in
  the record; otherwise it stays where it is.
* One bad file is recorded in the result and the batch carries on.
"""

from __future__ import annotations

import json
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ccs.core.errors import CCSError, InvalidValue, MigrationItemFailed
from ccs.core.models import SettingField, validate_fields

if TYPE_CHECKING:
    from ccs.core.service import SettingsService
    from ccs.core.store import SettingsRecord

logger = structlog.get_logger()

_DEFAULT_MAX_SIZE_BYTES = 256 * 1024  # 256 KB
_MIGRATED_SUFFIX = ".migrated"


# ── File model ──────────────────────────────────────────────
class LegacySettingsFile(BaseModel):
    """One legacy settings file.  Unrecognised keys are ignored."""

    model_config = ConfigDict(extra="ignore", frozen=True, strict=True)

    mid_threshold: int | None = Field(None, alias="codeCounter.lineThresholds.midThreshold")
    high_threshold: int | None = Field(None, alias="codeCounter.lineThresholds.highThreshold")
    emoji_normal: str | None = Field(None, alias="codeCounter.emojis.normal")
    emoji_warning: str | None = Field(None, alias="codeCounter.emojis.warning")
    emoji_danger: str | None = Field(None, alias="codeCounter.emojis.danger")
    folder_emoji_normal: str | None = Field(None, alias="codeCounter.emojis.folders.normal")
    folder_emoji_warning: str | None = Field(None, alias="codeCounter.emojis.folders.warning")
    folder_emoji_danger: str | None = Field(None, alias="codeCounter.emojis.folders.danger")
    exclude_patterns: list[str] | None = Field(None, alias="codeCounter.excludePatterns")
    include_patterns: list[str] | None = Field(None, alias="codeCounter.includePatterns")
    show_notification: bool | None = Field(
        None, alias="codeCounter.showNotificationOnAutoGenerate"
    )

    def to_fields(self) -> dict[SettingField, Any]:
        """The settings this file defines, validated and normalised."""
        return validate_fields(self.model_dump(by_alias=True, exclude_none=True))


@dataclass(frozen=True)
class MigrationError:
    path: str
    reason: str


@dataclass
class MigrationResult:
    migrated: int = 0
    skipped: int = 0
    removed: int = 0
    errors: list[MigrationError] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


# ── Discovery ───────────────────────────────────────────────
def find_legacy_files(
    root: Path,
    filename: str,
    *,
    skip_dirs: list[str] | tuple[str, ...] = (),
    exclude: list[Path] | tuple[Path, ...] = (),
) -> list[Path]:
    """Every *filename* under *root*, sorted.

    Directories named in *skip_dirs* (at any depth) and the directories in
    *exclude* are not descended into.  Symlinked directories are not
    followed.
    """
    skip = set(skip_dirs)
    excluded = {Path(p).resolve() for p in exclude}
    found: list[Path] = []

    def _on_error(exc: OSError) -> None:
        logger.warning("legacy_scan_unreadable", path=exc.filename, error=exc.strerror)

    for dirpath, dirnames, filenames in os.walk(root, onerror=_on_error, followlinks=False):
        current = Path(dirpath)
        dirnames[:] = [
            d for d in dirnames if d not in skip and (current / d).resolve() not in excluded
        ]
        if filename in filenames:
            found.append(current / filename)
    return sorted(found)


# ── Loader ──────────────────────────────────────────────────
def load_legacy_file(
    path: Path,
    *,
    max_size_bytes: int = _DEFAULT_MAX_SIZE_BYTES,
) -> dict[SettingField, Any]:
    """Load one legacy file and return the fields it sets.

    Raises
    ------
    MigrationItemFailed
        Unreadable, oversized, not UTF-8, not a JSON object, or a value of
        the wrong type.
    """
    try:
        size = path.stat().st_size
        if size > max_size_bytes:
            raise MigrationItemFailed(
                str(path), f"file is {size:,} bytes (limit {max_size_bytes:,})"
            )
        text = path.read_text(encoding="utf-8")
    except UnicodeDecodeError as exc:
        raise MigrationItemFailed(str(path), f"not valid UTF-8: {exc}") from exc
    except OSError as exc:
        raise MigrationItemFailed(str(path), f"cannot read file: {exc}") from exc

    try:
        raw = json.loads(text)
    except json.JSONDecodeError as exc:
        raise MigrationItemFailed(str(path), f"JSON parse error: {exc}") from exc

    if not isinstance(raw, dict):
        raise MigrationItemFailed(str(path), "expected a JSON object")

    try:
        return LegacySettingsFile.model_validate(raw).to_fields()
    except ValidationError as exc:
        reason = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors()
        )
        raise MigrationItemFailed(str(path), reason) from exc
    except InvalidValue as exc:
        raise MigrationItemFailed(str(path), str(exc)) from exc


# ── Migration ───────────────────────────────────────────────
def migrate(service: SettingsService) -> MigrationResult:
    """Import every legacy file under *service*'s project root.

    Emits a single ``migrate`` change event if anything was imported.
    """
    settings = service.settings
    assert settings.data_dir is not None  # guaranteed by model_validator
    files = find_legacy_files(
        service.scope.root,
        settings.legacy_filename,
        skip_dirs=settings.migration_skip_dirs,
        exclude=[settings.data_dir],
    )
    result = MigrationResult()
    if not files:
        logger.debug("legacy_none_found", project_root=service.project_root)
        return result

    changed_dirs: list[str] = []
    changed_fields: set[SettingField] = set()

    for path in files:
        directory = path.parent.as_posix()
        dispose = True
        try:
            values = load_legacy_file(path, max_size_bytes=settings.legacy_max_size_bytes)
            if service.store.has_record(directory):
                result.skipped += 1
                # Only a file whose values are all in the record is known to be imported.
                dispose = _already_imported(service.store.read(directory), values)
                logger.info(
                    "legacy_skipped",
                    path=path,
                    reason="already migrated" if dispose else "directory already configured",
                )
            else:
                written = service.store.write(directory, values)
                if written:
                    result.migrated += 1
                    changed_dirs.append(service.scope.normalize(directory))
                    changed_fields.update(written)
                    logger.info("legacy_migrated", path=path, fields=len(written))
                else:
                    result.skipped += 1
                    logger.info("legacy_skipped", path=path, reason="no settings")
        except MigrationItemFailed as exc:
            result.errors.append(MigrationError(exc.path, exc.reason))
            logger.warning("legacy_failed", path=path, reason=exc.reason)
            continue
        except CCSError as exc:
            result.errors.append(MigrationError(str(path), str(exc)))
            logger.warning("legacy_failed", path=path, reason=str(exc))
            continue

        if not dispose:
            continue
        try:
            if _dispose(path, settings.legacy_action):
                result.removed += 1
        except OSError as exc:
            result.errors.append(MigrationError(str(path), f"cannot remove file: {exc}"))
            logger.warning("legacy_remove_failed", path=path, error=str(exc))

    if changed_dirs:
        service.mark_changed(
            changed_dirs,
            sorted(changed_fields, key=lambda f: f.value),
            reason="migrate",
        )
    logger.info(
        "legacy_migration_done",
        migrated=result.migrated,
        skipped=result.skipped,
        removed=result.removed,
        errors=len(result.errors),
    )
    return result


def _already_imported(record: SettingsRecord, values: Mapping[SettingField, Any]) -> bool:
    return all(
        name.value in record.values and record.values[name.value] == value
        for name, value in values.items()
    )


def _dispose(path: Path, action: str) -> bool:
    """Apply the legacy-file *action*; returns whether the file went away."""
    if action == "delete":
        path.unlink()
        return True
    if action == "rename":
        path.rename(path.with_name(path.name + _MIGRATED_SUFFIX))
        return True
    return False
