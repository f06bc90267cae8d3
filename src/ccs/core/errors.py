"""Code Counter settings exceptions.

Every module raises typed exceptions so callers can handle failures
explicitly instead of catching bare ValueError/RuntimeError.  Storage
errors (``sqlite3.Error``, ``json.JSONDecodeError``) never escape the store;
they are translated into :class:`StoreCorrupt` at that boundary.  Rows that
fail to decode raise the narrower :class:`RecordCorrupt`, the only storage
failure that resolution tolerates.
"""

from __future__ import annotations


# ── Base ────────────────────────────────────────────────────
class CCSError(Exception):
    """Root exception for all settings-engine errors."""


# ── Project / paths ────────────────────────────────────────
class RepoRootNotFound(CCSError):
    """Could not locate the project root (``.vscode`` / ``.git`` marker)."""

    def __init__(self, start_path: str | None = None) -> None:
        where = f" (searched from {start_path})" if start_path else ""
        super().__init__(f"Project root not found{where}: no .vscode or .git in parent chain")
        self.start_path = start_path


class OutOfScope(CCSError):
    """A path argument falls outside the configured project root."""

    def __init__(self, path: str, root: str) -> None:
        super().__init__(f"Path {path!r} is outside project root {root!r}")
        self.path = path
        self.root = root


# ── Fields ──────────────────────────────────────────────────
class InvalidField(CCSError):
    """An unrecognised field name was passed to read/write/reset."""

    def __init__(self, name: str, reason: str = "unknown settings field") -> None:
        super().__init__(f"{reason}: {name!r}")
        self.name = name


class InvalidValue(CCSError):
    """A value does not have the type its field requires."""

    def __init__(self, field: str, reason: str) -> None:
        super().__init__(f"Invalid value for {field}: {reason}")
        self.field = field
        self.reason = reason


# ── Storage ─────────────────────────────────────────────────
class StoreCorrupt(CCSError):
    """The settings database is unreadable or holds malformed rows."""


class RecordCorrupt(StoreCorrupt):
    """One directory's stored rows cannot be decoded or validated."""

    def __init__(self, directory: str, reason: str) -> None:
        super().__init__(f"Corrupt settings for {directory}: {reason}")
        self.directory = directory
        self.reason = reason


class ServiceClosed(CCSError):
    """A settings service was used after it was invalidated or closed."""

    def __init__(self, project_root: str) -> None:
        super().__init__(f"Settings service for {project_root} has been invalidated; call get_service() again")
        self.project_root = project_root


# ── Defaults / migration ────────────────────────────────────
class DefaultsInvalid(CCSError):
    """The user-level defaults file failed to parse or validate."""


class MigrationItemFailed(CCSError):
    """A single legacy settings file could not be parsed or mapped."""

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"Cannot migrate {path}: {reason}")
        self.path = path
        self.reason = reason
