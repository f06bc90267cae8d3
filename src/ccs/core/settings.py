"""Runtime settings for the settings engine (Pydantic v2 Settings).

These are the *tool's* own knobs (where the store lives, how migration
treats legacy files, logging), not the per-directory overrides the tool
manages.

* Environment overrides work (``CCS_DATA_DIR``, ``CCS_LEGACY_ACTION``, ...).
* Tests inject a root directly: ``Settings(project_root=tmp_path)``.

Usage
-----
::

    from ccs.core.settings import get_settings

    s = get_settings()          # auto-detects root from cwd
    s.db_path                   # <root>/.vscode/code-counter/code-counter.db
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from ccs.core.paths import find_project_root

_DEFAULT_SKIP_DIRS = ["node_modules", ".git", "coverage", "out", "dist", "build"]


class Settings(BaseSettings):
    """All runtime configuration for one project root.

    *project_root* anchors every derived path.  If not supplied, it is
    auto-detected via :func:`ccs.core.paths.find_project_root`.
    """

    model_config = SettingsConfigDict(
        env_prefix="CCS_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Root ────────────────────────────────────────────────
    project_root: Path | None = None

    # ── Store ───────────────────────────────────────────────
    data_dir: Path | None = None
    db_filename: str = "code-counter.db"
    busy_timeout_s: float = 5.0

    # ── Legacy migration ────────────────────────────────────
    legacy_filename: str = ".code-counter.json"
    legacy_action: Literal["delete", "rename", "keep"] = "delete"
    legacy_max_size_kb: int = 256
    migration_skip_dirs: list[str] = _DEFAULT_SKIP_DIRS
    migrate_on_open: bool = True

    # ── Global defaults (user-level, outside the project) ───
    defaults_file: Path | None = None

    # ── Logging ─────────────────────────────────────────────
    log_level: str = "INFO"
    log_json: bool = True

    @model_validator(mode="after")
    def _resolve_paths(self) -> "Settings":
        """Fill in any path that was not explicitly overridden."""
        if self.project_root is None:
            self.project_root = find_project_root()
        self.project_root = self.project_root.resolve()

        if self.data_dir is None:
            self.data_dir = self.project_root / ".vscode" / "code-counter"
        if self.defaults_file is None:
            self.defaults_file = Path.home() / ".config" / "code-counter" / "defaults.yaml"
        return self

    # ── Convenience ─────────────────────────────────────────
    @property
    def db_path(self) -> Path:
        """Full path to the settings database."""
        assert self.data_dir is not None  # guaranteed after validation
        return self.data_dir / self.db_filename

    @property
    def legacy_max_size_bytes(self) -> int:
        return self.legacy_max_size_kb * 1024


@lru_cache(maxsize=1)
def get_settings(**overrides: object) -> Settings:
    """Return a cached :class:`Settings` instance.

    In production the cache avoids repeated filesystem walks.
    In tests, call ``Settings(project_root=tmp_path)`` directly.
    """
    return Settings(**overrides)  # type: ignore[arg-type]
