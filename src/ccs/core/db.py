"""SQLite database manager.

Owns the connection lifecycle and schema creation.  The settings store
receives its connection from here; nothing else opens the database.

Design decisions
----------------
* One row per (directory, field): a partial write is a set of upserts, so
  merging never needs a read-modify-write of a whole record.
* Directory keys are root-relative (``""`` is the root) so a project can be
  moved on disk without orphaning its settings.
* WAL mode so another process (a second editor window) can read while we
  write.
* ``CREATE TABLE IF NOT EXISTS`` so it is safe to call on every start.
* Autocommit connection; the store issues ``BEGIN IMMEDIATE`` itself.
"""

from __future__ import annotations

import sqlite3
import stat
from pathlib import Path

import structlog

from ccs.core.errors import StoreCorrupt

logger = structlog.get_logger()

# ── Schema version (bump when tables change) ────────────────
SCHEMA_VERSION = 1

_SCHEMA_SQL = """\
-- Sparse per-directory overrides: absent row = inherit
CREATE TABLE IF NOT EXISTS directory_settings (
    directory_path  TEXT NOT NULL,
    field           TEXT NOT NULL,
    value_json      TEXT NOT NULL,
    updated_utc     TEXT NOT NULL,
    PRIMARY KEY (directory_path, field)
);

CREATE INDEX IF NOT EXISTS idx_directory_settings_path
    ON directory_settings(directory_path);

-- Schema metadata
CREATE TABLE IF NOT EXISTS meta (
    key   TEXT PRIMARY KEY,
    value TEXT NOT NULL
);
"""


def open_db(db_path: Path, *, busy_timeout_s: float = 5.0) -> sqlite3.Connection:
    """Open (or create) the settings database and ensure the schema exists.

    Parameters
    ----------
    db_path:
        Path to the SQLite file (e.g. ``.vscode/code-counter/code-counter.db``).
    busy_timeout_s:
        How long to wait on a lock held by another connection.

    Returns
    -------
    sqlite3.Connection
        Ready-to-use connection with WAL mode enabled.  It may be shared
        across threads; callers serialise access themselves.

    Raises
    ------
    StoreCorrupt
        If the file exists but is not a usable SQLite database.
    """
    db_path.parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(
        str(db_path),
        isolation_level=None,
        timeout=busy_timeout_s,
        check_same_thread=False,
    )
    conn.row_factory = sqlite3.Row
    try:
        conn.execute("PRAGMA journal_mode=WAL")
        conn.executescript(_SCHEMA_SQL)
        conn.execute(
            "INSERT OR IGNORE INTO meta(key, value) VALUES (?, ?)",
            ("schema_version", str(SCHEMA_VERSION)),
        )
    except sqlite3.DatabaseError as exc:
        conn.close()
        raise StoreCorrupt(f"settings database {db_path} is unreadable: {exc}") from exc

    # Owner read/write only.
    try:
        db_path.chmod(stat.S_IRUSR | stat.S_IWUSR)
    except OSError as exc:
        logger.debug("db_chmod_skipped", path=str(db_path), error=str(exc))

    logger.debug("database_opened", path=str(db_path), schema_version=SCHEMA_VERSION)
    return conn
