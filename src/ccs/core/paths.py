"""Project root discovery and directory scoping.

Two jobs live here:

1. :func:`find_project_root`: walk from *start* (default ``cwd()``) upward
   looking for a ``.vscode`` or ``.git`` directory.  The first directory that
   has one is the project root.
2. :class:`ProjectScope`: turn any user-supplied path into a *DirectoryPath*:
   an absolute, resolved, forward-slash string that is guaranteed to live
   inside the project root.

Ancestor chains are computed purely by decomposing that string; nothing
about the directory tree is stored, so renaming or deleting directories can
never leave a stale parent/child graph behind.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path, PurePosixPath

from ccs.core.errors import OutOfScope, RepoRootNotFound

# Directories that mark a project root, checked in order.
_MARKERS = (".vscode", ".git")


def find_project_root(start: Path | None = None) -> Path:
    """Return the project root directory.

    Parameters
    ----------
    start:
        Directory to start searching from.  Defaults to ``Path.cwd()``.

    Returns
    -------
    Path
        Absolute, resolved path to the project root.

    Raises
    ------
    RepoRootNotFound
        If no marker directory is found in *start* or any of its parents.
    """
    origin = (start or Path.cwd()).resolve()
    for candidate in [origin, *origin.parents]:
        if any((candidate / marker).is_dir() for marker in _MARKERS):
            return candidate
    raise RepoRootNotFound(start_path=str(origin))


@dataclass(frozen=True)
class ProjectScope:
    """Path arithmetic for one project root.

    Storage keys are root-relative POSIX strings (``""`` for the root);
    everything handed to callers is an absolute DirectoryPath string.
    """

    root: Path

    def __post_init__(self) -> None:
        object.__setattr__(self, "root", Path(self.root).resolve())

    @property
    def root_path(self) -> str:
        return self.root.as_posix()

    def normalize(self, path: str | Path) -> str:
        """Return the DirectoryPath for *path*.

        Relative paths are taken relative to the project root.  Any ``..``
        segment is rejected outright, before the path is resolved, and so is
        anything that resolves outside the root (including through symlinks).

        Raises
        ------
        OutOfScope
            If *path* escapes the project root.
        """
        raw = str(path)
        candidate = Path(raw) if raw else self.root
        if ".." in candidate.parts or ".." in PurePosixPath(raw.replace("\\", "/")).parts:
            raise OutOfScope(raw, self.root_path)
        if not candidate.is_absolute():
            candidate = self.root / candidate
        resolved = candidate.resolve()
        if not resolved.is_relative_to(self.root):
            raise OutOfScope(raw, self.root_path)
        return resolved.as_posix()

    def key_for(self, directory: str | Path) -> str:
        """Storage key (root-relative, ``""`` for the root) for *directory*."""
        rel = Path(self.normalize(directory)).relative_to(self.root).as_posix()
        return "" if rel == "." else rel

    def path_for_key(self, key: str) -> str:
        """Inverse of :meth:`key_for`."""
        if not key:
            return self.root_path
        return (self.root / PurePosixPath(key)).as_posix()

    def chain(self, directory: str | Path) -> list[str]:
        """AncestorChain from the root down to *directory*, inclusive."""
        key = self.key_for(directory)
        chain = [self.root_path]
        current = self.root
        for part in PurePosixPath(key).parts if key else ():
            current = current / part
            chain.append(current.as_posix())
        return chain

    def parent(self, directory: str | Path) -> str | None:
        """Immediate parent DirectoryPath, or ``None`` for the root."""
        chain = self.chain(directory)
        return chain[-2] if len(chain) > 1 else None

    def directory_for(self, path: str | Path) -> str:
        """DirectoryPath that governs *path* (a file maps to its directory)."""
        normalized = self.normalize(path)
        if Path(normalized).is_file():
            return Path(normalized).parent.as_posix()
        return normalized
