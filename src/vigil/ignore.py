from __future__ import annotations

import functools
import pathlib
import unicodedata
from typing import NamedTuple

import pathspec

# Directory names never watched and never treated as tests or sources
DEFAULT_IGNORED_DIRECTORIES = (
    ".git",
    ".hg",
    ".svn",
    ".venv",
    "venv",
    "__pycache__",
    ".pytest_cache",
    ".mypy_cache",
    ".ruff_cache",
    ".tox",
    ".nox",
    ".eggs",
    "*.egg-info",
    "htmlcov",
    "node_modules",
)


def get_default_patterns() -> list[str]:
    """Return the default ignored directories as gitignore-style patterns."""
    return [f"{name}/" for name in DEFAULT_IGNORED_DIRECTORIES]


def normalize_path(path: str | pathlib.Path, project_root: pathlib.Path | None = None) -> str:
    """Normalize path: forward slashes, Unicode NFC, relative to project root."""
    path_obj = path if isinstance(path, pathlib.Path) else pathlib.Path(path)
    path_str = str(path_obj).replace("\\", "/")

    # Watch sources report absolute paths
    if project_root is not None and path_obj.is_absolute():
        try:
            rel_path = path_obj.relative_to(project_root)
            path_str = str(rel_path).replace("\\", "/")
        except ValueError:
            pass  # Path not under project root, use as-is

    # Normalize Unicode to NFC (handles macOS NFD vs composed characters)
    return unicodedata.normalize("NFC", path_str)


class CheckIgnoreResult(NamedTuple):
    """Result of checking a path against the default ignored directories."""

    path: str
    ignored: bool
    pattern: str | None


class DirectoryIgnoreFilter:
    """Matches paths beneath default ignored directories.

    Patterns are gitignore-style directory patterns, so a directory name
    matches at any depth of the tree.
    """

    _project_root: pathlib.Path | None
    _patterns: list[str]
    _spec: pathspec.PathSpec

    def __init__(
        self,
        project_root: pathlib.Path | None = None,
        patterns: list[str] | None = None,
    ) -> None:
        self._project_root = project_root
        self._patterns = patterns if patterns is not None else get_default_patterns()
        self._spec = pathspec.PathSpec.from_lines("gitwildmatch", self._patterns)

    @property
    def patterns(self) -> list[str]:
        return list(self._patterns)

    def is_ignored(self, path: str | pathlib.Path) -> bool:
        """Check if path lies beneath an ignored directory.

        Args:
            path: Path to check (relative to the project root, or absolute)

        Returns:
            True if any ancestor directory of the path matches a pattern.
        """
        return self._spec.match_file(normalize_path(path, self._project_root))

    def check_ignore(self, path: str | pathlib.Path) -> CheckIgnoreResult:
        """Check path and report which pattern caused the match."""
        path_str = normalize_path(path, self._project_root)
        if not self._spec.match_file(path_str):
            return CheckIgnoreResult(path=path_str, ignored=False, pattern=None)

        matched_pattern: str | None = None
        for pattern in self._patterns:
            single_spec = pathspec.PathSpec.from_lines("gitwildmatch", [pattern])
            if single_spec.match_file(path_str):
                matched_pattern = pattern
                break

        return CheckIgnoreResult(path=path_str, ignored=True, pattern=matched_pattern)


@functools.cache
def get_default_filter() -> DirectoryIgnoreFilter:
    """Return the shared filter for the default ignored directories."""
    return DirectoryIgnoreFilter()
