"""Test-file patterns and path classification.

Patterns use the wcmatch glob dialect with brace expansion, extglob, globstar,
negation and case-insensitive comparison. Classification is a pure function of
(path, Globs); ``Globs`` is frozen so results are memoized per pattern set.
"""

from __future__ import annotations

import dataclasses
import functools
import logging
import os
import pathlib
from typing import TYPE_CHECKING, Any, NamedTuple

from wcmatch import glob

from vigil import exceptions, ignore

if TYPE_CHECKING:
    from collections.abc import Iterable

__all__ = [
    "BASELINE_IGNORED_BY_WATCHER",
    "DEFAULT_EXTENSIONS",
    "Classification",
    "Globs",
    "classify",
    "find_files",
    "find_tests",
    "get_default_file_patterns",
    "get_watcher_ignore_patterns",
    "has_extension",
    "matches",
    "normalize_globs",
    "normalize_patterns",
]

logger = logging.getLogger(__name__)

DEFAULT_EXTENSIONS = ("py",)

# Snapshot reports and the config file never trigger runs
BASELINE_IGNORED_BY_WATCHER = ("**/*.snap.md", "vigil.yaml")

_MATCH_FLAGS = glob.BRACE | glob.EXTGLOB | glob.GLOBSTAR | glob.IGNORECASE | glob.FORCEUNIX
_SCAN_FLAGS = (
    glob.BRACE
    | glob.EXTGLOB
    | glob.GLOBSTAR
    | glob.IGNORECASE
    | glob.NEGATE
    | glob.FOLLOW
    | glob.NODIR
)

_CACHE_SIZE = 4096


class Classification(NamedTuple):
    """How a path takes part in watch mode."""

    is_test: bool
    is_ignored_by_watcher: bool


@dataclasses.dataclass(frozen=True)
class Globs:
    """Normalized pattern sets for one watch session."""

    extensions: tuple[str, ...]
    file_patterns: tuple[str, ...]
    ignored_by_watcher_patterns: tuple[str, ...]


def normalize_patterns(patterns: Iterable[str]) -> list[str]:
    """Use forward slashes and strip leading ``./`` (also after a negation)."""
    normalized = list[str]()
    for pattern in patterns:
        pattern = pattern.replace(os.sep, "/")
        if pattern.startswith("./"):
            pattern = pattern[2:]
        elif pattern.startswith("!./"):
            pattern = f"!{pattern[3:]}"
        normalized.append(pattern)
    return normalized


def get_default_file_patterns(extensions: Iterable[str] = DEFAULT_EXTENSIONS) -> list[str]:
    """Return the conventional test-file patterns for the given extensions."""
    exts = list(extensions)
    ext = exts[0] if len(exts) == 1 else "{" + ",".join(exts) + "}"
    return [
        f"**/__tests__/**/*.{ext}",
        f"**/*.spec.{ext}",
        f"**/*.test.{ext}",
        f"**/test-*.{ext}",
        f"**/test_*.{ext}",
        f"**/*_test.{ext}",
        f"**/test.{ext}",
        f"**/test/**/*.{ext}",
        f"**/tests/**/*.{ext}",
        # pytest loads conftest modules as support code, not as tests
        "!**/conftest.py",
    ]


def _is_negated(pattern: str) -> bool:
    return pattern.startswith("!") and not pattern.startswith("!(")


def _validate_pattern_list(option: str, value: Any) -> list[str]:
    if not isinstance(value, (list, tuple)) or not value:
        raise exceptions.InvalidPatternsError(option)
    if not all(isinstance(item, str) and item for item in value):
        raise exceptions.InvalidPatternsError(option)
    return list(value)


def _validate_extensions(value: Any) -> tuple[str, ...]:
    extensions = _validate_pattern_list("extensions", value)
    if any(ext.startswith(".") for ext in extensions):
        raise exceptions.InvalidPatternsError(
            "extensions", "must list extensions without a leading dot"
        )
    return tuple(extensions)


def normalize_globs(
    *,
    extensions: Any = None,
    files: Any = None,
    ignored_by_watcher: Any = None,
) -> Globs:
    """Validate configured patterns and build the session's Globs.

    Args:
        extensions: Test-file extensions without dots. None uses ``("py",)``.
        files: Test-file patterns. None uses the conventional defaults; a list
            of only negated patterns trims the defaults.
        ignored_by_watcher: Patterns whose changes never trigger a run, merged
            after the always-on baseline.

    Raises:
        InvalidPatternsError: If a supplied option is not a non-empty list of
            non-empty strings.
    """
    exts = DEFAULT_EXTENSIONS if extensions is None else _validate_extensions(extensions)
    default_patterns = get_default_file_patterns(exts)

    if files is None:
        file_patterns = default_patterns
    else:
        file_patterns = normalize_patterns(_validate_pattern_list("files", files))
        if all(_is_negated(pattern) for pattern in file_patterns):
            file_patterns = [*default_patterns, *file_patterns]

    ignore_patterns = list(BASELINE_IGNORED_BY_WATCHER)
    if ignored_by_watcher is not None:
        ignore_patterns.extend(
            normalize_patterns(_validate_pattern_list("ignored_by_watcher", ignored_by_watcher))
        )

    return Globs(
        extensions=exts,
        file_patterns=tuple(file_patterns),
        ignored_by_watcher_patterns=tuple(ignore_patterns),
    )


def _subtree(pattern: str) -> tuple[str, str]:
    pattern = pattern.rstrip("/")
    return pattern, f"{pattern}/**"


@functools.lru_cache(maxsize=64)
def _process_patterns(
    patterns: tuple[str, ...], *, expand_positive: bool
) -> tuple[tuple[str, ...], tuple[str, ...]]:
    """Split patterns into (positive, negated), negations expanded to their subtree."""
    positive = list[str]()
    negated = list[str]()
    for pattern in patterns:
        if _is_negated(pattern):
            negated.extend(_subtree(pattern[1:]))
        elif expand_positive:
            positive.extend(_subtree(pattern))
        else:
            positive.append(pattern)
    return tuple(positive), tuple(negated)


def _matches_processed(file: str, positive: tuple[str, ...], negated: tuple[str, ...]) -> bool:
    if not positive or not glob.globmatch(file, positive, flags=_MATCH_FLAGS):
        return False
    return not (negated and glob.globmatch(file, negated, flags=_MATCH_FLAGS))


def matches(file: str, patterns: Iterable[str]) -> bool:
    """Check a project-relative path against patterns with negation support.

    Paths beneath default ignored directories never match.
    """
    if ignore.get_default_filter().is_ignored(file):
        return False
    positive, negated = _process_patterns(tuple(patterns), expand_positive=False)
    return _matches_processed(file, positive, negated)


def has_extension(extensions: Iterable[str], file: str | pathlib.Path) -> bool:
    suffix = pathlib.PurePath(file).suffix
    return bool(suffix) and suffix[1:] in extensions


def _is_test(file: str, globs: Globs) -> bool:
    if not has_extension(globs.extensions, file):
        return False
    if pathlib.PurePosixPath(file).name.startswith("_"):
        return False
    if not globs.file_patterns:
        return False
    return matches(file, globs.file_patterns)


def _is_ignored_by_watcher(file: str, globs: Globs) -> bool:
    if ignore.get_default_filter().is_ignored(file):
        return True
    positive, negated = _process_patterns(globs.ignored_by_watcher_patterns, expand_positive=True)
    return _matches_processed(file, positive, negated)


@functools.lru_cache(maxsize=_CACHE_SIZE)
def _classify(file: str, globs: Globs) -> Classification:
    return Classification(
        is_test=_is_test(file, globs),
        is_ignored_by_watcher=_is_ignored_by_watcher(file, globs),
    )


def classify(
    path: str | pathlib.Path, globs: Globs, project_dir: pathlib.Path | None = None
) -> Classification:
    """Classify a path for watch mode.

    Absolute paths are made relative to ``project_dir`` before matching; paths
    outside the project are matched as given.
    """
    return _classify(ignore.normalize_path(path, project_dir), globs)


def get_watcher_ignore_patterns(globs: Globs) -> list[str]:
    """Return the subtree-expanded ignore set used by the watch source."""
    positive, _negated = _process_patterns(globs.ignored_by_watcher_patterns, expand_positive=True)
    return [*ignore.get_default_patterns(), *positive]


def find_files(
    cwd: pathlib.Path, patterns: Iterable[str], extensions: Iterable[str] = DEFAULT_EXTENSIONS
) -> list[pathlib.Path]:
    """Expand patterns against the filesystem.

    Returns absolute, symlink-resolved, de-duplicated paths with one of the
    given extensions, skipping default ignored directories.
    """
    positive, negated = _process_patterns(tuple(patterns), expand_positive=False)
    if not positive:
        return []

    exts = tuple(extensions)
    directory_filter = ignore.get_default_filter()
    exclusions = [f"!{pattern}" for pattern in negated]
    found = glob.glob([*positive, *exclusions], flags=_SCAN_FLAGS, root_dir=str(cwd))

    files = dict[pathlib.Path, None]()
    for match in found:
        relative = ignore.normalize_path(match)
        if directory_filter.is_ignored(relative) or not has_extension(exts, relative):
            continue
        files[(cwd / relative).resolve()] = None

    logger.debug("Found %d files matching %d patterns in %s", len(files), len(positive), cwd)
    return list(files)


def find_tests(cwd: pathlib.Path, globs: Globs) -> list[pathlib.Path]:
    """Expand the test-file patterns, dropping underscore-prefixed files."""
    return [
        path
        for path in find_files(cwd, globs.file_patterns, globs.extensions)
        if not path.name.startswith("_")
    ]
