"""Pure run-selection and run-option functions.

The engine owns all state; these functions only read it, so every decision can
be tested without an event loop.
"""

from __future__ import annotations

import dataclasses
import logging
import pathlib
from typing import TYPE_CHECKING

from vigil.engine.types import ChangeKind, RunOptions

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Mapping

    from vigil.engine.graph import DependencyGraph
    from vigil.engine.trackers import ExclusivityTracker, FailureLedger
    from vigil.engine.types import RunStats
    from vigil.globs import Classification

__all__ = [
    "BatchSummary",
    "ChangeBatch",
    "build_options",
    "had_failures",
    "select_tests",
    "summarize",
]

_logger = logging.getLogger(__name__)


class ChangeBatch:
    """Paths changed since the last decision.

    Ordered by first occurrence; a later event for the same path updates its kind.
    """

    _changes: dict[pathlib.Path, ChangeKind]

    def __init__(self, changes: Mapping[pathlib.Path, ChangeKind] | None = None) -> None:
        self._changes = dict(changes) if changes else dict[pathlib.Path, ChangeKind]()

    def __len__(self) -> int:
        return len(self._changes)

    def __repr__(self) -> str:
        return f"ChangeBatch({self._changes!r})"

    @property
    def changes(self) -> dict[pathlib.Path, ChangeKind]:
        return dict(self._changes)

    def add(self, path: pathlib.Path, kind: ChangeKind) -> None:
        self._changes[path] = kind

    def merge(self, later: ChangeBatch) -> ChangeBatch:
        """Return a new batch with this batch's paths followed by ``later``'s."""
        merged = ChangeBatch(self._changes)
        for path, kind in later._changes.items():
            merged.add(path, kind)
        return merged


@dataclasses.dataclass(frozen=True)
class BatchSummary:
    """A batch split by classification, each list in event order."""

    changed_tests: list[pathlib.Path]
    unlinked_tests: list[pathlib.Path]
    changed_sources: list[pathlib.Path]
    ignored: list[pathlib.Path]

    @property
    def is_empty(self) -> bool:
        return not (
            self.changed_tests or self.unlinked_tests or self.changed_sources or self.ignored
        )


def summarize(
    batch: ChangeBatch, classify: Callable[[pathlib.Path], Classification]
) -> BatchSummary:
    """Split a batch into tests, unlinked tests, sources and ignored paths.

    A path classified as a test is always test activity, even when it is also a
    dependency of another test.
    """
    changed_tests = list[pathlib.Path]()
    unlinked_tests = list[pathlib.Path]()
    changed_sources = list[pathlib.Path]()
    ignored = list[pathlib.Path]()

    for path, kind in batch.changes.items():
        _logger.debug("Detected %s of %s", kind, path)
        classification = classify(path)
        if classification.is_ignored_by_watcher:
            ignored.append(path)
        elif classification.is_test:
            if kind == ChangeKind.UNLINK:
                unlinked_tests.append(path)
            else:
                changed_tests.append(path)
        else:
            changed_sources.append(path)

    return BatchSummary(
        changed_tests=changed_tests,
        unlinked_tests=unlinked_tests,
        changed_sources=changed_sources,
        ignored=ignored,
    )


def select_tests(summary: BatchSummary, graph: DependencyGraph) -> list[pathlib.Path] | None:
    """Decide which test files a batch requires.

    Returns:
        The ordered test files to run, an empty list meaning every test file,
        or None when the batch requires no run at all.
    """
    if summary.is_empty:
        return []
    if not summary.changed_tests and not summary.changed_sources:
        return None

    mapped_tests = list[pathlib.Path]()
    unmappable_sources = list[pathlib.Path]()
    for source in summary.changed_sources:
        dependents = graph.get_dependents(source)
        if not dependents:
            unmappable_sources.append(source)
            continue
        for test_file in dependents:
            _logger.debug("%s is a dependency of %s", source, test_file)
        mapped_tests.extend(dependents)

    if unmappable_sources:
        _logger.debug(
            "Files remain that cannot be traced to specific tests: %s",
            [str(path) for path in unmappable_sources],
        )
        _logger.debug("Rerunning all tests")
        return []

    return list(dict.fromkeys([*summary.changed_tests, *mapped_tests]))


def had_failures(stats: RunStats) -> bool:
    """Whether a settled run left anything for the user to read."""
    return any(
        (
            stats["failed_tests"],
            stats["unhandled_rejections"],
            stats["uncaught_exceptions"],
            stats["failed_hooks"],
            stats["failed_workers"],
            stats["internal_errors"],
            stats["timeouts"],
        )
    )


def build_options(
    files: Iterable[pathlib.Path],
    *,
    run_vector: int,
    previous_stats: RunStats | None,
    exclusivity: ExclusivityTracker,
    failures: FailureLedger,
    manual: bool = False,
    update_snapshots: bool = False,
) -> RunOptions:
    """Compute options for a run of ``files`` (empty meaning every test file).

    Manual runs never clear the log. Exclusivity only restricts a run that
    names specific files, and failures are only carried over for files the
    run leaves out.
    """
    selection = list(files)
    clear_log = not manual and previous_stats is not None and not had_failures(previous_stats)
    return RunOptions(
        clear_log_on_next_run=clear_log,
        previous_failures=failures.count_excluding(selection) if selection else 0,
        run_only_exclusive=bool(selection) and exclusivity.intersects(selection),
        update_snapshots=update_snapshots,
        run_vector=run_vector,
    )
