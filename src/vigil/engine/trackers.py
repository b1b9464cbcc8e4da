"""Per-file state carried between runs: exclusivity markers and failure counts."""

from __future__ import annotations

import collections
import logging
import pathlib
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable

    from vigil.engine.types import FileStats

__all__ = ["ExclusivityTracker", "FailureLedger"]

_logger = logging.getLogger(__name__)


class ExclusivityTracker:
    """Test files whose latest run selected fewer tests than they declare."""

    _files: set[pathlib.Path]

    def __init__(self) -> None:
        self._files = set[pathlib.Path]()

    @property
    def files(self) -> frozenset[pathlib.Path]:
        return frozenset(self._files)

    def __contains__(self, test_file: object) -> bool:
        return test_file in self._files

    def __len__(self) -> int:
        return len(self._files)

    def update(self, test_file: pathlib.Path, stats: FileStats) -> None:
        """Replace the file's membership from a fresh worker result."""
        if stats["selected_tests"] < stats["declared_tests"]:
            self._files.add(test_file)
        else:
            self._files.discard(test_file)

    def remove(self, test_file: pathlib.Path) -> None:
        self._files.discard(test_file)

    def intersects(self, files: Iterable[pathlib.Path]) -> bool:
        return any(f in self._files for f in files)


class FailureLedger:
    """Outstanding failure-causing signals per test file."""

    _counts: collections.Counter[pathlib.Path]

    def __init__(self) -> None:
        self._counts = collections.Counter[pathlib.Path]()

    def __getitem__(self, test_file: pathlib.Path) -> int:
        return self._counts[test_file]

    def __len__(self) -> int:
        return len(self._counts)

    @property
    def total(self) -> int:
        return self._counts.total()

    def record(self, test_file: pathlib.Path) -> None:
        """Count one failed test, uncaught exception or unhandled rejection."""
        self._counts[test_file] += 1

    def remove(self, test_file: pathlib.Path) -> None:
        self._counts.pop(test_file, None)

    def prune(self, files: Iterable[pathlib.Path]) -> None:
        """Zero the counts of files included in a new run."""
        for test_file in files:
            self._counts.pop(test_file, None)

    def clear(self) -> None:
        self._counts.clear()

    def count_excluding(self, files: Iterable[pathlib.Path]) -> int:
        """Sum counts for files outside the given selection."""
        selected = set(files)
        count = sum(n for test_file, n in self._counts.items() if test_file not in selected)
        if count:
            _logger.debug("%d failures outstanding outside the selection", count)
        return count
