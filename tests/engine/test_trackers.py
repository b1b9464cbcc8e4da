from __future__ import annotations

from pathlib import Path

from vigil.engine.trackers import ExclusivityTracker, FailureLedger
from vigil.engine.types import FileStats


def _file_stats(declared: int, selected: int) -> FileStats:
    return FileStats(
        declared_tests=declared,
        selected_tests=selected,
        failed_tests=0,
        uncaught_exceptions=0,
        unhandled_rejections=0,
    )


# =============================================================================
# ExclusivityTracker
# =============================================================================


def test_exclusivity_added_when_fewer_tests_selected() -> None:
    tracker = ExclusivityTracker()

    tracker.update(Path("/p/tests/test_a.py"), _file_stats(declared=5, selected=1))

    assert Path("/p/tests/test_a.py") in tracker
    assert tracker.files == frozenset({Path("/p/tests/test_a.py")})


def test_exclusivity_removed_when_all_tests_selected() -> None:
    """Membership follows the latest worker result."""
    tracker = ExclusivityTracker()
    test_a = Path("/p/tests/test_a.py")
    tracker.update(test_a, _file_stats(declared=5, selected=1))

    tracker.update(test_a, _file_stats(declared=5, selected=5))

    assert test_a not in tracker
    assert len(tracker) == 0


def test_exclusivity_remove_and_intersects() -> None:
    tracker = ExclusivityTracker()
    test_a = Path("/p/tests/test_a.py")
    tracker.update(test_a, _file_stats(declared=2, selected=1))

    assert tracker.intersects([Path("/p/tests/test_b.py"), test_a])
    assert not tracker.intersects([Path("/p/tests/test_b.py")])

    tracker.remove(test_a)
    tracker.remove(test_a)

    assert not tracker.intersects([test_a])


# =============================================================================
# FailureLedger
# =============================================================================


def test_failure_ledger_counts_per_file() -> None:
    ledger = FailureLedger()
    test_a = Path("/p/tests/test_a.py")

    ledger.record(test_a)
    ledger.record(test_a)
    ledger.record(Path("/p/tests/test_b.py"))

    assert ledger[test_a] == 2
    assert ledger[Path("/p/tests/test_c.py")] == 0
    assert ledger.total == 3
    assert len(ledger) == 2


def test_failure_ledger_count_excluding_selection() -> None:
    """Only failures outside the selection are carried over."""
    ledger = FailureLedger()
    ledger.record(Path("/p/tests/test_a.py"))
    ledger.record(Path("/p/tests/test_b.py"))
    ledger.record(Path("/p/tests/test_b.py"))

    assert ledger.count_excluding([Path("/p/tests/test_a.py")]) == 2
    assert ledger.count_excluding([Path("/p/tests/test_b.py")]) == 1
    assert ledger.count_excluding([]) == 3


def test_failure_ledger_prune_remove_clear() -> None:
    ledger = FailureLedger()
    test_a = Path("/p/tests/test_a.py")
    test_b = Path("/p/tests/test_b.py")
    ledger.record(test_a)
    ledger.record(test_b)

    ledger.prune([test_a])
    assert ledger[test_a] == 0
    assert ledger.total == 1

    ledger.remove(test_b)
    assert ledger.total == 0

    ledger.record(test_a)
    ledger.clear()
    assert len(ledger) == 0
