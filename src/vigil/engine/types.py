from __future__ import annotations

import enum
from typing import TYPE_CHECKING, Literal, Protocol, TypedDict

if TYPE_CHECKING:
    import pathlib

    from anyio.streams.memory import MemoryObjectSendStream

    from vigil.runner import RunStatus

__all__ = [
    "ChangeKind",
    "EngineState",
    "NodeType",
    "Command",
    "RunOptions",
    "RunRequest",
    "FileStats",
    "RunStats",
    # Input events
    "FileChanged",
    "DebounceFired",
    "InputLine",
    "RunStarted",
    "DependenciesReported",
    "FailureReason",
    "FailureReported",
    "WorkerFinished",
    "RunSettled",
    "ShutdownRequested",
    "RunnerSignal",
    "InputEvent",
    # Output events
    "EngineStateChanged",
    "RunDispatched",
    "RunEnded",
    "OutputEvent",
    # Protocols
    "EventSource",
    "EventSink",
    "Runner",
]


class ChangeKind(enum.StrEnum):
    """Kind of filesystem activity reported for a path."""

    ADD = "add"
    CHANGE = "change"
    UNLINK = "unlink"


class EngineState(enum.Enum):
    """Top-level watch engine state."""

    IDLE = "idle"  # Nothing armed, nothing running
    DEBOUNCING = "debouncing"  # Timer armed, no run in flight
    RUN_PENDING = "run_pending"  # Decision queued behind the active run
    RUNNING = "running"  # Run in flight, nothing queued


class NodeType(enum.Enum):
    """Node type in the bipartite test-source graph."""

    TEST = "test"
    SOURCE = "source"


class Command(enum.Enum):
    """Interactive commands read from the input stream."""

    RERUN = "rerun"
    UPDATE_SNAPSHOTS = "update_snapshots"


class RunOptions(TypedDict):
    """Options handed to the runner alongside the selected files."""

    clear_log_on_next_run: bool
    previous_failures: int
    run_only_exclusive: bool
    update_snapshots: bool
    run_vector: int


class RunRequest(TypedDict):
    """One dispatched execution. An empty file list means every test file."""

    files: list[pathlib.Path]
    options: RunOptions


class FileStats(TypedDict):
    """Per-test-file statistics reported when a worker finishes."""

    declared_tests: int
    selected_tests: int
    failed_tests: int
    uncaught_exceptions: int
    unhandled_rejections: int


class RunStats(TypedDict):
    """Aggregate statistics for a settled run."""

    failed_tests: int
    uncaught_exceptions: int
    unhandled_rejections: int
    failed_hooks: int
    failed_workers: int
    internal_errors: int
    timeouts: int


# =============================================================================
# Input Events (triggers)
# =============================================================================


class FileChanged(TypedDict):
    """A single filesystem change reported by the watch source."""

    type: Literal["file_changed"]
    kind: str  # Unknown kinds are dropped by the engine
    path: pathlib.Path


class DebounceFired(TypedDict):
    """The debounce window closed without further changes."""

    type: Literal["debounce_fired"]
    generation: int


class InputLine(TypedDict):
    """A raw line read from the interactive input stream."""

    type: Literal["input_line"]
    line: str


class RunStarted(TypedDict):
    """The runner resolved the files it is about to execute."""

    type: Literal["run_started"]
    run_vector: int
    files: list[pathlib.Path]


class DependenciesReported(TypedDict):
    """Source files a test file loaded during the run."""

    type: Literal["dependencies_reported"]
    run_vector: int
    test_file: pathlib.Path
    sources: list[pathlib.Path]


FailureReason = Literal["test_failed", "uncaught_exception", "unhandled_rejection"]


class FailureReported(TypedDict):
    """A failure-causing signal attributed to a test file."""

    type: Literal["failure_reported"]
    run_vector: int
    test_file: pathlib.Path
    reason: FailureReason


class WorkerFinished(TypedDict):
    """A worker finished executing a test file."""

    type: Literal["worker_finished"]
    run_vector: int
    test_file: pathlib.Path
    stats: FileStats


class ShutdownRequested(TypedDict):
    """Stop processing events and let run() return."""

    type: Literal["shutdown_requested"]


class RunSettled(TypedDict):
    """The dispatched run resolved (stats) or rejected (error)."""

    type: Literal["run_settled"]
    run_vector: int
    stats: RunStats | None
    error: Exception | None


RunnerSignal = DependenciesReported | FailureReported | WorkerFinished

InputEvent = (
    FileChanged
    | DebounceFired
    | InputLine
    | RunStarted
    | DependenciesReported
    | FailureReported
    | WorkerFinished
    | RunSettled
    | ShutdownRequested
)


# =============================================================================
# Output Events (notifications)
# =============================================================================


class EngineStateChanged(TypedDict):
    """Engine transitioned to a new state."""

    type: Literal["engine_state_changed"]
    state: EngineState


class RunDispatched(TypedDict):
    """A run request was handed to the runner."""

    type: Literal["run_dispatched"]
    request: RunRequest


class RunEnded(TypedDict):
    """The dispatched run settled successfully."""

    type: Literal["run_ended"]
    run_vector: int
    stats: RunStats


OutputEvent = EngineStateChanged | RunDispatched | RunEnded


# =============================================================================
# Protocols
# =============================================================================


class EventSource(Protocol):
    """Protocol for async event sources that push events to the engine."""

    async def run(self, send: MemoryObjectSendStream[InputEvent]) -> None:
        """Run the source, pushing events to the send channel.

        The source should run until cancelled via task group cancellation.
        """
        ...


class EventSink(Protocol):
    """Protocol for async event sinks that receive engine output."""

    async def handle(self, event: OutputEvent) -> None:
        """Handle a single output event. Must be non-blocking."""
        ...

    async def close(self) -> None:
        """Clean up resources when engine shuts down."""
        ...


class Runner(Protocol):
    """Protocol for the external test runner.

    Invoked at most once concurrently. Progress is reported through ``status``;
    raising from ``run`` ends the watch session.
    """

    async def run(self, request: RunRequest, status: RunStatus) -> RunStats: ...
