from __future__ import annotations

import contextlib
import dataclasses
import logging
import pathlib
from typing import TYPE_CHECKING, Self

import anyio

from vigil import commands
from vigil import globs as globs_mod
from vigil import runner as runner_mod
from vigil.engine import decision
from vigil.engine.debounce import DEFAULT_DELAY, Debouncer
from vigil.engine.graph import DependencyGraph
from vigil.engine.trackers import ExclusivityTracker, FailureLedger
from vigil.engine.types import (
    ChangeKind,
    Command,
    DebounceFired,
    EngineState,
    EngineStateChanged,
    EventSink,
    EventSource,
    InputEvent,
    OutputEvent,
    RunDispatched,
    RunEnded,
    RunRequest,
    RunSettled,
    ShutdownRequested,
)

if TYPE_CHECKING:
    from collections.abc import Iterable

    from anyio.abc import TaskGroup
    from anyio.streams.memory import MemoryObjectReceiveStream, MemoryObjectSendStream

    from vigil.engine.types import (
        DependenciesReported,
        FileChanged,
        InputLine,
        Runner,
        RunnerSignal,
        RunStarted,
        RunStats,
    )
    from vigil.globs import Classification

__all__ = ["WatchEngine"]

_logger = logging.getLogger(__name__)

# Channel buffer sizes for backpressure
_INPUT_BUFFER_SIZE = 32
_OUTPUT_BUFFER_SIZE = 64


@dataclasses.dataclass
class _ActiveRun:
    """The single in-flight run and the runner signals buffered for it."""

    request: RunRequest
    signals: list[RunnerSignal] = dataclasses.field(default_factory=list)
    resolved_files: list[pathlib.Path] | None = None
    # Test files deleted while the run was in flight
    unlinked: set[pathlib.Path] = dataclasses.field(default_factory=set)

    @property
    def run_vector(self) -> int:
        return self.request["options"]["run_vector"]


@dataclasses.dataclass(frozen=True)
class _QueuedDecision:
    """Work captured while a run is in flight. Exactly one of the fields is set."""

    batch: decision.ChangeBatch | None = None
    command: Command | None = None


class WatchEngine:
    """Async coordinator deciding which test files to rerun as files change.

    Thread safety: All state access occurs in the event loop task within run().
    Sources, debounce timers and the runner task only send events to the input
    channel, which serializes every state change.
    """

    _project_dir: pathlib.Path
    _globs: globs_mod.Globs
    _runner: Runner
    _initial_files: list[pathlib.Path]
    _sources: list[EventSource]
    _sinks: list[EventSink]
    _input_send: MemoryObjectSendStream[InputEvent] | None
    _input_recv: MemoryObjectReceiveStream[InputEvent] | None
    _output_send: MemoryObjectSendStream[OutputEvent] | None
    _output_recv: MemoryObjectReceiveStream[OutputEvent] | None
    _task_group: TaskGroup | None

    # Decision state
    _state: EngineState
    _debouncer: Debouncer
    _batch: decision.ChangeBatch
    _graph: DependencyGraph
    _exclusivity: ExclusivityTracker
    _failures: FailureLedger
    _run_vector: int
    _active: _ActiveRun | None
    _queued: _QueuedDecision | None
    _last_request: RunRequest | None
    _last_resolved_files: list[pathlib.Path]
    _previous_stats: RunStats | None

    # Shutdown state
    _stop_requested: bool
    _fatal_error: Exception | None
    _run_completed: bool
    _dispatch_complete: anyio.Event | None

    def __init__(
        self,
        *,
        project_dir: pathlib.Path,
        globs: globs_mod.Globs,
        runner: Runner,
        files: Iterable[pathlib.Path] = (),
        debounce: float = DEFAULT_DELAY,
    ) -> None:
        """Initialize the engine in IDLE state.

        Args:
            project_dir: Absolute project root; relative paths resolve against it.
            globs: Normalized patterns for the session.
            runner: Executes dispatched run requests.
            files: Test files for the initial run. Empty runs every test file.
            debounce: Quiet period in seconds before a batch of changes is decided.
        """
        self._project_dir = project_dir
        self._globs = globs
        self._runner = runner
        self._initial_files = [self._canonical(path) for path in files]
        self._sources = list[EventSource]()
        self._sinks = list[EventSink]()

        # Channels created on __aenter__
        self._input_send = None
        self._input_recv = None
        self._output_send = None
        self._output_recv = None
        self._task_group = None

        self._state = EngineState.IDLE
        self._debouncer = Debouncer(self._post_debounce_fired, delay=debounce)
        self._batch = decision.ChangeBatch()
        self._graph = DependencyGraph()
        self._exclusivity = ExclusivityTracker()
        self._failures = FailureLedger()
        self._run_vector = 0
        self._active = None
        self._queued = None
        self._last_request = None
        self._last_resolved_files = list[pathlib.Path]()
        self._previous_stats = None

        self._stop_requested = False
        self._fatal_error = None
        self._run_completed = False
        self._dispatch_complete = None

    @property
    def state(self) -> EngineState:
        """Current engine state."""
        return self._state

    @property
    def sources(self) -> list[EventSource]:
        """Registered async event sources (returns a copy)."""
        return list(self._sources)

    @property
    def sinks(self) -> list[EventSink]:
        """Registered async event sinks (returns a copy)."""
        return list(self._sinks)

    @property
    def graph(self) -> DependencyGraph:
        return self._graph

    @property
    def exclusivity(self) -> ExclusivityTracker:
        return self._exclusivity

    @property
    def failures(self) -> FailureLedger:
        return self._failures

    @property
    def last_request(self) -> RunRequest | None:
        """The most recently dispatched run request."""
        return self._last_request

    @property
    def last_resolved_files(self) -> list[pathlib.Path]:
        """Files the runner resolved for the most recently started run."""
        return list(self._last_resolved_files)

    def add_source(self, source: EventSource) -> None:
        """Register an async event source."""
        self._sources.append(source)

    def add_sink(self, sink: EventSink) -> None:
        """Register an async event sink."""
        self._sinks.append(sink)

    async def __aenter__(self) -> Self:
        """Set up memory channels for event flow."""
        self._input_send, self._input_recv = anyio.create_memory_object_stream[InputEvent](
            _INPUT_BUFFER_SIZE
        )
        self._output_send, self._output_recv = anyio.create_memory_object_stream[OutputEvent](
            _OUTPUT_BUFFER_SIZE
        )
        return self

    async def __aexit__(self, *_exc: object) -> None:
        """Close all sinks and channels.

        Closes send channels first to signal receivers, then receive channels.
        """
        if self._input_send:
            await self._input_send.aclose()
        if self._output_send:
            await self._output_send.aclose()

        for sink in self._sinks:
            try:
                await sink.close()
            except Exception:
                _logger.exception("Error closing sink %s", sink)

        if self._input_recv:
            await self._input_recv.aclose()
        if self._output_recv:
            await self._output_recv.aclose()

    async def emit(self, event: OutputEvent) -> None:
        """Emit an output event to all sinks.

        Silently drops events if the output channel is closed (during shutdown).
        """
        if self._output_send:
            with contextlib.suppress(anyio.ClosedResourceError):
                await self._output_send.send(event)

    async def shutdown(self) -> None:
        """Ask run() to stop after the events already queued."""
        if self._input_send is None:
            raise RuntimeError("WatchEngine must be used as async context manager")
        await self._input_send.send(ShutdownRequested(type="shutdown_requested"))

    async def run(self) -> None:
        """Dispatch the initial run, then react to events until shut down.

        Raises:
            RuntimeError: If run() has already completed on this instance.
            Exception: Whatever the runner raised for a run; the session ends.
        """
        if self._run_completed:
            raise RuntimeError(
                "WatchEngine.run() has already completed. Create a new WatchEngine per session."
            )
        if self._input_send is None or self._input_recv is None:
            raise RuntimeError("WatchEngine must be used as async context manager")
        if self._output_send is None or self._output_recv is None:
            raise RuntimeError("WatchEngine must be used as async context manager")

        self._dispatch_complete = dispatch_complete = anyio.Event()

        async with anyio.create_task_group() as tg:
            self._task_group = tg
            self._debouncer.attach(tg)

            for source in self._sources:
                tg.start_soon(self._run_source_with_cleanup, source, self._input_send.clone())
            tg.start_soon(self._dispatch_outputs)

            await self._dispatch(self._initial_files)
            await self._update_state()

            async for event in self._input_recv:
                await self._handle_input_event(event)
                if self._stop_requested or self._fatal_error is not None:
                    break

            self._debouncer.cancel()

            # Let the dispatcher drain buffered events before cancelling
            if self._output_send:
                await self._output_send.aclose()
            with anyio.move_on_after(5.0):
                await dispatch_complete.wait()

            tg.cancel_scope.cancel()

        self._task_group = None
        self._run_completed = True

        if self._fatal_error is not None:
            raise self._fatal_error

    async def _run_source_with_cleanup(
        self,
        source: EventSource,
        send: MemoryObjectSendStream[InputEvent],
    ) -> None:
        """Run a source and ensure its channel is closed on exit."""
        try:
            await source.run(send)
        finally:
            await send.aclose()

    async def _dispatch_outputs(self) -> None:
        """Dispatch output events to all sinks.

        Errors in individual sinks are logged but don't stop event dispatch.
        """
        assert self._output_recv is not None  # Validated by run()
        assert self._dispatch_complete is not None
        dispatch_complete = self._dispatch_complete
        try:
            async for event in self._output_recv:
                for sink in self._sinks:
                    await self._dispatch_to_sink(sink, event)
        finally:
            dispatch_complete.set()

    async def _dispatch_to_sink(self, sink: EventSink, event: OutputEvent) -> None:
        """Dispatch event to a single sink, catching errors."""
        try:
            await sink.handle(event)
        except Exception:
            _logger.exception("Error dispatching event to sink %s", sink)

    async def _post_debounce_fired(self, generation: int) -> None:
        assert self._input_send is not None
        await self._input_send.send(DebounceFired(type="debounce_fired", generation=generation))

    async def _handle_input_event(self, event: InputEvent) -> None:
        """Process a single input event."""
        match event["type"]:
            case "file_changed":
                await self._handle_file_changed(event)
            case "debounce_fired":
                await self._handle_debounce_fired(event["generation"])
            case "input_line":
                await self._handle_input_line(event)
            case "run_started":
                self._handle_run_started(event)
            case "dependencies_reported" | "failure_reported" | "worker_finished":
                self._buffer_signal(event)
            case "run_settled":
                await self._handle_run_settled(event)
            case "shutdown_requested":
                self._stop_requested = True
        await self._update_state()

    # =========================================================================
    # Change batching
    # =========================================================================

    async def _handle_file_changed(self, event: FileChanged) -> None:
        try:
            kind = ChangeKind(event["kind"])
        except ValueError:
            _logger.debug("Ignoring unknown change kind %r for %s", event["kind"], event["path"])
            return

        self._batch.add(self._canonical(event["path"]), kind)
        self._debouncer.notify()

    async def _handle_debounce_fired(self, generation: int) -> None:
        if not self._debouncer.consume(generation):
            return  # Overtaken by cancel() or a newer notify()

        batch, self._batch = self._batch, decision.ChangeBatch()
        queued = self._queued
        if queued is not None and queued.batch is not None:
            batch = queued.batch.merge(batch)

        summary = decision.summarize(batch, self._classify)
        for test_file in summary.unlinked_tests:
            self._forget_test(test_file)

        if self._active is not None:
            self._active.unlinked.update(summary.unlinked_tests)
            _logger.debug(
                "Run %d in progress, queueing decision for %d changed files",
                self._active.run_vector,
                len(batch),
            )
            self._queued = _QueuedDecision(batch=batch)
            return

        files = decision.select_tests(summary, self._graph)
        if files is None:
            _logger.debug("No test files affected by %d changed files", len(batch))
            return
        await self._dispatch(files)

    # =========================================================================
    # Interactive commands
    # =========================================================================

    async def _handle_input_line(self, event: InputLine) -> None:
        command = commands.parse_command(event["line"])
        if command is None:
            return

        self._debouncer.cancel()
        self._batch = decision.ChangeBatch()
        if self._active is not None:
            _logger.debug("Run %d in progress, queueing %s", self._active.run_vector, command)
            self._queued = _QueuedDecision(command=command)
            return
        await self._dispatch_command(command)

    async def _dispatch_command(self, command: Command) -> None:
        if self._last_request is not None:
            files = list(self._last_request["files"])
        else:
            files = list(self._initial_files)
        await self._dispatch(
            files,
            manual=True,
            update_snapshots=command == Command.UPDATE_SNAPSHOTS,
        )

    # =========================================================================
    # Run lifecycle
    # =========================================================================

    async def _dispatch(
        self,
        files: list[pathlib.Path],
        *,
        manual: bool = False,
        update_snapshots: bool = False,
    ) -> None:
        """Hand a run request to the runner. Callers ensure no run is active."""
        assert self._task_group is not None
        assert self._active is None

        self._run_vector += 1
        options = decision.build_options(
            files,
            run_vector=self._run_vector,
            previous_stats=self._previous_stats,
            exclusivity=self._exclusivity,
            failures=self._failures,
            manual=manual,
            update_snapshots=update_snapshots,
        )
        if files:
            self._failures.prune(files)
        else:
            self._failures.clear()

        request = RunRequest(files=list(files), options=options)
        self._last_request = request
        self._active = _ActiveRun(request=request)
        if files:
            _logger.debug("Dispatching run %d for %d test files", self._run_vector, len(files))
        else:
            _logger.debug("Dispatching run %d for all test files", self._run_vector)

        await self.emit(RunDispatched(type="run_dispatched", request=request))
        self._task_group.start_soon(self._execute, request)

    async def _execute(self, request: RunRequest) -> None:
        """Run the request and report how it settled through the input channel."""
        assert self._input_send is not None
        run_vector = request["options"]["run_vector"]
        status = runner_mod.RunStatus(self._input_send, run_vector)
        try:
            stats = await self._runner.run(request, status)
        except Exception as exc:
            await self._input_send.send(
                RunSettled(type="run_settled", run_vector=run_vector, stats=None, error=exc)
            )
            return
        await self._input_send.send(
            RunSettled(type="run_settled", run_vector=run_vector, stats=stats, error=None)
        )

    def _is_current_run(self, run_vector: int) -> bool:
        return self._active is not None and self._active.run_vector == run_vector

    def _handle_run_started(self, event: RunStarted) -> None:
        if not self._is_current_run(event["run_vector"]):
            return
        assert self._active is not None
        files = [self._canonical(path) for path in event["files"]]
        self._active.resolved_files = files
        self._last_resolved_files = files
        _logger.debug("Run %d started with %d test files", event["run_vector"], len(files))

    def _buffer_signal(self, signal: RunnerSignal) -> None:
        if not self._is_current_run(signal["run_vector"]):
            _logger.debug("Dropping %s for run %d", signal["type"], signal["run_vector"])
            return
        assert self._active is not None
        self._active.signals.append(signal)

    async def _handle_run_settled(self, event: RunSettled) -> None:
        if not self._is_current_run(event["run_vector"]):
            return
        active, self._active = self._active, None
        assert active is not None

        error = event["error"]
        if error is not None:
            _logger.critical("Run %d failed: %s", active.run_vector, error)
            self._queued = None
            self._debouncer.cancel()
            self._fatal_error = error
            return

        stats = event["stats"] if event["stats"] is not None else runner_mod.empty_stats()
        self._apply_signals(active.signals)
        for test_file in active.unlinked:
            self._forget_test(test_file)
        self._previous_stats = stats
        await self.emit(RunEnded(type="run_ended", run_vector=active.run_vector, stats=stats))

        queued, self._queued = self._queued, None
        if queued is None:
            return
        if queued.command is not None:
            # Changes made while the command waited are covered by the replay
            self._debouncer.cancel()
            self._batch = decision.ChangeBatch()
            await self._dispatch_command(queued.command)
            return

        assert queued.batch is not None
        summary = decision.summarize(queued.batch, self._classify)
        files = decision.select_tests(summary, self._graph)
        if files is not None:
            await self._dispatch(files)

    # =========================================================================
    # Tracker updates
    # =========================================================================

    def _apply_signals(self, signals: list[RunnerSignal]) -> None:
        for signal in signals:
            test_file = self._canonical(signal["test_file"])
            match signal["type"]:
                case "dependencies_reported":
                    self._update_dependencies(test_file, signal)
                case "failure_reported":
                    self._failures.record(test_file)
                case "worker_finished":
                    self._exclusivity.update(test_file, signal["stats"])

    def _update_dependencies(self, test_file: pathlib.Path, signal: DependenciesReported) -> None:
        sources = list[pathlib.Path]()
        for source in signal["sources"]:
            path = self._canonical(source)
            if self._classify(path).is_ignored_by_watcher:
                continue
            sources.append(path)
        self._graph.replace(test_file, sources)

    def _forget_test(self, test_file: pathlib.Path) -> None:
        """Drop all tracked state for a deleted test file."""
        _logger.debug("Forgetting deleted test file %s", test_file)
        self._graph.remove_test(test_file)
        self._exclusivity.remove(test_file)
        self._failures.remove(test_file)

    # =========================================================================
    # Helpers
    # =========================================================================

    def _canonical(self, path: pathlib.Path) -> pathlib.Path:
        return path if path.is_absolute() else self._project_dir / path

    def _classify(self, path: pathlib.Path) -> Classification:
        return globs_mod.classify(path, self._globs, self._project_dir)

    def _compute_state(self) -> EngineState:
        if self._active is not None:
            return EngineState.RUN_PENDING if self._queued is not None else EngineState.RUNNING
        if self._debouncer.armed:
            return EngineState.DEBOUNCING
        return EngineState.IDLE

    async def _update_state(self) -> None:
        state = self._compute_state()
        if state == self._state:
            return
        self._state = state
        await self.emit(EngineStateChanged(type="engine_state_changed", state=state))
