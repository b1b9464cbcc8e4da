"""Runner-facing reporting channel and the subprocess runner adapter."""

from __future__ import annotations

import logging
import os
import pathlib
import tempfile
from typing import TYPE_CHECKING, Annotated, Literal

import anyio
import anyio.to_thread
import pydantic

from vigil import globs as globs_mod
from vigil.engine.types import (
    DependenciesReported,
    FailureReported,
    FileStats,
    RunStarted,
    RunStats,
    WorkerFinished,
)

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from anyio.streams.memory import MemoryObjectSendStream

    from vigil.engine.types import FailureReason, InputEvent, RunRequest

__all__ = [
    "REPORT_ENV_VAR",
    "CommandRunner",
    "ReportRecord",
    "RunStatus",
    "empty_stats",
    "parse_report",
    "replay_report",
]

logger = logging.getLogger(__name__)


def empty_stats() -> RunStats:
    """Stats for a run with nothing to report."""
    return RunStats(
        failed_tests=0,
        uncaught_exceptions=0,
        unhandled_rejections=0,
        failed_hooks=0,
        failed_workers=0,
        internal_errors=0,
        timeouts=0,
    )


class RunStatus:
    """Reports the progress of one dispatched run back to the engine.

    Signals are buffered by the engine and applied when the run settles, so a
    runner may report in any order while it executes.
    """

    _send: MemoryObjectSendStream[InputEvent]
    _run_vector: int

    def __init__(self, send: MemoryObjectSendStream[InputEvent], run_vector: int) -> None:
        self._send = send
        self._run_vector = run_vector

    @property
    def run_vector(self) -> int:
        return self._run_vector

    async def run_started(self, files: Iterable[pathlib.Path]) -> None:
        """Report the resolved list of test files about to execute."""
        await self._send.send(
            RunStarted(type="run_started", run_vector=self._run_vector, files=list(files))
        )

    async def dependencies(
        self, test_file: pathlib.Path, sources: Iterable[pathlib.Path]
    ) -> None:
        """Report the source files a test file loaded."""
        await self._send.send(
            DependenciesReported(
                type="dependencies_reported",
                run_vector=self._run_vector,
                test_file=test_file,
                sources=list(sources),
            )
        )

    async def test_failed(self, test_file: pathlib.Path) -> None:
        await self._failure(test_file, "test_failed")

    async def uncaught_exception(self, test_file: pathlib.Path) -> None:
        await self._failure(test_file, "uncaught_exception")

    async def unhandled_rejection(self, test_file: pathlib.Path) -> None:
        await self._failure(test_file, "unhandled_rejection")

    async def worker_finished(self, test_file: pathlib.Path, stats: FileStats) -> None:
        """Report declared/selected test counts once a file finished executing."""
        await self._send.send(
            WorkerFinished(
                type="worker_finished",
                run_vector=self._run_vector,
                test_file=test_file,
                stats=stats,
            )
        )

    async def _failure(self, test_file: pathlib.Path, reason: FailureReason) -> None:
        await self._send.send(
            FailureReported(
                type="failure_reported",
                run_vector=self._run_vector,
                test_file=test_file,
                reason=reason,
            )
        )


# =============================================================================
# Report channel
# =============================================================================

REPORT_ENV_VAR = "VIGIL_REPORT"


class _TestFileRecord(pydantic.BaseModel):
    test_file: pathlib.Path


class DependenciesRecord(_TestFileRecord):
    event: Literal["dependencies"]
    sources: list[pathlib.Path]


class FailureRecord(_TestFileRecord):
    event: Literal["test_failed", "uncaught_exception", "unhandled_rejection"]


class WorkerFinishedRecord(_TestFileRecord):
    event: Literal["worker_finished"]
    declared_tests: Annotated[int, pydantic.Field(ge=0)]
    selected_tests: Annotated[int, pydantic.Field(ge=0)]
    failed_tests: Annotated[int, pydantic.Field(ge=0)] = 0
    uncaught_exceptions: Annotated[int, pydantic.Field(ge=0)] = 0
    unhandled_rejections: Annotated[int, pydantic.Field(ge=0)] = 0


class RunErrorRecord(pydantic.BaseModel):
    event: Literal["failed_hook", "internal_error", "timeout"]


ReportRecord = Annotated[
    DependenciesRecord | FailureRecord | WorkerFinishedRecord | RunErrorRecord,
    pydantic.Field(discriminator="event"),
]

_report_adapter: pydantic.TypeAdapter[ReportRecord] = pydantic.TypeAdapter(ReportRecord)

_RUN_ERROR_KEYS: dict[str, Literal["failed_hooks", "internal_errors", "timeouts"]] = {
    "failed_hook": "failed_hooks",
    "internal_error": "internal_errors",
    "timeout": "timeouts",
}


def parse_report(text: str) -> list[ReportRecord]:
    """Parse a JSON-lines report written by the test command.

    Blank lines are skipped. Malformed lines are logged and dropped.
    """
    records = list[ReportRecord]()
    for lineno, line in enumerate(text.splitlines(), start=1):
        if not line.strip():
            continue
        try:
            records.append(_report_adapter.validate_json(line))
        except pydantic.ValidationError as e:
            logger.warning("Ignoring malformed report line %d: %s", lineno, e)
    return records


async def replay_report(
    records: Iterable[ReportRecord], status: RunStatus, project_dir: pathlib.Path
) -> RunStats:
    """Forward report records to ``status`` and total them into run stats."""

    def absolute(path: pathlib.Path) -> pathlib.Path:
        return path if path.is_absolute() else project_dir / path

    stats = empty_stats()
    for record in records:
        match record:
            case DependenciesRecord():
                await status.dependencies(
                    absolute(record.test_file), [absolute(s) for s in record.sources]
                )
            case FailureRecord(event="test_failed"):
                stats["failed_tests"] += 1
                await status.test_failed(absolute(record.test_file))
            case FailureRecord(event="uncaught_exception"):
                stats["uncaught_exceptions"] += 1
                await status.uncaught_exception(absolute(record.test_file))
            case FailureRecord():
                stats["unhandled_rejections"] += 1
                await status.unhandled_rejection(absolute(record.test_file))
            case WorkerFinishedRecord():
                await status.worker_finished(
                    absolute(record.test_file),
                    FileStats(
                        declared_tests=record.declared_tests,
                        selected_tests=record.selected_tests,
                        failed_tests=record.failed_tests,
                        uncaught_exceptions=record.uncaught_exceptions,
                        unhandled_rejections=record.unhandled_rejections,
                    ),
                )
            case RunErrorRecord():
                stats[_RUN_ERROR_KEYS[record.event]] += 1
    return stats


# =============================================================================
# Subprocess runner
# =============================================================================


class CommandRunner:
    """Runs the selected test files with an external command.

    Selected files are appended to the command (none for a full run). Run
    options that the command cannot receive as arguments are exposed through
    ``VIGIL_*`` environment variables. A non-zero exit status counts as a
    failed worker.

    The command may append JSON lines to the file named by ``VIGIL_REPORT``,
    one object per signal, keyed by ``event``::

        {"event": "dependencies", "test_file": "tests/test_a.py", "sources": ["src/a.py"]}
        {"event": "test_failed", "test_file": "tests/test_a.py"}
        {"event": "worker_finished", "test_file": "tests/test_a.py",
         "declared_tests": 4, "selected_tests": 1}

    Relative paths resolve against the project directory. The report is read
    once the command exits.
    """

    _command: list[str]
    _project_dir: pathlib.Path
    _globs: globs_mod.Globs
    _update_snapshots_args: list[str]

    def __init__(
        self,
        command: Sequence[str],
        *,
        project_dir: pathlib.Path,
        globs: globs_mod.Globs,
        update_snapshots_args: Sequence[str] = (),
    ) -> None:
        if not command:
            raise ValueError("Runner command must not be empty")
        self._command = list(command)
        self._project_dir = project_dir
        self._globs = globs
        self._update_snapshots_args = list(update_snapshots_args)

    @property
    def command(self) -> list[str]:
        return list(self._command)

    def build_args(self, request: RunRequest) -> list[str]:
        """Full argument list for a request."""
        args = list(self._command)
        if request["options"]["update_snapshots"]:
            args.extend(self._update_snapshots_args)
        args.extend(str(path) for path in request["files"])
        return args

    def build_env(
        self, request: RunRequest, report_path: pathlib.Path | None = None
    ) -> dict[str, str]:
        options = request["options"]
        env = {
            **os.environ,
            "VIGIL_RUN_VECTOR": str(options["run_vector"]),
            "VIGIL_RUN_ONLY_EXCLUSIVE": "1" if options["run_only_exclusive"] else "0",
            "VIGIL_PREVIOUS_FAILURES": str(options["previous_failures"]),
            "VIGIL_UPDATE_SNAPSHOTS": "1" if options["update_snapshots"] else "0",
        }
        if report_path is not None:
            env[REPORT_ENV_VAR] = str(report_path)
        return env

    async def run(self, request: RunRequest, status: RunStatus) -> RunStats:
        files = request["files"]
        if not files:
            files = await anyio.to_thread.run_sync(
                globs_mod.find_tests, self._project_dir, self._globs
            )
        await status.run_started(files)

        args = self.build_args(request)
        logger.debug("Running %s", " ".join(args))
        with tempfile.TemporaryDirectory(prefix="vigil-") as tmp_dir:
            report_path = pathlib.Path(tmp_dir) / "report.jsonl"
            result = await anyio.run_process(
                args,
                stdout=None,
                stderr=None,
                check=False,
                cwd=self._project_dir,
                env=self.build_env(request, report_path),
            )
            report = anyio.Path(report_path)
            text = await report.read_text() if await report.exists() else ""

        stats = await replay_report(parse_report(text), status, self._project_dir)
        if result.returncode != 0:
            logger.debug("Runner exited with status %d", result.returncode)
            stats["failed_workers"] = 1
        return stats
