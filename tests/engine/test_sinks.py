"""Tests for event sinks."""

from __future__ import annotations

from io import StringIO
from pathlib import Path

from rich.console import Console

from vigil import runner as runner_mod
from vigil.engine import types
from vigil.engine.sinks import ConsoleSink, ResultCollectorSink


def _request(
    files: list[Path],
    *,
    clear_log: bool = False,
    previous_failures: int = 0,
    update_snapshots: bool = False,
) -> types.RunRequest:
    return types.RunRequest(
        files=files,
        options=types.RunOptions(
            clear_log_on_next_run=clear_log,
            previous_failures=previous_failures,
            run_only_exclusive=False,
            update_snapshots=update_snapshots,
            run_vector=1,
        ),
    )


def _console() -> tuple[StringIO, Console]:
    output = StringIO()
    return output, Console(file=output, force_terminal=False, width=120)


# =============================================================================
# ConsoleSink Tests
# =============================================================================


async def test_console_sink_describes_full_run() -> None:
    output, console = _console()
    sink = ConsoleSink(console=console)

    await sink.handle(types.RunDispatched(type="run_dispatched", request=_request([])))

    assert "Running all test files..." in output.getvalue()


async def test_console_sink_describes_selected_files() -> None:
    output, console = _console()
    sink = ConsoleSink(console=console)

    await sink.handle(
        types.RunDispatched(
            type="run_dispatched", request=_request([Path("tests/test_[a].py")])
        )
    )
    await sink.handle(
        types.RunDispatched(
            type="run_dispatched",
            request=_request(
                [Path("tests/test_a.py"), Path("tests/test_b.py")], update_snapshots=True
            ),
        )
    )

    text = output.getvalue()
    assert "Running tests/test_[a].py..." in text
    assert "Running 2 test files (updating snapshots)..." in text


async def test_console_sink_reports_previous_failures() -> None:
    output, console = _console()
    sink = ConsoleSink(console=console)

    await sink.handle(
        types.RunDispatched(
            type="run_dispatched", request=_request([Path("tests/test_a.py")], previous_failures=3)
        )
    )

    assert "3 previous failures in test files that were not rerun" in output.getvalue()


async def test_console_sink_reports_run_result() -> None:
    output, console = _console()
    sink = ConsoleSink(console=console)
    failed = runner_mod.empty_stats()
    failed["failed_tests"] = 2
    failed["timeouts"] = 1

    await sink.handle(types.RunEnded(type="run_ended", run_vector=1, stats=failed))
    await sink.handle(
        types.RunEnded(type="run_ended", run_vector=2, stats=runner_mod.empty_stats())
    )

    text = output.getvalue()
    assert "Run failed: 2 failed tests, 1 timeout" in text
    assert "Run passed" in text
    assert "press enter to rerun tests" in text


async def test_console_sink_ignores_state_changes() -> None:
    output, console = _console()
    sink = ConsoleSink(console=console)

    await sink.handle(
        types.EngineStateChanged(type="engine_state_changed", state=types.EngineState.RUNNING)
    )
    await sink.close()

    assert output.getvalue() == ""


# =============================================================================
# ResultCollectorSink Tests
# =============================================================================


async def test_result_collector_sink_collects_events() -> None:
    sink = ResultCollectorSink()
    request = _request([Path("tests/test_a.py")])

    await sink.handle(
        types.EngineStateChanged(type="engine_state_changed", state=types.EngineState.RUNNING)
    )
    await sink.handle(types.RunDispatched(type="run_dispatched", request=request))
    await sink.close()

    assert len(await sink.get_events()) == 2
    assert await sink.get_requests() == [request]
