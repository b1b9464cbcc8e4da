from __future__ import annotations

from typing import TYPE_CHECKING

import anyio
import rich.console
import rich.markup

from vigil.engine import decision
from vigil.engine.types import OutputEvent

if TYPE_CHECKING:
    from vigil.engine.types import RunRequest, RunStats

__all__ = [
    "ConsoleSink",
    "ResultCollectorSink",
]

_WAITING_HINT = (
    "[dim]Type [bold]r[/bold] and press enter to rerun tests\n"
    + "Type [bold]u[/bold] and press enter to update snapshots[/dim]"
)


def _describe_request(request: RunRequest) -> str:
    files = request["files"]
    if not files:
        target = "all test files"
    elif len(files) == 1:
        target = rich.markup.escape(str(files[0]))
    else:
        target = f"{len(files)} test files"
    if request["options"]["update_snapshots"]:
        target += " (updating snapshots)"
    return target


def _describe_stats(stats: RunStats) -> str:
    counts = [
        (stats["failed_tests"], "failed test"),
        (stats["uncaught_exceptions"], "uncaught exception"),
        (stats["unhandled_rejections"], "unhandled rejection"),
        (stats["failed_hooks"], "failed hook"),
        (stats["failed_workers"], "failed worker"),
        (stats["internal_errors"], "internal error"),
        (stats["timeouts"], "timeout"),
    ]
    parts = [f"{n} {label}{'s' if n != 1 else ''}" for n, label in counts if n]
    return ", ".join(parts)


class ConsoleSink:
    """Async sink that prints run progress to console."""

    _console: rich.console.Console

    def __init__(self, *, console: rich.console.Console) -> None:
        self._console = console

    async def handle(self, event: OutputEvent) -> None:
        """Handle output event by printing to console."""
        match event["type"]:
            case "run_dispatched":
                request = event["request"]
                options = request["options"]
                if options["clear_log_on_next_run"]:
                    self._console.clear()
                self._console.print(f"Running {_describe_request(request)}...")
                if options["previous_failures"]:
                    n = options["previous_failures"]
                    self._console.print(
                        f"[yellow]{n} previous failure{'s' if n != 1 else ''} in test files"
                        + " that were not rerun[/yellow]"
                    )
            case "run_ended":
                stats = event["stats"]
                if decision.had_failures(stats):
                    self._console.print(f"[red]Run failed: {_describe_stats(stats)}[/red]")
                else:
                    self._console.print("[green]Run passed[/green]")
                self._console.print(_WAITING_HINT)
            case _:
                pass  # Ignore engine_state_changed

    async def close(self) -> None:
        """No cleanup needed."""


class ResultCollectorSink:
    """Async sink that collects output events for programmatic access."""

    _events: list[OutputEvent]
    _lock: anyio.Lock

    def __init__(self) -> None:
        self._events = list[OutputEvent]()
        self._lock = anyio.Lock()

    async def handle(self, event: OutputEvent) -> None:
        async with self._lock:
            self._events.append(event)

    async def get_events(self) -> list[OutputEvent]:
        """Get collected events. Call after run() completes."""
        async with self._lock:
            return list(self._events)

    async def get_requests(self) -> list[RunRequest]:
        """Get dispatched run requests in dispatch order."""
        async with self._lock:
            return [e["request"] for e in self._events if e["type"] == "run_dispatched"]

    async def close(self) -> None:
        """No cleanup needed."""
