"""Event source implementations for the engine."""

from __future__ import annotations

import logging
import os
import pathlib
import sys
from typing import TYPE_CHECKING

import anyio
import anyio.to_thread
import watchfiles

from vigil import globs as globs_mod
from vigil.engine.types import ChangeKind, FileChanged, InputLine

if TYPE_CHECKING:
    from collections.abc import Callable
    from typing import TextIO

    from anyio.streams.memory import MemoryObjectSendStream

    from vigil.engine.types import InputEvent

__all__ = ["FilesystemSource", "StdinSource", "create_watch_filter"]

_logger = logging.getLogger(__name__)

_CHANGE_KINDS = {
    watchfiles.Change.added: ChangeKind.ADD,
    watchfiles.Change.modified: ChangeKind.CHANGE,
    watchfiles.Change.deleted: ChangeKind.UNLINK,
}


def create_watch_filter(
    project_dir: pathlib.Path, globs: globs_mod.Globs
) -> Callable[[watchfiles.Change, str], bool]:
    """Create filter dropping default ignored directories and configured ignore patterns.

    Runs in the watcher, so ignored paths never reach the engine queue.
    """

    def watch_filter(change: watchfiles.Change, path: str) -> bool:
        # Directory events carry no file content
        if change != watchfiles.Change.deleted and os.path.isdir(path):
            return False
        return not globs_mod.classify(path, globs, project_dir).is_ignored_by_watcher

    return watch_filter


class FilesystemSource:
    """Event source that watches the project directory for changes.

    Wraps watchfiles.awatch and emits one FileChanged per reported change.
    Existing files are never reported on startup. Batching is left to the
    engine's debouncer, so the watchfiles debounce only groups raw OS events.
    """

    _project_dir: pathlib.Path
    _globs: globs_mod.Globs
    _debounce: int

    def __init__(
        self, project_dir: pathlib.Path, globs: globs_mod.Globs, *, debounce: int = 50
    ) -> None:
        """Initialize with the directory to watch.

        Args:
            project_dir: Root of the watched tree.
            globs: Patterns used to drop ignored paths before they are reported.
            debounce: Raw event grouping window for watchfiles, in milliseconds.
        """
        self._project_dir = project_dir
        self._globs = globs
        self._debounce = debounce

    @property
    def project_dir(self) -> pathlib.Path:
        return self._project_dir

    async def run(self, send: MemoryObjectSendStream[InputEvent]) -> None:
        """Watch until cancelled, pushing FileChanged events."""
        _logger.debug(
            "Watching %s, ignoring %s",
            self._project_dir,
            globs_mod.get_watcher_ignore_patterns(self._globs),
        )
        async for changes in watchfiles.awatch(
            self._project_dir,
            watch_filter=create_watch_filter(self._project_dir, self._globs),
            debounce=self._debounce,
        ):
            for change, path in sorted(changes, key=lambda item: item[1]):
                kind = _CHANGE_KINDS.get(change)
                if kind is None:
                    continue
                await send.send(
                    FileChanged(type="file_changed", kind=kind, path=pathlib.Path(path))
                )


class StdinSource:
    """Event source that forwards input lines for interactive commands.

    Blocking reads run in a worker thread that is abandoned on cancellation,
    so shutdown never waits for the user to press enter.
    """

    _stream: TextIO

    def __init__(self, stream: TextIO | None = None) -> None:
        self._stream = stream if stream is not None else sys.stdin

    async def run(self, send: MemoryObjectSendStream[InputEvent]) -> None:
        """Read lines until end of input or cancellation."""
        while True:
            line = await anyio.to_thread.run_sync(self._stream.readline, abandon_on_cancel=True)
            if not line:
                _logger.debug("Input stream closed")
                return
            await send.send(InputLine(type="input_line", line=line))
