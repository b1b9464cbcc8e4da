"""Interactive commands typed while watching."""

from __future__ import annotations

from vigil.engine.types import Command

__all__ = ["COMMANDS", "parse_command"]

COMMANDS: dict[str, Command] = {
    "r": Command.RERUN,
    "rs": Command.RERUN,
    "u": Command.UPDATE_SNAPSHOTS,
}


def parse_command(line: str) -> Command | None:
    """Map an input line to a command after trimming surrounding whitespace.

    Matching is exact, so anything else (including ``R``) returns None.
    """
    return COMMANDS.get(line.strip())
