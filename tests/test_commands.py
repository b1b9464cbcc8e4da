from __future__ import annotations

import pytest

from vigil import commands
from vigil.engine.types import Command


@pytest.mark.parametrize(
    ("line", "expected"),
    [
        ("r\n", Command.RERUN),
        ("rs\n", Command.RERUN),
        ("u\n", Command.UPDATE_SNAPSHOTS),
        ("  u  \n", Command.UPDATE_SNAPSHOTS),
        ("\tr", Command.RERUN),
    ],
)
def test_parse_command_recognized(line: str, expected: Command) -> None:
    """Recognized commands match after trimming whitespace."""
    assert commands.parse_command(line) == expected


@pytest.mark.parametrize("line", ["\n", "R\n", "rerun\n", "r s\n", "q\n", ""])
def test_parse_command_unrecognized(line: str) -> None:
    """Anything else, including other cases, is ignored."""
    assert commands.parse_command(line) is None
