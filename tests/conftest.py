from __future__ import annotations

import contextlib
import pathlib
import sys
from collections.abc import Generator

import click.testing
import pytest

from vigil import globs as globs_mod

# Test modules import shared helpers from conftest
_tests_dir = pathlib.Path(__file__).parent
if str(_tests_dir) not in sys.path:
    sys.path.insert(0, str(_tests_dir))


@pytest.fixture
def runner() -> click.testing.CliRunner:
    """Create a CLI runner for testing."""
    return click.testing.CliRunner()


@pytest.fixture
def default_globs() -> globs_mod.Globs:
    """Globs for a session with no pattern configuration."""
    return globs_mod.normalize_globs()


@pytest.fixture
def project_dir(tmp_path: pathlib.Path) -> pathlib.Path:
    """A small project tree with tests, sources, and ignored directories."""
    root = tmp_path.resolve()
    files = [
        "src/app.py",
        "src/util.py",
        "tests/test_app.py",
        "tests/test_util.py",
        "tests/conftest.py",
        "tests/_helpers.py",
        "tests/__init__.py",
        "tests/fixtures/data.json",
        "pkg/parser_test.py",
        ".venv/lib/tests/test_vendor.py",
        "node_modules/dep/test.py",
    ]
    for name in files:
        path = root / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text("")
    return root


@contextlib.contextmanager
def isolated_project_dir(
    runner: click.testing.CliRunner, tmp_path: pathlib.Path
) -> Generator[pathlib.Path]:
    """Context manager for an isolated filesystem used as the project root.

    Example:
        def test_something(runner, tmp_path):
            with isolated_project_dir(runner, tmp_path) as cwd:
                (cwd / "tests").mkdir()
                result = runner.invoke(cli.cli, ["list"])
    """
    with runner.isolated_filesystem(temp_dir=tmp_path):
        yield pathlib.Path.cwd()
