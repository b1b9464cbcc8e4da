from __future__ import annotations

import pickle
from typing import TYPE_CHECKING

import pytest

from vigil import exceptions
from vigil.config import io as config_io
from vigil.config import models

if TYPE_CHECKING:
    import pathlib

# =============================================================================
# Model Tests
# =============================================================================


def test_default_config() -> None:
    config = models.VigilConfig.get_default()

    assert config.watch.debounce == 100
    assert config.runner.command == ["python", "-m", "pytest"]
    assert config.runner.update_snapshots_args == ["--snapshot-update"]
    assert config.files is None


def test_runner_command_string_is_split() -> None:
    """A shell-style command string becomes an argument list."""
    config = models.RunnerConfig.model_validate({"command": "pytest -x --tb='short'"})

    assert config.command == ["pytest", "-x", "--tb=short"]


def test_debounce_must_be_positive() -> None:
    with pytest.raises(ValueError, match="greater than or equal to 1"):
        models.WatchConfig(debounce=0)


def test_to_globs_reports_option_name() -> None:
    """Malformed pattern options surface as InvalidPatternsError."""
    config = models.VigilConfig.model_validate({"files": []})

    with pytest.raises(exceptions.InvalidPatternsError, match="'files'"):
        config.to_globs()


def test_to_globs_applies_patterns() -> None:
    config = models.VigilConfig.model_validate(
        {"files": ["checks/**/*.py"], "ignored_by_watcher": ["build"]}
    )

    globs = config.to_globs()

    assert globs.file_patterns == ("checks/**/*.py",)
    assert globs.ignored_by_watcher_patterns[-1] == "build"


# =============================================================================
# Loading Tests
# =============================================================================


def test_load_config_missing_file_uses_defaults(tmp_path: pathlib.Path) -> None:
    config = config_io.load_config(tmp_path)

    assert config == models.VigilConfig.get_default()


def test_load_config_empty_file_uses_defaults(tmp_path: pathlib.Path) -> None:
    (tmp_path / "vigil.yaml").write_text("")

    assert config_io.load_config(tmp_path) == models.VigilConfig.get_default()


def test_load_config_reads_yaml(tmp_path: pathlib.Path) -> None:
    (tmp_path / "vigil.yaml").write_text(
        "files:\n"
        "  - 'checks/**/*.py'\n"
        "watch:\n"
        "  debounce: 250\n"
        "runner:\n"
        "  command: pytest -q\n"
    )

    config = config_io.load_config(tmp_path)

    assert config.files == ["checks/**/*.py"]
    assert config.watch.debounce == 250
    assert config.runner.command == ["pytest", "-q"]


def test_load_config_overrides_merge_nested(tmp_path: pathlib.Path) -> None:
    """Overrides replace only the keys they name."""
    (tmp_path / "vigil.yaml").write_text(
        "runner:\n  command: pytest -q\n  update_snapshots_args: ['--update']\n"
    )

    config = config_io.load_config(tmp_path, {"runner": {"command": ["pytest", "-x"]}})

    assert config.runner.command == ["pytest", "-x"]
    assert config.runner.update_snapshots_args == ["--update"]


def test_load_config_invalid_yaml(tmp_path: pathlib.Path) -> None:
    (tmp_path / "vigil.yaml").write_text("files: [unclosed\n")

    with pytest.raises(exceptions.ConfigError, match="Invalid YAML"):
        config_io.load_config(tmp_path)


def test_load_config_top_level_must_be_mapping(tmp_path: pathlib.Path) -> None:
    (tmp_path / "vigil.yaml").write_text("- tests/**\n")

    with pytest.raises(exceptions.ConfigError, match="Expected a mapping"):
        config_io.load_config(tmp_path)


def test_load_config_unknown_key(tmp_path: pathlib.Path) -> None:
    (tmp_path / "vigil.yaml").write_text("debounce: 50\n")

    with pytest.raises(exceptions.ConfigError, match="Invalid configuration"):
        config_io.load_config(tmp_path)


def test_deep_merge_does_not_mutate_inputs() -> None:
    base = {"watch": {"debounce": 100}, "files": ["a"]}
    override = {"watch": {"debounce": 50}}

    result = config_io.deep_merge(base, override)

    assert result == {"watch": {"debounce": 50}, "files": ["a"]}
    assert base == {"watch": {"debounce": 100}, "files": ["a"]}


# =============================================================================
# Exception Tests
# =============================================================================


def test_config_error_suggestion() -> None:
    error = exceptions.ConfigError("bad")

    assert error.format_user_message() == "bad"
    assert "vigil.yaml" in error.get_suggestion()


def test_invalid_patterns_error_pickles() -> None:
    error = exceptions.InvalidPatternsError("extensions", "must not be empty")

    restored = pickle.loads(pickle.dumps(error))

    assert restored.option == "extensions"
    assert str(restored) == "The 'extensions' option must not be empty"
