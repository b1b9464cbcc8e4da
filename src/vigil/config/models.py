import shlex
from typing import Annotated, Any, Self

import pydantic

from vigil import globs

DEFAULT_RUNNER_COMMAND = ["python", "-m", "pytest"]


class WatchConfig(pydantic.BaseModel):
    """Watch mode configuration."""

    model_config = pydantic.ConfigDict(extra="forbid")

    debounce: Annotated[int, pydantic.Field(ge=1)] = 100


class RunnerConfig(pydantic.BaseModel):
    """External test command configuration."""

    model_config = pydantic.ConfigDict(extra="forbid")

    command: Annotated[list[str], pydantic.Field(min_length=1)] = pydantic.Field(
        default_factory=lambda: list(DEFAULT_RUNNER_COMMAND)
    )
    update_snapshots_args: list[str] = pydantic.Field(
        default_factory=lambda: ["--snapshot-update"]
    )

    @pydantic.field_validator("command", "update_snapshots_args", mode="before")
    @classmethod
    def parse_command_line(cls, v: Any) -> list[str] | Any:
        """Split a shell-style string into arguments."""
        if isinstance(v, str):
            return shlex.split(v)
        return v


class VigilConfig(pydantic.BaseModel):
    """Complete vigil configuration schema.

    Pattern options stay loosely typed so that malformed lists are reported by
    ``globs.normalize_globs`` with the option name.
    """

    model_config = pydantic.ConfigDict(extra="forbid")

    files: Any = None
    ignored_by_watcher: Any = None
    extensions: Any = None
    watch: WatchConfig = pydantic.Field(default_factory=WatchConfig)
    runner: RunnerConfig = pydantic.Field(default_factory=RunnerConfig)

    @classmethod
    def get_default(cls) -> Self:
        """Get default configuration."""
        return cls()

    def to_globs(self) -> globs.Globs:
        """Validate the pattern options and normalize them for a watch session.

        Raises:
            InvalidPatternsError: If a pattern option is malformed.
        """
        return globs.normalize_globs(
            extensions=self.extensions,
            files=self.files,
            ignored_by_watcher=self.ignored_by_watcher,
        )

