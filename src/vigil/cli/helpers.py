from __future__ import annotations

import pathlib
from typing import TYPE_CHECKING, Any

from vigil.config import io as config_io

if TYPE_CHECKING:
    import click

    from vigil.cli import CliContext
    from vigil.config.models import VigilConfig


def get_cli_context(ctx: click.Context) -> CliContext:
    """Get CLI context with defaults if not set."""
    if ctx.obj:
        return ctx.obj
    # Return dict matching CliContext structure to avoid circular import
    return {"verbose": False, "quiet": False, "project_dir": pathlib.Path.cwd().resolve()}


def load_project_config(
    ctx: click.Context, overrides: dict[str, Any] | None = None
) -> tuple[pathlib.Path, VigilConfig]:
    """Load configuration for the context's project directory."""
    project_dir = get_cli_context(ctx)["project_dir"]
    return project_dir, config_io.load_config(project_dir, overrides)
