from __future__ import annotations

import importlib
import logging
import pathlib
from typing import TypedDict, override

import click

# Lazy command registry: command_name -> (module_path, attr_name, help_text)
_LAZY_COMMANDS: dict[str, tuple[str, str, str]] = {
    "watch": ("vigil.cli.watch", "watch", "Watch the project and rerun affected tests."),
    "classify": ("vigil.cli.classify", "classify", "Show how paths take part in watch mode."),
    "list": ("vigil.cli.list", "list_cmd", "List test files matched by the configured patterns."),
}


class CliContext(TypedDict):
    """Context object for CLI commands."""

    verbose: bool
    quiet: bool
    project_dir: pathlib.Path


class VigilGroup(click.Group):
    """Custom Group with lazy command loading."""

    @override
    def list_commands(self, ctx: click.Context) -> list[str]:
        """Return all available command names."""
        return sorted(_LAZY_COMMANDS.keys())

    @override
    def get_command(self, ctx: click.Context, cmd_name: str) -> click.Command | None:
        """Lazily load and return a command by name."""
        if cmd_name not in _LAZY_COMMANDS:
            return None

        module_path, attr_name, _help = _LAZY_COMMANDS[cmd_name]
        module = importlib.import_module(module_path)
        return getattr(module, attr_name)

    @override
    def format_commands(self, ctx: click.Context, formatter: click.HelpFormatter) -> None:
        """Format commands using cached help strings, without importing them."""
        commands = [(name, _LAZY_COMMANDS[name][2]) for name in self.list_commands(ctx)]
        if commands:
            with formatter.section("Commands"):
                formatter.write_dl(commands)


def _setup_logging(verbose: bool, quiet: bool) -> None:
    """Configure logging for CLI output."""
    if quiet:
        level = logging.WARNING
    elif verbose:
        level = logging.DEBUG
    else:
        level = logging.INFO
    logging.basicConfig(level=level, format="%(message)s", force=True)


@click.group(cls=VigilGroup)
@click.option("--verbose", "-v", is_flag=True, help="Show detailed output")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output")
@click.option(
    "--project-dir",
    "-C",
    type=click.Path(exists=True, file_okay=False, path_type=pathlib.Path),
    default=None,
    help="Project root (default: current directory)",
)
@click.pass_context
def cli(ctx: click.Context, verbose: bool, quiet: bool, project_dir: pathlib.Path | None) -> None:
    """Rerun the tests affected by each change while you work.

    Vigil watches the project, maps changed source files to the test files
    that load them, and hands the selection to your test command.
    """
    if verbose and quiet:
        raise click.UsageError("--verbose and --quiet are mutually exclusive")
    root = project_dir if project_dir is not None else pathlib.Path.cwd()
    ctx.obj = CliContext(verbose=verbose, quiet=quiet, project_dir=root.resolve())
    _setup_logging(verbose, quiet)


def main() -> None:
    """Main CLI entry point."""
    cli()


if __name__ == "__main__":
    main()
