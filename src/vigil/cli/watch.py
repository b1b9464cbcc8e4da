from __future__ import annotations

import logging
import pathlib
import shlex
from typing import TYPE_CHECKING, Any

import anyio
import click
import rich.console

from vigil import runner as runner_mod
from vigil.cli import decorators as cli_decorators
from vigil.cli import helpers as cli_helpers
from vigil.engine import engine as engine_mod
from vigil.engine import sinks, sources

if TYPE_CHECKING:
    from vigil.config.models import VigilConfig

logger = logging.getLogger(__name__)


def _build_overrides(
    patterns: tuple[str, ...], debounce: int | None, command: str | None
) -> dict[str, Any]:
    """Translate command-line options into a config overlay."""
    overrides = dict[str, Any]()
    if patterns:
        overrides["files"] = list(patterns)
    if debounce is not None:
        overrides["watch"] = {"debounce": debounce}
    if command is not None:
        overrides["runner"] = {"command": shlex.split(command)}
    return overrides


def create_engine(
    project_dir: pathlib.Path,
    config: VigilConfig,
    files: tuple[pathlib.Path, ...] = (),
    *,
    console: rich.console.Console | None = None,
) -> engine_mod.WatchEngine:
    """Wire an engine to the filesystem, stdin, the console and the test command."""
    globs = config.to_globs()
    runner = runner_mod.CommandRunner(
        config.runner.command,
        project_dir=project_dir,
        globs=globs,
        update_snapshots_args=config.runner.update_snapshots_args,
    )
    engine = engine_mod.WatchEngine(
        project_dir=project_dir,
        globs=globs,
        runner=runner,
        files=[project_dir / path for path in files],
        debounce=config.watch.debounce / 1000,
    )
    engine.add_source(sources.FilesystemSource(project_dir, globs))
    engine.add_source(sources.StdinSource())
    engine.add_sink(sinks.ConsoleSink(console=console or rich.console.Console()))
    return engine


async def _run_engine(engine: engine_mod.WatchEngine) -> None:
    async with engine:
        await engine.run()


@cli_decorators.vigil_command("watch")
@click.argument("files", nargs=-1, type=click.Path(path_type=pathlib.Path))
@click.option(
    "--match",
    "-m",
    "patterns",
    multiple=True,
    help="Test file pattern (repeatable, overrides 'files' in vigil.yaml)",
)
@click.option(
    "--debounce",
    type=click.IntRange(min=1),
    default=None,
    help="Quiet period in milliseconds before changes trigger a run",
)
@click.option("--command", "command", default=None, help="Test command, e.g. 'pytest -x'")
@click.pass_context
def watch(
    ctx: click.Context,
    files: tuple[pathlib.Path, ...],
    patterns: tuple[str, ...],
    debounce: int | None,
    command: str | None,
) -> None:
    """Run tests, then rerun the affected ones whenever files change.

    FILES limits the first run to specific test files. Type 'r' and press
    enter to rerun the last selection, or 'u' to rerun it updating snapshots.

    Examples:

        vigil watch

        vigil watch tests/test_parser.py --command 'pytest -x'
    """
    cli_ctx = cli_helpers.get_cli_context(ctx)
    project_dir, config = cli_helpers.load_project_config(
        ctx, _build_overrides(patterns, debounce, command)
    )
    engine = create_engine(project_dir, config, files)

    logger.debug("Watching %s with %s", project_dir, " ".join(config.runner.command))
    try:
        anyio.run(_run_engine, engine)
    except KeyboardInterrupt:
        if not cli_ctx["quiet"]:
            click.echo("\nWatch mode stopped.")
