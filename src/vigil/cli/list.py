from __future__ import annotations

import json

import click

from vigil import globs as globs_mod
from vigil.cli import decorators as cli_decorators
from vigil.cli import helpers as cli_helpers


@cli_decorators.vigil_command("list")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def list_cmd(ctx: click.Context, as_json: bool) -> None:
    """List test files matched by the configured patterns."""
    cli_ctx = cli_helpers.get_cli_context(ctx)
    project_dir, config = cli_helpers.load_project_config(ctx)
    tests = [
        # Symlinked tests may resolve outside the project
        path.relative_to(project_dir).as_posix() if path.is_relative_to(project_dir) else str(path)
        for path in globs_mod.find_tests(project_dir, config.to_globs())
    ]
    tests.sort()

    if as_json:
        click.echo(json.dumps({"tests": tests}, indent=2))
        return

    if not tests:
        if not cli_ctx["quiet"]:
            click.echo("No test files found.")
        return

    if cli_ctx["quiet"]:
        return

    click.echo(f"Test files ({len(tests)}):")
    for test in tests:
        click.echo(f"  {test}")
