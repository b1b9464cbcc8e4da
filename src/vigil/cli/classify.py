from __future__ import annotations

import json
import sys
from typing import TypedDict

import click

from vigil import globs as globs_mod
from vigil.cli import decorators as cli_decorators
from vigil.cli import helpers as cli_helpers


class ClassifyJsonOutput(TypedDict):
    """JSON output for a single path."""

    path: str
    is_test: bool
    is_ignored_by_watcher: bool


def _role(classification: globs_mod.Classification) -> str:
    if classification.is_ignored_by_watcher:
        return "ignored"
    if classification.is_test:
        return "test"
    return "source"


@cli_decorators.vigil_command("classify")
@click.argument("targets", nargs=-1)
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.option("--show-defaults", is_flag=True, help="Show the effective pattern sets")
@click.pass_context
def classify(
    ctx: click.Context, targets: tuple[str, ...], as_json: bool, show_defaults: bool
) -> None:
    """Show how paths take part in watch mode.

    Each path is reported as a test file, an ignored file, or a source file
    that may be a dependency of tests.

    Examples:

        vigil classify tests/test_parser.py src/parser.py

        vigil classify --json docs/index.md
    """
    project_dir, config = cli_helpers.load_project_config(ctx)
    globs = config.to_globs()

    if show_defaults:
        _show_patterns(globs, as_json)
        return

    if not targets:
        click.echo("No targets specified. Use --show-defaults to see patterns.", err=True)
        sys.exit(2)

    results = [(target, globs_mod.classify(target, globs, project_dir)) for target in targets]

    if as_json:
        data = [
            ClassifyJsonOutput(
                path=target,
                is_test=result.is_test,
                is_ignored_by_watcher=result.is_ignored_by_watcher,
            )
            for target, result in results
        ]
        click.echo(json.dumps(data))
        return

    for target, result in results:
        click.echo(f"{_role(result)}\t{target}")


def _show_patterns(globs: globs_mod.Globs, as_json: bool) -> None:
    watcher_patterns = globs_mod.get_watcher_ignore_patterns(globs)
    if as_json:
        click.echo(
            json.dumps(
                {
                    "extensions": list(globs.extensions),
                    "files": list(globs.file_patterns),
                    "ignored_by_watcher": watcher_patterns,
                }
            )
        )
        return

    click.echo("Test file patterns:")
    for pattern in globs.file_patterns:
        click.echo(f"  {pattern}")
    click.echo("\nIgnored by watcher:")
    for pattern in watcher_patterns:
        click.echo(f"  {pattern}")
