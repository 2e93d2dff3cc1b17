"""Click CLI definitions for prw.

The ``cli`` Click group and ``main`` entry point live here.  Shared helpers
(HelpGroup, output conventions, PR resolution) are in ``cli.helpers``.

Command groups are split into submodules:
- cli.monitor  -- polling commands (monitor, wait-ci)
- cli.pr       -- one-shot PR commands (feedback, reply, resolve, gate,
                  ready, merge, issues)
"""

import click

from prw_core import paths
from prw_core.config import ConfigError, load_config

from prw_core.cli.helpers import CONTEXT_SETTINGS, HelpGroup, fail


@click.group(cls=HelpGroup, context_settings=CONTEXT_SETTINGS)
@click.option("--debug/--no-debug", default=None,
              help="Persistently enable or disable debug logging to ~/.prw/debug/prw.log")
@click.pass_context
def cli(ctx, debug: bool | None):
    """prw -- watch GitHub PR feedback and CI, then finalize."""
    if debug is not None:
        paths.set_debug(debug)
    try:
        ctx.obj = load_config()
    except ConfigError as e:
        fail(str(e), kind="config")


@cli.command("help")
@click.pass_context
def help_cmd(ctx):
    """Show help."""
    click.echo(ctx.parent.get_help())


# ---------------------------------------------------------------------------
# Import submodules to register their commands on ``cli``.
# This must be at the bottom of the file, after ``cli`` is defined.
# ---------------------------------------------------------------------------
from prw_core.cli import monitor, pr  # noqa: E402, F401


def main():
    cli()
