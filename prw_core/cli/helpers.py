"""Shared helpers for the prw CLI package.

HelpGroup, PR handle resolution, and the output/exit-code conventions every
command follows: a status keyword on the first stdout line, then a JSON
payload.  Exit 0 on success or an expected terminal state, 1 on error, 2 on
timeout.
"""

import json
from contextlib import contextmanager

import click

from prw_core import gh_ops, term
from prw_core.config import Config, ConfigError
from prw_core.gh_ops import GhError, PrHandle
from prw_core.paths import configure_logger

_log = configure_logger("prw.cli")

# Shared Click settings: make -h and --help both work everywhere
CONTEXT_SETTINGS = dict(help_option_names=["-h", "--help"])

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_TIMEOUT = 2


class HelpGroup(click.Group):
    """Click Group that treats 'help' as an alias for --help everywhere.

    Handles two cases:
    - ``prw help`` -- 'help' as the command name on the group
    - ``prw monitor help`` -- 'help' as an arg to a leaf command
    """

    def resolve_command(self, ctx, args):
        if args and args[0] == "help":
            if super().get_command(ctx, "help") is not None:
                return super().resolve_command(ctx, args)
            args = ["--help"] + args[1:]
        cmd_name, cmd, remaining = super().resolve_command(ctx, args)
        if (remaining and remaining[0] == "help"
                and cmd is not None and not isinstance(cmd, click.Group)):
            remaining = ["--help"] + remaining[1:]
        return cmd_name, cmd, remaining


def repo_option(f):
    """The ``--repo/-R OWNER/REPO`` option shared by PR commands."""
    return click.option("--repo", "-R", "repo", default=None, metavar="OWNER/REPO",
                        help="Repository (default: config, then current directory)")(f)


def get_config() -> Config:
    ctx = click.get_current_context()
    cfg = ctx.find_object(Config)
    return cfg if cfg is not None else Config()


def resolve_repo_slug(repo: str | None) -> tuple[str, str]:
    """Resolve --repo / config / cwd to (owner, name), failing on a bad slug."""
    try:
        return gh_ops.resolve_repo(repo or get_config().repo)
    except ValueError as e:
        fail(str(e), kind="usage")


def resolve_pr(number: int, repo: str | None) -> PrHandle:
    """Build a PrHandle from the PR number and --repo / config / cwd."""
    owner, name = resolve_repo_slug(repo)
    return PrHandle(owner=owner, repo=name, number=number)


def emit(keyword: str, payload: dict | list | None = None) -> None:
    """Print the status keyword and JSON payload to stdout."""
    if keyword:
        click.echo(keyword)
    if payload is not None:
        click.echo(json.dumps(payload, indent=2))


def fail(message: str, kind: str = "error", code: int = EXIT_ERROR, **extra):
    """Report an error in the standard shape and exit."""
    term.error(message)
    emit("ERROR", {"status": "error", "kind": kind, "message": message, **extra})
    raise SystemExit(code)


@contextmanager
def cli_errors():
    """Turn prw/gh failures into a clear ERROR line instead of a traceback."""
    try:
        yield
    except GhError as e:
        _log.warning("cli: %s: %s", type(e).__name__, e)
        fail(str(e), kind=e.kind)
    except ConfigError as e:
        fail(str(e), kind="config")
