"""gitlineage CLI main entry point."""

import click

from gitlineage import __version__
from gitlineage.config import settings
from gitlineage.logging import configure_logging


@click.group()
@click.version_option(version=__version__, prog_name="gitlineage")
@click.option(
    "--repo",
    "repo_path",
    default=".",
    type=click.Path(exists=True, file_okay=False),
    help="Path to the git repository",
)
@click.pass_context
def cli(ctx: click.Context, repo_path: str) -> None:
    """gitlineage - merged branch history and safe commit message rewriting."""
    configure_logging(settings.log_level, settings.log_format)
    ctx.ensure_object(dict)
    ctx.obj["repo_path"] = repo_path


# Import and register subcommands
from gitlineage.cli.branches import branches  # noqa: E402
from gitlineage.cli.history import history  # noqa: E402

cli.add_command(branches)
cli.add_command(history)
