"""gitlineage feature branch CLI commands."""

import asyncio
import json
from dataclasses import asdict

import click

from gitlineage.config import settings
from gitlineage.git import BranchReconstructor, GitLineageError, GitPythonGateway
from gitlineage.git.diff import DiffParser


@click.command()
@click.option(
    "--since-days",
    type=int,
    default=None,
    help="Look-back window in days (default from settings)",
)
@click.option("--exclude", multiple=True, help="Merge commit hash to skip")
@click.option("--json", "as_json", is_flag=True, help="Emit JSON")
@click.option("--describe", is_flag=True, help="Print each branch description")
@click.pass_context
def branches(
    ctx: click.Context,
    since_days: int | None,
    exclude: tuple[str, ...],
    as_json: bool,
    describe: bool,
) -> None:
    """List feature branches merged in the look-back window."""
    try:
        gateway = GitPythonGateway(
            ctx.obj["repo_path"], timeout=settings.git_timeout_seconds
        )
    except GitLineageError as e:
        raise click.ClickException(str(e))

    reconstructor = BranchReconstructor(
        gateway,
        diff_parser=DiffParser(
            gateway,
            patch_max_chars=settings.patch_max_chars,
            max_insights=settings.max_insights,
        ),
        integration_markers=settings.integration_branch_markers,
    )
    found = asyncio.run(
        reconstructor.get_feature_branches(
            since_days if since_days is not None else settings.since_days,
            exclude=set(exclude),
        )
    )

    if as_json:
        click.echo(json.dumps([asdict(b) for b in found], default=str, indent=2))
        return

    if not found:
        click.echo("No merged feature branches found.")
        return

    click.echo(f"{'Branch':<40} {'Merged':<12} {'Commits':<8} {'Merge'}")
    click.echo("-" * 75)
    for branch in found:
        merged = branch.merged_date.strftime("%Y-%m-%d")
        click.echo(
            f"{branch.name:<40} {merged:<12} {len(branch.commits):<8} "
            f"{branch.merge_commit.sha[:8]}"
        )
        if describe:
            click.echo()
            click.echo(branch.description)
            click.echo()
