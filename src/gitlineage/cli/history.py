"""gitlineage history rewrite CLI commands."""

import asyncio

import click

from gitlineage.config import settings
from gitlineage.git import GitLineageError, GitPythonGateway
from gitlineage.rewrite import (
    BackupStrategy,
    HistoryRewriter,
    RewritePlan,
    SafetyGate,
    create_token_issuer,
)


def _rewriter(repo_path: str) -> HistoryRewriter:
    try:
        gateway = GitPythonGateway(repo_path, timeout=settings.git_timeout_seconds)
    except GitLineageError as e:
        raise click.ClickException(str(e))
    return HistoryRewriter(
        gateway,
        safety_gate=SafetyGate(
            gateway,
            protected_branches=settings.protected_branches,
            blast_radius_threshold=settings.blast_radius_threshold,
        ),
        token_issuer=create_token_issuer(
            settings.token_scheme, ttl_seconds=settings.token_ttl_seconds
        ),
    )


def _parse_messages(values: tuple[str, ...]) -> dict[str, str]:
    messages: dict[str, str] = {}
    for value in values:
        sha, sep, message = value.partition("=")
        if not sep or not message:
            raise click.BadParameter(
                f"Expected SHA=MESSAGE, got {value!r}", param_hint="--message"
            )
        messages[sha] = message
    return messages


def _echo_plan(plan: RewritePlan) -> None:
    click.echo(f"Commits: {len(plan.commits)}")
    for request in plan.commits:
        first_line = request.new_message.splitlines()[0]
        click.echo(f"  {request.sha[:8]} -> {first_line}")

    check = plan.safety_check
    click.echo(f"Safe: {'yes' if check.safe else 'no'}")
    if check.reason:
        click.echo(f"Reason: {check.reason}")
    for warning in check.warnings:
        click.echo(f"Warning: {warning}")
    for recommendation in check.recommendations:
        click.echo(f"Recommendation: {recommendation}")

    click.echo(f"Backup branch: {plan.backup_strategy.branch_name}")
    click.echo(f"Backup tag: {plan.backup_strategy.tag_name}")
    if plan.impact.dependent_branches:
        click.echo(
            f"Dependent branches: {', '.join(plan.impact.dependent_branches)}"
        )


@click.group()
def history() -> None:
    """Commit message rewrite commands."""
    pass


@history.command()
@click.argument("commits", nargs=-1, required=True)
@click.option("--message", "messages", multiple=True, help="SHA=MESSAGE override")
@click.pass_context
def plan(ctx: click.Context, commits: tuple[str, ...], messages: tuple[str, ...]) -> None:
    """Show the rewrite plan for COMMITS without changing anything."""
    rewriter = _rewriter(ctx.obj["repo_path"])
    try:
        result = asyncio.run(
            rewriter.create_rewrite_plan(list(commits), _parse_messages(messages))
        )
    except GitLineageError as e:
        raise click.ClickException(str(e))
    _echo_plan(result)


@history.command()
@click.argument("commits", nargs=-1, required=True)
@click.option("--message", "messages", multiple=True, help="SHA=MESSAGE override")
@click.option("--yes", is_flag=True, help="Do not prompt for confirmation")
@click.pass_context
def rewrite(
    ctx: click.Context,
    commits: tuple[str, ...],
    messages: tuple[str, ...],
    yes: bool,
) -> None:
    """Rewrite the messages of COMMITS after a safety check and backup."""
    rewriter = _rewriter(ctx.obj["repo_path"])

    async def run() -> None:
        rewrite_plan = await rewriter.create_rewrite_plan(
            list(commits), _parse_messages(messages)
        )
        _echo_plan(rewrite_plan)
        if not rewrite_plan.safety_check.safe:
            raise click.ClickException(
                f"Refusing to rewrite: {rewrite_plan.safety_check.reason}"
            )
        if not yes and not click.confirm("Rewrite these commits?"):
            click.echo("Aborted.")
            return

        result = await rewriter.rewrite_commit_messages(
            rewrite_plan, rewrite_plan.confirmation_token
        )
        for item in result.commits:
            if item.success:
                click.echo(f"Rewrote {item.original_hash[:8]} -> {(item.new_hash or '')[:8]}")
            else:
                click.echo(f"Failed {item.original_hash[:8]}: {item.error}")
        for warning in result.warnings:
            click.echo(f"Warning: {warning}")
        click.echo(f"State: {result.state.value}")

    try:
        asyncio.run(run())
    except GitLineageError as e:
        raise click.ClickException(str(e))


@history.command()
@click.argument("backup_ref")
@click.confirmation_option(prompt="Hard-reset the current branch to this backup?")
@click.pass_context
def rollback(ctx: click.Context, backup_ref: str) -> None:
    """Reset the current branch to BACKUP_REF."""
    rewriter = _rewriter(ctx.obj["repo_path"])
    try:
        asyncio.run(rewriter.rollback_to_backup(backup_ref))
    except GitLineageError as e:
        raise click.ClickException(str(e))
    click.echo(f"Rolled back to {backup_ref}")


@history.command()
@click.argument("branch_name")
@click.argument("tag_name")
@click.pass_context
def cleanup(ctx: click.Context, branch_name: str, tag_name: str) -> None:
    """Delete a backup branch and tag."""
    rewriter = _rewriter(ctx.obj["repo_path"])
    asyncio.run(
        rewriter.cleanup_backups(
            BackupStrategy(branch_name=branch_name, tag_name=tag_name)
        )
    )
    click.echo(f"Removed backup {branch_name} / {tag_name}")
