"""Planning, execution and rollback of commit message rewrites."""

from collections.abc import Mapping, Sequence
from datetime import datetime
from typing import Any

from gitlineage.git.base import (
    ExternalToolError,
    GitGateway,
    GitLineageError,
    NotFoundError,
    UnsafeOperationError,
)
from gitlineage.logging import component_logger

from .locking import repository_lock
from .models import (
    ROLLBACK_STATES,
    BackupStrategy,
    CommitRewriteRequest,
    CommitRewriteResult,
    ImpactAnalysis,
    RewritePlan,
    RewriteResult,
    RewriteState,
)
from .safety import SafetyGate
from .suggest import HeuristicMessageSuggester, MessageSuggester
from .tokens import Clock, ConfirmationTokenIssuer, NonceTokenIssuer, utc_now


def compose_hash_maps(
    previous: Mapping[str, str], latest: Mapping[str, str]
) -> dict[str, str]:
    """Follow `previous` through `latest` so original hashes map to current ones."""
    combined = {old: latest.get(new, new) for old, new in previous.items()}
    for old, new in latest.items():
        combined.setdefault(old, new)
    return combined


class HistoryRewriter:
    """Plans and executes safety-gated commit message rewrites.

    A plan moves PLANNED -> BACKED_UP -> REWRITING -> COMPLETED or
    PARTIALLY_FAILED. Rollback is never automatic; callers decide whether to
    call rollback_to_backup() after a partial failure.
    """

    def __init__(
        self,
        gateway: GitGateway,
        suggester: MessageSuggester | None = None,
        safety_gate: SafetyGate | None = None,
        token_issuer: ConfirmationTokenIssuer | None = None,
        clock: Clock = utc_now,
        logger: Any | None = None,
    ) -> None:
        self.gateway = gateway
        self.suggester = suggester or HeuristicMessageSuggester(gateway)
        self.safety_gate = safety_gate or SafetyGate(gateway, logger=logger)
        self.token_issuer = token_issuer or NonceTokenIssuer(clock=clock)
        self.clock = clock
        self.logger = component_logger(
            "rewriter", logger, repo_path=gateway.get_repo_root()
        )

    async def create_rewrite_plan(
        self,
        commit_hashes: Sequence[str],
        messages: Mapping[str, str] | None = None,
    ) -> RewritePlan:
        """Build a plan for rewriting the messages of `commit_hashes`.

        Args:
            commit_hashes: Commits whose messages should be replaced
            messages: Explicit replacement messages; other commits get a
                suggestion from the message suggester

        Returns:
            A PLANNED rewrite plan carrying a confirmation token

        Raises:
            GitLineageError: If a replacement message cannot be produced
        """
        messages = messages or {}
        requests: list[CommitRewriteRequest] = []
        for sha in commit_hashes:
            if sha in messages:
                requests.append(CommitRewriteRequest(sha=sha, new_message=messages[sha]))
                continue
            try:
                suggestion = await self.suggester.suggest(sha)
            except GitLineageError as e:
                raise GitLineageError(
                    f"Cannot generate message for commit {sha}: {e}"
                ) from e
            requests.append(
                CommitRewriteRequest(
                    sha=sha,
                    new_message=suggestion.suggested,
                    original_message=suggestion.original,
                )
            )

        safety_check = await self.safety_gate.perform_safety_checks(commit_hashes)

        now = self.clock()
        try:
            current_branch = await self.gateway.current_branch()
        except GitLineageError:
            current_branch = "HEAD"
        stamp = now.strftime("%Y-%m-%dT%H-%M-%S-%fZ")
        backup_strategy = BackupStrategy(
            branch_name=f"backup-{current_branch}-{stamp}",
            tag_name=f"backup-tag-{stamp}",
        )

        plan = RewritePlan(
            commits=requests,
            safety_check=safety_check,
            backup_strategy=backup_strategy,
            impact=await self._estimate_impact(commit_hashes, current_branch),
            created_at=now,
        )
        self.generate_confirmation_token(plan)

        self.logger.info(
            "rewrite_planned",
            commits=len(requests),
            safe=safety_check.safe,
            backup_branch=backup_strategy.branch_name,
        )
        return plan

    async def _estimate_impact(
        self, commit_hashes: Sequence[str], current_branch: str
    ) -> ImpactAnalysis:
        affected: list[str] = []
        dependent: list[str] = []
        for sha in commit_hashes:
            try:
                branches = await self.gateway.branches_containing(sha)
            except GitLineageError as e:
                self.logger.warning("impact_lookup_failed", sha=sha, error=str(e))
                continue
            for branch in branches:
                bucket = affected if branch == current_branch else dependent
                if branch not in bucket:
                    bucket.append(branch)
        return ImpactAnalysis(
            affected_commits=len(commit_hashes),
            affected_branches=affected,
            dependent_branches=dependent,
        )

    def generate_confirmation_token(self, plan: RewritePlan) -> str:
        issued = self.token_issuer.issue(plan)
        plan.confirmation_token = issued.token
        plan.expires_at = issued.expires_at
        return issued.token

    async def create_backup(self, strategy: BackupStrategy) -> None:
        """Create the backup branch and tag; a failed tag removes the branch."""
        try:
            await self.gateway.create_branch(strategy.branch_name)
        except GitLineageError as e:
            raise ExternalToolError(f"Failed to create backup: {e}") from e
        try:
            await self.gateway.create_tag(strategy.tag_name)
        except GitLineageError as e:
            try:
                await self.gateway.delete_branch(strategy.branch_name)
            except GitLineageError as cleanup_error:
                self.logger.warning(
                    "backup_cleanup_failed",
                    ref=strategy.branch_name,
                    error=str(cleanup_error),
                )
            raise ExternalToolError(f"Failed to create backup: {e}") from e
        self.logger.info(
            "backup_created",
            branch=strategy.branch_name,
            tag=strategy.tag_name,
        )

    async def _order_oldest_first(
        self, requests: list[CommitRewriteRequest]
    ) -> tuple[list[tuple[str, CommitRewriteRequest]], list[CommitRewriteResult]]:
        """Resolve requests to full hashes, ordered oldest first."""
        keyed: list[tuple[datetime, int, str, CommitRewriteRequest]] = []
        unresolved: list[CommitRewriteResult] = []
        for request in requests:
            try:
                commit = await self.gateway.get_commit(request.sha)
                behind_head = await self.gateway.count_commits(f"{commit.sha}..HEAD")
            except GitLineageError as e:
                unresolved.append(
                    CommitRewriteResult(
                        original_hash=request.sha,
                        success=False,
                        error=str(e),
                        warnings=["Commit could not be resolved"],
                    )
                )
                continue
            # Equal timestamps fall back to distance from HEAD, farthest first.
            keyed.append((commit.timestamp, -behind_head, commit.sha, request))

        keyed.sort(key=lambda item: (item[0], item[1]))
        return [(sha, request) for _, _, sha, request in keyed], unresolved

    async def rewrite_commit_messages(
        self, plan: RewritePlan, confirmation_token: str
    ) -> RewriteResult:
        """Execute a plan, oldest commit first and strictly one at a time.

        Raises:
            UnsafeOperationError: Invalid or expired token, unsafe plan, plan
                already executed, or another mutation in progress
            ExternalToolError: The backup could not be created
        """
        if plan.state is not RewriteState.PLANNED:
            raise UnsafeOperationError(f"Plan is already {plan.state.value}")
        if not plan.safety_check.safe:
            raise UnsafeOperationError(f"Cannot proceed: {plan.safety_check.reason}")
        # Single-use tokens are spent only once every other check has passed.
        if not self.token_issuer.verify(plan, confirmation_token):
            raise UnsafeOperationError(
                "Invalid or expired confirmation token. "
                "Please regenerate the rewrite plan."
            )

        backup_ref = plan.backup_strategy.branch_name
        with repository_lock(self.gateway.lock_path()):
            await self.create_backup(plan.backup_strategy)
            plan.state = RewriteState.BACKED_UP

            ordered, results = await self._order_oldest_first(plan.commits)
            plan.state = RewriteState.REWRITING

            hash_map: dict[str, str] = {}
            for full_sha, request in ordered:
                current = hash_map.get(full_sha, full_sha)
                try:
                    rewritten = await self.gateway.reword_commit(
                        current, request.new_message
                    )
                except GitLineageError as e:
                    self.logger.warning(
                        "commit_rewrite_failed",
                        sha=request.sha,
                        operation="rewrite_commit_messages",
                        error=str(e),
                    )
                    results.append(
                        CommitRewriteResult(
                            original_hash=request.sha,
                            success=False,
                            error=str(e),
                            backup_ref=backup_ref,
                            warnings=["Commit rewrite failed"],
                        )
                    )
                    continue

                hash_map = compose_hash_maps(hash_map, rewritten)
                results.append(
                    CommitRewriteResult(
                        original_hash=request.sha,
                        success=True,
                        new_hash=rewritten.get(current),
                        backup_ref=backup_ref,
                    )
                )

        failed = [result for result in results if not result.success]
        plan.state = (
            RewriteState.PARTIALLY_FAILED if failed else RewriteState.COMPLETED
        )

        warnings = list(plan.safety_check.warnings)
        if failed:
            warnings.append(
                f"{len(failed)} of {len(results)} commits were not rewritten; "
                f"backup branch {backup_ref} is available for rollback"
            )
        if len(failed) < len(results):
            warnings.append(
                "History was rewritten; branches containing the old commits "
                "must be rebased"
            )

        self.logger.info(
            "rewrite_finished",
            state=plan.state.value,
            rewritten=len(results) - len(failed),
            failed=len(failed),
        )
        return RewriteResult(
            commits=results,
            backup=plan.backup_strategy,
            state=plan.state,
            warnings=warnings,
        )

    async def rollback_to_backup(
        self, backup_ref: str, plan: RewritePlan | None = None
    ) -> None:
        """Hard-reset the current branch to `backup_ref`.

        Raises:
            NotFoundError: If the backup ref does not exist
        """
        with repository_lock(self.gateway.lock_path()):
            if not await self.gateway.ref_exists(backup_ref):
                raise NotFoundError(f"Backup {backup_ref} not found")
            await self.gateway.reset_hard(backup_ref)

        if plan is not None and plan.state in ROLLBACK_STATES:
            plan.state = RewriteState.ROLLED_BACK
        self.logger.info("rolled_back", backup_ref=backup_ref)

    async def cleanup_backups(self, strategy: BackupStrategy) -> None:
        """Delete a plan's backup branch and tag; failures are only logged."""
        for delete, name in (
            (self.gateway.delete_branch, strategy.branch_name),
            (self.gateway.delete_tag, strategy.tag_name),
        ):
            try:
                await delete(name)
            except GitLineageError as e:
                self.logger.warning("backup_cleanup_failed", ref=name, error=str(e))
