"""Pre-mutation safety checks for history rewriting."""

from collections.abc import Sequence
from typing import Any

from gitlineage.git.base import GitGateway, GitLineageError
from gitlineage.logging import component_logger

from .models import SafetyAssessment

DEFAULT_PROTECTED_BRANCHES = ("main", "master", "develop", "production", "prod")


class SafetyGate:
    """Decides whether a set of commits may have their messages rewritten.

    Every check runs even after a blocking condition is found so that the
    assessment lists all warnings. A check that cannot be executed is itself
    blocking.
    """

    def __init__(
        self,
        gateway: GitGateway,
        protected_branches: Sequence[str] = DEFAULT_PROTECTED_BRANCHES,
        blast_radius_threshold: int = 50,
        logger: Any | None = None,
    ) -> None:
        self.gateway = gateway
        self.protected_branches = frozenset(protected_branches)
        self.blast_radius_threshold = blast_radius_threshold
        self.logger = component_logger(
            "safety", logger, repo_path=gateway.get_repo_root()
        )

    async def perform_safety_checks(
        self, commit_hashes: Sequence[str]
    ) -> SafetyAssessment:
        assessment = SafetyAssessment()

        await self._check_working_tree(assessment)
        current_branch = await self._check_current_branch(assessment)
        await self._check_remote_branches(assessment, commit_hashes)
        await self._check_merge_commits(assessment, commit_hashes)
        await self._check_blast_radius(assessment, commit_hashes)
        await self._check_dependent_branches(
            assessment, commit_hashes, current_branch
        )

        if assessment.safe and not assessment.warnings:
            assessment.recommend("Create a backup branch before proceeding")
            assessment.recommend(
                "Verify all team members are aware of history changes"
            )

        self.logger.info(
            "safety_assessment",
            commits=len(commit_hashes),
            safe=assessment.safe,
            reason=assessment.reason,
            warnings=len(assessment.warnings),
        )
        return assessment

    async def _check_working_tree(self, assessment: SafetyAssessment) -> None:
        try:
            dirty = await self.gateway.is_dirty()
        except GitLineageError as e:
            assessment.block(f"Cannot read working tree status: {e}")
            return
        if dirty:
            assessment.block("Repository has uncommitted changes")
            assessment.recommend(
                "Commit or stash all changes before modifying history"
            )

    async def _check_current_branch(
        self, assessment: SafetyAssessment
    ) -> str | None:
        try:
            current = await self.gateway.current_branch()
        except GitLineageError as e:
            assessment.block(f"Cannot determine current branch: {e}")
            return None
        if current in self.protected_branches:
            assessment.warn(f"You are on a protected branch: {current}")
            assessment.recommend(
                "Consider creating a feature branch for history modification"
            )
        return current

    async def _check_remote_branches(
        self, assessment: SafetyAssessment, commit_hashes: Sequence[str]
    ) -> None:
        for sha in commit_hashes:
            try:
                remote_branches = await self.gateway.branches_containing(
                    sha, remote=True
                )
            except GitLineageError as e:
                assessment.block(
                    f"Cannot check remote branches for commit {sha}: {e}"
                )
                continue
            if remote_branches:
                assessment.block(
                    f"Commit {sha} has been pushed to remote branches: "
                    f"{', '.join(remote_branches)}"
                )
                assessment.recommend(
                    "Only modify local commits that have not been pushed"
                )

    async def _check_merge_commits(
        self, assessment: SafetyAssessment, commit_hashes: Sequence[str]
    ) -> None:
        for sha in commit_hashes:
            try:
                commit = await self.gateway.get_commit(sha)
            except GitLineageError as e:
                assessment.block(f"Cannot analyze commit {sha}: {e}")
                continue
            if len(commit.parents) > 1:
                assessment.warn(f"Commit {sha} is a merge commit")
                assessment.recommend(
                    "Rewriting merge commits can be complex and risky"
                )

    async def _check_blast_radius(
        self, assessment: SafetyAssessment, commit_hashes: Sequence[str]
    ) -> None:
        for sha in commit_hashes:
            try:
                position = await self.gateway.count_commits(f"{sha}..HEAD")
            except GitLineageError as e:
                assessment.block(
                    f"Cannot determine position of commit {sha}: {e}"
                )
                continue
            if position > self.blast_radius_threshold:
                assessment.warn(
                    f"Commit {sha} is {position} commits back from HEAD "
                    "(wide blast radius)"
                )
                assessment.recommend(
                    "Rewriting old commits can affect many subsequent commits"
                )

    async def _check_dependent_branches(
        self,
        assessment: SafetyAssessment,
        commit_hashes: Sequence[str],
        current_branch: str | None,
    ) -> None:
        dependent: list[str] = []
        for sha in commit_hashes:
            try:
                branches = await self.gateway.branches_containing(sha)
            except GitLineageError as e:
                assessment.block(
                    f"Cannot list branches containing commit {sha}: {e}"
                )
                continue
            for branch in branches:
                if branch != current_branch and branch not in dependent:
                    dependent.append(branch)

        if dependent:
            assessment.warn(
                f"Commits are contained in other branches: {', '.join(dependent)}"
            )
            assessment.recommend(
                "Other branches may be affected by history rewriting"
            )
