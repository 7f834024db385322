"""Dataclasses describing history rewrite plans and their outcomes."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from gitlineage.git.base import PartialFailureError


class RewriteState(str, Enum):
    """Lifecycle of a rewrite plan."""

    PLANNED = "planned"
    BACKED_UP = "backed_up"
    REWRITING = "rewriting"
    COMPLETED = "completed"
    PARTIALLY_FAILED = "partially_failed"
    ROLLED_BACK = "rolled_back"


# States from which a rollback to the plan's backup is meaningful.
ROLLBACK_STATES = frozenset({
    RewriteState.BACKED_UP,
    RewriteState.REWRITING,
    RewriteState.COMPLETED,
    RewriteState.PARTIALLY_FAILED,
})


@dataclass
class SafetyAssessment:
    """Result of the pre-mutation checks.

    Only the first blocking condition sets `reason`; warnings and
    recommendations keep accumulating after it.
    """

    safe: bool = True
    reason: str | None = None
    warnings: list[str] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)

    def block(self, reason: str) -> None:
        if self.safe:
            self.reason = reason
        self.safe = False

    def warn(self, warning: str) -> None:
        self.warnings.append(warning)

    def recommend(self, recommendation: str) -> None:
        if recommendation not in self.recommendations:
            self.recommendations.append(recommendation)


@dataclass(frozen=True)
class CommitRewriteRequest:
    sha: str
    new_message: str
    original_message: str | None = None
    preserve_author: bool = True
    preserve_date: bool = True


@dataclass(frozen=True)
class BackupStrategy:
    branch_name: str
    tag_name: str


@dataclass(frozen=True)
class ImpactAnalysis:
    affected_commits: int
    affected_branches: list[str]
    dependent_branches: list[str]


@dataclass
class RewritePlan:
    """Everything needed to execute, and undo, a message rewrite."""

    commits: list[CommitRewriteRequest]
    safety_check: SafetyAssessment
    backup_strategy: BackupStrategy
    impact: ImpactAnalysis
    created_at: datetime
    confirmation_token: str = ""
    expires_at: datetime | None = None
    state: RewriteState = RewriteState.PLANNED

    @property
    def target_hashes(self) -> list[str]:
        return [request.sha for request in self.commits]


@dataclass(frozen=True)
class CommitRewriteResult:
    original_hash: str
    success: bool
    new_hash: str | None = None
    error: str | None = None
    backup_ref: str | None = None
    warnings: list[str] = field(default_factory=list)


@dataclass
class RewriteResult:
    """Outcome of a rewrite batch. Partial failure is a normal outcome."""

    commits: list[CommitRewriteResult]
    backup: BackupStrategy
    state: RewriteState
    warnings: list[str] = field(default_factory=list)

    @property
    def succeeded(self) -> list[CommitRewriteResult]:
        return [result for result in self.commits if result.success]

    @property
    def failed(self) -> list[CommitRewriteResult]:
        return [result for result in self.commits if not result.success]

    def raise_for_failures(self) -> None:
        failed = self.failed
        if failed:
            raise PartialFailureError(
                f"{len(failed)} of {len(self.commits)} commits were not rewritten; "
                f"backup branch {self.backup.branch_name} is available for rollback",
                failed=[result.original_hash for result in failed],
            )
