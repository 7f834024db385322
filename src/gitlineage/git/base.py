"""Base classes, dataclasses, and types for commit graph analysis."""

import hashlib
import tempfile
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Literal

FileStatus = Literal["added", "modified", "deleted", "renamed"]
ContributorRole = Literal["author", "merger", "co-author"]
BranchStatus = Literal["merged", "closed"]


class GitLineageError(Exception):
    """Base exception for gitlineage errors."""

    pass


class NotFoundError(GitLineageError):
    """A commit, ref, or backup does not exist."""

    pass


class ExternalToolError(GitLineageError):
    """A git invocation failed or returned a non-zero exit status."""

    pass


class RepositoryNotFoundError(ExternalToolError):
    """Repository path is not a valid git repository."""

    pass


class UnsafeOperationError(GitLineageError):
    """A history mutation was refused.

    Raised when the safety assessment blocks the plan, when the confirmation
    token is invalid or expired, or when another mutation holds the
    repository lock.
    """

    pass


class PartialFailureError(GitLineageError):
    """A rewrite batch finished with some commits left unrewritten."""

    def __init__(self, message: str, failed: list[str]) -> None:
        super().__init__(message)
        self.failed = failed


@dataclass(frozen=True)
class CommitMetadata:
    """Raw commit metadata as read from the repository."""

    sha: str
    message: str
    author: str
    author_email: str
    timestamp: datetime  # Committer date, always UTC, timezone-aware
    parents: tuple[str, ...] = ()


@dataclass(frozen=True)
class NumstatEntry:
    """One line of a numeric diff stat. Counts are None for binary files."""

    insertions: int | None
    deletions: int | None
    path: str


@dataclass(frozen=True)
class NameStatusEntry:
    """One line of a name-status diff view."""

    status: str
    path: str
    old_path: str | None = None


@dataclass(frozen=True)
class FileChange:
    """Represents one changed file within a commit."""

    filename: str
    status: FileStatus
    insertions: int
    deletions: int
    patch: str | None = None


@dataclass(frozen=True)
class CommitChanges:
    """Aggregated file-level changes of a single commit."""

    files_changed: list[str]
    insertions: int
    deletions: int
    file_changes: list[FileChange]
    summary: str
    integrity_warnings: list[str] = field(default_factory=list)

    @classmethod
    def empty(cls, summary: str = "Unable to parse commit changes") -> "CommitChanges":
        return cls(
            files_changed=[],
            insertions=0,
            deletions=0,
            file_changes=[],
            summary=summary,
        )


@dataclass(frozen=True)
class Commit:
    """A commit together with its parsed changes.

    Commits are never mutated; rewriting a message yields a new commit with
    a new hash.
    """

    sha: str
    message: str
    author: str
    author_email: str
    timestamp: datetime
    parents: tuple[str, ...]
    changes: CommitChanges
    branch_name: str | None = None

    @property
    def is_merge(self) -> bool:
        return len(self.parents) > 1

    @property
    def subject(self) -> str:
        lines = self.message.strip().splitlines()
        return lines[0] if lines else ""


@dataclass
class Contributor:
    """A person credited on a feature branch.

    Identity is the (name, email) pair. A merger may be upgraded to author,
    but an author is never downgraded.
    """

    name: str
    email: str
    commit_count: int
    lines_added: int
    lines_removed: int
    role: ContributorRole

    @property
    def key(self) -> tuple[str, str]:
        return (self.name, self.email)


@dataclass(frozen=True)
class PullRequestInfo:
    """Merge/pull request metadata recovered from a merge message."""

    number: str | None = None
    issue: str | None = None
    source: str | None = None
    target: str | None = None


@dataclass
class FeatureBranch:
    """A merged feature branch reconstructed from a merge commit."""

    name: str
    commits: list[Commit]
    merge_commit: Commit
    merged_date: datetime
    description: str
    status: BranchStatus
    contributors: list[Contributor]
    pull_request_info: PullRequestInfo | None = None
    key_takeaways: list[str] = field(default_factory=list)


class GitGateway(ABC):
    """Abstract access to a git repository.

    Every method other than get_repo_root() runs an external process and is a
    suspension point. Failures raise NotFoundError or ExternalToolError.
    """

    @abstractmethod
    def get_repo_root(self) -> str:
        pass

    def lock_path(self) -> Path:
        """File used to serialise history mutations on this repository."""
        digest = hashlib.sha256(self.get_repo_root().encode()).hexdigest()[:12]
        return Path(tempfile.gettempdir()) / f"gitlineage-{digest}.lock"

    # Queries

    @abstractmethod
    async def log(
        self,
        rev_range: str | None = None,
        since: datetime | None = None,
        merges_only: bool = False,
    ) -> list[CommitMetadata]:
        pass

    @abstractmethod
    async def get_commit(self, rev: str) -> CommitMetadata:
        pass

    @abstractmethod
    async def diff_numstat(
        self, base: str, target: str, path: str | None = None
    ) -> list[NumstatEntry]:
        pass

    @abstractmethod
    async def diff_name_status(
        self, base: str, target: str, path: str | None = None
    ) -> list[NameStatusEntry]:
        pass

    @abstractmethod
    async def diff_patch(
        self, base: str, target: str, path: str | None = None
    ) -> str:
        pass

    @abstractmethod
    async def list_branches(self, remote: bool = False) -> list[str]:
        pass

    @abstractmethod
    async def branches_containing(
        self, sha: str, remote: bool = False
    ) -> list[str]:
        pass

    @abstractmethod
    async def current_branch(self) -> str:
        pass

    @abstractmethod
    async def is_dirty(self) -> bool:
        pass

    @abstractmethod
    async def count_commits(self, rev_range: str) -> int:
        pass

    @abstractmethod
    async def ref_exists(self, ref: str) -> bool:
        pass

    # Mutations

    @abstractmethod
    async def create_branch(self, name: str, ref: str = "HEAD") -> None:
        pass

    @abstractmethod
    async def create_tag(self, name: str, ref: str = "HEAD") -> None:
        pass

    @abstractmethod
    async def delete_branch(self, name: str) -> None:
        pass

    @abstractmethod
    async def delete_tag(self, name: str) -> None:
        pass

    @abstractmethod
    async def reset_hard(self, ref: str) -> None:
        pass

    @abstractmethod
    async def reword_commit(self, sha: str, message: str) -> dict[str, str]:
        """Replace the message of `sha`, keeping author, committer and dates.

        Returns a mapping of every rewritten commit's old hash to its new one.
        """
        pass
