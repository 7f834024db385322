"""Pytest configuration and fixtures."""

from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import git
import pytest

from gitlineage.git.base import (
    Commit,
    CommitChanges,
    CommitMetadata,
    FileChange,
    GitGateway,
    NameStatusEntry,
    NotFoundError,
    NumstatEntry,
)

# Enable pytest-asyncio for all tests
pytest_plugins = ("pytest_asyncio",)


class FakeGateway(GitGateway):
    """In-memory GitGateway with per-call failure injection.

    `failures` maps (method, key) to the exception that call should raise;
    a key of None matches every call to that method.
    """

    def __init__(self, lock_dir: Path) -> None:
        self.lock_dir = lock_dir
        self.commits: dict[str, CommitMetadata] = {}
        self.merges: list[str] = []
        self.ranges: dict[str, list[str]] = {}
        self.numstat: dict[str, list[NumstatEntry]] = {}
        self.name_status: dict[str, list[NameStatusEntry]] = {}
        self.patches: dict[str, str] = {}
        self.remote_containing: dict[str, list[str]] = {}
        self.local_containing: dict[str, list[str]] = {}
        self.behind_head: dict[str, int] = {}
        self.branch = "feature/work"
        self.dirty = False
        self.refs: set[str] = set()
        self.failures: dict[tuple[str, str | None], Exception] = {}
        self.calls: list[tuple[str, str]] = []
        self.reworded: list[str] = []

    def _maybe_fail(self, method: str, key: str | None = None) -> None:
        for candidate in ((method, key), (method, None)):
            if candidate in self.failures:
                raise self.failures[candidate]

    def add_commit(
        self,
        sha: str,
        message: str = "change",
        author: str = "Ann Author",
        email: str = "ann@example.com",
        timestamp: datetime | None = None,
        parents: tuple[str, ...] = (),
    ) -> CommitMetadata:
        metadata = CommitMetadata(
            sha=sha,
            message=message,
            author=author,
            author_email=email,
            timestamp=timestamp or datetime(2024, 5, 1, tzinfo=UTC),
            parents=parents,
        )
        self.commits[sha] = metadata
        return metadata

    def get_repo_root(self) -> str:
        return "/fake/repo"

    def lock_path(self) -> Path:
        return self.lock_dir / "gitlineage.lock"

    async def log(
        self,
        rev_range: str | None = None,
        since: datetime | None = None,
        merges_only: bool = False,
    ) -> list[CommitMetadata]:
        self._maybe_fail("log", rev_range)
        if merges_only:
            return [self.commits[sha] for sha in self.merges]
        return [self.commits[sha] for sha in self.ranges.get(rev_range or "HEAD", [])]

    async def get_commit(self, rev: str) -> CommitMetadata:
        self._maybe_fail("get_commit", rev)
        if rev not in self.commits:
            raise NotFoundError(f"Commit not found: {rev}")
        return self.commits[rev]

    def _target(self, target: str) -> str:
        if target not in self.commits:
            raise NotFoundError(f"bad revision {target}")
        return target

    async def diff_numstat(
        self, base: str, target: str, path: str | None = None
    ) -> list[NumstatEntry]:
        self._maybe_fail("diff_numstat", target)
        return self.numstat.get(self._target(target), [])

    async def diff_name_status(
        self, base: str, target: str, path: str | None = None
    ) -> list[NameStatusEntry]:
        self._maybe_fail("diff_name_status", target)
        return self.name_status.get(self._target(target), [])

    async def diff_patch(
        self, base: str, target: str, path: str | None = None
    ) -> str:
        self._maybe_fail("diff_patch", target)
        return self.patches.get(self._target(target), "")

    async def list_branches(self, remote: bool = False) -> list[str]:
        self._maybe_fail("list_branches")
        return [self.branch]

    async def branches_containing(
        self, sha: str, remote: bool = False
    ) -> list[str]:
        if remote:
            self._maybe_fail("remote_containing", sha)
            return self.remote_containing.get(sha, [])
        self._maybe_fail("branches_containing", sha)
        return self.local_containing.get(sha, [self.branch])

    async def current_branch(self) -> str:
        self._maybe_fail("current_branch")
        return self.branch

    async def is_dirty(self) -> bool:
        self._maybe_fail("is_dirty")
        return self.dirty

    async def count_commits(self, rev_range: str) -> int:
        sha = rev_range.split("..")[0]
        self._maybe_fail("count_commits", sha)
        return self.behind_head.get(sha, 1)

    async def ref_exists(self, ref: str) -> bool:
        return ref in self.refs

    async def create_branch(self, name: str, ref: str = "HEAD") -> None:
        self._maybe_fail("create_branch", name)
        self.calls.append(("create_branch", name))
        self.refs.add(name)

    async def create_tag(self, name: str, ref: str = "HEAD") -> None:
        self._maybe_fail("create_tag", name)
        self.calls.append(("create_tag", name))
        self.refs.add(name)

    async def delete_branch(self, name: str) -> None:
        self._maybe_fail("delete_branch", name)
        self.calls.append(("delete_branch", name))
        self.refs.discard(name)

    async def delete_tag(self, name: str) -> None:
        self._maybe_fail("delete_tag", name)
        self.calls.append(("delete_tag", name))
        self.refs.discard(name)

    async def reset_hard(self, ref: str) -> None:
        self.calls.append(("reset_hard", ref))

    async def reword_commit(self, sha: str, message: str) -> dict[str, str]:
        self._maybe_fail("reword_commit", sha)
        self.reworded.append(sha)
        return {sha: f"{sha}-new"}


@pytest.fixture
def fake_gateway(tmp_path: Path) -> FakeGateway:
    """Create an empty in-memory gateway."""
    return FakeGateway(tmp_path)


@pytest.fixture
def make_commit() -> Callable[..., Commit]:
    """Factory for Commit objects whose changes add up."""

    def _make(
        sha: str,
        message: str = "change",
        author: str = "Ann Author",
        email: str = "ann@example.com",
        insertions: int = 0,
        deletions: int = 0,
        parents: tuple[str, ...] = (),
        files: list[str] | None = None,
    ) -> Commit:
        names = files or [f"{sha}.py"]
        file_changes = [
            FileChange(
                filename=name,
                status="modified",
                insertions=insertions if i == 0 else 0,
                deletions=deletions if i == 0 else 0,
            )
            for i, name in enumerate(names)
        ]
        return Commit(
            sha=sha,
            message=message,
            author=author,
            author_email=email,
            timestamp=datetime(2024, 5, 1, tzinfo=UTC),
            parents=parents,
            changes=CommitChanges(
                files_changed=names,
                insertions=insertions,
                deletions=deletions,
                file_changes=file_changes,
                summary=f"modified {len(names)} files",
            ),
        )

    return _make


@pytest.fixture
def temp_repo(tmp_path: Path):
    """Create a temporary git repository on branch main."""
    repo_path = tmp_path / "repo"
    repo = git.Repo.init(repo_path, initial_branch="main")

    # Configure git for commits
    with repo.config_writer() as config:
        config.set_value("user", "name", "Test User")
        config.set_value("user", "email", "test@example.com")
        config.set_value("commit", "gpgsign", "false")

    yield repo_path, repo
    repo.close()


@pytest.fixture
def commit_file() -> Callable[..., git.Commit]:
    """Write a file and commit it, optionally with a fixed author and date."""

    def _commit(
        repo: git.Repo,
        name: str,
        content: str,
        message: str,
        author: tuple[str, str] | None = None,
        epoch: int | None = None,
    ) -> git.Commit:
        path = Path(repo.working_tree_dir) / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)
        repo.index.add([name])

        kwargs: dict[str, Any] = {}
        if author:
            kwargs["author"] = git.Actor(*author)
        if epoch is not None:
            kwargs["author_date"] = f"{epoch} +0000"
            kwargs["commit_date"] = f"{epoch} +0000"
        return repo.index.commit(message, **kwargs)

    return _commit
