"""GitPython-based implementation of GitGateway."""

import asyncio
import re
from collections.abc import Callable
from datetime import UTC, datetime
from functools import partial
from pathlib import Path
from typing import Any, TypeVar

import git
from git.objects.util import altz_to_utctz_str

from gitlineage.logging import component_logger

from .base import (
    CommitMetadata,
    ExternalToolError,
    GitGateway,
    NameStatusEntry,
    NotFoundError,
    NumstatEntry,
    RepositoryNotFoundError,
)

T = TypeVar("T")

_NOT_FOUND_MARKERS = (
    "unknown revision",
    "bad revision",
    "not a valid object name",
    "bad object",
    "not a valid commit",
    "no such ref",
    "needed a single revision",
    "does not have any commits",
    "not found",
)

_BRACE_RENAME = re.compile(
    r"^(?P<prefix>.*)\{(?P<old>[^{}]*) => (?P<new>[^{}]*)\}(?P<suffix>.*)$"
)


def rename_destination(path: str) -> str:
    """Normalise a numstat rename path to the destination file name.

    Handles both `old => new` and `dir/{old => new}/file` forms.
    """
    match = _BRACE_RENAME.match(path)
    if match:
        joined = match["prefix"] + match["new"] + match["suffix"]
        return joined.replace("//", "/").lstrip("/")
    if " => " in path:
        return path.split(" => ", 1)[1]
    return path


def parse_numstat(output: str) -> list[NumstatEntry]:
    entries: list[NumstatEntry] = []
    for line in output.splitlines():
        if not line.strip():
            continue
        parts = line.split("\t")
        if len(parts) < 3:
            continue
        entries.append(
            NumstatEntry(
                insertions=_parse_count(parts[0]),
                deletions=_parse_count(parts[1]),
                path=rename_destination("\t".join(parts[2:])),
            )
        )
    return entries


def _parse_count(value: str) -> int | None:
    if value == "-":
        return None
    try:
        return int(value)
    except ValueError:
        return 0


def parse_name_status(output: str) -> list[NameStatusEntry]:
    entries: list[NameStatusEntry] = []
    for line in output.splitlines():
        if not line.strip():
            continue
        parts = line.split("\t")
        if len(parts) < 2:
            continue
        status = parts[0].strip()
        if status[:1] in ("R", "C") and len(parts) >= 3:
            entries.append(
                NameStatusEntry(status=status, path=parts[2], old_path=parts[1])
            )
        else:
            entries.append(NameStatusEntry(status=status, path=parts[1]))
    return entries


def commit_metadata(git_commit: git.Commit) -> CommitMetadata:
    """Convert a GitPython commit to CommitMetadata."""
    if isinstance(git_commit.message, str):
        message = git_commit.message
    else:
        message = git_commit.message.decode("utf-8", errors="replace")
    return CommitMetadata(
        sha=git_commit.hexsha,
        message=message,
        author=git_commit.author.name or "Unknown",
        author_email=git_commit.author.email or "unknown@example.com",
        timestamp=datetime.fromtimestamp(git_commit.committed_date, tz=UTC),
        parents=tuple(parent.hexsha for parent in git_commit.parents),
    )


def _git_date(timestamp: int, tz_offset: int) -> str:
    return f"{timestamp} {altz_to_utctz_str(tz_offset)}"


class GitPythonGateway(GitGateway):
    """GitPython-based implementation of GitGateway.

    Blocking git calls run in the default executor. `timeout` bounds every
    git process started through this gateway.
    """

    def __init__(
        self,
        repo_path: str,
        timeout: float | None = None,
        logger: Any | None = None,
    ) -> None:
        try:
            self.repo = git.Repo(repo_path)
            self.repo_path = Path(repo_path).resolve()
        except (git.InvalidGitRepositoryError, git.NoSuchPathError) as e:
            raise RepositoryNotFoundError(
                f"Not a valid git repository: {repo_path}"
            ) from e
        self.timeout = timeout
        self.logger = component_logger(
            "gateway", logger, repo_path=str(self.repo_path)
        )

    def get_repo_root(self) -> str:
        return str(self.repo_path)

    def lock_path(self) -> Path:
        return Path(self.repo.git_dir) / "gitlineage.lock"

    async def _run(self, func: Callable[..., T], *args: Any) -> T:
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(None, partial(func, *args))

    def _git(self, *args: str) -> str:
        command = ["git", "-c", "core.quotepath=off", *args]
        try:
            return str(
                self.repo.git.execute(command, kill_after_timeout=self.timeout)
            )
        except git.GitCommandError as e:
            stderr = str(e.stderr or "").strip()
            self.logger.debug(
                "git_command_failed",
                command=args[0],
                status=e.status,
                stderr=stderr,
            )
            if any(marker in stderr.lower() for marker in _NOT_FOUND_MARKERS):
                raise NotFoundError(f"git {args[0]}: {stderr}") from e
            raise ExternalToolError(f"git {args[0]} failed: {stderr or e}") from e

    # Queries

    async def log(
        self,
        rev_range: str | None = None,
        since: datetime | None = None,
        merges_only: bool = False,
    ) -> list[CommitMetadata]:
        return await self._run(self._log_sync, rev_range, since, merges_only)

    def _log_sync(
        self,
        rev_range: str | None,
        since: datetime | None,
        merges_only: bool,
    ) -> list[CommitMetadata]:
        # Hashes come from rev-list under the timeout; fields from GitPython objects.
        args = ["rev-list"]
        if merges_only:
            args.append("--merges")
        if since:
            args.append(f"--since={since.isoformat()}")
        args.append(rev_range or "HEAD")
        output = self._git(*args)
        return [commit_metadata(self.repo.commit(sha)) for sha in output.split()]

    async def get_commit(self, rev: str) -> CommitMetadata:
        return await self._run(self._get_commit_sync, rev)

    def _get_commit_sync(self, rev: str) -> CommitMetadata:
        sha = self._git("rev-parse", "--verify", f"{rev}^{{commit}}").strip()
        if not sha:
            raise NotFoundError(f"Commit not found: {rev}")
        return commit_metadata(self.repo.commit(sha))

    def _diff_args(
        self, view: str | None, base: str, target: str, path: str | None
    ) -> list[str]:
        args = ["diff", "-M"]
        if view:
            args.append(view)
        args.extend([base, target])
        if path:
            args.extend(["--", path])
        return args

    async def diff_numstat(
        self, base: str, target: str, path: str | None = None
    ) -> list[NumstatEntry]:
        output = await self._run(
            self._git, *self._diff_args("--numstat", base, target, path)
        )
        return parse_numstat(output)

    async def diff_name_status(
        self, base: str, target: str, path: str | None = None
    ) -> list[NameStatusEntry]:
        output = await self._run(
            self._git, *self._diff_args("--name-status", base, target, path)
        )
        return parse_name_status(output)

    async def diff_patch(
        self, base: str, target: str, path: str | None = None
    ) -> str:
        return await self._run(
            self._git, *self._diff_args(None, base, target, path)
        )

    async def list_branches(self, remote: bool = False) -> list[str]:
        args = ["branch", "--format=%(refname:short)"]
        if remote:
            args.insert(1, "-r")
        output = await self._run(self._git, *args)
        return _branch_names(output)

    async def branches_containing(
        self, sha: str, remote: bool = False
    ) -> list[str]:
        args = ["branch", "--format=%(refname:short)", "--contains", sha]
        if remote:
            args.insert(1, "-r")
        output = await self._run(self._git, *args)
        return _branch_names(output)

    async def current_branch(self) -> str:
        output = await self._run(self._git, "rev-parse", "--abbrev-ref", "HEAD")
        return output.strip()

    async def is_dirty(self) -> bool:
        output = await self._run(self._git, "status", "--porcelain")
        return bool(output.strip())

    async def count_commits(self, rev_range: str) -> int:
        output = await self._run(self._git, "rev-list", "--count", rev_range)
        return int(output.strip() or 0)

    async def ref_exists(self, ref: str) -> bool:
        try:
            await self._run(
                self._git, "rev-parse", "--verify", "--quiet", f"{ref}^{{commit}}"
            )
        except (NotFoundError, ExternalToolError):
            return False
        return True

    # Mutations

    async def create_branch(self, name: str, ref: str = "HEAD") -> None:
        await self._run(self._git, "branch", name, ref)
        self.logger.info("branch_created", name=name, ref=ref)

    async def create_tag(self, name: str, ref: str = "HEAD") -> None:
        await self._run(self._git, "tag", name, ref)
        self.logger.info("tag_created", name=name, ref=ref)

    async def delete_branch(self, name: str) -> None:
        await self._run(self._git, "branch", "-D", name)
        self.logger.info("branch_deleted", name=name)

    async def delete_tag(self, name: str) -> None:
        await self._run(self._git, "tag", "-d", name)
        self.logger.info("tag_deleted", name=name)

    async def reset_hard(self, ref: str) -> None:
        await self._run(self._git, "reset", "--hard", ref)
        self.logger.info("reset_hard", ref=ref)

    async def reword_commit(self, sha: str, message: str) -> dict[str, str]:
        try:
            return await self._run(self._reword_commit_sync, sha, message)
        except (git.GitCommandError, ValueError) as e:
            raise ExternalToolError(f"Failed to reword {sha}: {e}") from e

    def _reword_commit_sync(self, sha: str, message: str) -> dict[str, str]:
        full_sha = self._git("rev-parse", "--verify", f"{sha}^{{commit}}").strip()
        target = self.repo.commit(full_sha)
        head = self.repo.head.commit

        if target != head and not self.repo.is_ancestor(target, head):
            raise NotFoundError(f"Commit {sha} is not an ancestor of HEAD")

        if not message.endswith("\n"):
            message += "\n"

        rev = f"{target.hexsha}^..HEAD" if target.parents else "HEAD"
        mapping: dict[str, str] = {}

        # Replay oldest-first so every parent is rewritten before its children.
        for commit in self.repo.iter_commits(rev, topo_order=True, reverse=True):
            parents = [
                self.repo.commit(mapping.get(p.hexsha, p.hexsha))
                for p in commit.parents
            ]
            is_target = commit.hexsha == target.hexsha
            parents_changed = any(
                new.hexsha != old.hexsha
                for new, old in zip(parents, commit.parents)
            )
            if not is_target and not parents_changed:
                continue

            replacement = git.Commit.create_from_tree(
                self.repo,
                commit.tree,
                message if is_target else commit.message,
                parent_commits=parents,
                head=False,
                author=commit.author,
                committer=commit.committer,
                author_date=_git_date(commit.authored_date, commit.author_tz_offset),
                commit_date=_git_date(
                    commit.committed_date, commit.committer_tz_offset
                ),
            )
            mapping[commit.hexsha] = replacement.hexsha

        new_head = mapping.get(head.hexsha)
        if new_head:
            # Trees are unchanged, so the working tree already matches.
            self._git(
                "update-ref",
                "-m",
                f"gitlineage: reword {target.hexsha[:8]}",
                "HEAD",
                new_head,
                head.hexsha,
            )
        self.logger.info(
            "commit_reworded",
            sha=target.hexsha,
            new_sha=mapping.get(target.hexsha),
            rewritten=len(mapping),
        )
        return mapping


def _branch_names(output: str) -> list[str]:
    names = []
    for line in output.splitlines():
        name = line.strip()
        if not name or name.startswith("(") or name.endswith("/HEAD"):
            continue
        names.append(name)
    return names
