"""Feature branch reconstruction from merge commits."""

import asyncio
import re
from collections.abc import Collection, Sequence
from datetime import UTC, datetime, timedelta
from typing import Any

from gitlineage.logging import component_logger

from .base import (
    Commit,
    CommitMetadata,
    Contributor,
    FeatureBranch,
    GitGateway,
    PullRequestInfo,
)
from .contributors import ContributorAttributor
from .diff import DiffParser

# Tried in order; the first capture wins.
BRANCH_NAME_PATTERNS = (
    re.compile(r"Merge branch '([^']+)'"),
    re.compile(r'Merge branch "([^"]+)"'),
    re.compile(r"Merge branch (\S+)"),
)

DEFAULT_INTEGRATION_MARKERS = ("develop", "master")

_MERGE_REQUEST = re.compile(r"See merge request [^!\s]+!(\d+)")
_PULL_REQUEST = re.compile(r"Merge pull request #(\d+) from (\S+)")
_MERGE_REQUEST_NUMBER = re.compile(r"Merge Request #(\d+)")
_ISSUE = re.compile(r"(?:Closes|Fixes) #(\d+)")
_SOURCE_AND_TARGET = re.compile(r"Merge branch '([^']+)' into '([^']+)'")
_TARGET = re.compile(r"Merge branch \S+ into (\S+)")

TECHNOLOGY_MARKERS: tuple[tuple[tuple[str, ...], str], ...] = (
    (("ansible", "playbook"), "Ansible"),
    (("docker", "Dockerfile"), "Docker"),
    (("k8s", "kubernetes"), "Kubernetes"),
    (("vdi", "gpu"), "VDI/GPU"),
    (("harbor", "registry"), "Container Registry"),
)

ROLE_LABELS = {
    "author": "👨‍💻 Author",
    "co-author": "🤝 Co-Author",
    "merger": "🔀 Merger",
}


def extract_branch_name(merge_message: str) -> str | None:
    for pattern in BRANCH_NAME_PATTERNS:
        match = pattern.search(merge_message)
        if match:
            return match.group(1)
    return None


def is_integration_branch(
    name: str, markers: Sequence[str] = DEFAULT_INTEGRATION_MARKERS
) -> bool:
    return any(marker in name for marker in markers)


def extract_pull_request_info(merge_message: str) -> PullRequestInfo | None:
    """Best-effort extraction of MR/PR numbers and branch names.

    Returns None when the message carries none of them.
    """
    number = source = target = issue = None

    for pattern in (_MERGE_REQUEST, _MERGE_REQUEST_NUMBER):
        match = pattern.search(merge_message)
        if match:
            number = match.group(1)
            break

    match = _PULL_REQUEST.search(merge_message)
    if match:
        number = number or match.group(1)
        source = match.group(2)

    match = _ISSUE.search(merge_message)
    if match:
        issue = match.group(1)

    match = _SOURCE_AND_TARGET.search(merge_message)
    if match:
        source, target = match.group(1), match.group(2)
    else:
        match = _TARGET.search(merge_message)
        if match:
            target = match.group(1).strip("'\"")

    if not any((number, issue, source, target)):
        return None
    return PullRequestInfo(number=number, issue=issue, source=source, target=target)


def extract_meaningful_diff(patch: str, max_lines: int = 20) -> str:
    """Keep only added/removed lines of a patch, dropping headers."""
    meaningful: list[str] = []
    for line in patch.split("\n"):
        if line.startswith(("diff --git", "index ", "@@", "+++", "---")):
            continue
        if not line.startswith(("+", "-")):
            continue
        if len(line.strip()) <= 1:
            continue
        meaningful.append(line)
        if len(meaningful) >= max_lines:
            meaningful.append("... (diff truncated)")
            break

    if not meaningful:
        return "(No significant code changes to display)"
    return "\n".join(meaningful)


def extract_key_takeaways(commits: list[Commit]) -> list[str]:
    takeaways: list[str] = []
    files: set[str] = set()
    extensions: set[str] = set()
    technologies: list[str] = []
    insertions = 0
    deletions = 0

    for commit in commits:
        for filename in commit.changes.files_changed:
            files.add(filename)
            if "." in filename:
                extensions.add(filename.rsplit(".", 1)[-1].lower())
            for markers, technology in TECHNOLOGY_MARKERS:
                if technology not in technologies and any(
                    marker in filename for marker in markers
                ):
                    technologies.append(technology)
        insertions += commit.changes.insertions
        deletions += commit.changes.deletions

    if insertions > 1000:
        takeaways.append(
            f"Major feature implementation with {insertions:,} lines added"
        )
    elif insertions > 100:
        takeaways.append(f"Moderate enhancement with {insertions} lines of new code")

    if deletions > 500:
        takeaways.append(
            f"Significant code cleanup/refactoring ({deletions} lines removed)"
        )

    if technologies:
        takeaways.append(f"Technologies involved: {', '.join(technologies)}")

    messages = [commit.message.lower() for commit in commits]
    if any("fix" in m or "bug" in m for m in messages):
        takeaways.append("Includes bug fixes or stability improvements")
    if any("security" in m or "auth" in m for m in messages):
        takeaways.append("Security-related changes implemented")
    if any("performance" in m or "optimize" in m for m in messages):
        takeaways.append("Performance optimizations included")

    if extensions & {"yml", "yaml"} and any("playbook" in f for f in files):
        takeaways.append("Ansible automation/configuration updates")

    return takeaways


def _format_file_line(filename: str, status: str, insertions: int, deletions: int) -> str:
    return f"- `{filename}` ({status}: +{insertions}/-{deletions})"


def describe_branch(
    name: str,
    commits: list[Commit],
    merge_commit: Commit,
    contributors: list[Contributor],
    pull_request_info: PullRequestInfo | None = None,
    key_takeaways: list[str] | None = None,
) -> str:
    """Render a markdown narrative of a merged branch.

    Branches without their own commits describe the merge commit's diff.
    """
    files: set[str] = set()
    insertions = 0
    deletions = 0
    for commit in commits:
        files.update(commit.changes.files_changed)
        insertions += commit.changes.insertions
        deletions += commit.changes.deletions

    lines = [
        f"**Branch: {name}**",
        f"**Merged: {merge_commit.timestamp.strftime('%a %b %d %Y')}**",
        f"**Merged by: {merge_commit.author}**",
        "",
    ]

    if pull_request_info:
        if pull_request_info.number:
            lines.append(f"**Merge Request:** #{pull_request_info.number}")
        if pull_request_info.issue:
            lines.append(f"**Closes Issue:** #{pull_request_info.issue}")
        if pull_request_info.source:
            lines.append(f"**Source Branch:** {pull_request_info.source}")
        if pull_request_info.target:
            lines.append(f"**Target Branch:** {pull_request_info.target}")
        lines.append("")

    if contributors:
        lines.append("## Contributors")
        for contributor in contributors:
            stats = ""
            if contributor.commit_count > 0:
                stats = (
                    f" ({contributor.commit_count} commits, "
                    f"+{contributor.lines_added}/-{contributor.lines_removed})"
                )
            lines.append(
                f"- {ROLE_LABELS[contributor.role]}: **{contributor.name}**{stats}"
            )
        lines.append("")

    lines.extend([
        "## Summary",
        commits[0].subject if commits else merge_commit.subject,
        "",
    ])

    if key_takeaways:
        lines.append("## Key Takeaways")
        lines.extend(f"- {takeaway}" for takeaway in key_takeaways)
        lines.append("")

    lines.extend([
        "## Changes Overview",
        f"- **Files modified:** {len(files)}",
        f"- **Lines added:** {insertions}",
        f"- **Lines removed:** {deletions}",
        f"- **Commits:** {len(commits)}",
        f"- **Contributors:** {len(contributors)}",
        "",
    ])

    if commits:
        lines.append("## Detailed Changes")
        for index, commit in enumerate(commits, start=1):
            changes = commit.changes
            lines.append(f"### Commit {index}: {commit.subject}")
            lines.append(f"**Author:** {commit.author} | **Hash:** `{commit.sha[:8]}`")
            lines.append(f"**Analysis:** {changes.summary}")
            lines.append("")

            if changes.file_changes:
                lines.append("**Modified Files:**")
                for change in changes.file_changes[:8]:
                    lines.append(_format_file_line(
                        change.filename, change.status,
                        change.insertions, change.deletions,
                    ))
                if len(changes.file_changes) > 8:
                    lines.append(
                        f"- ... and {len(changes.file_changes) - 8} more files"
                    )
                lines.append("")

            significant = [
                change
                for change in changes.file_changes
                if change.patch and change.insertions + change.deletions > 5
            ][:2]
            if significant:
                lines.append("**Key Code Changes:**")
                for change in significant:
                    lines.append(f"\n**{change.filename}** ({change.status}):")
                    lines.append("```diff")
                    lines.append(extract_meaningful_diff(change.patch or ""))
                    lines.append("```")
                    lines.append("")

            lines.append("---")
            lines.append("")
    elif merge_commit.changes.file_changes:
        merge_changes = merge_commit.changes
        lines.append("## Merge Changes")
        lines.append(f"**Analysis:** {merge_changes.summary}")
        lines.append("")
        lines.append("**Files:**")
        for change in merge_changes.file_changes[:15]:
            lines.append(_format_file_line(
                change.filename, change.status, change.insertions, change.deletions
            ))
        if len(merge_changes.file_changes) > 15:
            lines.append(
                f"- ... and {len(merge_changes.file_changes) - 15} more files"
            )

    return "\n".join(lines)


class BranchReconstructor:
    """Recovers merged feature branches from the merge commits of a repository.

    Analysis failures are logged and degrade to empty results; a single
    unreadable commit never aborts a repository scan. Long scans can be
    stopped with `cancel_event`, checked between commits; the commits
    collected so far are returned.
    """

    def __init__(
        self,
        gateway: GitGateway,
        diff_parser: DiffParser | None = None,
        attributor: ContributorAttributor | None = None,
        integration_markers: Sequence[str] = DEFAULT_INTEGRATION_MARKERS,
        logger: Any | None = None,
    ) -> None:
        self.gateway = gateway
        self.diff_parser = diff_parser or DiffParser(gateway, logger=logger)
        self.attributor = attributor or ContributorAttributor(logger=logger)
        self.integration_markers = tuple(integration_markers)
        self.logger = component_logger(
            "branches", logger, repo_path=gateway.get_repo_root()
        )

    def accepts_branch(self, name: str | None) -> bool:
        return bool(name) and not is_integration_branch(
            name or "", self.integration_markers
        )

    async def _to_commit(
        self, metadata: CommitMetadata, branch_name: str | None = None
    ) -> Commit:
        changes = await self.diff_parser.parse_changes(metadata.sha)
        return Commit(
            sha=metadata.sha,
            message=metadata.message,
            author=metadata.author,
            author_email=metadata.author_email,
            timestamp=metadata.timestamp,
            parents=metadata.parents,
            changes=changes,
            branch_name=branch_name,
        )

    async def get_all_merge_commits(
        self,
        since_days: int = 90,
        cancel_event: asyncio.Event | None = None,
    ) -> list[Commit]:
        since = datetime.now(UTC) - timedelta(days=since_days)
        try:
            merges = await self.gateway.log(since=since, merges_only=True)
        except Exception as e:
            self.logger.error(
                "merge_scan_failed", operation="get_all_merge_commits", error=str(e)
            )
            return []

        commits: list[Commit] = []
        for metadata in merges:
            if cancel_event is not None and cancel_event.is_set():
                self.logger.info(
                    "scan_cancelled", operation="get_all_merge_commits",
                    collected=len(commits),
                )
                break
            commits.append(await self._to_commit(metadata))

        self.logger.info(
            "merge_scan_complete", merges=len(commits), since=since.isoformat()
        )
        return commits

    async def get_branch_commits(
        self,
        merge_commit: Commit,
        branch_name: str,
        cancel_event: asyncio.Event | None = None,
    ) -> list[Commit]:
        """Return the commits between the merge's base parent and branch tip."""
        if len(merge_commit.parents) < 2:
            return []

        base, tip = merge_commit.parents[0], merge_commit.parents[1]
        try:
            entries = await self.gateway.log(rev_range=f"{base}..{tip}")
        except Exception as e:
            self.logger.warning(
                "branch_commits_failed",
                sha=merge_commit.sha,
                branch=branch_name,
                operation="get_branch_commits",
                error=str(e),
            )
            return []

        commits: list[Commit] = []
        for metadata in entries:
            if cancel_event is not None and cancel_event.is_set():
                self.logger.info(
                    "scan_cancelled", operation="get_branch_commits",
                    branch=branch_name, collected=len(commits),
                )
                break
            commits.append(await self._to_commit(metadata, branch_name))
        return commits

    async def build_feature_branch(
        self,
        merge_commit: Commit,
        branch_name: str,
        cancel_event: asyncio.Event | None = None,
    ) -> FeatureBranch:
        commits = await self.get_branch_commits(merge_commit, branch_name, cancel_event)
        contributors = self.attributor.extract_contributors(commits, merge_commit)
        pull_request_info = extract_pull_request_info(merge_commit.message)
        key_takeaways = extract_key_takeaways(commits)

        return FeatureBranch(
            name=branch_name,
            commits=commits,
            merge_commit=merge_commit,
            merged_date=merge_commit.timestamp,
            description=describe_branch(
                branch_name,
                commits,
                merge_commit,
                contributors,
                pull_request_info,
                key_takeaways,
            ),
            status="merged",
            contributors=contributors,
            pull_request_info=pull_request_info,
            key_takeaways=key_takeaways,
        )

    async def get_feature_branches(
        self,
        since_days: int = 90,
        exclude: Collection[str] = (),
        cancel_event: asyncio.Event | None = None,
    ) -> list[FeatureBranch]:
        """Reconstruct every feature branch merged in the last `since_days`.

        Args:
            since_days: Look-back window for merge commits
            exclude: Merge commit hashes already processed elsewhere
            cancel_event: Stops the scan between commits when set

        Returns:
            Feature branches in merge-log order (newest first)
        """
        merges = await self.get_all_merge_commits(since_days, cancel_event)
        branches: list[FeatureBranch] = []

        for merge_commit in merges:
            if cancel_event is not None and cancel_event.is_set():
                self.logger.info(
                    "scan_cancelled", operation="get_feature_branches",
                    collected=len(branches),
                )
                break
            if merge_commit.sha in exclude:
                self.logger.debug("merge_already_processed", sha=merge_commit.sha)
                continue

            name = extract_branch_name(merge_commit.message)
            if name is None or not self.accepts_branch(name):
                self.logger.debug(
                    "merge_skipped", sha=merge_commit.sha, branch=name
                )
                continue

            branch = await self.build_feature_branch(merge_commit, name, cancel_event)
            if cancel_event is not None and cancel_event.is_set():
                # The commit list may be truncated; report only complete branches.
                self.logger.info(
                    "scan_cancelled", operation="get_feature_branches",
                    collected=len(branches), dropped=merge_commit.sha,
                )
                break
            branches.append(branch)

        self.logger.info("feature_branches_reconstructed", count=len(branches))
        return branches
