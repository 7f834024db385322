"""Per-commit diff parsing, patch extraction and change summaries."""

import asyncio
from collections.abc import Callable
from typing import Any

from gitlineage.logging import component_logger

from .base import (
    CommitChanges,
    FileChange,
    FileStatus,
    GitGateway,
    NameStatusEntry,
    NumstatEntry,
)

PATCH_TRUNCATION_MARKER = "... (patch truncated for readability)"

FileRule = tuple[Callable[[str], bool], str]


def _name_or_extension(*patterns: str) -> Callable[[str], bool]:
    def predicate(filename: str) -> bool:
        extension = filename.rsplit(".", 1)[-1]
        return any(p in filename or extension == p for p in patterns)

    return predicate


# First match wins; order is significant.
CATEGORY_RULES: tuple[FileRule, ...] = (
    (
        _name_or_extension(
            "config", "yml", "yaml", "json", "env", "properties", ".conf"
        ),
        "configuration",
    ),
    (_name_or_extension("md", "txt", "rst", "doc", "readme"), "documentation"),
    (
        _name_or_extension(
            "ansible", "playbook", "role", "dockerfile", "helm", "k8s",
            "terraform", ".tf",
        ),
        "infrastructure",
    ),
    (_name_or_extension("sh", "py", "js", "ts", "ps1", "bat", "script"), "scripts"),
    (
        _name_or_extension("bin", "exe", "dll", "so", "jar", "war", "img", "iso"),
        "binaries",
    ),
    (_name_or_extension("j2", "jinja", "template", "tmpl"), "templates"),
    (_name_or_extension("cert", "key", "pem", "crt", "security", "auth"), "security"),
)

CATEGORY_ORDER = tuple(label for _, label in CATEGORY_RULES) + ("other",)

# Checked in order against the full diff text.
INSIGHT_RULES: tuple[tuple[tuple[str, ...], str], ...] = (
    (("version", "Version"), "version updates"),
    (("password", "token", "key"), "credential changes"),
    (("port", "host", "ip"), "network configuration"),
    (("install", "package"), "package installations"),
    (("service", "systemd"), "service configuration"),
    (("firewall", "iptables"), "firewall rules"),
    (("database", "db"), "database changes"),
    (("ssl", "tls", "certificate"), "SSL/TLS configuration"),
    (("backup", "restore"), "backup configuration"),
    (("monitoring", "logging"), "monitoring/logging setup"),
    (("ansible",), "Ansible automation"),
    (("docker", "container"), "containerization"),
    (("kubernetes", "k8s"), "Kubernetes deployment"),
)

_STATUS_LETTERS: dict[str, FileStatus] = {
    "A": "added",
    "D": "deleted",
    "R": "renamed",
    "M": "modified",
}


def parse_file_status(status: str) -> FileStatus:
    return _STATUS_LETTERS.get(status[:1], "modified")


def categorize_file(filename: str) -> str:
    lowered = filename.lower()
    for predicate, label in CATEGORY_RULES:
        if predicate(lowered):
            return label
    return "other"


def analyze_code_changes(diff: str, limit: int = 3) -> list[str]:
    insights = [
        phrase
        for triggers, phrase in INSIGHT_RULES
        if any(trigger in diff for trigger in triggers)
    ]
    return insights[:limit]


def generate_change_summary(
    file_changes: list[FileChange],
    full_diff: str = "",
    max_insights: int = 3,
) -> str:
    """Describe a commit's file operations, categories and notable content."""
    if not file_changes:
        return "No file changes detected"

    operations: dict[FileStatus, int] = {
        "added": 0,
        "modified": 0,
        "deleted": 0,
        "renamed": 0,
    }
    categories = dict.fromkeys(CATEGORY_ORDER, 0)

    for change in file_changes:
        operations[change.status] += 1
        categories[categorize_file(change.filename)] += 1

    parts = [
        f"{status} {count} files"
        for status, count in operations.items()
        if count > 0
    ]
    summary = ", ".join(parts)

    category_parts = [
        f"{category} ({count})"
        for category, count in categories.items()
        if count > 0 and category != "other"
    ]
    if category_parts:
        summary += f" - primarily {', '.join(category_parts)}"

    insights = analyze_code_changes(full_diff, limit=max_insights)
    if insights:
        summary += f" - {', '.join(insights)}"

    return summary or "Mixed file changes"


def _is_file_header(line: str, filename: str) -> bool:
    return line.startswith("diff --git") and (
        line.endswith(f" b/{filename}") or f" a/{filename} " in line
    )


def extract_file_patch(
    full_diff: str, filename: str, max_chars: int = 5000
) -> str | None:
    """Return the section of `full_diff` belonging to `filename`.

    The section runs from the file's `diff --git` header up to the next file
    header and is cut off with a marker once it exceeds `max_chars`.
    """
    patch_lines: list[str] = []
    size = 0
    in_file = False

    for line in full_diff.split("\n"):
        if line.startswith("diff --git"):
            if in_file:
                break
            if _is_file_header(line, filename):
                in_file = True
        if not in_file:
            continue

        patch_lines.append(line)
        size += len(line) + 1
        if size > max_chars:
            patch_lines.append(PATCH_TRUNCATION_MARKER)
            break

    patch = "\n".join(patch_lines).strip()
    return patch or None


def join_file_views(
    numstat: list[NumstatEntry],
    name_status: list[NameStatusEntry],
) -> tuple[list[tuple[str, FileStatus, int, int]], list[str]]:
    """Join numeric and status diff views on file name.

    Returns (filename, status, insertions, deletions) rows in numstat order,
    followed by files only the status view reported, plus a list of
    integrity warnings describing any disagreement between the two views.
    """
    warnings: list[str] = []
    statuses = {entry.path: entry.status for entry in name_status}

    if len(numstat) != len(name_status):
        warnings.append(
            f"numstat lists {len(numstat)} files but name-status lists "
            f"{len(name_status)}"
        )

    rows: list[tuple[str, FileStatus, int, int]] = []
    seen: set[str] = set()
    for entry in numstat:
        letter = statuses.get(entry.path)
        if letter is None:
            warnings.append(f"No status reported for {entry.path}; assuming modified")
            letter = "M"
        seen.add(entry.path)
        rows.append((
            entry.path,
            parse_file_status(letter),
            entry.insertions or 0,
            entry.deletions or 0,
        ))

    for status_entry in name_status:
        if status_entry.path in seen:
            continue
        warnings.append(
            f"No line counts reported for {status_entry.path}; counted as zero"
        )
        seen.add(status_entry.path)
        rows.append((status_entry.path, parse_file_status(status_entry.status), 0, 0))

    return rows, warnings


class DiffParser:
    """Turns a commit's diff into structured CommitChanges.

    parse_changes() never raises: failures are logged and yield a
    zero-valued CommitChanges so a whole-repository scan can continue.
    """

    def __init__(
        self,
        gateway: GitGateway,
        patch_max_chars: int = 5000,
        max_insights: int = 3,
        logger: Any | None = None,
    ) -> None:
        self.gateway = gateway
        self.patch_max_chars = patch_max_chars
        self.max_insights = max_insights
        self.logger = component_logger(
            "diff_parser", logger, repo_path=gateway.get_repo_root()
        )

    async def parse_changes(self, sha: str) -> CommitChanges:
        base = f"{sha}^"
        try:
            numstat, name_status, full_diff = await asyncio.gather(
                self.gateway.diff_numstat(base, sha),
                self.gateway.diff_name_status(base, sha),
                self.gateway.diff_patch(base, sha),
            )
        except Exception as e:
            self.logger.warning(
                "commit_parse_failed",
                sha=sha,
                operation="parse_changes",
                error=str(e),
            )
            return CommitChanges.empty()

        return self.build_changes(sha, numstat, name_status, full_diff)

    def build_changes(
        self,
        sha: str,
        numstat: list[NumstatEntry],
        name_status: list[NameStatusEntry],
        full_diff: str,
    ) -> CommitChanges:
        rows, warnings = join_file_views(numstat, name_status)
        for warning in warnings:
            self.logger.warning("diff_view_divergence", sha=sha, detail=warning)

        file_changes = [
            FileChange(
                filename=filename,
                status=status,
                insertions=insertions,
                deletions=deletions,
                patch=extract_file_patch(full_diff, filename, self.patch_max_chars),
            )
            for filename, status, insertions, deletions in rows
        ]

        return CommitChanges(
            files_changed=[change.filename for change in file_changes],
            insertions=sum(change.insertions for change in file_changes),
            deletions=sum(change.deletions for change in file_changes),
            file_changes=file_changes,
            summary=generate_change_summary(
                file_changes, full_diff, self.max_insights
            ),
            integrity_warnings=warnings,
        )
