"""Replacement commit message suggestions."""

import posixpath
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field

from gitlineage.git.base import CommitChanges, FileChange, GitGateway
from gitlineage.git.diff import DiffParser

LANGUAGES = {
    ".ts": "typescript",
    ".js": "javascript",
    ".py": "python",
    ".java": "java",
    ".go": "go",
    ".rs": "rust",
    ".cpp": "cpp",
    ".c": "c",
    ".cs": "csharp",
    ".rb": "ruby",
    ".php": "php",
    ".swift": "swift",
    ".kt": "kotlin",
    ".md": "markdown",
    ".json": "json",
    ".yml": "yaml",
    ".yaml": "yaml",
    ".xml": "xml",
    ".html": "html",
    ".css": "css",
    ".scss": "scss",
    ".sql": "sql",
    ".sh": "shell",
}

TEST_SUFFIXES = (".test.ts", ".spec.ts", ".test.js", "_test.py")

_CONVENTIONAL = re.compile(r"^(\w+)(\([\w\s]+\))?: .+")


@dataclass(frozen=True)
class MessageSuggestion:
    original: str
    suggested: str
    type: str
    scope: str
    subject: str
    body: list[str] = field(default_factory=list)
    reasoning: str = ""
    confidence: float = 0.5


class MessageSuggester(ABC):
    """Proposes a replacement message for a commit."""

    @abstractmethod
    async def suggest(self, sha: str) -> MessageSuggestion:
        pass


def detect_language(filename: str) -> str:
    return LANGUAGES.get(posixpath.splitext(filename)[1].lower(), "unknown")


def _commit_type(
    files: list[FileChange], changes: CommitChanges, original: str
) -> tuple[str, str]:
    names = [f.filename for f in files]
    has_tests = any("test" in n or "spec" in n for n in names)
    has_docs = any("README" in n or ".md" in n for n in names)

    if all(f.status == "added" for f in files) and len(files) > 3:
        return "feat", "Multiple new files suggest a new feature"
    if has_tests and not has_docs:
        return "test", "Changes include test files"
    if has_docs and len(files) == 1:
        return "docs", "Only documentation files changed"
    if "fix" in original.lower():
        return "fix", "Original message indicates a fix"
    if changes.deletions > changes.insertions * 2:
        return "refactor", "Significant code removal suggests refactoring"
    return "chore", ""


def _scope(files: list[FileChange]) -> str:
    directories = {posixpath.dirname(f.filename) for f in files}
    if len(directories) == 1:
        segments = [s for s in directories.pop().split("/") if s]
        return segments[0] if segments else ""
    languages = {detect_language(f.filename) for f in files}
    if len(languages) == 1:
        return languages.pop()
    return ""


def _action(files: list[FileChange], changes: CommitChanges) -> str:
    if all(f.status == "added" for f in files):
        return "add"
    if all(f.status == "deleted" for f in files):
        return "remove"
    if any(f.status == "added" for f in files):
        return "implement"
    if changes.deletions > changes.insertions:
        return "refactor"
    return "update"


def _target(files: list[FileChange]) -> str:
    names = [f.filename for f in files]
    if all(n.endswith(".md") for n in names):
        return "documentation"
    if any(n.endswith(TEST_SUFFIXES) for n in names):
        return "tests"
    if len(names) == 1:
        return posixpath.splitext(posixpath.basename(names[0]))[0]
    top_dirs = {n.split("/")[0] for n in names}
    return top_dirs.pop() if len(top_dirs) == 1 else "multiple modules"


def _confidence(original: str, files: list[FileChange]) -> float:
    confidence = 0.5
    if _CONVENTIONAL.match(original):
        confidence += 0.2
    if len(original) < 20:
        confidence -= 0.1
    if all(f.status == "added" for f in files):
        confidence += 0.1
    if all("test" in f.filename for f in files):
        confidence += 0.1
    return max(0.1, min(1.0, round(confidence, 2)))


def suggest_message(original: str, changes: CommitChanges) -> MessageSuggestion:
    """Build a conventional-commit message from a commit's changes."""
    files = changes.file_changes
    original = original.strip()
    if not files:
        subject = original.splitlines()[0] if original else "update"
        return MessageSuggestion(
            original=original,
            suggested=f"chore: {subject}",
            type="chore",
            scope="",
            subject=subject,
            reasoning="No file changes available",
            confidence=0.1,
        )

    commit_type, reasoning = _commit_type(files, changes, original)
    scope = _scope(files)
    subject = f"{_action(files, changes)} {_target(files)}".lower()

    body: list[str] = []
    if len(files) > 5:
        body.append(
            f"Modified {len(files)} files with {changes.insertions} insertions "
            f"and {changes.deletions} deletions"
        )
    added = [f.filename for f in files if f.status == "added"]
    if added and len(added) <= 3:
        body.append(f"Added: {', '.join(added)}")

    header = f"{commit_type}({scope}): {subject}" if scope else f"{commit_type}: {subject}"
    suggested = header + ("\n\n" + "\n".join(body) if body else "")

    return MessageSuggestion(
        original=original,
        suggested=suggested,
        type=commit_type,
        scope=scope,
        subject=subject,
        body=body,
        reasoning=reasoning,
        confidence=_confidence(original, files),
    )


class HeuristicMessageSuggester(MessageSuggester):
    """Suggests conventional-commit messages from file-level changes."""

    def __init__(self, gateway: GitGateway, diff_parser: DiffParser | None = None) -> None:
        self.gateway = gateway
        self.diff_parser = diff_parser or DiffParser(gateway)

    async def suggest(self, sha: str) -> MessageSuggestion:
        commit = await self.gateway.get_commit(sha)
        changes = await self.diff_parser.parse_changes(sha)
        return suggest_message(commit.message, changes)
