"""Contributor attribution for reconstructed feature branches."""

import re
from typing import Any

from gitlineage.logging import component_logger

from .base import Commit, Contributor

CO_AUTHOR_PATTERN = re.compile(r"Co-authored-by:\s*([^<]+)<([^>]+)>", re.IGNORECASE)


def extract_co_authors(message: str) -> list[tuple[str, str]]:
    """Return (name, email) pairs from every Co-authored-by trailer."""
    return [
        (match.group(1).strip(), match.group(2).strip())
        for match in CO_AUTHOR_PATTERN.finditer(message)
    ]


def contributor_sort_key(contributor: Contributor) -> tuple[int, int, int, str, str]:
    """Authors first, then commit count, then lines changed, then identity."""
    return (
        0 if contributor.role == "author" else 1,
        -contributor.commit_count,
        -(contributor.lines_added + contributor.lines_removed),
        contributor.name.casefold(),
        contributor.email.casefold(),
    )


class ContributorAttributor:
    """Aggregates authorship, co-authorship and merge roles per branch."""

    def __init__(self, logger: Any | None = None) -> None:
        self.logger = component_logger("contributors", logger)

    def extract_contributors(
        self, commits: list[Commit], merge_commit: Commit
    ) -> list[Contributor]:
        contributors: dict[tuple[str, str], Contributor] = {}

        merger = Contributor(
            name=merge_commit.author,
            email=merge_commit.author_email,
            commit_count=0,
            lines_added=0,
            lines_removed=0,
            role="merger",
        )
        contributors[merger.key] = merger

        for commit in commits:
            key = (commit.author, commit.author_email)
            contributor = contributors.get(key)
            if contributor is None:
                contributor = Contributor(
                    name=commit.author,
                    email=commit.author_email,
                    commit_count=0,
                    lines_added=0,
                    lines_removed=0,
                    role="author",
                )
                contributors[key] = contributor

            contributor.commit_count += 1
            contributor.lines_added += commit.changes.insertions
            contributor.lines_removed += commit.changes.deletions
            if contributor.role == "merger":
                contributor.role = "author"

            for name, email in extract_co_authors(commit.message):
                co_author = contributors.get((name, email))
                if co_author is None:
                    contributors[(name, email)] = Contributor(
                        name=name,
                        email=email,
                        commit_count=0,
                        lines_added=0,
                        lines_removed=0,
                        role="co-author",
                    )
                elif co_author.role != "author":
                    co_author.role = "co-author"

        ordered = sorted(contributors.values(), key=contributor_sort_key)
        self.logger.debug(
            "contributors_extracted",
            merge_sha=merge_commit.sha,
            commits=len(commits),
            contributors=len(ordered),
        )
        return ordered
