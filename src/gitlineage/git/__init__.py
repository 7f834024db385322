"""Commit graph analysis for gitlineage.

Provides diff parsing, merged feature branch reconstruction and
contributor attribution on top of an abstract git gateway.
"""

from .base import (
    Commit,
    CommitChanges,
    CommitMetadata,
    Contributor,
    ExternalToolError,
    FeatureBranch,
    FileChange,
    GitGateway,
    GitLineageError,
    NameStatusEntry,
    NotFoundError,
    NumstatEntry,
    PartialFailureError,
    PullRequestInfo,
    RepositoryNotFoundError,
    UnsafeOperationError,
)
from .branches import (
    BranchReconstructor,
    extract_branch_name,
    extract_pull_request_info,
)
from .contributors import ContributorAttributor, extract_co_authors
from .diff import DiffParser
from .gateway import GitPythonGateway

__all__ = [
    "BranchReconstructor",
    "ContributorAttributor",
    "DiffParser",
    "GitGateway",
    "GitPythonGateway",
    "Commit",
    "CommitChanges",
    "CommitMetadata",
    "Contributor",
    "FeatureBranch",
    "FileChange",
    "NameStatusEntry",
    "NumstatEntry",
    "PullRequestInfo",
    "extract_branch_name",
    "extract_co_authors",
    "extract_pull_request_info",
    "GitLineageError",
    "NotFoundError",
    "ExternalToolError",
    "RepositoryNotFoundError",
    "UnsafeOperationError",
    "PartialFailureError",
]
