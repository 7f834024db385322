"""Safety-gated rewriting of local commit messages."""

from .executor import HistoryRewriter
from .models import (
    BackupStrategy,
    CommitRewriteRequest,
    CommitRewriteResult,
    ImpactAnalysis,
    RewritePlan,
    RewriteResult,
    RewriteState,
    SafetyAssessment,
)
from .safety import SafetyGate
from .suggest import HeuristicMessageSuggester, MessageSuggester, MessageSuggestion
from .tokens import (
    ConfirmationTokenIssuer,
    DigestTokenIssuer,
    NonceTokenIssuer,
    create_token_issuer,
)

__all__ = [
    "HistoryRewriter",
    "SafetyGate",
    "SafetyAssessment",
    "RewritePlan",
    "RewriteResult",
    "RewriteState",
    "CommitRewriteRequest",
    "CommitRewriteResult",
    "BackupStrategy",
    "ImpactAnalysis",
    "MessageSuggester",
    "MessageSuggestion",
    "HeuristicMessageSuggester",
    "ConfirmationTokenIssuer",
    "DigestTokenIssuer",
    "NonceTokenIssuer",
    "create_token_issuer",
]
