"""Confirmation tokens binding a rewrite plan to its execution.

NonceTokenIssuer is the default: an opaque random token held by the issuer,
single use, with an explicit expiry. DigestTokenIssuer reproduces the older
minute-granularity digest; it is deterministic and offers no protection
against a caller who can recompute it, so it only guards against stale plans.
"""

import hashlib
import hmac
import json
import secrets
from abc import ABC, abstractmethod
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .models import RewritePlan

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class IssuedToken:
    token: str
    expires_at: datetime


def plan_fingerprint(plan: "RewritePlan") -> str:
    """Digest of the sorted targets and their proposed messages."""
    payload = sorted((r.sha, r.new_message) for r in plan.commits)
    return hashlib.sha256(json.dumps(payload).encode()).hexdigest()


class ConfirmationTokenIssuer(ABC):
    """Issues and verifies confirmation tokens for rewrite plans."""

    @abstractmethod
    def issue(self, plan: "RewritePlan") -> IssuedToken:
        pass

    @abstractmethod
    def verify(self, plan: "RewritePlan", token: str) -> bool:
        pass


class DigestTokenIssuer(ConfirmationTokenIssuer):
    """Deterministic 16-character digest of sorted hashes and the current minute."""

    def __init__(self, clock: Clock = utc_now) -> None:
        self.clock = clock

    @staticmethod
    def generate(commit_hashes: Sequence[str], now: datetime) -> str:
        data = {
            "commits": sorted(commit_hashes),
            "timestamp": now.astimezone(UTC).strftime("%Y-%m-%dT%H:%M"),
        }
        digest = hashlib.sha256(json.dumps(data, sort_keys=True).encode())
        return digest.hexdigest()[:16]

    def issue(self, plan: "RewritePlan") -> IssuedToken:
        now = self.clock()
        minute = now.replace(second=0, microsecond=0)
        return IssuedToken(
            token=self.generate(plan.target_hashes, now),
            expires_at=minute + timedelta(minutes=1),
        )

    def verify(self, plan: "RewritePlan", token: str) -> bool:
        expected = self.generate(plan.target_hashes, self.clock())
        return hmac.compare_digest(token, expected)


class NonceTokenIssuer(ConfirmationTokenIssuer):
    """Opaque, single-use tokens held by the issuer until they expire."""

    def __init__(self, ttl_seconds: int = 300, clock: Clock = utc_now) -> None:
        self.ttl = timedelta(seconds=ttl_seconds)
        self.clock = clock
        self._issued: dict[str, tuple[str, datetime]] = {}

    def issue(self, plan: "RewritePlan") -> IssuedToken:
        now = self.clock()
        self._purge(now)
        token = secrets.token_urlsafe(24)
        expires_at = now + self.ttl
        self._issued[token] = (plan_fingerprint(plan), expires_at)
        return IssuedToken(token=token, expires_at=expires_at)

    def verify(self, plan: "RewritePlan", token: str) -> bool:
        entry = self._issued.pop(token, None)
        if entry is None:
            return False
        fingerprint, expires_at = entry
        if self.clock() >= expires_at:
            return False
        return hmac.compare_digest(fingerprint, plan_fingerprint(plan))

    def _purge(self, now: datetime) -> None:
        expired = [t for t, (_, expires) in self._issued.items() if now >= expires]
        for token in expired:
            del self._issued[token]


def create_token_issuer(
    scheme: str, ttl_seconds: int = 300, clock: Clock = utc_now
) -> ConfirmationTokenIssuer:
    if scheme == "digest":
        return DigestTokenIssuer(clock=clock)
    if scheme == "nonce":
        return NonceTokenIssuer(ttl_seconds=ttl_seconds, clock=clock)
    raise ValueError(f"Unknown confirmation token scheme: {scheme}")
