"""gitlineage configuration module.

All settings support environment variable overrides with the GITLINEAGE_
prefix, e.g. GITLINEAGE_SINCE_DAYS=30.
"""

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class LineageSettings(BaseSettings):
    """Configuration for branch reconstruction and history rewriting."""

    model_config = SettingsConfigDict(
        env_prefix="GITLINEAGE_",
        env_nested_delimiter="__",
    )

    # Analysis settings
    since_days: int = Field(
        default=90,
        description="Default look-back window for merge commit discovery",
    )
    patch_max_chars: int = Field(
        default=5000,
        description="Per-file patch size cap before truncation",
    )
    max_insights: int = Field(
        default=3,
        description="Maximum keyword insights appended to a change summary",
    )
    integration_branch_markers: list[str] = Field(
        default=["develop", "master"],
        description="Merges whose branch name contains any of these are skipped",
    )

    # Safety settings
    protected_branches: list[str] = Field(
        default=["main", "master", "develop", "production", "prod"],
        description="Branches that trigger a warning when rewriting from them",
    )
    blast_radius_threshold: int = Field(
        default=50,
        description="Commits behind HEAD above which a rewrite target is flagged",
    )

    # Confirmation token settings
    token_scheme: Literal["nonce", "digest"] = Field(
        default="nonce",
        description="Confirmation token scheme (nonce or legacy digest)",
    )
    token_ttl_seconds: int = Field(
        default=300,
        description="Lifetime of a nonce confirmation token",
    )

    # Process settings
    git_timeout_seconds: float | None = Field(
        default=None,
        description="Kill git invocations running longer than this",
    )

    # Logging
    log_level: str = Field(
        default="info",
        description="Logging level (debug, info, warning, error)",
    )
    log_format: Literal["json", "console"] = Field(
        default="console",
        description="Log renderer",
    )


# Module-level singleton
settings = LineageSettings()
