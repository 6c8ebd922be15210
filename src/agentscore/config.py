"""Configuration management service with Pydantic Settings.

This module provides centralized configuration management for the
agentscore pipeline, loading and validating environment variables at
startup. Every external collaborator has its own settings group; a group
whose endpoint or credential is missing disables that collaborator rather
than failing the pipeline.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Literal

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_ENV_FILE = ".env"
_ENV_FILE_ENCODING = "utf-8"

IDENTITY_REGISTRY_ADDRESS = "0x8004A169FB4a3325136EB29fA0ceB6D2e539a432"
REPUTATION_REGISTRY_ADDRESS = "0x8004BAa17C55a88189AE136b182e5fdA19dE9b63"


def _validate_http_url(v: str | None) -> str | None:
    if v is None:
        return v
    if not v.startswith(("http://", "https://")):
        raise ValueError("URL must be an HTTP(S) endpoint")
    return v.rstrip("/")


class DatabaseSettings(BaseSettings):
    """Database connection settings."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    url: str = Field(
        alias="DATABASE_URL",
        description="PostgreSQL (or aiosqlite, for local runs) connection string",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate database URL format."""
        if not v.startswith(("postgresql://", "postgresql+asyncpg://", "sqlite+aiosqlite://")):
            raise ValueError("DATABASE_URL must be a PostgreSQL or sqlite+aiosqlite connection string")
        return v


class RedisSettings(BaseSettings):
    """Redis connection settings."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    url: str | None = Field(
        default=None,
        alias="REDIS_URL",
        description="Redis connection string (block header cache)",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str | None) -> str | None:
        """Validate Redis URL format."""
        if v is None:
            return v
        if not v.startswith(("redis://", "rediss://")):
            raise ValueError("REDIS_URL must start with redis:// or rediss://")
        return v


class ChainSettings(BaseSettings):
    """EVM JSON-RPC and contract settings."""

    model_config = SettingsConfigDict(env_prefix="CHAIN_", extra="ignore")

    rpc_url: str | None = Field(
        default=None,
        alias="CHAIN_RPC_URL",
        description="Primary JSON-RPC endpoint (unset disables on-chain metrics)",
    )
    fallback_rpc_url: str | None = Field(
        default=None,
        alias="CHAIN_FALLBACK_RPC_URL",
        description="Fallback JSON-RPC endpoint",
    )
    start_block: int = Field(
        default=0,
        alias="CHAIN_START_BLOCK",
        ge=0,
        description="Height to scan from when a source has no checkpoint",
    )
    block_chunk: int = Field(
        default=2000,
        alias="CHAIN_BLOCK_CHUNK",
        ge=1,
        le=100_000,
        description="Blocks per eth_getLogs window",
    )
    max_windows_per_run: int = Field(
        default=500,
        alias="CHAIN_MAX_WINDOWS_PER_RUN",
        ge=1,
        description="Windows processed per scan invocation before yielding",
    )
    window_delay_seconds: float = Field(
        default=0.2,
        alias="CHAIN_WINDOW_DELAY_SECONDS",
        ge=0.0,
        description="Pause between windows",
    )
    max_retries_per_window: int = Field(
        default=2,
        alias="CHAIN_MAX_RETRIES_PER_WINDOW",
        ge=0,
        le=20,
        description="Retries for a window before it is skipped",
    )
    retry_backoff_seconds: float = Field(
        default=2.0,
        alias="CHAIN_RETRY_BACKOFF_SECONDS",
        ge=0.0,
        description="Linear backoff unit between window retries",
    )
    rpc_timeout_seconds: float = Field(
        default=10.0,
        alias="CHAIN_RPC_TIMEOUT_SECONDS",
        gt=0.0,
        le=120.0,
        description="Timeout applied to every RPC call",
    )
    requests_per_second: float = Field(
        default=25.0,
        alias="CHAIN_REQUESTS_PER_SECOND",
        gt=0.0,
        description="Client-side RPC rate limit",
    )
    wallet_batch_size: int = Field(
        default=10,
        alias="CHAIN_WALLET_BATCH_SIZE",
        ge=1,
        le=100,
        description="Concurrent getAgentWallet calls per batch",
    )
    tasks_address: str | None = Field(
        default=None,
        alias="CHAIN_TASKS_ADDRESS",
        description="Contract emitting TaskCompleted/TaskFailed",
    )
    disputes_address: str | None = Field(
        default=None,
        alias="CHAIN_DISPUTES_ADDRESS",
        description="Contract emitting DisputeOpened/Slashed",
    )
    identity_address: str = Field(
        default=IDENTITY_REGISTRY_ADDRESS,
        alias="CHAIN_IDENTITY_ADDRESS",
        description="Identity registry contract",
    )
    reputation_address: str = Field(
        default=REPUTATION_REGISTRY_ADDRESS,
        alias="CHAIN_REPUTATION_ADDRESS",
        description="Reputation registry contract",
    )

    @field_validator("rpc_url", "fallback_rpc_url")
    @classmethod
    def validate_url(cls, v: str | None) -> str | None:
        """Validate RPC URL format."""
        return _validate_http_url(v)

    @property
    def enabled(self) -> bool:
        """Check if on-chain reads are configured."""
        return self.rpc_url is not None


class SocialSettings(BaseSettings):
    """Social feed API settings."""

    model_config = SettingsConfigDict(env_prefix="SOCIAL_", extra="ignore")

    base_url: str = Field(
        default="https://www.moltbook.com/api/v1",
        alias="SOCIAL_BASE_URL",
        description="Social feed API base URL",
    )
    api_key: SecretStr | None = Field(
        default=None,
        alias="SOCIAL_API_KEY",
        description="Bearer token for the social feed API",
    )
    timeout_seconds: float = Field(
        default=10.0,
        alias="SOCIAL_TIMEOUT_SECONDS",
        gt=0.0,
        le=60.0,
    )
    feed_limit: int = Field(
        default=50,
        alias="SOCIAL_FEED_LIMIT",
        ge=1,
        le=50,
        description="Maximum posts per feed request (provider cap is 50)",
    )
    profile_delay_seconds: float = Field(
        default=2.0,
        alias="SOCIAL_PROFILE_DELAY_SECONDS",
        ge=0.0,
        description="Spacing between serialized profile lookups",
    )
    rate_limit_backoff_seconds: float = Field(
        default=60.0,
        alias="SOCIAL_RATE_LIMIT_BACKOFF_SECONDS",
        ge=0.0,
        description="Cooldown after an HTTP 429 before the single retry",
    )
    comment_cooldown_seconds: float = Field(
        default=21.0,
        alias="SOCIAL_COMMENT_COOLDOWN_SECONDS",
        ge=0.0,
    )
    post_cooldown_seconds: float = Field(
        default=31 * 60.0,
        alias="SOCIAL_POST_COOLDOWN_SECONDS",
        ge=0.0,
    )
    submolt: str = Field(
        default="general",
        alias="SOCIAL_SUBMOLT",
        description="Community that outreach posts are published to",
    )
    reply_scan_posts: int = Field(
        default=20,
        alias="SOCIAL_REPLY_SCAN_POSTS",
        ge=1,
        le=100,
        description="Own posts inspected for wallet replies",
    )

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        return _validate_http_url(v) or v

    @property
    def enabled(self) -> bool:
        """Check if authenticated social calls are possible."""
        return self.api_key is not None


class DebateSettings(BaseSettings):
    """Debate-ranking service settings."""

    model_config = SettingsConfigDict(env_prefix="DEBATE_", extra="ignore")

    base_url: str | None = Field(
        default="https://moltcourt.fun/api",
        alias="DEBATE_BASE_URL",
        description="Debate leaderboard API base URL (unset disables the source)",
    )
    leaderboard_limit: int = Field(
        default=1000,
        alias="DEBATE_LEADERBOARD_LIMIT",
        ge=1,
        le=10_000,
    )
    cache_ttl_seconds: float = Field(
        default=600.0,
        alias="DEBATE_CACHE_TTL_SECONDS",
        ge=0.0,
    )
    failure_ttl_seconds: float = Field(
        default=300.0,
        alias="DEBATE_FAILURE_TTL_SECONDS",
        ge=0.0,
        description="How long a failed leaderboard fetch is remembered",
    )
    timeout_seconds: float = Field(
        default=10.0,
        alias="DEBATE_TIMEOUT_SECONDS",
        gt=0.0,
        le=60.0,
    )

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, v: str | None) -> str | None:
        return _validate_http_url(v)


class FinancialSettings(BaseSettings):
    """Financial-activity service settings."""

    model_config = SettingsConfigDict(env_prefix="FINANCIAL_", extra="ignore")

    base_url: str = Field(
        default="https://api.bankr.bot",
        alias="FINANCIAL_BASE_URL",
    )
    api_key: SecretStr | None = Field(
        default=None,
        alias="FINANCIAL_API_KEY",
        description="Integration key (unset silently disables the financial component)",
    )
    poll_interval_seconds: float = Field(
        default=2.0,
        alias="FINANCIAL_POLL_INTERVAL_SECONDS",
        ge=0.0,
    )
    max_poll_attempts: int = Field(
        default=30,
        alias="FINANCIAL_MAX_POLL_ATTEMPTS",
        ge=1,
        le=1000,
    )
    timeout_seconds: float = Field(
        default=10.0,
        alias="FINANCIAL_TIMEOUT_SECONDS",
        gt=0.0,
        le=60.0,
    )
    cache_ttl_seconds: float = Field(
        default=3600.0,
        alias="FINANCIAL_CACHE_TTL_SECONDS",
        ge=0.0,
    )

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        return _validate_http_url(v) or v

    @property
    def enabled(self) -> bool:
        """Check if the financial source is usable."""
        return self.api_key is not None


class OutreachSettings(BaseSettings):
    """Reply engine limits and message settings."""

    model_config = SettingsConfigDict(env_prefix="OUTREACH_", extra="ignore")

    enabled: bool = Field(
        default=True,
        alias="OUTREACH_ENABLED",
    )
    activity_window_hours: float = Field(
        default=6.0,
        alias="OUTREACH_ACTIVITY_WINDOW_HOURS",
        gt=0.0,
        description="Only reply to agents that posted within this window",
    )
    reply_cooldown_hours: float = Field(
        default=24.0,
        alias="OUTREACH_REPLY_COOLDOWN_HOURS",
        ge=0.0,
    )
    daily_reply_cap: int = Field(
        default=20,
        alias="OUTREACH_DAILY_REPLY_CAP",
        ge=0,
    )
    min_score: int = Field(
        default=600,
        alias="OUTREACH_MIN_SCORE",
        ge=300,
        le=950,
    )
    jitter_min_seconds: float = Field(
        default=2.0,
        alias="OUTREACH_JITTER_MIN_SECONDS",
        ge=0.0,
    )
    jitter_max_seconds: float = Field(
        default=5.0,
        alias="OUTREACH_JITTER_MAX_SECONDS",
        ge=0.0,
    )
    max_candidates: int = Field(
        default=10,
        alias="OUTREACH_MAX_CANDIDATES",
        ge=0,
        description="Top-scored agents considered for a reply per cycle",
    )
    wallet_requests_per_cycle: int = Field(
        default=2,
        alias="OUTREACH_WALLET_REQUESTS_PER_CYCLE",
        ge=0,
    )
    max_cooldown_wait_seconds: float = Field(
        default=60.0,
        alias="OUTREACH_MAX_COOLDOWN_WAIT_SECONDS",
        ge=0.0,
        description="Longest provider cooldown waited out in-cycle; longer ones defer the send",
    )
    leaderboard_url: str = Field(
        default="https://moltscore.xyz",
        alias="OUTREACH_LEADERBOARD_URL",
    )


class AttestationSettings(BaseSettings):
    """Attested scoring service settings."""

    model_config = SettingsConfigDict(env_prefix="ATTESTATION_", extra="ignore")

    mnemonic: SecretStr | None = Field(
        default=None,
        alias="ATTESTATION_MNEMONIC",
        description="Managed signing key phrase (unset uses an ephemeral dev key)",
    )
    host: str = Field(
        default="0.0.0.0",
        alias="ATTESTATION_HOST",
    )
    port: int = Field(
        default=3001,
        alias="ATTESTATION_PORT",
        ge=1,
        le=65535,
    )


class PipelineSettings(BaseSettings):
    """Orchestrator settings."""

    model_config = SettingsConfigDict(env_prefix="PIPELINE_", extra="ignore")

    interval_seconds: float = Field(
        default=900.0,
        alias="PIPELINE_INTERVAL_SECONDS",
        ge=1.0,
        description="Delay between cycle starts",
    )
    discover_limit: int = Field(
        default=50,
        alias="PIPELINE_DISCOVER_LIMIT",
        ge=1,
        le=50,
    )
    scoring_mode: Literal["basic", "enhanced"] = Field(
        default="basic",
        alias="PIPELINE_SCORING_MODE",
    )


class Settings(BaseSettings):
    """Main application settings.

    Loads configuration from environment variables with support for
    .env files via python-dotenv.

    Example:
        ```python
        from agentscore.config import get_settings

        settings = get_settings()
        print(settings.database.url)
        print(settings.pipeline.scoring_mode)
        ```
    """

    model_config = SettingsConfigDict(
        env_file=_ENV_FILE,
        env_file_encoding=_ENV_FILE_ENCODING,
        extra="ignore",
    )

    # NOTE: Each nested BaseSettings must be given the same env_file, otherwise it
    # will only read from the process environment (and ignore `.env`).
    database: DatabaseSettings = Field(
        default_factory=lambda: DatabaseSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    redis: RedisSettings = Field(
        default_factory=lambda: RedisSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    chain: ChainSettings = Field(
        default_factory=lambda: ChainSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    social: SocialSettings = Field(
        default_factory=lambda: SocialSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    debate: DebateSettings = Field(
        default_factory=lambda: DebateSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    financial: FinancialSettings = Field(
        default_factory=lambda: FinancialSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    outreach: OutreachSettings = Field(
        default_factory=lambda: OutreachSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    attestation: AttestationSettings = Field(
        default_factory=lambda: AttestationSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    pipeline: PipelineSettings = Field(
        default_factory=lambda: PipelineSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )

    # Application settings
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        alias="LOG_LEVEL",
        description="Logging level",
    )
    dry_run: bool = Field(
        default=False,
        alias="DRY_RUN",
        description="Compute outreach decisions without posting",
    )

    def get_logging_level(self) -> int:
        """Get the numeric logging level."""
        level: int = getattr(logging, self.log_level)
        return level

    def redacted_summary(self) -> dict[str, str | dict[str, str]]:
        """Get a summary of settings with secrets redacted.

        Returns:
            Dictionary of settings with sensitive values masked.
        """
        return {
            "database_url": self._redact_url(self.database.url),
            "redis_url": self._redact_url(self.redis.url) if self.redis.url else "(not set)",
            "chain": {
                "rpc_url": self._redact_path(self.chain.rpc_url) if self.chain.rpc_url else "(not set)",
                "fallback_rpc_url": (
                    self._redact_path(self.chain.fallback_rpc_url) if self.chain.fallback_rpc_url else "(not set)"
                ),
                "start_block": str(self.chain.start_block),
                "tasks_address": self.chain.tasks_address or "(not set)",
                "disputes_address": self.chain.disputes_address or "(not set)",
                "identity_address": self.chain.identity_address,
            },
            "social": {
                "base_url": self.social.base_url,
                "api_key": "(set)" if self.social.api_key else "(not set)",
            },
            "debate": {
                "base_url": self.debate.base_url or "(not set)",
            },
            "financial": {
                "base_url": self.financial.base_url,
                "api_key": "(set)" if self.financial.api_key else "(not set)",
            },
            "outreach": {
                "enabled": str(self.outreach.enabled),
                "daily_reply_cap": str(self.outreach.daily_reply_cap),
                "min_score": str(self.outreach.min_score),
            },
            "attestation": {
                "mnemonic": "(set)" if self.attestation.mnemonic else "(not set)",
                "port": str(self.attestation.port),
            },
            "scoring_mode": self.pipeline.scoring_mode,
            "interval_seconds": str(self.pipeline.interval_seconds),
            "log_level": self.log_level,
            "dry_run": str(self.dry_run),
        }

    def validate_requirements(self, *, command: Literal["run", "run-once", "serve-attestation"]) -> None:
        """Validate command-specific requirements.

        Missing optional sources only degrade scores; only settings without
        which the command cannot do anything useful are rejected here.
        """
        if command in ("run", "run-once"):
            if self.outreach.enabled and not self.dry_run and not self.social.enabled:
                raise ValueError("SOCIAL_API_KEY is required for outreach (set DRY_RUN=true or OUTREACH_ENABLED=false)")
            if self.outreach.jitter_max_seconds < self.outreach.jitter_min_seconds:
                raise ValueError("OUTREACH_JITTER_MAX_SECONDS must be >= OUTREACH_JITTER_MIN_SECONDS")
        if command == "serve-attestation" and not self.chain.enabled:
            raise ValueError("CHAIN_RPC_URL is required for the attestation service")

    @staticmethod
    def _redact_url(url: str) -> str:
        """Redact password from URL if present."""
        if "@" in url and "://" in url:
            # URL has credentials - redact the password
            protocol_end = url.index("://") + 3
            at_pos = url.index("@")
            creds_part = url[protocol_end:at_pos]
            if ":" in creds_part:
                username = creds_part.split(":")[0]
                return f"{url[:protocol_end]}{username}:***@{url[at_pos + 1 :]}"
        return url

    @staticmethod
    def _redact_path(url: str) -> str:
        """Mask the last path segment, where RPC providers embed API keys."""
        scheme_end = url.find("://") + 3
        slash = url.rfind("/")
        if slash < scheme_end:
            return url
        return f"{url[:slash]}/***"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get the application settings singleton.

    Returns:
        The Settings instance.

    Raises:
        ValidationError: If required environment variables are missing
            or have invalid values.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache.

    Useful for testing when you need to reload settings with
    different environment variables.
    """
    get_settings.cache_clear()
