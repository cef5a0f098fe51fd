"""Configuration management service with Pydantic Settings.

This module provides centralized configuration management for the
stage guard, loading and validating environment variables at startup.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from functools import lru_cache
from typing import Annotated, Literal

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from pump_stage_guard.checks.models import WRAPPED_SOL_MINT, LiquidityConfig
from pump_stage_guard.checks.velocity import VelocityThresholds
from pump_stage_guard.lifecycle.evaluator import (
    DEFAULT_RETRY_BACKOFF_MS,
    BondedConfig,
    EvaluatorConfig,
    ListedConfig,
    PreBondConfig,
)

_ENV_FILE = ".env"
_ENV_FILE_ENCODING = "utf-8"


def _validate_http_url(v: str) -> str:
    if not v.startswith(("http://", "https://")):
        raise ValueError("URL must be an HTTP(S) endpoint")
    return v.rstrip("/")


class RedisSettings(BaseSettings):
    """Redis connection settings."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    enabled: bool = Field(
        default=True,
        alias="REDIS_ENABLED",
        description="Back the creator blacklist with Redis",
    )
    url: str = Field(
        default="redis://localhost:6379",
        alias="REDIS_URL",
        description="Redis connection string",
    )
    blacklist_key: str = Field(
        default="pump_stage_guard:creator_blacklist",
        alias="REDIS_BLACKLIST_KEY",
        description="Redis set holding blacklisted creator addresses",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate Redis URL format."""
        if not v.startswith(("redis://", "rediss://")):
            raise ValueError("REDIS_URL must start with redis:// or rediss://")
        return v


class SolanaSettings(BaseSettings):
    """Solana RPC settings for ledger reads."""

    model_config = SettingsConfigDict(env_prefix="SOLANA_", extra="ignore")

    rpc_url: str = Field(
        default="https://api.mainnet-beta.solana.com",
        alias="SOLANA_RPC_URL",
        description="Solana JSON-RPC endpoint",
    )
    commitment: Literal["processed", "confirmed", "finalized"] = Field(
        default="confirmed",
        alias="SOLANA_COMMITMENT",
        description="Commitment level for account reads",
    )

    @field_validator("rpc_url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate RPC URL format."""
        return _validate_http_url(v)


class RoutingSettings(BaseSettings):
    """Swap-routing service settings."""

    model_config = SettingsConfigDict(env_prefix="ROUTING_", extra="ignore")

    jupiter_api_url: str = Field(
        default="https://lite-api.jup.ag/swap/v1",
        alias="ROUTING_JUPITER_API_URL",
        description="Jupiter swap API base URL",
    )
    reference_mint: str = Field(
        default=WRAPPED_SOL_MINT,
        alias="ROUTING_REFERENCE_MINT",
        description="Mint that routes and liquidity are measured from",
    )
    probe_amount_sol: float = Field(
        default=1.0,
        alias="ROUTING_PROBE_AMOUNT_SOL",
        gt=0.0,
        le=1000.0,
        description="Size of the liquidity probe quote (SOL)",
    )
    slippage_bps: int = Field(
        default=100,
        alias="ROUTING_SLIPPAGE_BPS",
        ge=1,
        le=10_000,
        description="Slippage tolerance passed to quote requests",
    )
    request_timeout_seconds: float = Field(
        default=5.0,
        alias="ROUTING_REQUEST_TIMEOUT_SECONDS",
        gt=0.0,
        le=60.0,
        description="HTTP timeout for a single routing request",
    )
    wallet: str | None = Field(
        default=None,
        alias="ROUTING_WALLET",
        description="Wallet context; liquidity is only probed when set",
    )

    @field_validator("jupiter_api_url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        return _validate_http_url(v)


class IngestSettings(BaseSettings):
    """Launch and trade stream settings."""

    model_config = SettingsConfigDict(env_prefix="INGEST_", extra="ignore")

    enabled: bool = Field(
        default=True,
        alias="INGEST_ENABLED",
        description="Connect to the PumpPortal stream on start",
    )
    pumpportal_ws_url: str = Field(
        default="wss://pumpportal.fun/api/data",
        alias="INGEST_PUMPPORTAL_WS_URL",
        description="PumpPortal WebSocket URL",
    )

    @field_validator("pumpportal_ws_url")
    @classmethod
    def validate_ws_url(cls, v: str) -> str:
        """Validate WebSocket URL format."""
        if not v.startswith(("ws://", "wss://")):
            raise ValueError("WebSocket URL must start with ws:// or wss://")
        return v


class PreBondSettings(BaseSettings):
    """PRE_BOND stage policy."""

    model_config = SettingsConfigDict(env_prefix="PREBOND_", extra="ignore")

    min_name_length: int = Field(default=3, alias="PREBOND_MIN_NAME_LENGTH", ge=1, le=100)
    max_name_length: int = Field(default=50, alias="PREBOND_MAX_NAME_LENGTH", ge=1, le=200)
    max_symbol_length: int = Field(default=10, alias="PREBOND_MAX_SYMBOL_LENGTH", ge=1, le=50)
    require_image: bool = Field(default=True, alias="PREBOND_REQUIRE_IMAGE")
    require_socials: bool = Field(
        default=False,
        alias="PREBOND_REQUIRE_SOCIALS",
        description="Fail tokens without social links",
    )
    check_creator_history: bool = Field(default=True, alias="PREBOND_CHECK_CREATOR_HISTORY")
    min_creator_age_minutes: int = Field(
        default=30,
        alias="PREBOND_MIN_CREATOR_AGE_MINUTES",
        ge=0,
        le=7 * 24 * 60,
        description="Minimum creator wallet age, when metadata reports it",
    )
    skip_dead_hours: bool = Field(
        default=True,
        alias="PREBOND_SKIP_DEAD_HOURS",
        description="Reject launches during the UTC dead-hours window",
    )
    dead_hours_start: int = Field(default=2, alias="PREBOND_DEAD_HOURS_START", ge=0, le=23)
    dead_hours_end: int = Field(default=8, alias="PREBOND_DEAD_HOURS_END", ge=0, le=23)
    min_score: float = Field(
        default=4.0,
        alias="PREBOND_MIN_SCORE",
        ge=1.0,
        le=7.0,
        description="Minimum pre-bond score on the 1-7 scale",
    )

    @model_validator(mode="after")
    def validate_ranges(self) -> PreBondSettings:
        if self.min_name_length > self.max_name_length:
            raise ValueError("PREBOND_MIN_NAME_LENGTH must be <= PREBOND_MAX_NAME_LENGTH")
        return self


class BondedSettings(BaseSettings):
    """BONDED_ON_PUMP stage policy."""

    model_config = SettingsConfigDict(env_prefix="BONDED_", extra="ignore")

    max_wait_seconds: int = Field(
        default=300,
        alias="BONDED_MAX_WAIT_SECONDS",
        ge=10,
        le=3600,
        description="How long to wait for an AMM pool before dropping",
    )
    track_unique_wallets: bool = Field(default=True, alias="BONDED_TRACK_UNIQUE_WALLETS")
    min_unique_wallets: int = Field(default=3, alias="BONDED_MIN_UNIQUE_WALLETS", ge=0, le=1000)
    min_observation_seconds: int = Field(
        default=60,
        alias="BONDED_MIN_OBSERVATION_SECONDS",
        ge=0,
        le=3600,
        description="Observation time before the unique-wallet minimum applies",
    )
    creator_behavior_check: bool = Field(default=True, alias="BONDED_CREATOR_BEHAVIOR_CHECK")


class ListedSettings(BaseSettings):
    """RAYDIUM_LISTED stage policy."""

    model_config = SettingsConfigDict(env_prefix="LISTED_", extra="ignore")

    min_liquidity_sol: float = Field(
        default=10.0,
        alias="LISTED_MIN_LIQUIDITY_SOL",
        ge=0.0,
        description="Minimum estimated pool liquidity (SOL)",
    )
    max_liquidity_sol: float | None = Field(
        default=None,
        alias="LISTED_MAX_LIQUIDITY_SOL",
        ge=0.0,
        description="Optional maximum estimated pool liquidity (SOL)",
    )
    check_authorities: bool = Field(default=True, alias="LISTED_CHECK_AUTHORITIES")

    @model_validator(mode="after")
    def validate_liquidity_bounds(self) -> ListedSettings:
        if self.max_liquidity_sol is not None and self.max_liquidity_sol < self.min_liquidity_sol:
            raise ValueError("LISTED_MAX_LIQUIDITY_SOL must be >= LISTED_MIN_LIQUIDITY_SOL")
        return self


class CreatorSettings(BaseSettings):
    """Creator behavior analyzer settings."""

    model_config = SettingsConfigDict(env_prefix="CREATOR_", extra="ignore")

    rapid_deployment_threshold: int = Field(
        default=3,
        alias="CREATOR_RAPID_DEPLOYMENT_THRESHOLD",
        ge=1,
        le=1000,
        description="Launches within the window before each new one adds risk",
    )
    rapid_deployment_penalty: float = Field(default=0.4, alias="CREATOR_RAPID_DEPLOYMENT_PENALTY", ge=0.0, le=10.0)
    suspicious_risk_threshold: float = Field(default=0.3, alias="CREATOR_SUSPICIOUS_RISK_THRESHOLD", ge=0.0, le=10.0)
    auto_blacklist_risk: float = Field(
        default=0.7,
        alias="CREATOR_AUTO_BLACKLIST_RISK",
        ge=0.0,
        le=10.0,
        description="Risk score above which a creator is treated as blacklisted",
    )
    ttl_hours: int = Field(default=24, alias="CREATOR_TTL_HOURS", ge=1, le=24 * 30)
    sweep_interval_seconds: int = Field(default=60, alias="CREATOR_SWEEP_INTERVAL_SECONDS", ge=1, le=3600)


class VelocitySettings(BaseSettings):
    """Velocity tracker settings."""

    model_config = SettingsConfigDict(env_prefix="VELOCITY_", extra="ignore")

    window_minutes: int = Field(default=10, alias="VELOCITY_WINDOW_MINUTES", ge=1, le=120)
    min_unique_wallet_ratio: float = Field(default=0.3, alias="VELOCITY_MIN_UNIQUE_WALLET_RATIO", ge=0.0, le=1.0)
    min_events_for_diversity: int = Field(default=5, alias="VELOCITY_MIN_EVENTS_FOR_DIVERSITY", ge=0, le=10_000)
    max_events_per_minute: float = Field(default=15.0, alias="VELOCITY_MAX_EVENTS_PER_MINUTE", gt=0.0)
    min_amount_cv: float = Field(default=0.1, alias="VELOCITY_MIN_AMOUNT_CV", ge=0.0, le=10.0)
    min_events_for_uniformity: int = Field(default=3, alias="VELOCITY_MIN_EVENTS_FOR_UNIFORMITY", ge=2, le=10_000)
    no_activity_minutes: int = Field(default=5, alias="VELOCITY_NO_ACTIVITY_MINUTES", ge=1, le=120)
    ttl_minutes: int = Field(default=60, alias="VELOCITY_TTL_MINUTES", ge=1, le=24 * 60)
    sweep_interval_seconds: int = Field(default=60, alias="VELOCITY_SWEEP_INTERVAL_SECONDS", ge=1, le=3600)


class EvaluatorSettings(BaseSettings):
    """Retry bookkeeping and collaborator bounds."""

    model_config = SettingsConfigDict(env_prefix="EVALUATOR_", extra="ignore")

    max_attempts: int = Field(default=5, alias="EVALUATOR_MAX_ATTEMPTS", ge=1, le=100)
    retry_window_seconds: int = Field(
        default=600,
        alias="EVALUATOR_RETRY_WINDOW_SECONDS",
        ge=10,
        le=24 * 3600,
        description="How long a candidate may sit in one stage",
    )
    retry_backoff_ms: Annotated[tuple[int, ...], NoDecode] = Field(
        default=DEFAULT_RETRY_BACKOFF_MS,
        alias="EVALUATOR_RETRY_BACKOFF_MS",
        description="Retry delays in ms (comma-separated); the last value repeats",
    )
    collaborator_timeout_seconds: float = Field(
        default=1.8,
        alias="EVALUATOR_COLLABORATOR_TIMEOUT_SECONDS",
        gt=0.0,
        le=60.0,
        description="Upper bound for each external call made by a check",
    )

    @field_validator("retry_backoff_ms", mode="before")
    @classmethod
    def _parse_backoff(cls, v: object) -> tuple[int, ...]:
        if isinstance(v, str):
            v = [p.strip() for p in v.split(",") if p.strip()]
        if isinstance(v, int):
            v = [v]
        if not isinstance(v, (list, tuple)):
            raise TypeError("Invalid EVALUATOR_RETRY_BACKOFF_MS type")
        values = tuple(int(x) for x in v)
        if not values:
            raise ValueError("EVALUATOR_RETRY_BACKOFF_MS must not be empty")
        if any(x <= 0 for x in values):
            raise ValueError("EVALUATOR_RETRY_BACKOFF_MS values must be > 0")
        if any(b < a for a, b in zip(values, values[1:])):
            raise ValueError("EVALUATOR_RETRY_BACKOFF_MS must be non-decreasing")
        return values


class PipelineSettings(BaseSettings):
    """Scheduler settings."""

    model_config = SettingsConfigDict(env_prefix="PIPELINE_", extra="ignore")

    process_interval_seconds: float = Field(
        default=2.0,
        alias="PIPELINE_PROCESS_INTERVAL_SECONDS",
        ge=0.1,
        le=60.0,
        description="How often due candidates are evaluated",
    )
    max_concurrent_evaluations: int = Field(
        default=10,
        alias="PIPELINE_MAX_CONCURRENT_EVALUATIONS",
        ge=1,
        le=1000,
    )
    max_candidate_age_minutes: int = Field(
        default=30,
        alias="PIPELINE_MAX_CANDIDATE_AGE_MINUTES",
        ge=1,
        le=24 * 60,
        description="Candidates older than this are aged out",
    )
    cleanup_interval_seconds: int = Field(default=60, alias="PIPELINE_CLEANUP_INTERVAL_SECONDS", ge=1, le=3600)
    stats_interval_seconds: int = Field(default=300, alias="PIPELINE_STATS_INTERVAL_SECONDS", ge=5, le=24 * 3600)
    ready_queue_size: int = Field(default=100, alias="PIPELINE_READY_QUEUE_SIZE", ge=1, le=100_000)


class Settings(BaseSettings):
    """Main application settings.

    Loads configuration from environment variables with support for
    .env files via python-dotenv.

    Example:
        ```python
        from pump_stage_guard.config import get_settings

        settings = get_settings()
        print(settings.routing.jupiter_api_url)
        print(settings.log_level)
        ```
    """

    model_config = SettingsConfigDict(
        env_file=_ENV_FILE,
        env_file_encoding=_ENV_FILE_ENCODING,
        extra="ignore",
    )

    # NOTE: Each nested BaseSettings must be given the same env_file, otherwise it
    # will only read from the process environment (and ignore `.env`).
    redis: RedisSettings = Field(
        default_factory=lambda: RedisSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    solana: SolanaSettings = Field(
        default_factory=lambda: SolanaSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    routing: RoutingSettings = Field(
        default_factory=lambda: RoutingSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    ingest: IngestSettings = Field(
        default_factory=lambda: IngestSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    pre_bond: PreBondSettings = Field(
        default_factory=lambda: PreBondSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    bonded: BondedSettings = Field(
        default_factory=lambda: BondedSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    listed: ListedSettings = Field(
        default_factory=lambda: ListedSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    creator: CreatorSettings = Field(
        default_factory=lambda: CreatorSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    velocity: VelocitySettings = Field(
        default_factory=lambda: VelocitySettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    evaluator: EvaluatorSettings = Field(
        default_factory=lambda: EvaluatorSettings(
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
    blacklist_file: str | None = Field(
        default=None,
        alias="BLACKLIST_FILE",
        description="JSON array of creator addresses merged into the blacklist on start",
    )

    def get_logging_level(self) -> int:
        """Get the numeric logging level."""
        level: int = getattr(logging, self.log_level)
        return level

    def velocity_thresholds(self) -> VelocityThresholds:
        v = self.velocity
        return VelocityThresholds(
            window=timedelta(minutes=v.window_minutes),
            min_unique_wallet_ratio=v.min_unique_wallet_ratio,
            min_events_for_diversity=v.min_events_for_diversity,
            max_events_per_minute=v.max_events_per_minute,
            min_amount_cv=v.min_amount_cv,
            min_events_for_uniformity=v.min_events_for_uniformity,
            no_activity_after=timedelta(minutes=v.no_activity_minutes),
        )

    def evaluator_config(self) -> EvaluatorConfig:
        """Build the evaluator's stage policies from the settings groups."""
        p = self.pre_bond
        b = self.bonded
        listed = self.listed
        return EvaluatorConfig(
            pre_bond=PreBondConfig(
                min_name_length=p.min_name_length,
                max_name_length=p.max_name_length,
                max_symbol_length=p.max_symbol_length,
                require_image=p.require_image,
                require_socials=p.require_socials,
                check_creator_history=p.check_creator_history,
                min_creator_age=timedelta(minutes=p.min_creator_age_minutes),
                auto_blacklist_risk=self.creator.auto_blacklist_risk,
                skip_dead_hours=p.skip_dead_hours,
                dead_hours_start=p.dead_hours_start,
                dead_hours_end=p.dead_hours_end,
                min_prebond_score=p.min_score,
            ),
            bonded=BondedConfig(
                max_wait=timedelta(seconds=b.max_wait_seconds),
                track_unique_wallets=b.track_unique_wallets,
                min_unique_wallets=b.min_unique_wallets,
                min_observation=timedelta(seconds=b.min_observation_seconds),
                creator_behavior_check=b.creator_behavior_check,
            ),
            listed=ListedConfig(
                liquidity=LiquidityConfig(
                    min_liquidity=listed.min_liquidity_sol,
                    max_liquidity=listed.max_liquidity_sol,
                ),
                route_wallet=self.routing.wallet,
                check_authorities=listed.check_authorities,
            ),
            retry_backoff_ms=self.evaluator.retry_backoff_ms,
            collaborator_timeout_seconds=self.evaluator.collaborator_timeout_seconds,
        )

    def redacted_summary(self) -> dict[str, str | dict[str, str]]:
        """Get a summary of settings with secrets redacted.

        Returns:
            Dictionary of settings with sensitive values masked.
        """
        return {
            "redis_url": self._redact_url(self.redis.url),
            "solana": {
                "rpc_url": self._redact_query(self.solana.rpc_url),
                "commitment": self.solana.commitment,
            },
            "routing": {
                "jupiter_api_url": self.routing.jupiter_api_url,
                "reference_mint": self.routing.reference_mint,
                "wallet": "(set)" if self.routing.wallet else "(not set)",
            },
            "ingest": {
                "enabled": str(self.ingest.enabled),
                "pumpportal_ws_url": self._redact_query(self.ingest.pumpportal_ws_url),
            },
            "evaluator": {
                "max_attempts": str(self.evaluator.max_attempts),
                "retry_backoff_ms": ",".join(str(x) for x in self.evaluator.retry_backoff_ms),
                "collaborator_timeout_seconds": str(self.evaluator.collaborator_timeout_seconds),
            },
            "listed": {
                "min_liquidity_sol": str(self.listed.min_liquidity_sol),
                "max_liquidity_sol": str(self.listed.max_liquidity_sol) if self.listed.max_liquidity_sol else "(not set)",
            },
            "pipeline": {
                "process_interval_seconds": str(self.pipeline.process_interval_seconds),
                "max_concurrent_evaluations": str(self.pipeline.max_concurrent_evaluations),
            },
            "log_level": self.log_level,
        }

    @staticmethod
    def _redact_url(url: str) -> str:
        """Redact password from URL if present."""
        if "@" in url and "://" in url:
            protocol_end = url.index("://") + 3
            at_pos = url.index("@")
            creds_part = url[protocol_end:at_pos]
            if ":" in creds_part:
                username = creds_part.split(":")[0]
                return f"{url[:protocol_end]}{username}:***@{url[at_pos + 1 :]}"
        return url

    @staticmethod
    def _redact_query(url: str) -> str:
        """RPC providers commonly carry API keys in the query string."""
        if "?" in url:
            return url.split("?", 1)[0] + "?***"
        return url


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get the application settings singleton.

    Returns:
        The Settings instance.

    Raises:
        ValidationError: If environment variables have invalid values.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache.

    Useful for testing when you need to reload settings with
    different environment variables.
    """
    get_settings.cache_clear()
