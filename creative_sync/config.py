"""
Application configuration management.

Load order (each layer overrides the previous):
  1. ``config/default.toml``      — committed static defaults
  2. ``config/local.toml``        — optional local overrides (gitignored)
  3. ``.env``                     — local secrets and env overrides (gitignored)
  4. Environment variables        — ``CREATIVE_SYNC_*`` prefix

Entry point: ``load_config(config_path=None) -> AppConfig``

All jobs, the runner and CLI commands receive an ``AppConfig`` instance —
never raw dicts or individual env var lookups scattered through the codebase.
The only exception is OAuth client credentials (``EPIC_CLIENT_ID`` /
``EPIC_CLIENT_SECRET``), which are read from the environment at the point of
use and never stored in a config file.
"""

from __future__ import annotations

import os
import tomllib
from pathlib import Path
from typing import Any, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, field_validator, model_validator

from creative_sync.models.job_run import VALID_JOB_NAMES

VALID_POLICIES = frozenset({"fixed_delay", "staggered_parallel", "unbounded"})

# ── Sub-config models ─────────────────────────────────────────────────────────


class DatabaseConfig(BaseModel):
    """SQLite document store connection settings."""

    model_config = ConfigDict(frozen=True)

    db_path: str = "data/db/creative_sync.db"
    wal_mode: bool = True
    busy_timeout_ms: int = 5000


class AuthConfig(BaseModel):
    """OAuth token endpoint and credential-manager timing."""

    model_config = ConfigDict(frozen=True)

    token_url: str = (
        "https://account-public-service-prod.ol.epicgames.com/account/api/oauth/token"
    )
    token_file: str = "data/auth/token.json"
    refresh_margin_seconds: int = 300
    request_timeout_seconds: float = 30.0

    @field_validator("refresh_margin_seconds")
    @classmethod
    def validate_margin(cls, v: int) -> int:
        if v < 0:
            raise ValueError(f"refresh_margin_seconds must be >= 0, got {v}.")
        return v


class RatePolicyConfig(BaseModel):
    """Throughput policy for one endpoint class.

    ``fixed_delay`` uses ``interval_seconds``; ``staggered_parallel`` uses
    ``max_in_flight`` and ``stagger_seconds``; ``unbounded`` uses only
    ``max_in_flight`` as a local resource ceiling.
    """

    model_config = ConfigDict(frozen=True)

    policy: str = "fixed_delay"
    interval_seconds: float = 1.0
    max_in_flight: int = 1
    stagger_seconds: float = 0.0

    @field_validator("policy")
    @classmethod
    def validate_policy(cls, v: str) -> str:
        if v not in VALID_POLICIES:
            raise ValueError(f"Unknown policy '{v}'. Must be one of {sorted(VALID_POLICIES)}.")
        return v

    @model_validator(mode="after")
    def validate_numbers(self) -> "RatePolicyConfig":
        if self.interval_seconds < 0 or self.stagger_seconds < 0:
            raise ValueError("interval_seconds and stagger_seconds must be >= 0.")
        if self.max_in_flight < 1:
            raise ValueError(f"max_in_flight must be >= 1, got {self.max_in_flight}.")
        if self.policy == "fixed_delay" and self.max_in_flight != 1:
            raise ValueError("fixed_delay policy serializes calls; max_in_flight must be 1.")
        return self


def _default_rate_limits() -> dict[str, RatePolicyConfig]:
    return {
        # Links service: 10 requests/minute, 100 artifacts per request
        "links": RatePolicyConfig(policy="fixed_delay", interval_seconds=6.0),
        # Profile service: 30/min documented; 24 in flight, 2.5 s apart
        "profiles": RatePolicyConfig(
            policy="staggered_parallel", max_in_flight=24, stagger_seconds=2.5
        ),
        # Creator page: documented as unlimited
        "creator_page": RatePolicyConfig(policy="unbounded", max_in_flight=50),
        "discovery": RatePolicyConfig(policy="fixed_delay", interval_seconds=0.1),
    }


class RetryConfig(BaseModel):
    """Bounded retry with exponential backoff for transient failures."""

    model_config = ConfigDict(frozen=True)

    max_retries: int = 3
    backoff_base_seconds: float = 1.0
    backoff_max_seconds: float = 30.0

    @field_validator("max_retries")
    @classmethod
    def validate_retries(cls, v: int) -> int:
        if not 0 <= v <= 10:
            raise ValueError(f"max_retries must be in [0, 10], got {v}.")
        return v


class ApiConfig(BaseModel):
    """Base URLs of the platform APIs."""

    model_config = ConfigDict(frozen=True)

    links_url: str = "https://links-public-service-live.ol.epicgames.com/links/api"
    profiles_url: str = "https://pops-api-live-public.ogs.live.on.epicgames.com/page"
    creator_page_url: str = (
        "https://fn-service-discovery-live-public.ogs.live.on.epicgames.com/api/v1/creator/page"
    )
    discovery_url: str = (
        "https://fn-service-discovery-live-public.ogs.live.on.epicgames.com/api/v2/discovery/surface"
    )
    branch: str = ""
    timeout_seconds: float = 30.0


class SyncConfig(BaseModel):
    """Full-population sync parameters (artifact + author jobs)."""

    model_config = ConfigDict(frozen=True)

    artifact_page_size: int = 100
    author_page_size: int = 1000
    creator_page_limit: int = 100
    cycle_pause_seconds: float = 60.0
    error_retry_seconds: float = 5.0

    @field_validator("artifact_page_size")
    @classmethod
    def validate_artifact_page(cls, v: int) -> int:
        # The bulk links endpoint accepts at most 100 ids per request.
        if not 1 <= v <= 100:
            raise ValueError(f"artifact_page_size must be in [1, 100], got {v}.")
        return v

    @field_validator("author_page_size", "creator_page_limit")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"Page sizes must be >= 1, got {v}.")
        return v


class DiscoveryConfig(BaseModel):
    """Discovery-surface differ settings."""

    model_config = ConfigDict(frozen=True)

    surfaces: list[str] = [
        "CreativeDiscoverySurface_Frontend",
        "CreativeDiscoverySurface_Browse",
    ]
    regions: list[str] = ["NAE", "NAW", "NAC", "EU", "ME", "OCE", "BR", "ASIA"]
    max_pages: int = 2
    results_per_page: int = 50
    interval_minutes: int = 10
    suppress_cold_start_events: bool = True

    @field_validator("max_pages", "results_per_page", "interval_minutes")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"Discovery counts and intervals must be >= 1, got {v}.")
        return v


class SamplerConfig(BaseModel):
    """Player-count sampler settings."""

    model_config = ConfigDict(frozen=True)

    interval_minutes: int = 10

    @field_validator("interval_minutes")
    @classmethod
    def validate_interval(cls, v: int) -> int:
        if v < 1 or 60 % v != 0:
            raise ValueError(
                f"interval_minutes must divide 60 evenly (1, 2, 3, 5, 10, 15, 20, 30, 60), got {v}."
            )
        return v


class RunnerConfig(BaseModel):
    """Which jobs the runner starts and how long shutdown may take."""

    model_config = ConfigDict(frozen=True)

    jobs: list[str] = [
        "artifact_sync",
        "author_sync",
        "catalog_discovery",
        "discovery_tracker",
        "player_count_sampler",
    ]
    shutdown_timeout_seconds: float = 30.0

    @field_validator("jobs")
    @classmethod
    def validate_jobs(cls, v: list[str]) -> list[str]:
        unknown = [name for name in v if name not in VALID_JOB_NAMES]
        if unknown:
            raise ValueError(f"Unknown job(s) {unknown}. Must be among {sorted(VALID_JOB_NAMES)}.")
        return v


class LoggingConfig(BaseModel):
    """Logging output settings.

    The log file rotates at ``max_bytes``, keeping
    ``backup_count`` old files; ``max_bytes = 0`` disables rotation.
    """

    model_config = ConfigDict(frozen=True)

    level: str = "INFO"
    log_file: str = "data/logs/creative_sync.log"
    json_format: bool = False
    max_bytes: int = 10_000_000
    backup_count: int = 5

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        valid = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in valid:
            raise ValueError(f"Log level must be one of {sorted(valid)}, got '{v}'.")
        return v.upper()


class AppConfig(BaseModel):
    """Complete application configuration — the single source of truth.

    It is constructed by ``load_config()`` which merges TOML + .env.
    """

    model_config = ConfigDict(frozen=True)

    database: DatabaseConfig = DatabaseConfig()
    auth: AuthConfig = AuthConfig()
    api: ApiConfig = ApiConfig()
    rate_limits: dict[str, RatePolicyConfig] = _default_rate_limits()
    retry: RetryConfig = RetryConfig()
    sync: SyncConfig = SyncConfig()
    discovery: DiscoveryConfig = DiscoveryConfig()
    sampler: SamplerConfig = SamplerConfig()
    runner: RunnerConfig = RunnerConfig()
    logging: LoggingConfig = LoggingConfig()
    debug: bool = False


# ── Loader ────────────────────────────────────────────────────────────────────

_PROJECT_ROOT = Path(__file__).parent.parent


def _find_project_root() -> Path:
    """Walk up from this file to find the project root (contains pyproject.toml)."""
    candidate = Path(__file__).parent
    for _ in range(5):
        if (candidate / "pyproject.toml").exists():
            return candidate
        candidate = candidate.parent
    return _PROJECT_ROOT


def load_config(config_path: Optional[Path] = None) -> AppConfig:
    """Load and merge application configuration.

    Args:
        config_path: Explicit path to a TOML config file. Defaults to
            ``<project_root>/config/default.toml``.

    Returns:
        Fully validated ``AppConfig`` instance.

    Raises:
        FileNotFoundError: If the specified ``config_path`` does not exist.
        pydantic.ValidationError: If merged config values fail validation.
    """
    root = _find_project_root()

    # 1. Load .env file (silently skip if missing)
    load_dotenv(dotenv_path=root / ".env", override=False)

    # 2. Load TOML config
    if config_path is None:
        config_path = root / "config" / "default.toml"

    config_path = Path(config_path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Config file not found: {config_path}\n"
            "Create config/default.toml or pass --config."
        )

    with open(config_path, "rb") as f:
        raw: dict[str, Any] = tomllib.load(f)

    local_config_path = config_path.parent / "local.toml"
    if local_config_path.exists():
        with open(local_config_path, "rb") as f:
            local_raw: dict[str, Any] = tomllib.load(f)
        raw = _deep_merge(raw, local_raw)

    # 3. Apply CREATIVE_SYNC_* environment variable overrides
    raw = _apply_env_overrides(raw)

    # 4. Build and validate AppConfig
    return _build_app_config(raw)


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge ``override`` into ``base``."""
    result = dict(base)
    for key, val in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(val, dict):
            result[key] = _deep_merge(result[key], val)
        else:
            result[key] = val
    return result


def _apply_env_overrides(raw: dict[str, Any]) -> dict[str, Any]:
    """Apply CREATIVE_SYNC_* env vars to the raw config dict.

    Supported overrides:
      CREATIVE_SYNC_DB_PATH     → raw["database"]["db_path"]
      CREATIVE_SYNC_TOKEN_FILE  → raw["auth"]["token_file"]
      CREATIVE_SYNC_LOG_LEVEL   → raw["logging"]["level"]
      CREATIVE_SYNC_DEBUG       → raw["debug"]
      FORTNITE_BRANCH           → raw["api"]["branch"]
    """
    if db_path := os.environ.get("CREATIVE_SYNC_DB_PATH"):
        raw.setdefault("database", {})["db_path"] = db_path

    if token_file := os.environ.get("CREATIVE_SYNC_TOKEN_FILE"):
        raw.setdefault("auth", {})["token_file"] = token_file

    if log_level := os.environ.get("CREATIVE_SYNC_LOG_LEVEL"):
        raw.setdefault("logging", {})["level"] = log_level

    if debug := os.environ.get("CREATIVE_SYNC_DEBUG"):
        raw["debug"] = debug.lower() in ("1", "true", "yes")

    if branch := os.environ.get("FORTNITE_BRANCH"):
        raw.setdefault("api", {})["branch"] = branch

    return raw


def _build_app_config(raw: dict[str, Any]) -> AppConfig:
    """Map raw TOML dict to ``AppConfig`` model structure.

    Rate-limit classes in the TOML are merged over the built-in defaults, so a
    local file may tune one class without restating the others.
    """
    project = raw.pop("project", {})

    rate_limits = {
        name: policy.model_dump() for name, policy in _default_rate_limits().items()
    }
    for name, values in raw.get("rate_limits", {}).items():
        rate_limits[name] = {**rate_limits.get(name, {}), **values}

    return AppConfig(
        database=DatabaseConfig(**raw.get("database", {})),
        auth=AuthConfig(**raw.get("auth", {})),
        api=ApiConfig(**raw.get("api", {})),
        rate_limits={name: RatePolicyConfig(**vals) for name, vals in rate_limits.items()},
        retry=RetryConfig(**raw.get("retry", {})),
        sync=SyncConfig(**raw.get("sync", {})),
        discovery=DiscoveryConfig(**raw.get("discovery", {})),
        sampler=SamplerConfig(**raw.get("sampler", {})),
        runner=RunnerConfig(**raw.get("runner", {})),
        logging=LoggingConfig(**raw.get("logging", {})),
        debug=raw.get("debug", project.get("debug", False)),
    )
