"""Configuration management for the release assistant."""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Optional, Tuple


def _env_float(name: str, default: float) -> float:
    return float(os.getenv(name, str(default)))


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


def parse_api_keys(raw: str) -> Tuple[Tuple[str, str, str], ...]:
    """Parse comma-separated ``key:user_id:name`` entries; the name defaults to the user id."""
    entries = []
    for entry in raw.split(","):
        parts = [part.strip() for part in entry.split(":", 2)]
        if len(parts) < 2 or not parts[0] or not parts[1]:
            continue
        name = parts[2] if len(parts) == 3 and parts[2] else parts[1]
        entries.append((parts[0], parts[1], name))
    return tuple(entries)


@dataclass(frozen=True)
class ReasoningConfig:
    """Chat-completions endpoint used as the reasoning engine.

    When ``endpoint`` is set the Azure OpenAI client is used, otherwise the
    plain OpenAI client (``base_url`` may point at any compatible server).
    """

    api_key: str
    model: str = "gpt-4o"
    endpoint: Optional[str] = None
    api_version: str = "2024-02-15-preview"
    base_url: Optional[str] = None
    max_concurrent: int = 50
    max_tokens: int = 4096
    temperature: float = 0.3


@dataclass(frozen=True)
class DistributionConfig:
    """Distribution platform credentials and service URLs."""

    email: str
    password: str
    base_url: str = "https://dashboard2.qa.dittomusic.com"
    releases_url: str = "https://releases.qa.dittomusic.com"
    sales_url: str = "https://sales.dittomusic.com"
    trends_url: str = "https://trends.dittomusic.com"
    basic_auth_user: Optional[str] = None
    basic_auth_pass: Optional[str] = None
    timeout: float = 60.0


@dataclass(frozen=True)
class GenerationConfig:
    """AI music generation service configuration."""

    api_key: str
    base_url: str = "https://api.sunoapi.org"
    model: str = "V4_5ALL"
    callback_url: str = "https://example.com/callback"
    timeout: float = 60.0


@dataclass(frozen=True)
class TrackerConfig:
    """Polling policy for asynchronous generation jobs."""

    poll_interval: float = 8.0
    max_wait: float = 300.0
    poll_error_tolerance: int = 10
    call_attempts: int = 5
    cache_capacity: int = 10


@dataclass(frozen=True)
class RateLimitConfig:
    """Fixed-window limits as ``(requests, window seconds)`` per kind."""

    chat: tuple = (100, 3600)
    generate: tuple = (5, 86400)
    release: tuple = (10, 86400)
    artist: tuple = (10, 86400)
    default: tuple = (1000, 3600)
    enabled: bool = True


@dataclass(frozen=True)
class Config:
    """Application configuration loaded from environment variables."""

    reasoning: Optional[ReasoningConfig] = None
    distribution: Optional[DistributionConfig] = None
    generation: Optional[GenerationConfig] = None
    tracker: TrackerConfig = field(default_factory=TrackerConfig)
    rate_limits: RateLimitConfig = field(default_factory=RateLimitConfig)
    api_keys: tuple = ()
    require_api_key: bool = False
    max_iterations: int = 10
    environment: str = "development"
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> Config:
        """Load configuration from environment variables."""
        reasoning = None
        azure_key = os.getenv("AZURE_OPENAI_KEY")
        azure_endpoint = os.getenv("AZURE_OPENAI_ENDPOINT")
        openai_key = os.getenv("OPENAI_API_KEY")
        if azure_key and azure_endpoint:
            reasoning = ReasoningConfig(
                api_key=azure_key,
                endpoint=azure_endpoint,
                api_version=os.getenv("AZURE_OPENAI_API_VERSION", "2024-02-15-preview"),
                model=os.getenv("AZURE_OPENAI_DEPLOYMENT", "gpt-4o"),
                max_concurrent=_env_int("AZURE_OPENAI_MAX_CONCURRENT", 50),
            )
        elif openai_key:
            reasoning = ReasoningConfig(
                api_key=openai_key,
                model=os.getenv("OPENAI_MODEL", "gpt-4o"),
                base_url=os.getenv("OPENAI_BASE_URL"),
                max_concurrent=_env_int("OPENAI_MAX_CONCURRENT", 50),
            )

        distribution = None
        email = os.getenv("DITTO_EMAIL")
        password = os.getenv("DITTO_PASSWORD")
        if email and password:
            distribution = DistributionConfig(
                email=email,
                password=password,
                base_url=os.getenv("DITTO_BASE_URL", DistributionConfig.base_url),
                releases_url=os.getenv("DITTO_RELEASES_URL", DistributionConfig.releases_url),
                sales_url=os.getenv("DITTO_SALES_URL", DistributionConfig.sales_url),
                trends_url=os.getenv("DITTO_TRENDS_URL", DistributionConfig.trends_url),
                basic_auth_user=os.getenv("DITTO_BASIC_USER"),
                basic_auth_pass=os.getenv("DITTO_BASIC_PASS"),
            )

        generation = None
        suno_key = os.getenv("SUNO_API_KEY")
        if suno_key:
            generation = GenerationConfig(
                api_key=suno_key,
                base_url=os.getenv("SUNO_BASE_URL", GenerationConfig.base_url),
                timeout=_env_float("SUNO_TIMEOUT", 60.0),
            )

        tracker = TrackerConfig(
            poll_interval=_env_float("GENERATION_POLL_INTERVAL", 8.0),
            max_wait=_env_float("GENERATION_MAX_WAIT", 300.0),
            poll_error_tolerance=_env_int("GENERATION_POLL_ERROR_TOLERANCE", 10),
            call_attempts=_env_int("GENERATION_CALL_ATTEMPTS", 5),
        )

        return cls(
            reasoning=reasoning,
            distribution=distribution,
            generation=generation,
            tracker=tracker,
            rate_limits=RateLimitConfig(enabled=os.getenv("RATE_LIMITS_ENABLED", "true").lower() != "false"),
            api_keys=parse_api_keys(os.getenv("API_KEYS", "")),
            require_api_key=os.getenv("REQUIRE_API_KEY", "false").lower() == "true",
            max_iterations=_env_int("MAX_TOOL_ITERATIONS", 10),
            environment=os.getenv("ENVIRONMENT", "development"),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
        )
