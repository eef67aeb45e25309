"""Runtime settings for repolens."""

from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Mapping, Optional

from .core.cache import DEFAULT_MAX_BYTES, DEFAULT_TTL, FileStorage, ResponseCache
from .errors import ConfigurationError
from .llm.providers import (
    DEFAULT_PROVIDER,
    DEFAULT_TIMEOUT,
    default_models_for,
    resolve_api_key,
)
from .llm.queue import DEFAULT_MIN_INTERVAL, RequestQueue
from .llm.retry import RetryPolicy


# ---------------------------------------------------------------------------
# Default locations
# ---------------------------------------------------------------------------
DEFAULT_ROOT = Path.home() / ".repolens"
DEFAULT_CACHE_DIR = DEFAULT_ROOT / "cache"


@dataclass
class Settings:
    """Everything needed to build a ``RepoLens`` pipeline."""

    provider: str = DEFAULT_PROVIDER
    api_key: Optional[str] = None
    models: tuple[str, ...] = ()
    min_interval: float = DEFAULT_MIN_INTERVAL
    max_attempts: int = 2
    cache_dir: Path = field(default_factory=lambda: DEFAULT_CACHE_DIR)
    cache_ttl: float = DEFAULT_TTL
    cache_max_bytes: int = DEFAULT_MAX_BYTES
    github_token: Optional[str] = None
    timeout: float = DEFAULT_TIMEOUT

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> Settings:
        """Read settings from ``REPOLENS_*`` variables.

        Provider API keys are resolved from the process environment only when
        *environ* is not given.
        """
        env = os.environ if environ is None else environ
        settings = cls()

        provider = env.get("REPOLENS_PROVIDER")
        if provider:
            settings.provider = provider.strip().lower()
        models = env.get("REPOLENS_MODELS")
        if models:
            settings.models = tuple(m.strip() for m in models.split(",") if m.strip())
        interval = env.get("REPOLENS_MIN_INTERVAL")
        if interval:
            try:
                settings.min_interval = float(interval)
            except ValueError:
                raise ConfigurationError(
                    f"REPOLENS_MIN_INTERVAL must be a number, got {interval!r}"
                ) from None
        cache_dir = env.get("REPOLENS_CACHE_DIR")
        if cache_dir:
            settings.cache_dir = Path(cache_dir).expanduser()
        settings.github_token = env.get("GITHUB_TOKEN") or None
        if environ is None:
            settings.api_key = resolve_api_key(settings.provider)
        return settings

    def with_overrides(self, **changes) -> Settings:
        """Copy with every non-``None`` value in *changes* applied."""
        return replace(self, **{k: v for k, v in changes.items() if v is not None})

    @property
    def candidate_models(self) -> tuple[str, ...]:
        return self.models or default_models_for(self.provider)

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            candidates=self.candidate_models,
            max_attempts=self.max_attempts,
        )

    def build_cache(self) -> ResponseCache:
        return ResponseCache(FileStorage(self.cache_dir, self.cache_max_bytes), ttl=self.cache_ttl)

    def build_queue(self) -> RequestQueue:
        return RequestQueue(self.min_interval)
