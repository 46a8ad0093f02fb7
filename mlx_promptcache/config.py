# SPDX-License-Identifier: Apache-2.0
"""
Centralized configuration for mlx-promptcache.

This module provides unified configuration management with:
- Dataclass sections with sensible defaults
- Environment variable support (PROMPTCACHE_ prefix)
- Validation returning readable error strings
"""

import os
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List

# Entries untouched for this long are discarded on the next lookup
DEFAULT_CACHE_TTL_SECONDS = 30 * 60

# Attention buffers grow in multiples of this many positions
DEFAULT_GROWTH_STEP = 256


def _env_bool(name: str, default: bool) -> bool:
    return os.getenv(name, "true" if default else "false").lower() == "true"


@dataclass
class ModelConfig:
    """Model configuration."""

    model_name: str = ""
    trust_remote_code: bool = True


@dataclass
class CacheConfig:
    """Prompt cache configuration."""

    enabled: bool = True
    ttl_seconds: float = DEFAULT_CACHE_TTL_SECONDS
    growth_step: int = DEFAULT_GROWTH_STEP


@dataclass
class GenerationConfig:
    """Generation parameters configuration."""

    max_tokens: int = 256
    temperature: float = 0.0
    top_p: float = 1.0
    prefill_step_size: int = 2048


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str = "INFO"
    format_style: str = "standard"


@dataclass
class PromptCacheConfig:
    """
    Centralized configuration for mlx-promptcache.

    Combines all configuration sections and provides environment variable
    overrides.
    """

    model: ModelConfig = field(default_factory=ModelConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    generation: GenerationConfig = field(default_factory=GenerationConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_env(cls) -> "PromptCacheConfig":
        """
        Create config from environment variables.

        Environment variables are prefixed with PROMPTCACHE_.
        """
        config = cls()

        # Model settings
        config.model.model_name = os.getenv("PROMPTCACHE_MODEL", config.model.model_name)
        config.model.trust_remote_code = _env_bool(
            "PROMPTCACHE_TRUST_REMOTE_CODE", config.model.trust_remote_code
        )

        # Cache settings
        config.cache.enabled = _env_bool("PROMPTCACHE_CACHE_ENABLED", config.cache.enabled)
        config.cache.ttl_seconds = float(
            os.getenv("PROMPTCACHE_CACHE_TTL", str(config.cache.ttl_seconds))
        )
        config.cache.growth_step = int(
            os.getenv("PROMPTCACHE_GROWTH_STEP", str(config.cache.growth_step))
        )

        # Generation settings
        config.generation.max_tokens = int(
            os.getenv("PROMPTCACHE_MAX_TOKENS", str(config.generation.max_tokens))
        )
        config.generation.temperature = float(
            os.getenv("PROMPTCACHE_TEMPERATURE", str(config.generation.temperature))
        )
        config.generation.top_p = float(
            os.getenv("PROMPTCACHE_TOP_P", str(config.generation.top_p))
        )

        # Logging settings
        config.logging.level = os.getenv("PROMPTCACHE_LOG_LEVEL", config.logging.level)
        config.logging.format_style = os.getenv(
            "PROMPTCACHE_LOG_FORMAT", config.logging.format_style
        )

        return config

    def to_dict(self) -> Dict[str, Any]:
        """Convert config to dictionary."""
        return {
            "model": asdict(self.model),
            "cache": asdict(self.cache),
            "generation": asdict(self.generation),
            "logging": asdict(self.logging),
        }

    def validate(self) -> List[str]:
        """
        Validate configuration.

        Returns:
            List of validation errors (empty if valid).
        """
        errors = []

        # Cache validation
        if self.cache.ttl_seconds <= 0:
            errors.append(f"cache ttl must be positive: {self.cache.ttl_seconds}")
        if self.cache.growth_step <= 0:
            errors.append(f"growth_step must be positive: {self.cache.growth_step}")

        # Generation validation
        if self.generation.max_tokens <= 0:
            errors.append(f"max_tokens must be positive: {self.generation.max_tokens}")
        if not 0.0 <= self.generation.temperature <= 2.0:
            errors.append(f"temperature must be 0.0-2.0: {self.generation.temperature}")
        if not 0.0 <= self.generation.top_p <= 1.0:
            errors.append(f"top_p must be 0.0-1.0: {self.generation.top_p}")
        if self.generation.prefill_step_size <= 0:
            errors.append(
                f"prefill_step_size must be positive: {self.generation.prefill_step_size}"
            )

        # Logging validation
        if self.logging.format_style not in ("standard", "json"):
            errors.append(f"Invalid log format: {self.logging.format_style}")

        return errors
