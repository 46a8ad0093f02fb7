# SPDX-License-Identifier: Apache-2.0
"""
Custom exception hierarchy for mlx-promptcache.

This module provides a structured exception hierarchy for better error handling
and debugging throughout the codebase.

Usage:
    from mlx_promptcache.exceptions import CacheCorruptionError, ModelInferenceError

    try:
        async for chunk in llm.generate(messages, params):
            ...
    except ModelInferenceError as e:
        logger.error(f"Generation failed: {e}")
"""

from typing import Optional


class PromptCacheError(Exception):
    """
    Base exception for all mlx-promptcache errors.

    All custom exceptions should inherit from this class to allow for easy
    catching of every error raised by the package.
    """

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} (details: {self.details})"
        return self.message


# =============================================================================
# Cache-related Exceptions
# =============================================================================


class CacheError(PromptCacheError):
    """Base exception for cache-related errors."""

    pass


class CacheCorruptionError(CacheError):
    """
    Attention state no longer matches the token sequence it represents.

    Raised when a buffer offset exceeds its capacity, when layers disagree on
    their offset, or when the buffer count does not match the model's layer
    count. Recovery is to drop the cached entry and reprocess from scratch.

    Attributes:
        layer: The layer index that failed the check, if known.
    """

    def __init__(
        self,
        message: str,
        layer: Optional[int] = None,
        details: Optional[dict] = None,
    ):
        super().__init__(message, details)
        self.layer = layer


# =============================================================================
# Model-related Exceptions
# =============================================================================


class ModelError(PromptCacheError):
    """Base exception for model-related errors."""

    pass


class ModelLoadError(ModelError):
    """
    Failed to load the model.

    Attributes:
        model_name: The name/path of the model that failed to load.
    """

    def __init__(
        self,
        message: str,
        model_name: Optional[str] = None,
        details: Optional[dict] = None,
    ):
        super().__init__(message, details)
        self.model_name = model_name


class ModelInferenceError(ModelError):
    """Error during model inference/generation."""

    pass


class TokenizerError(ModelError):
    """Error related to tokenization."""

    pass


# =============================================================================
# Configuration-related Exceptions
# =============================================================================


class ConfigurationError(PromptCacheError):
    """
    Configuration is invalid or inconsistent.

    Attributes:
        config_key: The configuration key that is invalid.
    """

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        details: Optional[dict] = None,
    ):
        super().__init__(message, details)
        self.config_key = config_key


# =============================================================================
# Helper Functions
# =============================================================================

# Patterns that indicate cache corruption raised from inside mlx-lm
CACHE_CORRUPTION_PATTERNS = [
    "'NoneType' object is not subscriptable",
    "KVCache",
    "cache.keys",
    "cache.values",
]


def is_cache_corruption_error(error: Exception) -> bool:
    """
    Check if an error indicates cache corruption.

    Args:
        error: The exception to check.

    Returns:
        True if the error is a CacheCorruptionError or its message matches a
        known corruption pattern.
    """
    if isinstance(error, CacheCorruptionError):
        return True
    error_str = str(error)
    return any(pattern in error_str for pattern in CACHE_CORRUPTION_PATTERNS)
