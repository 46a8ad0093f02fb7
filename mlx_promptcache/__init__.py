# SPDX-License-Identifier: Apache-2.0
"""
mlx-promptcache: incremental prompt caching for MLX language models

Reuses the attention state of the previous turn in a multi-turn
conversation so only the new part of each prompt is run through the model.

Features:
- Longest-common-prefix reuse with divergent-suffix trimming
- Growable, trimmable per-layer attention buffers compatible with mlx-lm
- Streaming generation that banks partial output on cancellation
"""

from mlx_promptcache._version import __version__

from mlx_promptcache.cache import (
    AttentionStateBuffer,
    CacheEntry,
    PromptCacheManager,
    PromptCacheStats,
    common_prefix_length,
    make_buffers,
)
from mlx_promptcache.config import PromptCacheConfig
from mlx_promptcache.engine import CachedLLM, DecodeBackend, MLXBackend
from mlx_promptcache.request import GenerationOutput, GenerationPhase, SamplingParams

# Name used by the cache statistics snapshot
CacheStats = PromptCacheStats

__all__ = [
    # Cache
    "AttentionStateBuffer",
    "CacheEntry",
    "PromptCacheManager",
    "PromptCacheStats",
    "CacheStats",
    "common_prefix_length",
    "make_buffers",
    # Engine
    "CachedLLM",
    "DecodeBackend",
    "MLXBackend",
    # Requests
    "SamplingParams",
    "GenerationPhase",
    "GenerationOutput",
    # Config
    "PromptCacheConfig",
    # Version
    "__version__",
]
