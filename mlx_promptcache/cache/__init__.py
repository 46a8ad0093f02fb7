# SPDX-License-Identifier: Apache-2.0
"""
Cache module - prompt prefix reuse for mlx-promptcache.

This package contains:
- Prefix matching between token sequences
- Growable/trimmable per-layer attention buffers
- The single-slot prompt cache and its statistics
"""

# Stats
from .stats import BaseCacheStats, PromptCacheStats

# Interfaces
from .interface import CacheManager

# Core
from .prefix import common_prefix_length
from .buffer import AttentionStateBuffer, make_buffers
from .entry import CacheEntry
from .manager import PromptCacheManager

__all__ = [
    # Stats
    "BaseCacheStats",
    "PromptCacheStats",
    # Interfaces
    "CacheManager",
    # Core
    "common_prefix_length",
    "AttentionStateBuffer",
    "make_buffers",
    "CacheEntry",
    "PromptCacheManager",
]
