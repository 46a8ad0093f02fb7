# SPDX-License-Identifier: Apache-2.0
"""
Cache statistics for mlx-promptcache.

Counters are diagnostic only: nothing in the cache or the generation path
reads them to make a decision.
"""

from dataclasses import asdict, dataclass, replace
from typing import Any, Dict


@dataclass
class BaseCacheStats:
    """
    Base statistics shared by cache implementations.

    Subclasses can extend with additional type-specific metrics.
    """

    hits: int = 0
    misses: int = 0
    evictions: int = 0

    @property
    def total_queries(self) -> int:
        """Get total number of cache queries."""
        return self.hits + self.misses

    @property
    def hit_rate(self) -> float:
        """
        Calculate cache hit rate.

        Returns:
            Hit rate as a float between 0.0 and 1.0.
        """
        total = self.total_queries
        if total == 0:
            return 0.0
        return self.hits / total

    def record_hit(self) -> None:
        """Record a cache hit."""
        self.hits += 1

    def record_miss(self) -> None:
        """Record a cache miss."""
        self.misses += 1

    def record_eviction(self) -> None:
        """Record a cache eviction."""
        self.evictions += 1

    def reset(self) -> None:
        """Reset all statistics to zero."""
        self.hits = 0
        self.misses = 0
        self.evictions = 0

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert stats to dictionary.

        Returns:
            Dictionary with all stats fields.
        """
        d = asdict(self)
        # Add computed properties
        d["total_queries"] = self.total_queries
        d["hit_rate"] = self.hit_rate
        return d


@dataclass
class PromptCacheStats(BaseCacheStats):
    """
    Statistics for the single-slot prompt cache.

    ``tokens_reused`` holds the reused prefix length of the most recent
    lookup; ``total_tokens_reused`` accumulates it across lookups.
    """

    trims: int = 0
    resets: int = 0
    tokens_reused: int = 0
    total_tokens_reused: int = 0

    def record_trim(self) -> None:
        """Record a divergent-suffix trim."""
        self.trims += 1

    def record_reset(self) -> None:
        """Record an explicit or implicit cache clear."""
        self.resets += 1

    def record_reuse(self, num_tokens: int) -> None:
        """Record the prefix length reused by the latest lookup."""
        self.tokens_reused = num_tokens
        self.total_tokens_reused += num_tokens

    def snapshot(self) -> "PromptCacheStats":
        """Return an independent copy of the current counters."""
        return replace(self)

    def reset(self) -> None:
        """Reset all statistics to zero."""
        super().reset()
        self.trims = 0
        self.resets = 0
        self.tokens_reused = 0
        self.total_tokens_reused = 0
