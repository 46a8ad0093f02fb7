# SPDX-License-Identifier: Apache-2.0
"""
Cache manager interface for mlx-promptcache.

This module defines the abstract interface that cache implementations
follow, so the orchestrator and diagnostics can treat them uniformly.
"""

from abc import ABC, abstractmethod
from typing import Any, Optional, Tuple

from .stats import BaseCacheStats


class CacheManager(ABC):
    """
    Abstract interface for cache implementations.

    This interface provides a consistent API for fetching, storing, evicting
    and clearing cached attention state, plus statistics and capacity.
    """

    @abstractmethod
    def fetch(self, key: Any) -> Tuple[Optional[Any], bool]:
        """
        Fetch a value from the cache.

        Args:
            key: The cache key (varies by implementation).

        Returns:
            Tuple of (value, hit) where hit is True if found.
        """
        pass

    @abstractmethod
    def store(self, key: Any, value: Any) -> bool:
        """
        Store a value in the cache.

        Args:
            key: The cache key.
            value: The value to store.

        Returns:
            True if stored successfully.
        """
        pass

    @abstractmethod
    def evict(self, key: Any) -> bool:
        """
        Evict a specific entry from the cache.

        Args:
            key: The cache key to evict.

        Returns:
            True if evicted, False if not found.
        """
        pass

    @abstractmethod
    def clear(self) -> int:
        """
        Clear all entries from the cache.

        Returns:
            Number of entries cleared.
        """
        pass

    @abstractmethod
    def get_stats(self) -> BaseCacheStats:
        """
        Get cache statistics.

        Returns:
            BaseCacheStats or subclass with cache metrics.
        """
        pass

    @property
    @abstractmethod
    def size(self) -> int:
        """
        Get the current number of entries in the cache.

        Returns:
            Number of cached entries.
        """
        pass

    @property
    @abstractmethod
    def max_size(self) -> int:
        """
        Get the maximum capacity of the cache.

        Returns:
            Maximum number of entries.
        """
        pass

    @property
    def utilization(self) -> float:
        """
        Get cache utilization as a fraction.

        Returns:
            Utilization between 0.0 and 1.0.
        """
        if self.max_size == 0:
            return 0.0
        return self.size / self.max_size
