# SPDX-License-Identifier: Apache-2.0
"""
Single-slot prompt cache.

PromptCacheManager keeps the attention state of the most recent generation
and decides, for each new prompt, how much of it can be reused:

    manager = PromptCacheManager(num_layers=28)

    tokens_to_process, entry = manager.lookup(model_key, prompt_tokens)
    buffers = entry.buffers if entry else make_buffers(28)
    prior = entry.num_tokens if entry else 0

    ...decode tokens_to_process into buffers...

    manager.commit(
        model_key, tokens_to_process, generated, buffers,
        had_reusable_entry=entry is not None,
        expected_prior_token_count=prior,
        full_prompt_tokens=prompt_tokens,
    )

Buffers handed out by ``lookup`` are lent to the decode step and reclaimed
by ``commit``. The manager does no locking of its own; callers serialize
lookup, decode and commit.
"""

import logging
import time
from typing import Any, List, Optional, Sequence, Tuple

from ..config import DEFAULT_CACHE_TTL_SECONDS
from ..exceptions import CacheCorruptionError
from .entry import CacheEntry
from .interface import CacheManager
from .prefix import common_prefix_length
from .stats import PromptCacheStats

logger = logging.getLogger(__name__)


class PromptCacheManager(CacheManager):
    """
    Holds at most one CacheEntry and reconciles it with incoming prompts.

    Implements the CacheManager ABC with the model key as the cache key.
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_CACHE_TTL_SECONDS,
        num_layers: Optional[int] = None,
        enabled: bool = True,
    ):
        """
        Initialize the prompt cache.

        Args:
            ttl_seconds: Idle time after which the entry is discarded.
            num_layers: Expected buffers per entry; checked on commit when set.
            enabled: When False every lookup misses and nothing is stored.
        """
        self.ttl_seconds = ttl_seconds
        self.num_layers = num_layers
        self.enabled = enabled
        self._entry: Optional[CacheEntry] = None
        self._stats = PromptCacheStats()

    @property
    def entry(self) -> Optional[CacheEntry]:
        """The stored entry, if any."""
        return self._entry

    @property
    def stats(self) -> PromptCacheStats:
        return self._stats

    def _drop(self, reason: str) -> bool:
        """Empty the slot. Returns whether an entry was stored."""
        if self._entry is None:
            return False
        logger.debug(
            f"Dropping cached entry ({reason}): key={self._entry.model_key}, "
            f"tokens={self._entry.num_tokens}"
        )
        self._entry = None
        return True

    def _miss(self, new_tokens: List[int], reason: str) -> Tuple[List[int], None]:
        """
        Record a miss and empty the slot.

        Discarding a stored entry on a miss counts as a reset, the same as
        ``invalidate``; ``evictions`` only counts explicit ``evict`` calls.
        """
        self._stats.record_miss()
        self._stats.tokens_reused = 0
        if self._drop(reason):
            self._stats.record_reset()
        logger.debug(f"Prompt cache miss ({reason}): processing {len(new_tokens)} tokens")
        return new_tokens, None

    def lookup(
        self,
        model_key: str,
        new_tokens: Sequence[int],
    ) -> Tuple[List[int], Optional[CacheEntry]]:
        """
        Find the reusable prefix of ``new_tokens`` and align the entry to it.

        Args:
            model_key: Identity of the model and decoding parameters.
            new_tokens: The full tokenized prompt.

        Returns:
            Tuple of (tokens_to_process, entry). ``entry`` is None on a miss,
            in which case ``tokens_to_process`` is the whole prompt.

        Raises:
            CacheCorruptionError: If the entry cannot be trimmed to the shared
                prefix. The slot is cleared before raising.
        """
        new_tokens = list(new_tokens)
        entry = self._entry

        if not self.enabled:
            return self._miss(new_tokens, "disabled")
        if entry is None:
            return self._miss(new_tokens, "empty")
        if entry.model_key != model_key:
            return self._miss(new_tokens, "model key changed")
        if not entry.is_valid(self.ttl_seconds):
            return self._miss(new_tokens, "stale")

        common_length = common_prefix_length(entry.tokens, new_tokens)
        if common_length == 0:
            return self._miss(new_tokens, "no common prefix")

        entry.touch()
        self._stats.record_hit()

        tokens_to_trim = entry.num_tokens - common_length
        if tokens_to_trim > 0:
            try:
                entry.trim(tokens_to_trim)
            except CacheCorruptionError:
                self._entry = None
                raise
            self._stats.record_trim()
            logger.debug(f"Trimmed {tokens_to_trim} divergent tokens from cached entry")

        self._stats.record_reuse(common_length)
        logger.debug(
            f"Prompt cache hit: reusing {common_length}/{len(new_tokens)} tokens, "
            f"processing {len(new_tokens) - common_length}"
        )
        return new_tokens[common_length:], entry

    def rewind(self, count: int) -> List[int]:
        """
        Trim the last ``count`` tokens off the stored entry.

        Used when the whole prompt is already cached: the model still needs
        at least one input token to produce the next one.

        Args:
            count: Number of trailing tokens to give back.

        Returns:
            The removed tokens, in order (empty if there is no entry).
        """
        entry = self._entry
        if entry is None or count <= 0:
            return []
        count = min(count, entry.num_tokens)
        removed = entry.tokens[-count:]
        try:
            entry.trim(count)
        except CacheCorruptionError:
            self._entry = None
            raise
        logger.debug(f"Rewound cached entry by {count} tokens for re-feed")
        return removed

    def commit(
        self,
        model_key: str,
        prompt_tokens: Sequence[int],
        generated_tokens: Sequence[int],
        buffers_used: List[Any],
        had_reusable_entry: bool,
        expected_prior_token_count: int,
        full_prompt_tokens: Optional[Sequence[int]] = None,
    ) -> Optional[CacheEntry]:
        """
        Record the outcome of a generation.

        Args:
            model_key: Identity of the model and decoding parameters.
            prompt_tokens: Tokens fed to the model this turn (the unprocessed
                suffix on a hit).
            generated_tokens: Tokens actually produced, possibly a partial run.
            buffers_used: The buffers the decode step wrote into.
            had_reusable_entry: Whether ``lookup`` returned an entry.
            expected_prior_token_count: Entry length right before decoding.
            full_prompt_tokens: The original full prompt, used when a fresh
                entry has to be built. Defaults to ``prompt_tokens``.

        Returns:
            The stored entry, or None when caching is disabled.

        Raises:
            CacheCorruptionError: If the resulting entry's buffers do not back
                its tokens. The slot is cleared before raising.
        """
        if not self.enabled:
            return None

        now = time.time()
        entry = self._entry
        if (
            had_reusable_entry
            and entry is not None
            and entry.buffers is buffers_used
            and entry.num_tokens == expected_prior_token_count
        ):
            entry.extend(prompt_tokens)
            entry.extend(generated_tokens)
            entry.touch(now)
        else:
            if had_reusable_entry:
                logger.warning(
                    "Cached entry changed during generation; storing a fresh entry"
                )
            base = prompt_tokens if full_prompt_tokens is None else full_prompt_tokens
            entry = CacheEntry(
                model_key=model_key,
                tokens=list(base) + list(generated_tokens),
                buffers=buffers_used,
                created_at=now,
                last_accessed_at=now,
            )
            self._entry = entry

        try:
            entry.check_consistency(self.num_layers)
        except CacheCorruptionError:
            self._entry = None
            raise

        logger.debug(
            f"Committed {len(prompt_tokens)} prompt + {len(generated_tokens)} generated "
            f"tokens; cache now holds {entry.num_tokens}"
        )
        return entry

    def invalidate(self) -> None:
        """Clear the stored entry unconditionally."""
        self._entry = None
        self._stats.record_reset()
        logger.debug("Prompt cache invalidated")

    # ------------------------------------------------------------------
    # CacheManager interface
    # ------------------------------------------------------------------

    def fetch(self, key: Any) -> Tuple[Optional[Any], bool]:
        """
        Look up a ``(model_key, tokens)`` pair.

        Returns:
            Tuple of ((tokens_to_process, entry), hit).
        """
        model_key, tokens = key
        tokens_to_process, entry = self.lookup(model_key, tokens)
        return (tokens_to_process, entry), entry is not None

    def store(self, key: Any, value: Any) -> bool:
        """Replace the slot with a ready-made CacheEntry stored under ``key``."""
        if not self.enabled or not isinstance(value, CacheEntry):
            return False
        if value.model_key != key:
            return False
        value.check_consistency(self.num_layers)
        self._entry = value
        return True

    def evict(self, key: Any) -> bool:
        if self._entry is None or self._entry.model_key != key:
            return False
        self._drop("evicted")
        self._stats.record_eviction()
        return True

    def clear(self) -> int:
        cleared = 1 if self._entry is not None else 0
        self.invalidate()
        return cleared

    def get_stats(self) -> PromptCacheStats:
        return self._stats.snapshot()

    @property
    def size(self) -> int:
        return 0 if self._entry is None else 1

    @property
    def max_size(self) -> int:
        return 1
