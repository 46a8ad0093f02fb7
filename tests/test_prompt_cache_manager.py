# SPDX-License-Identifier: Apache-2.0
"""
Tests for PromptCacheManager.

Each test drives the lookup -> decode -> commit cycle by hand, with the
decode step simulated by writing token ids into the lent buffers.
"""

import time
from unittest.mock import patch

import pytest

from mlx_promptcache.cache.buffer import make_buffers
from mlx_promptcache.cache.entry import CacheEntry
from mlx_promptcache.cache.manager import PromptCacheManager
from mlx_promptcache.exceptions import CacheCorruptionError

from mocks import buffer_tokens, write_tokens

MODEL_KEY = "fake-model-0.0-1.0"


def run_turn(manager, tokens, generated, model_key=MODEL_KEY, num_layers=2):
    """Run one lookup/decode/commit cycle and return what lookup decided."""
    to_process, entry = manager.lookup(model_key, tokens)
    buffers = entry.buffers if entry is not None else make_buffers(num_layers)
    prior = entry.num_tokens if entry is not None else 0
    write_tokens(buffers, to_process)
    write_tokens(buffers, generated)
    manager.commit(
        model_key,
        to_process,
        generated,
        buffers,
        had_reusable_entry=entry is not None,
        expected_prior_token_count=prior,
        full_prompt_tokens=tokens,
    )
    return to_process, entry


class TestLookup:
    """Tests for lookup decisions."""

    def test_first_lookup_misses(self, cache_manager):
        """An empty cache returns the whole prompt and no entry."""
        to_process, entry = cache_manager.lookup(MODEL_KEY, [1, 2, 3])

        assert to_process == [1, 2, 3]
        assert entry is None
        stats = cache_manager.get_stats()
        assert stats.misses == 1
        assert stats.hits == 0
        assert stats.tokens_reused == 0

    def test_extension_reuses_whole_entry(self, cache_manager):
        """Prompt [1,2,3] generating [4,5], then [1..6] processes only [6]."""
        run_turn(cache_manager, [1, 2, 3], [4, 5])
        assert cache_manager.entry.tokens == [1, 2, 3, 4, 5]

        to_process, entry = cache_manager.lookup(MODEL_KEY, [1, 2, 3, 4, 5, 6])

        assert to_process == [6]
        assert entry is cache_manager.entry
        stats = cache_manager.get_stats()
        assert stats.tokens_reused == 5
        assert stats.trims == 0
        assert stats.hits == 1

    def test_divergence_trims_every_buffer(self, cache_manager):
        """Cached [1..5] against [1,2,9] keeps [1,2] and trims 3 positions."""
        run_turn(cache_manager, [1, 2, 3], [4, 5])

        to_process, entry = cache_manager.lookup(MODEL_KEY, [1, 2, 9])

        assert to_process == [9]
        assert entry.tokens == [1, 2]
        assert all(b.offset == 2 for b in entry.buffers)
        stats = cache_manager.get_stats()
        assert stats.tokens_reused == 2
        assert stats.trims == 1

    def test_divergence_then_commit(self, cache_manager):
        """The processed suffix lands right after the reused prefix."""
        run_turn(cache_manager, [1, 2, 3], [4, 5])
        run_turn(cache_manager, [1, 2, 9], [10])

        entry = cache_manager.entry
        assert entry.tokens == [1, 2, 9, 10]
        for buffer in entry.buffers:
            assert buffer_tokens(buffer) == [1, 2, 9, 10]

    def test_stale_entry_misses_and_clears(self, cache_manager):
        """An entry idle past the TTL misses even with full overlap."""
        run_turn(cache_manager, [1, 2, 3], [4])
        cache_manager.entry.last_accessed_at = time.time() - 31 * 60

        to_process, entry = cache_manager.lookup(MODEL_KEY, [1, 2, 3, 4, 5])

        assert entry is None
        assert to_process == [1, 2, 3, 4, 5]
        assert cache_manager.entry is None

        _, entry = cache_manager.lookup(MODEL_KEY, [1, 2, 3, 4, 5])
        assert entry is None
        assert cache_manager.get_stats().misses == 3
        assert cache_manager.get_stats().resets == 1

    def test_ttl_uses_wall_clock(self):
        manager = PromptCacheManager(ttl_seconds=10, num_layers=2)
        with patch("time.time", return_value=1000.0):
            run_turn(manager, [1, 2], [3])
        with patch("mlx_promptcache.cache.entry.time.time", return_value=1011.0):
            _, entry = manager.lookup(MODEL_KEY, [1, 2, 3, 4])

        assert entry is None

    def test_model_key_change_misses(self, cache_manager):
        """A different model key discards the entry even for identical tokens."""
        run_turn(cache_manager, [1, 2, 3], [4])

        to_process, entry = cache_manager.lookup("other-model-0.0-1.0", [1, 2, 3, 4])

        assert entry is None
        assert to_process == [1, 2, 3, 4]
        assert cache_manager.entry is None
        assert cache_manager.get_stats().resets == 1
        assert cache_manager.get_stats().evictions == 0

    def test_no_common_prefix_misses(self, cache_manager):
        run_turn(cache_manager, [1, 2, 3], [4])

        to_process, entry = cache_manager.lookup(MODEL_KEY, [7, 8])

        assert entry is None
        assert to_process == [7, 8]
        assert cache_manager.entry is None

    def test_failed_trim_clears_slot(self, cache_manager):
        """A layer that cannot be trimmed leaves no half-trimmed entry behind."""
        run_turn(cache_manager, [1, 2, 3], [4])
        cache_manager.entry.buffers[1].trim(2)

        with pytest.raises(CacheCorruptionError) as exc_info:
            cache_manager.lookup(MODEL_KEY, [1, 9])

        assert exc_info.value.layer == 1
        assert cache_manager.entry is None

        to_process, entry = cache_manager.lookup(MODEL_KEY, [1, 9])
        assert entry is None
        assert to_process == [1, 9]

    def test_exact_match_returns_empty_suffix(self, cache_manager):
        run_turn(cache_manager, [1, 2], [3])

        to_process, entry = cache_manager.lookup(MODEL_KEY, [1, 2, 3])

        assert to_process == []
        assert entry.num_tokens == 3

    def test_hit_touches_entry(self, cache_manager):
        run_turn(cache_manager, [1, 2], [3])
        cache_manager.entry.last_accessed_at = 0.0
        cache_manager.ttl_seconds = float("inf")

        _, entry = cache_manager.lookup(MODEL_KEY, [1, 2, 3, 4])

        assert entry.last_accessed_at > 0.0

    def test_fetch_interface(self, cache_manager):
        run_turn(cache_manager, [1, 2], [3])

        (to_process, entry), hit = cache_manager.fetch((MODEL_KEY, [1, 2, 3, 9]))

        assert hit is True
        assert to_process == [9]
        assert entry is cache_manager.entry


class TestMonotonicReuse:
    """A conversation that only grows keeps reusing its whole history."""

    def test_growing_conversation(self, cache_manager):
        history = [1, 2, 3]
        run_turn(cache_manager, history, [10, 11])
        history = history + [10, 11]

        for turn in range(3):
            history = history + [20 + turn]
            to_process, entry = run_turn(cache_manager, history, [30 + turn])
            assert entry is not None
            assert to_process == [20 + turn]
            history = history + [30 + turn]

        stats = cache_manager.get_stats()
        assert stats.hits == 3
        assert stats.trims == 0
        assert cache_manager.entry.tokens == history
        for buffer in cache_manager.entry.buffers:
            assert buffer_tokens(buffer) == history


class TestRewind:
    """Tests for rewind."""

    def test_rewind_returns_removed_tokens(self, cache_manager):
        run_turn(cache_manager, [1, 2, 3], [4])

        removed = cache_manager.rewind(1)

        assert removed == [4]
        assert cache_manager.entry.tokens == [1, 2, 3]
        assert all(b.offset == 3 for b in cache_manager.entry.buffers)

    def test_rewind_without_entry(self, cache_manager):
        assert cache_manager.rewind(1) == []

    def test_rewind_non_positive(self, cache_manager):
        run_turn(cache_manager, [1, 2], [3])
        assert cache_manager.rewind(0) == []
        assert cache_manager.entry.num_tokens == 3

    def test_rewind_clamps_to_entry(self, cache_manager):
        run_turn(cache_manager, [1], [2])
        assert cache_manager.rewind(5) == [1, 2]
        assert cache_manager.entry.num_tokens == 0

    def test_rewind_failed_trim_clears_slot(self, cache_manager):
        run_turn(cache_manager, [1, 2, 3], [4])
        cache_manager.entry.buffers[1].trim(4)

        with pytest.raises(CacheCorruptionError):
            cache_manager.rewind(1)

        assert cache_manager.entry is None


class TestCommit:
    """Tests for commit."""

    def test_commit_fresh_entry(self, cache_manager):
        buffers = make_buffers(2)
        write_tokens(buffers, [1, 2, 3, 4])

        entry = cache_manager.commit(
            MODEL_KEY, [1, 2, 3], [4], buffers,
            had_reusable_entry=False, expected_prior_token_count=0,
        )

        assert entry is cache_manager.entry
        assert entry.tokens == [1, 2, 3, 4]
        assert entry.buffers is buffers

    def test_commit_partial_generation(self, cache_manager):
        """Only the tokens actually generated are appended."""
        run_turn(cache_manager, [1, 2, 3], [4, 5])

        assert cache_manager.entry.num_tokens == 5

    def test_commit_when_entry_replaced_builds_fresh_entry(self, cache_manager):
        """If the lent entry vanished mid-generation, store the full prompt instead."""
        run_turn(cache_manager, [1, 2], [3])
        to_process, entry = cache_manager.lookup(MODEL_KEY, [1, 2, 3, 4])
        write_tokens(entry.buffers, to_process + [5])
        cache_manager.invalidate()

        committed = cache_manager.commit(
            MODEL_KEY, to_process, [5], entry.buffers,
            had_reusable_entry=True, expected_prior_token_count=3,
            full_prompt_tokens=[1, 2, 3, 4],
        )

        assert committed.tokens == [1, 2, 3, 4, 5]
        committed.check_consistency(2)

    def test_commit_with_foreign_buffers(self, cache_manager):
        """Buffers that are not the stored entry's are never spliced into it."""
        run_turn(cache_manager, [1, 2], [3])
        to_process, entry = cache_manager.lookup(MODEL_KEY, [1, 2, 3, 4])
        other = make_buffers(2)
        write_tokens(other, [1, 2, 3, 4, 5])

        committed = cache_manager.commit(
            MODEL_KEY, to_process, [5], other,
            had_reusable_entry=True, expected_prior_token_count=3,
            full_prompt_tokens=[1, 2, 3, 4],
        )

        assert committed is not entry
        assert committed.buffers is other
        assert committed.tokens == [1, 2, 3, 4, 5]

    def test_commit_inconsistent_raises_and_clears(self, cache_manager):
        buffers = make_buffers(2)
        write_tokens(buffers, [1, 2])

        with pytest.raises(CacheCorruptionError):
            cache_manager.commit(
                MODEL_KEY, [1, 2, 3], [], buffers,
                had_reusable_entry=False, expected_prior_token_count=0,
            )

        assert cache_manager.entry is None

    def test_commit_layer_count_mismatch(self, cache_manager):
        buffers = make_buffers(3)
        write_tokens(buffers, [1])

        with pytest.raises(CacheCorruptionError):
            cache_manager.commit(
                MODEL_KEY, [1], [], buffers,
                had_reusable_entry=False, expected_prior_token_count=0,
            )


class TestDisabled:
    """A disabled cache never reuses or stores anything."""

    def test_disabled_always_misses(self):
        manager = PromptCacheManager(num_layers=2, enabled=False)

        run_turn(manager, [1, 2, 3], [4])
        to_process, entry = manager.lookup(MODEL_KEY, [1, 2, 3, 4, 5])

        assert entry is None
        assert to_process == [1, 2, 3, 4, 5]
        assert manager.entry is None
        assert manager.size == 0

    def test_disabled_store_rejected(self):
        manager = PromptCacheManager(num_layers=2, enabled=False)
        entry = CacheEntry(model_key=MODEL_KEY, tokens=[], buffers=make_buffers(2))

        assert manager.store(MODEL_KEY, entry) is False


class TestCacheManagerMethods:
    """Tests for the CacheManager interface methods."""

    def test_store(self, cache_manager):
        buffers = make_buffers(2)
        write_tokens(buffers, [1, 2])
        entry = CacheEntry(model_key=MODEL_KEY, tokens=[1, 2], buffers=buffers)

        assert cache_manager.store(MODEL_KEY, entry) is True
        assert cache_manager.entry is entry
        assert cache_manager.size == 1
        assert cache_manager.utilization == 1.0

    def test_store_rejects_mismatched_key(self, cache_manager):
        entry = CacheEntry(model_key=MODEL_KEY, tokens=[], buffers=make_buffers(2))
        assert cache_manager.store("other", entry) is False

    def test_store_rejects_non_entry(self, cache_manager):
        assert cache_manager.store(MODEL_KEY, [1, 2, 3]) is False

    def test_store_inconsistent_entry_raises(self, cache_manager):
        entry = CacheEntry(model_key=MODEL_KEY, tokens=[1], buffers=make_buffers(2))
        with pytest.raises(CacheCorruptionError):
            cache_manager.store(MODEL_KEY, entry)

    def test_evict(self, cache_manager):
        run_turn(cache_manager, [1, 2], [3])

        assert cache_manager.evict("other") is False
        assert cache_manager.evict(MODEL_KEY) is True
        assert cache_manager.entry is None
        assert cache_manager.get_stats().evictions == 1
        assert cache_manager.get_stats().resets == 0

    def test_clear(self, cache_manager):
        run_turn(cache_manager, [1, 2], [3])

        assert cache_manager.clear() == 1
        assert cache_manager.clear() == 0
        assert cache_manager.get_stats().resets == 2

    def test_invalidate(self, cache_manager):
        run_turn(cache_manager, [1, 2], [3])

        cache_manager.invalidate()

        assert cache_manager.entry is None
        assert cache_manager.get_stats().resets == 1

    def test_capacity(self, cache_manager):
        assert cache_manager.max_size == 1
        assert cache_manager.size == 0
        assert cache_manager.utilization == 0.0

    def test_get_stats_is_snapshot(self, cache_manager):
        snap = cache_manager.get_stats()
        cache_manager.lookup(MODEL_KEY, [1])

        assert snap.misses == 0
        assert cache_manager.get_stats().misses == 1
