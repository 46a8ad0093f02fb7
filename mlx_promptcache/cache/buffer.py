# SPDX-License-Identifier: Apache-2.0
"""
Growable, trimmable per-layer attention state.

AttentionStateBuffer subclasses mlx-lm's KVCache so that any mlx-lm model
writes into it directly during prefill and decode. Compared to the stock
class it keeps capacity on a fixed grid of ``step`` positions, never carries
stale positions past ``offset`` into a grown allocation, and rejects trims
larger than the written length instead of clamping them.
"""

import logging
from typing import Any, List, Tuple

import mlx.core as mx
from mlx_lm.models.cache import KVCache

from ..config import DEFAULT_GROWTH_STEP
from ..exceptions import CacheCorruptionError
from ..logging_config import TRACE

logger = logging.getLogger(__name__)


class AttentionStateBuffer(KVCache):
    """
    One layer's key and value tensors with an explicit logical length.

    Tensors are shaped (batch, kv_heads, capacity, head_dim). ``offset`` is
    the number of valid positions; everything at or past ``offset`` is
    unreachable through the public operations.
    """

    def __init__(self, step: int = DEFAULT_GROWTH_STEP):
        super().__init__()
        if step <= 0:
            raise ValueError(f"step must be positive: {step}")
        self.step = step

    @property
    def capacity(self) -> int:
        """Allocated positions along the sequence axis."""
        if self.keys is None:
            return 0
        return self.keys.shape[2]

    def update_and_fetch(self, keys: mx.array, values: mx.array) -> Tuple[mx.array, mx.array]:
        """
        Append new key/value positions and return views over all valid positions.

        Args:
            keys: New keys shaped (B, kv_heads, S, k_head_dim).
            values: New values shaped (B, kv_heads, S, v_head_dim).

        Returns:
            Tuple of (keys, values) covering ``[0, offset)``.
        """
        prev = self.offset
        end = prev + keys.shape[2]
        if self.keys is None or end > self.capacity:
            self._grow(keys, values, end)

        self.offset = end
        self.keys[..., prev:end, :] = keys
        self.values[..., prev:end, :] = values
        self._check_invariants()
        return self.keys[..., :end, :], self.values[..., :end, :]

    append = update_and_fetch

    def _grow(self, keys: mx.array, values: mx.array, end: int) -> None:
        B, n_kv_heads, _, k_head_dim = keys.shape
        v_head_dim = values.shape[3]
        capacity = ((end + self.step - 1) // self.step) * self.step
        prev = self.offset

        if self.keys is None or prev == 0:
            self.keys = mx.zeros((B, n_kv_heads, capacity, k_head_dim), keys.dtype)
            self.values = mx.zeros((B, n_kv_heads, capacity, v_head_dim), values.dtype)
        else:
            # Positions past offset may hold trimmed data; only [0, offset) survives
            pad_k = mx.zeros((B, n_kv_heads, capacity - prev, k_head_dim), keys.dtype)
            pad_v = mx.zeros((B, n_kv_heads, capacity - prev, v_head_dim), values.dtype)
            self.keys = mx.concatenate([self.keys[..., :prev, :], pad_k], axis=2)
            self.values = mx.concatenate([self.values[..., :prev, :], pad_v], axis=2)

        logger.log(TRACE, f"AttentionStateBuffer grew to {capacity} positions (offset={prev})")

    def is_trimmable(self) -> bool:
        return True

    def trim(self, n: int) -> int:
        """
        Discard the most recently written ``n`` positions.

        Capacity is retained; the discarded positions are overwritten by the
        next append.

        Args:
            n: Number of positions to discard.

        Returns:
            Number of positions actually trimmed (0 when rejected).
        """
        if n <= 0 or n > self.offset:
            return 0
        self.offset -= n
        self._check_invariants()
        return n

    def _check_invariants(self) -> None:
        capacity = self.capacity
        if not 0 <= self.offset <= capacity:
            raise CacheCorruptionError(
                "Attention buffer offset outside its allocation",
                details={"offset": self.offset, "capacity": capacity},
            )
        if capacity % self.step != 0:
            raise CacheCorruptionError(
                "Attention buffer capacity is not a multiple of the growth step",
                details={"capacity": capacity, "step": self.step},
            )

    def __repr__(self) -> str:
        return f"AttentionStateBuffer(offset={self.offset}, capacity={self.capacity})"


def make_buffers(num_layers: int, step: int = DEFAULT_GROWTH_STEP) -> List[Any]:
    """
    Allocate one empty buffer per model layer.

    Args:
        num_layers: Number of attention layers in the model.
        step: Growth unit for every buffer.

    Returns:
        List of zero-length AttentionStateBuffer instances.
    """
    return [AttentionStateBuffer(step=step) for _ in range(num_layers)]
