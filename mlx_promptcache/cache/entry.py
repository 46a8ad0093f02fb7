# SPDX-License-Identifier: Apache-2.0
"""Cached attention state paired with the token sequence it represents."""

import time
from dataclasses import dataclass, field
from typing import Any, List, Optional, Sequence

from ..exceptions import CacheCorruptionError


@dataclass
class CacheEntry:
    """
    A token sequence, its per-layer attention buffers, and freshness stamps.

    ``tokens`` and every buffer's ``offset`` always describe the same prefix:
    ``trim`` and ``extend`` are the only ways to change ``tokens`` and keep
    the two in step.
    """

    model_key: str
    tokens: List[int]
    buffers: List[Any]
    created_at: float = field(default_factory=time.time)
    last_accessed_at: float = field(default_factory=time.time)

    @property
    def num_tokens(self) -> int:
        return len(self.tokens)

    @property
    def nbytes(self) -> int:
        """Bytes held by the buffers (0 for buffers that do not report a size)."""
        total = 0
        for buffer in self.buffers:
            try:
                total += int(getattr(buffer, "nbytes", 0) or 0)
            except (AttributeError, TypeError):
                continue
        return total

    def is_valid(self, ttl_seconds: float, now: Optional[float] = None) -> bool:
        """
        Check freshness.

        Args:
            ttl_seconds: Maximum idle time before the entry goes stale.
            now: Current time (defaults to ``time.time()``).

        Returns:
            True if the entry was accessed less than ``ttl_seconds`` ago.
        """
        if now is None:
            now = time.time()
        return now - self.last_accessed_at < ttl_seconds

    def touch(self, now: Optional[float] = None) -> None:
        """Refresh ``last_accessed_at``."""
        self.last_accessed_at = time.time() if now is None else now

    def trim(self, count: int) -> None:
        """
        Drop the last ``count`` tokens and their attention positions.

        Args:
            count: Number of trailing tokens to discard.
        """
        if count <= 0:
            return
        if count > len(self.tokens):
            raise CacheCorruptionError(
                f"Cannot trim {count} tokens from an entry holding {len(self.tokens)}",
                details={"model_key": self.model_key},
            )
        for layer, buffer in enumerate(self.buffers):
            if buffer.trim(count) != count:
                raise CacheCorruptionError(
                    f"Layer {layer} refused to trim {count} positions",
                    layer=layer,
                    details={"offset": buffer.offset, "tokens": len(self.tokens)},
                )
        del self.tokens[-count:]

    def extend(self, tokens: Sequence[int]) -> None:
        """Append tokens whose attention state the buffers already hold."""
        self.tokens.extend(tokens)

    def check_consistency(self, num_layers: Optional[int] = None) -> None:
        """
        Verify that every buffer backs exactly ``tokens``.

        Args:
            num_layers: Expected buffer count, if known.

        Raises:
            CacheCorruptionError: On a layer-count or offset mismatch.
        """
        if num_layers is not None and len(self.buffers) != num_layers:
            raise CacheCorruptionError(
                f"Entry holds {len(self.buffers)} buffers for a {num_layers}-layer model",
                details={"model_key": self.model_key},
            )
        expected = len(self.tokens)
        for layer, buffer in enumerate(self.buffers):
            if buffer.offset != expected:
                raise CacheCorruptionError(
                    f"Layer {layer} offset {buffer.offset} does not match {expected} cached tokens",
                    layer=layer,
                    details={"model_key": self.model_key},
                )
