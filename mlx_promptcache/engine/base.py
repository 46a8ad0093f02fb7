# SPDX-License-Identifier: Apache-2.0
"""
Backend interface for cached generation.

A backend supplies everything the orchestrator treats as opaque: turning
input into tokens, allocating empty attention state, running the model, and
turning tokens back into text.
"""

from abc import ABC, abstractmethod
from typing import Any, Iterator, List

from ..request import SamplingParams


class DecodeBackend(ABC):
    """
    Abstract base class for model backends.

    ``decode`` returns a lazy iterator: nothing runs until the first token is
    requested, and every token it yields has already been written into the
    state it was given.
    """

    @property
    @abstractmethod
    def model_name(self) -> str:
        """Get the model name."""
        pass

    @property
    @abstractmethod
    def num_layers(self) -> int:
        """Number of per-layer attention buffers the model needs."""
        pass

    @abstractmethod
    def tokenize(self, input: Any) -> List[int]:
        """
        Convert a prompt string or a list of chat messages to token ids.

        Args:
            input: Raw prompt text, or chat messages as role/content dicts.

        Returns:
            Ordered token ids.
        """
        pass

    @abstractmethod
    def new_empty_state(self) -> List[Any]:
        """
        Allocate zero-length attention buffers, one per layer.

        Returns:
            List of trimmable attention buffers.
        """
        pass

    @abstractmethod
    def new_detokenizer(self) -> Any:
        """
        Create a fresh streaming detokenizer.

        The returned object exposes ``reset()``, ``add_token(token)``,
        ``finalize()`` and ``last_segment``.
        """
        pass

    @abstractmethod
    def decode(
        self,
        tokens: List[int],
        state: List[Any],
        params: SamplingParams,
    ) -> Iterator[int]:
        """
        Feed ``tokens`` on top of ``state`` and yield generated tokens.

        Args:
            tokens: Tokens not yet present in ``state``.
            state: Per-layer buffers, mutated in place.
            params: Decoding parameters.

        Yields:
            Generated token ids, at most ``params.max_tokens`` of them.
        """
        pass

    def is_stop_token(self, token: int) -> bool:
        """Whether generation should end after ``token``."""
        return False
