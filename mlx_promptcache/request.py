# SPDX-License-Identifier: Apache-2.0
"""
Request-level types for cached generation.

SamplingParams carries the decoding parameters of one generation and derives
the cache identity key from them; GenerationPhase names the steps a
generation goes through; GenerationOutput summarizes a finished one.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional


@dataclass
class SamplingParams:
    """Decoding parameters for a single generation."""

    max_tokens: int = 256
    temperature: float = 0.0
    top_p: float = 1.0
    stop_token_ids: List[int] = field(default_factory=list)

    def cache_key(self, model_name: str) -> str:
        """
        Identity under which cached state may be reused.

        Only parameters that change what the model computes for a given
        prefix take part; ``max_tokens`` does not.
        """
        return f"{model_name}-{self.temperature}-{self.top_p}"


class GenerationPhase(Enum):
    """Steps of a cached generation."""

    START = "start"
    PREPARE_INPUT = "prepare_input"
    LOOKUP_CACHE = "lookup_cache"
    DECODE_LOOP = "decode_loop"
    CANCELLED = "cancelled"
    COMMIT = "commit"
    DONE = "done"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (GenerationPhase.DONE, GenerationPhase.FAILED)


@dataclass
class GenerationOutput:
    """Summary of the most recent generation."""

    request_id: str
    text: str = ""
    tokens: List[int] = field(default_factory=list)
    prompt_tokens: int = 0
    completion_tokens: int = 0
    cached_tokens: int = 0
    finish_reason: Optional[str] = None
