# SPDX-License-Identifier: Apache-2.0
"""
Engine abstraction for cached generation.

Provides:
- DecodeBackend: interface to tokenizer, model and detokenizer
- MLXBackend: mlx-lm implementation of DecodeBackend
- CachedLLM: prompt-caching generation engine
"""

from .base import DecodeBackend
from .cached import CachedLLM
from .mlx_backend import MLXBackend

__all__ = [
    "DecodeBackend",
    "CachedLLM",
    "MLXBackend",
]
