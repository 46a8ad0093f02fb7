# SPDX-License-Identifier: Apache-2.0
"""
Utility modules for mlx-promptcache.

This package contains shared helper functions used across the codebase.
"""

from .tokenizer import (
    apply_chat_template,
    encode_prompt,
    get_tokenizer_config,
    is_qwen3_model,
)

__all__ = [
    # Tokenizer utilities
    "apply_chat_template",
    "encode_prompt",
    "get_tokenizer_config",
    "is_qwen3_model",
]
