# SPDX-License-Identifier: Apache-2.0
"""
Tokenizer utilities for mlx-promptcache.

This module provides tokenizer configuration fixes and chat-template helpers
shared by the MLX backend and tests.
"""

import logging
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


def is_qwen3_model(model_name: str) -> bool:
    """
    Check if the model is a Qwen3 model.

    Args:
        model_name: The model name or path.

    Returns:
        True if the model is a Qwen3 model.
    """
    return "qwen3" in model_name.lower()


def get_tokenizer_config(
    model_name: str,
    trust_remote_code: bool = False,
) -> Dict[str, Any]:
    """
    Get tokenizer configuration with model-specific fixes.

    Qwen3 changed its eos_token to <|endoftext|> while the chat template
    still closes turns with <|im_end|>; without the override generation runs
    past the end of the assistant turn.

    Args:
        model_name: The model name or path.
        trust_remote_code: Whether to trust remote code.

    Returns:
        Dictionary of tokenizer configuration options.
    """
    config: Dict[str, Any] = {"trust_remote_code": trust_remote_code}

    if is_qwen3_model(model_name):
        config["eos_token"] = "<|im_end|>"
        logger.debug("Qwen3 detected: setting eos_token to <|im_end|>")

    return config


def apply_chat_template(
    tokenizer: Any,
    messages: List[Dict[str, Any]],
    enable_thinking: Optional[bool] = None,
) -> str:
    """
    Render chat messages into a prompt string.

    Falls back to a plain "role: content" transcript for tokenizers without
    a chat template.

    Args:
        tokenizer: HuggingFace tokenizer or mlx-lm TokenizerWrapper.
        messages: Chat messages as role/content dicts.
        enable_thinking: Thinking-mode switch for reasoning models.

    Returns:
        The rendered prompt ending with the assistant generation prompt.
    """
    if getattr(tokenizer, "chat_template", None) is not None and hasattr(
        tokenizer, "apply_chat_template"
    ):
        template_kwargs: Dict[str, Any] = {
            "tokenize": False,
            "add_generation_prompt": True,
        }
        if enable_thinking is not None:
            template_kwargs["enable_thinking"] = enable_thinking
        try:
            return tokenizer.apply_chat_template(messages, **template_kwargs)
        except TypeError:
            # Tokenizer doesn't support enable_thinking
            template_kwargs.pop("enable_thinking", None)
            return tokenizer.apply_chat_template(messages, **template_kwargs)

    prompt = "\n".join(f"{m['role']}: {m['content']}" for m in messages)
    return prompt + "\nassistant:"


def encode_prompt(tokenizer: Any, prompt: str) -> List[int]:
    """
    Encode a rendered prompt without doubling the BOS token.

    Chat templates usually emit the BOS token themselves.
    """
    bos_token = getattr(tokenizer, "bos_token", None)
    add_special_tokens = not (bos_token and prompt.startswith(bos_token))
    return list(tokenizer.encode(prompt, add_special_tokens=add_special_tokens))
