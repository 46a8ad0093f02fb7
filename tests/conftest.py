# SPDX-License-Identifier: Apache-2.0
"""
Pytest configuration and fixtures for mlx-promptcache tests.

This module provides common fixtures used across test files.
"""

from typing import Any, Dict, List, Optional

import pytest

from mlx_promptcache.cache.manager import PromptCacheManager
from mlx_promptcache.config import CacheConfig
from mlx_promptcache.engine.cached import CachedLLM
from mlx_promptcache.request import SamplingParams

from mocks import FakeBackend


class MockTokenizer:
    """Mock HuggingFace-style tokenizer for testing without loading real models."""

    def __init__(self, chat_template: Optional[str] = "{{ messages }}"):
        self.bos_token = "<s>"
        self.bos_token_id = 1
        self.eos_token_id = 2
        self.eos_token_ids = {2}
        self.chat_template = chat_template
        self.vocab: Dict[str, int] = {}
        self.encode_calls: List[Dict[str, Any]] = []

    def encode(self, text: str, add_special_tokens: bool = True) -> List[int]:
        """Encode text to token ids, one per whitespace-separated word."""
        self.encode_calls.append({"text": text, "add_special_tokens": add_special_tokens})
        tokens = [self.bos_token_id] if add_special_tokens else []
        for word in text.split():
            tokens.append(self.vocab.setdefault(word, len(self.vocab) + 10))
        return tokens

    def apply_chat_template(self, messages, tokenize=False, add_generation_prompt=True, **kwargs):
        rendered = " ".join(f"<|{m['role']}|> {m['content']}" for m in messages)
        if add_generation_prompt:
            rendered += " <|assistant|>"
        return self.bos_token + " " + rendered


@pytest.fixture
def mock_tokenizer() -> MockTokenizer:
    """Provide a mock tokenizer for tests."""
    return MockTokenizer()


@pytest.fixture
def fake_backend() -> FakeBackend:
    """Provide a scripted two-layer backend."""
    return FakeBackend(num_layers=2)


@pytest.fixture
def cache_manager() -> PromptCacheManager:
    """Provide a prompt cache expecting two layers."""
    return PromptCacheManager(num_layers=2)


@pytest.fixture
def cached_llm(fake_backend):
    """Provide a CachedLLM over the fake backend."""
    return CachedLLM(fake_backend, cache_config=CacheConfig())


@pytest.fixture
def greedy_params() -> SamplingParams:
    """Greedy decoding with a short budget."""
    return SamplingParams(max_tokens=2, temperature=0.0, top_p=1.0)
