# SPDX-License-Identifier: Apache-2.0
"""
mlx-lm backed implementation of DecodeBackend.

Loads a model with mlx-lm and runs ``generate_step`` directly on top of the
prompt cache's AttentionStateBuffers, so prefill and decode write into the
cached state without any copy.
"""

import logging
from typing import Any, Dict, Iterator, List, Optional

import mlx.core as mx
from mlx_lm import load
from mlx_lm.generate import generate_step
from mlx_lm.models.cache import make_prompt_cache
from mlx_lm.sample_utils import make_sampler

from ..cache.buffer import make_buffers
from ..config import DEFAULT_GROWTH_STEP
from ..exceptions import ModelLoadError, TokenizerError
from ..request import SamplingParams
from ..utils.tokenizer import apply_chat_template, encode_prompt, get_tokenizer_config
from .base import DecodeBackend

logger = logging.getLogger(__name__)


class MLXBackend(DecodeBackend):
    """
    Backend for mlx-lm language models.

    Use ``MLXBackend.load(name)`` to load from the HuggingFace hub or a local
    path, or wrap an already loaded model/tokenizer pair.
    """

    def __init__(
        self,
        model: Any,
        tokenizer: Any,
        model_name: str,
        growth_step: int = DEFAULT_GROWTH_STEP,
        prefill_step_size: int = 2048,
        enable_thinking: Optional[bool] = None,
    ):
        """
        Args:
            model: Loaded mlx-lm model.
            tokenizer: mlx-lm TokenizerWrapper.
            model_name: Name used in cache keys.
            growth_step: Growth unit for new attention buffers.
            prefill_step_size: Prompt tokens processed per forward pass.
            enable_thinking: Thinking-mode switch passed to chat templates.
        """
        self._model = model
        self._tokenizer = tokenizer
        self._model_name = model_name
        self._growth_step = growth_step
        self._prefill_step_size = prefill_step_size
        self._enable_thinking = enable_thinking
        # The model's own cache layout fixes how many layers need state
        self._num_layers = len(make_prompt_cache(model))

    @classmethod
    def load(
        cls,
        model_name: str,
        trust_remote_code: bool = True,
        **kwargs: Any,
    ) -> "MLXBackend":
        """
        Load a model and tokenizer with mlx-lm.

        Args:
            model_name: HuggingFace model name or local path.
            trust_remote_code: Whether to trust remote code.
            **kwargs: Forwarded to the constructor.

        Raises:
            ModelLoadError: If mlx-lm cannot load the model.
        """
        tokenizer_config = get_tokenizer_config(
            model_name,
            trust_remote_code=trust_remote_code,
        )
        try:
            model, tokenizer = load(model_name, tokenizer_config=tokenizer_config)
        except Exception as e:
            raise ModelLoadError(
                f"Failed to load model: {e}", model_name=model_name
            ) from e
        logger.info(f"MLXBackend loaded: {model_name}")
        return cls(model, tokenizer, model_name, **kwargs)

    @property
    def model_name(self) -> str:
        return self._model_name

    @property
    def num_layers(self) -> int:
        return self._num_layers

    @property
    def tokenizer(self) -> Any:
        return self._tokenizer

    def tokenize(self, input: Any) -> List[int]:
        try:
            if isinstance(input, str):
                prompt = input
            else:
                prompt = apply_chat_template(
                    self._tokenizer, list(input), enable_thinking=self._enable_thinking
                )
            return encode_prompt(self._tokenizer, prompt)
        except Exception as e:
            raise TokenizerError(f"Failed to tokenize input: {e}") from e

    def new_empty_state(self) -> List[Any]:
        return make_buffers(self._num_layers, step=self._growth_step)

    def new_detokenizer(self) -> Any:
        detokenizer = self._tokenizer.detokenizer
        detokenizer.reset()
        return detokenizer

    def is_stop_token(self, token: int) -> bool:
        return token in self._tokenizer.eos_token_ids

    def decode(
        self,
        tokens: List[int],
        state: List[Any],
        params: SamplingParams,
    ) -> Iterator[int]:
        sampler = make_sampler(temp=params.temperature, top_p=params.top_p)
        for token, _ in generate_step(
            mx.array(tokens),
            self._model,
            max_tokens=params.max_tokens,
            sampler=sampler,
            prompt_cache=state,
            prefill_step_size=self._prefill_step_size,
        ):
            yield int(token)

    def get_stats(self) -> Dict[str, Any]:
        return {
            "model_name": self._model_name,
            "num_layers": self._num_layers,
            "prefill_step_size": self._prefill_step_size,
        }
