# SPDX-License-Identifier: Apache-2.0
"""
Cached generation engine.

CachedLLM runs one generation at a time against a DecodeBackend, reusing the
attention state left behind by the previous generation wherever the new
prompt shares a prefix with it.

Each request walks through GenerationPhase:

    START -> PREPARE_INPUT -> LOOKUP_CACHE -> DECODE_LOOP -> COMMIT -> DONE

DECODE_LOOP may end early in CANCELLED, which still goes through COMMIT so
the tokens produced so far are banked for the next turn.

Usage:
    backend = MLXBackend.load("mlx-community/Qwen3-4B-4bit")
    llm = CachedLLM(backend)

    async with aclosing(llm.generate(messages, SamplingParams(max_tokens=64))) as stream:
        async for chunk in stream:
            print(chunk, end="")
"""

import asyncio
import logging
import threading
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional

from ..cache.manager import PromptCacheManager
from ..cache.stats import PromptCacheStats
from ..config import CacheConfig, PromptCacheConfig
from ..exceptions import (
    ConfigurationError,
    ModelInferenceError,
    PromptCacheError,
    is_cache_corruption_error,
)
from ..logging_config import RequestLogContext, configure_logging
from ..request import GenerationOutput, GenerationPhase, SamplingParams
from .base import DecodeBackend

logger = logging.getLogger(__name__)

_EXHAUSTED = object()


@dataclass
class _Turn:
    """Bookkeeping for one generation between lookup and commit."""

    request_id: str
    model_key: str
    new_tokens: List[int]
    tokens_to_process: List[int]
    buffers: List[Any]
    had_entry: bool
    prior_token_count: int
    generated: List[int] = field(default_factory=list)
    text_parts: List[str] = field(default_factory=list)
    decode_started: bool = False
    finish_reason: Optional[str] = None

    @property
    def cached_tokens(self) -> int:
        return len(self.new_tokens) - len(self.tokens_to_process)


class CachedLLM:
    """
    Prompt-caching generation engine for a single conversation.

    Generations are serialized by an asyncio lock, and every call into the
    backend runs on one dedicated worker thread, so the cached buffers only
    ever have one writer. The lock is held until the stream is exhausted or
    closed; consume or close one stream before starting the next.
    """

    def __init__(
        self,
        backend: DecodeBackend,
        cache_config: Optional[CacheConfig] = None,
        default_params: Optional[SamplingParams] = None,
    ):
        """
        Initialize the engine.

        Args:
            backend: Model backend used for tokenization and decoding.
            cache_config: Prompt cache settings (TTL, enabled).
            default_params: Decoding parameters used when a call passes none.
        """
        cache_config = cache_config or CacheConfig()
        self._backend = backend
        self._default_params = default_params or SamplingParams()
        self._cache = PromptCacheManager(
            ttl_seconds=cache_config.ttl_seconds,
            num_layers=backend.num_layers,
            enabled=cache_config.enabled,
        )
        self._lock = asyncio.Lock()
        self._executor: Optional[ThreadPoolExecutor] = None
        self._cancel_requested = threading.Event()
        self._phase = GenerationPhase.START
        self._last_generation: Optional[GenerationOutput] = None
        self._num_generations = 0

    @classmethod
    def from_config(cls, config: PromptCacheConfig) -> "CachedLLM":
        """
        Configure logging, load the configured model with mlx-lm and wrap it.

        ``config.generation`` supplies the default decoding parameters.

        Raises:
            ConfigurationError: If the configuration does not validate.
            ModelLoadError: If the model cannot be loaded.
        """
        if not config.model.model_name:
            raise ConfigurationError("model_name is required", config_key="model.model_name")
        errors = config.validate()
        if errors:
            raise ConfigurationError(
                f"Invalid configuration: {'; '.join(errors)}",
                details={"errors": errors},
            )

        configure_logging(config.logging.level, config.logging.format_style)

        from .mlx_backend import MLXBackend

        backend = MLXBackend.load(
            config.model.model_name,
            trust_remote_code=config.model.trust_remote_code,
            growth_step=config.cache.growth_step,
            prefill_step_size=config.generation.prefill_step_size,
        )
        default_params = SamplingParams(
            max_tokens=config.generation.max_tokens,
            temperature=config.generation.temperature,
            top_p=config.generation.top_p,
        )
        return cls(backend, cache_config=config.cache, default_params=default_params)

    @property
    def model_name(self) -> str:
        return self._backend.model_name

    @property
    def backend(self) -> DecodeBackend:
        return self._backend

    @property
    def phase(self) -> GenerationPhase:
        """Phase of the current (or most recent) generation."""
        return self._phase

    @property
    def cache_manager(self) -> PromptCacheManager:
        return self._cache

    @property
    def cache_stats(self) -> PromptCacheStats:
        """Snapshot of the prompt cache counters."""
        return self._cache.get_stats()

    @property
    def last_generation(self) -> Optional[GenerationOutput]:
        return self._last_generation

    def clear_cache(self) -> None:
        """Drop all cached attention state."""
        self._cache.invalidate()

    def cancel(self) -> None:
        """
        Ask the running generation to stop.

        Observed before the next token is consumed; the tokens produced so
        far are still committed to the cache.
        """
        self._cancel_requested.set()

    async def start(self) -> None:
        """Start the decode worker (done lazily by the first generation)."""
        if self._executor is not None:
            return
        self._executor = ThreadPoolExecutor(
            max_workers=1, thread_name_prefix="promptcache-decode"
        )
        logger.info(f"CachedLLM started: {self._backend.model_name}")

    async def stop(self) -> None:
        """Stop the decode worker. Cached state is kept for the next start."""
        async with self._lock:
            if self._executor is None:
                return
            self._executor.shutdown(wait=True)
            self._executor = None
        logger.info("CachedLLM stopped")

    async def generate(
        self,
        input: Any,
        params: Optional[SamplingParams] = None,
    ) -> AsyncIterator[str]:
        """
        Stream the model's response to ``input`` as text chunks.

        Args:
            input: Prompt string or list of chat messages.
            params: Decoding parameters; defaults to the engine's ``default_params``.

        Yields:
            Text chunks in generation order.

        Raises:
            TokenizerError: If the input cannot be tokenized.
            ModelInferenceError: If the model fails while decoding.
        """
        params = params or self._default_params
        async with self._lock:
            await self.start()
            with RequestLogContext(f"gen-{uuid.uuid4().hex[:12]}") as log_ctx:
                self._cancel_requested.clear()
                self._num_generations += 1

                try:
                    turn = await self._prepare(log_ctx.request_id, input, params)
                except BaseException:
                    self._phase = GenerationPhase.FAILED
                    raise

                # DECODE_LOOP
                self._phase = GenerationPhase.DECODE_LOOP
                stop_ids = set(params.stop_token_ids)
                detokenizer = self._backend.new_detokenizer()
                iterator = self._backend.decode(turn.tokens_to_process, turn.buffers, params)
                in_flight: Optional[asyncio.Future] = None
                failed = False

                try:
                    while True:
                        if self._cancel_requested.is_set():
                            turn.finish_reason = "cancelled"
                            break
                        turn.decode_started = True
                        in_flight = self._submit(next, iterator, _EXHAUSTED)
                        try:
                            token = await asyncio.shield(in_flight)
                        except asyncio.CancelledError:
                            # The step keeps running on the worker; keep its token
                            turn.finish_reason = "cancelled"
                            token = await self._settle(in_flight)
                            if token is not _EXHAUSTED:
                                turn.generated.append(token)
                            raise
                        if token is _EXHAUSTED:
                            turn.finish_reason = "length"
                            break
                        turn.generated.append(token)
                        if token in stop_ids or self._backend.is_stop_token(token):
                            turn.finish_reason = "stop"
                            break
                        detokenizer.add_token(token)
                        segment = detokenizer.last_segment
                        if segment:
                            turn.text_parts.append(segment)
                            yield segment

                    if turn.finish_reason != "cancelled":
                        detokenizer.finalize()
                        segment = detokenizer.last_segment
                        if segment:
                            turn.text_parts.append(segment)
                            yield segment
                except (GeneratorExit, asyncio.CancelledError):
                    # Consumer closed the stream or the task was cancelled
                    turn.finish_reason = "cancelled"
                    raise
                except Exception as e:
                    turn.finish_reason = "error"
                    failed = True
                    if isinstance(e, PromptCacheError):
                        raise
                    raise ModelInferenceError(
                        f"Generation failed: {e}", details={"request_id": turn.request_id}
                    ) from e
                finally:
                    try:
                        if turn.finish_reason == "cancelled":
                            self._phase = GenerationPhase.CANCELLED
                            logger.info(f"Generation cancelled after {len(turn.generated)} tokens")
                        close = getattr(iterator, "close", None)
                        if close is not None and (in_flight is None or in_flight.done()):
                            close()
                    finally:
                        self._commit(turn, failed)

    def _submit(self, fn, *args) -> asyncio.Future:
        loop = asyncio.get_running_loop()
        return loop.run_in_executor(self._executor, fn, *args)

    async def _settle(self, in_flight: asyncio.Future) -> Any:
        """
        Wait for a decode step that outlived its consumer.

        Further cancellations are absorbed until the worker thread is done
        with the buffers. Returns the step's token, or ``_EXHAUSTED`` if the
        step produced none.
        """
        while not in_flight.done():
            try:
                await asyncio.shield(in_flight)
            except asyncio.CancelledError:
                continue
            except Exception:
                break
        if in_flight.cancelled():
            return _EXHAUSTED
        error = in_flight.exception()
        if error is not None:
            logger.warning(f"Decode step failed after cancellation: {error}")
            return _EXHAUSTED
        return in_flight.result()

    async def _prepare(
        self,
        request_id: str,
        input: Any,
        params: SamplingParams,
    ) -> _Turn:
        """PREPARE_INPUT and LOOKUP_CACHE."""
        self._phase = GenerationPhase.PREPARE_INPUT
        new_tokens = list(await self._submit(self._backend.tokenize, input))
        model_key = params.cache_key(self._backend.model_name)

        self._phase = GenerationPhase.LOOKUP_CACHE
        tokens_to_process, entry = self._cache.lookup(model_key, new_tokens)
        if entry is not None and not tokens_to_process:
            # Whole prompt is cached; re-feed its last token to get the next one
            tokens_to_process = self._cache.rewind(1)

        if entry is not None:
            buffers = entry.buffers
            prior_token_count = entry.num_tokens
        else:
            buffers = self._backend.new_empty_state()
            prior_token_count = 0

        turn = _Turn(
            request_id=request_id,
            model_key=model_key,
            new_tokens=new_tokens,
            tokens_to_process=tokens_to_process,
            buffers=buffers,
            had_entry=entry is not None,
            prior_token_count=prior_token_count,
        )
        logger.info(
            f"Generating: prompt={len(new_tokens)} tokens, cached={turn.cached_tokens}, "
            f"to_process={len(tokens_to_process)}"
        )
        return turn

    def _commit(self, turn: _Turn, failed: bool) -> None:
        """COMMIT: bank whatever the decode loop produced."""
        self._phase = GenerationPhase.COMMIT

        if not turn.decode_started:
            # Buffers were never handed to the model; the entry is unchanged
            pass
        elif failed and not turn.generated:
            # The model may have written part of the prompt before failing
            if turn.had_entry:
                logger.warning("Generation failed before producing a token; dropping cache")
                self._cache.invalidate()
        else:
            try:
                self._cache.commit(
                    turn.model_key,
                    turn.tokens_to_process,
                    turn.generated,
                    turn.buffers,
                    had_reusable_entry=turn.had_entry,
                    expected_prior_token_count=turn.prior_token_count,
                    full_prompt_tokens=turn.new_tokens,
                )
            except Exception as e:
                if not is_cache_corruption_error(e):
                    raise
                logger.error(f"Discarding inconsistent cache after generation: {e}")
                self._cache.invalidate()

        self._last_generation = GenerationOutput(
            request_id=turn.request_id,
            text="".join(turn.text_parts),
            tokens=list(turn.generated),
            prompt_tokens=len(turn.new_tokens),
            completion_tokens=len(turn.generated),
            cached_tokens=turn.cached_tokens,
            finish_reason=turn.finish_reason,
        )
        self._phase = GenerationPhase.FAILED if failed else GenerationPhase.DONE
        logger.debug(
            f"Generation finished: reason={turn.finish_reason}, "
            f"completion={len(turn.generated)} tokens"
        )

    def get_stats(self) -> Dict[str, Any]:
        """Get engine statistics."""
        entry = self._cache.entry
        return {
            "engine_type": "cached",
            "model_name": self._backend.model_name,
            "num_layers": self._backend.num_layers,
            "num_generations": self._num_generations,
            "phase": self._phase.value,
            "cached_tokens": entry.num_tokens if entry is not None else 0,
        }

    def get_cache_stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        stats = self._cache.get_stats().to_dict()
        entry = self._cache.entry
        stats["entry_tokens"] = entry.num_tokens if entry is not None else 0
        stats["entry_bytes"] = entry.nbytes if entry is not None else 0
        return stats
