"""
Autoregressive decode controller.

``TextGeneration`` turns a prompt into text by repeatedly running the model,
adjusting and sampling its logits, checking for termination and feeding the
chosen tokens to an incremental detokenizer.

A generation moves through ``SEEDING -> STEPPING -> (STOPPED | EXHAUSTED | FAILED)``.
All state it mutates (token history, cache, detokenizer, random generator)
belongs to that generation alone.
"""

from __future__ import annotations

import enum
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Protocol

import torch

from synapforge.generation.config import EosSpec, GenerationConfig, ModelSpec
from synapforge.generation.errors import ContextLengthError, GenerationFailed, SetupError
from synapforge.generation.output_stream import TokenOutputStream
from synapforge.generation.sampling import LogitsProcessor, apply_repeat_penalty
from synapforge.models.cache import Cache
from synapforge.tokenization.tokenizer import BaseTokenizer

logger = logging.getLogger(__name__)


class ForwardModel(Protocol):
    """Forward-pass capability required by the controller."""

    spec: ModelSpec

    def forward(self, context: list[int], index_pos: int, cache: Cache) -> torch.Tensor: ...

    def new_cache(
        self, use_kv_cache: bool, dtype: torch.dtype | None = None, device: torch.device | None = None
    ) -> Cache: ...


class DecodeStatus(enum.Enum):
    SEEDING = "seeding"
    STEPPING = "stepping"
    STOPPED = "stopped"
    EXHAUSTED = "exhausted"
    FAILED = "failed"

    @property
    def finish_reason(self) -> str | None:
        """OpenAI ``finish_reason`` for a terminal state."""
        return {DecodeStatus.STOPPED: "stop", DecodeStatus.EXHAUSTED: "length"}.get(self)


@dataclass
class DecodeState:
    """Mutable bookkeeping of one in-flight generation. The token list is append-only."""

    tokens: list[int]
    prompt_tokens: int
    index_pos: int = 0
    generated: int = 0
    started_at: float = field(default_factory=time.perf_counter)
    start_gen: float = field(default_factory=time.perf_counter)

    def tokens_per_second(self) -> float:
        # The first token includes prompt processing, so throughput is measured from the second one.
        elapsed = time.perf_counter() - self.start_gen
        if self.generated < 2 or elapsed <= 0:
            return 0.0
        return (self.generated - 1) / elapsed


@dataclass(frozen=True)
class GenerationResult:
    text: str
    tokens_generated: int
    prompt_tokens: int
    status: DecodeStatus
    elapsed: float
    tokens_per_second: float

    @property
    def finish_reason(self) -> str | None:
        return self.status.finish_reason


def resolve_eos(spec: ModelSpec, tokenizer: BaseTokenizer, fallback_token: str = "</s>") -> EosSpec:
    """
    Resolve the end-of-sequence ids for a generation.

    The model configuration wins; otherwise the tokenizer's ``fallback_token`` is looked up.

    Raises:
        SetupError: If neither source yields a token id.
    """
    if spec.eos is not None:
        return spec.eos
    token_id = tokenizer.token_to_id(fallback_token)
    if token_id is None:
        raise SetupError(f"No EOS token configured and '{fallback_token}' is not in the vocabulary")
    return EosSpec.single(token_id)


class TextGeneration:
    """
    Drives one generation at a time over a shared model and tokenizer.

    Args:
        model: Forward-pass capability.
        tokenizer: Tokenizer capability used for encoding and incremental decoding.
        config: Sampling and budget parameters.
        use_kv_cache: Feed only the newest token after the first step and rely on the cache.
        eos_token: Vocabulary entry used as EOS when the model config names none.
        should_stop: Optional cooperative cancellation check, polled once per step.
    """

    def __init__(
        self,
        model: ForwardModel,
        tokenizer: BaseTokenizer,
        config: GenerationConfig | None = None,
        use_kv_cache: bool = True,
        eos_token: str = "</s>",
        should_stop: Callable[[], bool] | None = None,
    ) -> None:
        self.model = model
        self.config = config or GenerationConfig()
        self.tokenizer = TokenOutputStream(tokenizer)
        self.logits_processor = LogitsProcessor.from_params(
            self.config.seed, self.config.temperature, self.config.top_k, self.config.top_p
        )
        self.use_kv_cache = use_kv_cache
        self.eos_token = eos_token
        self.should_stop = should_stop

    def _seed(self, prompt: str) -> tuple[DecodeState, EosSpec, Cache]:
        self.tokenizer.clear()
        self.logits_processor.reset()
        try:
            tokens = list(self.tokenizer.tokenizer.encode(prompt, add_special_tokens=True))
        except Exception as e:
            raise SetupError(f"Failed to encode prompt: {e}") from e
        if not tokens:
            raise SetupError("Prompt encodes to an empty token sequence")

        max_context = self.model.spec.max_context_length
        if len(tokens) >= max_context:
            raise ContextLengthError(len(tokens), max_context)

        eos = resolve_eos(self.model.spec, self.tokenizer.tokenizer, self.eos_token)
        logger.debug(f"Prompt encoded to {len(tokens)} tokens, EOS ids {sorted(eos.token_ids)}")

        try:
            cache = self.model.new_cache(self.use_kv_cache, self.model.spec.dtype, self.model.spec.device)
        except Exception as e:
            raise SetupError(f"Failed to create attention cache: {e}") from e

        return DecodeState(tokens=tokens, prompt_tokens=len(tokens)), eos, cache

    def _step(self, state: DecodeState, cache: Cache) -> int:
        tokens = state.tokens
        if cache.use_kv_cache and state.generated > 0:
            context_size, context_index = 1, state.index_pos
        else:
            context_size, context_index = len(tokens), 0
        if state.generated == 1:
            state.start_gen = time.perf_counter()

        ctxt = tokens[len(tokens) - context_size :]
        logits = self.model.forward(ctxt, context_index, cache)

        if self.config.repeat_penalty != 1.0:
            start_at = max(len(tokens) - self.config.repeat_last_n, 0)
            logits = apply_repeat_penalty(logits, self.config.repeat_penalty, tokens[start_at:])
        state.index_pos = context_index + len(ctxt)

        next_token = self.logits_processor.sample(logits)
        tokens.append(next_token)
        state.generated += 1
        return next_token

    def generate(
        self,
        prompt: str,
        max_tokens: int | None = None,
        on_fragment: Callable[[str], None] | None = None,
    ) -> GenerationResult:
        """
        Generate a continuation of ``prompt``.

        Args:
            prompt: Prompt text.
            max_tokens: Token budget; defaults to ``config.max_tokens``.
            on_fragment: Called with every confirmed text fragment as soon as it is available.

        Returns:
            The assembled text and the number of generated tokens (prompt excluded).

        Raises:
            SetupError: If the generation cannot start. No token has been produced.
            GenerationFailed: If a step fails. Carries the partial text confirmed so far.
        """
        budget = self.config.max_tokens if max_tokens is None else max_tokens
        if budget < 1:
            raise ValueError("max_tokens must be at least 1")

        state, eos, cache = self._seed(prompt)
        max_context = self.model.spec.max_context_length
        pieces: list[str] = []

        def emit(fragment: str | None) -> None:
            if fragment:
                pieces.append(fragment)
                if on_fragment is not None:
                    on_fragment(fragment)

        status = DecodeStatus.STEPPING
        try:
            while status is DecodeStatus.STEPPING:
                if self.should_stop is not None and self.should_stop():
                    logger.info(f"Generation cancelled after {state.generated} tokens")
                    status = DecodeStatus.EXHAUSTED
                    break

                next_token = self._step(state, cache)
                is_eos = eos.matches(next_token)
                if not is_eos:
                    emit(self.tokenizer.next_token(next_token))

                if state.generated >= budget or len(state.tokens) >= max_context:
                    status = DecodeStatus.EXHAUSTED
                elif is_eos:
                    status = DecodeStatus.STOPPED

                logger.debug(f"{state.generated} tokens generated ({state.tokens_per_second():.2f} token/s)")

            emit(self.tokenizer.decode_rest())
        except Exception as e:
            logger.warning(f"Generation failed after {state.generated} tokens: {e}")
            raise GenerationFailed(
                f"Generation failed: {e}", partial_text="".join(pieces), tokens_generated=state.generated
            ) from e

        result = GenerationResult(
            text="".join(pieces),
            tokens_generated=state.generated,
            prompt_tokens=state.prompt_tokens,
            status=status,
            elapsed=time.perf_counter() - state.started_at,
            tokens_per_second=state.tokens_per_second(),
        )
        logger.info(
            f"{result.tokens_generated} tokens generated ({result.tokens_per_second:.2f} token/s), "
            f"finished as {status.value}"
        )
        return result
