"""
Per-generation configuration.

``GenerationConfig`` is the single named structure that carries every
sampling and budget parameter of one request. ``EosSpec`` describes which
token ids end a generation and ``ModelSpec`` the static facts of the served model.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

import torch

DEFAULT_SEED = 299792458
DEFAULT_MAX_TOKENS = 64
DEFAULT_REPEAT_PENALTY = 1.1
DEFAULT_REPEAT_LAST_N = 64
MAX_SEED = 2**64 - 1


@dataclass(frozen=True)
class GenerationConfig:
    """Sampling and budget parameters for one generation.

    Attributes:
        max_tokens: Maximum number of new tokens to generate (prompt excluded).
        temperature: Softmax temperature. ``0`` (or less) selects ArgMax decoding.
        top_k: Restrict sampling to the ``k`` most likely tokens. ``None`` disables it.
        top_p: Nucleus sampling threshold in ``(0, 1]``. ``None`` disables it.
        repeat_penalty: Factor applied to logits of recently seen tokens. ``1.0`` disables it.
        repeat_last_n: Number of trailing history tokens considered by the repeat penalty.
        seed: Seed of the sampling policy's random generator.
    """

    max_tokens: int = DEFAULT_MAX_TOKENS
    temperature: float = 0.0
    top_k: int | None = None
    top_p: float | None = None
    repeat_penalty: float = DEFAULT_REPEAT_PENALTY
    repeat_last_n: int = DEFAULT_REPEAT_LAST_N
    seed: int = DEFAULT_SEED

    def __post_init__(self):
        if self.max_tokens < 1:
            raise ValueError("max_tokens must be at least 1")
        if self.temperature < 0:
            raise ValueError("temperature must be non-negative")
        if self.top_k is not None and self.top_k < 1:
            raise ValueError("top_k must be a positive integer")
        if self.top_p is not None and not 0.0 < self.top_p <= 1.0:
            raise ValueError("top_p must be in (0, 1]")
        if self.repeat_penalty < 1.0:
            raise ValueError("repeat_penalty must be >= 1.0")
        if self.repeat_last_n < 0:
            raise ValueError("repeat_last_n must be non-negative")
        if not 0 <= self.seed <= MAX_SEED:
            raise ValueError(f"seed must be in [0, {MAX_SEED}]")


@dataclass(frozen=True)
class EosSpec:
    """One or more token ids that terminate a generation."""

    token_ids: frozenset[int]

    def __post_init__(self):
        if not self.token_ids:
            raise ValueError("EosSpec needs at least one token id")

    @classmethod
    def single(cls, token_id: int) -> EosSpec:
        return cls(frozenset([token_id]))

    @classmethod
    def multiple(cls, token_ids: Iterable[int]) -> EosSpec:
        return cls(frozenset(token_ids))

    @classmethod
    def from_value(cls, value: int | Iterable[int] | None) -> EosSpec | None:
        """Build a spec from a model-config style value (int, list of ints or ``None``)."""
        if value is None:
            return None
        if isinstance(value, int):
            return cls.single(value)
        ids = list(value)
        return cls.multiple(ids) if ids else None

    @property
    def is_single(self) -> bool:
        return len(self.token_ids) == 1

    def matches(self, token_id: int) -> bool:
        return token_id in self.token_ids


@dataclass(frozen=True)
class ModelSpec:
    """Static facts about a loaded model that the decode controller relies on."""

    vocab_size: int
    max_context_length: int
    eos: EosSpec | None
    dtype: torch.dtype
    device: torch.device
