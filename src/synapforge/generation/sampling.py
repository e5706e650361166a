"""
Sampling policy and logit adjustments for autoregressive decoding.

The strategy is chosen once per generation from ``(temperature, top_k, top_p)``
and stays fixed; the processor owns its own seeded generator so identical
inputs reproduce identical token sequences.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

import torch

from synapforge.generation.errors import SamplingError


@dataclass(frozen=True)
class ArgMax:
    """Deterministic decoding: always pick the highest logit (lowest index on ties)."""


@dataclass(frozen=True)
class All:
    """Sample from the full temperature-scaled distribution."""

    temperature: float


@dataclass(frozen=True)
class TopK:
    k: int
    temperature: float


@dataclass(frozen=True)
class TopP:
    p: float
    temperature: float


@dataclass(frozen=True)
class TopKThenTopP:
    k: int
    p: float
    temperature: float


Sampling = ArgMax | All | TopK | TopP | TopKThenTopP


def select_sampling(temperature: float | None, top_k: int | None, top_p: float | None) -> Sampling:
    """Map request parameters onto a sampling strategy."""
    temperature = temperature or 0.0
    if temperature <= 0.0:
        return ArgMax()

    match (top_k, top_p):
        case (None, None):
            return All(temperature=temperature)
        case (k, None):
            return TopK(k=k, temperature=temperature)
        case (None, p):
            return TopP(p=p, temperature=temperature)
        case (k, p):
            return TopKThenTopP(k=k, p=p, temperature=temperature)


def apply_repeat_penalty(logits: torch.Tensor, penalty: float, context: Sequence[int]) -> torch.Tensor:
    """
    Lower the scores of tokens present in ``context``.

    Positive logits are divided by ``penalty`` and negative ones multiplied,
    so the token always becomes less likely (https://arxiv.org/abs/1909.05858).

    Args:
        logits: 1-D logits of size V.
        penalty: Penalty factor, ``> 1`` to discourage repetition.
        context: Recent token ids. Duplicates are penalised once.

    Returns:
        A new tensor with the penalised logits.
    """
    logits = logits.clone()
    vocab_size = logits.size(-1)
    token_ids = sorted({t for t in context if 0 <= t < vocab_size})
    if not token_ids:
        return logits

    index = torch.tensor(token_ids, dtype=torch.long, device=logits.device)
    score = logits.index_select(0, index)
    score = torch.where(score >= 0, score / penalty, score * penalty)
    logits.index_copy_(0, index, score)
    return logits


class LogitsProcessor:
    """Turns a logit vector into a token id according to a fixed :data:`Sampling` strategy."""

    def __init__(self, seed: int, sampling: Sampling) -> None:
        self.seed = seed
        self.sampling = sampling
        self.generator = torch.Generator(device="cpu")
        self.generator.manual_seed(seed)

    def reset(self) -> None:
        """Rewind the random stream to its seed so the next generation reproduces the first."""
        self.generator.manual_seed(self.seed)

    @classmethod
    def from_params(
        cls, seed: int, temperature: float | None, top_k: int | None = None, top_p: float | None = None
    ) -> LogitsProcessor:
        return cls(seed, select_sampling(temperature, top_k, top_p))

    def sample(self, logits: torch.Tensor) -> int:
        """
        Choose the next token.

        Raises:
            SamplingError: If ``logits`` holds no finite value.
        """
        logits = logits.detach().reshape(-1).to(device="cpu", dtype=torch.float32)
        finite = torch.isfinite(logits)
        if not bool(finite.any()):
            raise SamplingError("Logits contain no finite values")
        logits = torch.where(torch.isnan(logits), torch.full_like(logits, -float("inf")), logits)
        # +inf dominates every finite score: sample uniformly among the +inf entries.
        posinf = torch.isposinf(logits)
        if bool(posinf.any()):
            logits = torch.where(posinf, torch.zeros_like(logits), torch.full_like(logits, -float("inf")))

        match self.sampling:
            case ArgMax():
                return int(torch.argmax(logits).item())
            case All(temperature=t):
                return self._sample_multinomial(torch.softmax(logits / t, dim=-1))
            case TopK(k=k, temperature=t):
                return self._sample_topk(torch.softmax(logits / t, dim=-1), k)
            case TopP(p=p, temperature=t):
                return self._sample_topp(torch.softmax(logits / t, dim=-1), p)
            case TopKThenTopP(k=k, p=p, temperature=t):
                return self._sample_topk_topp(torch.softmax(logits / t, dim=-1), k, p)
        raise SamplingError(f"Unsupported sampling strategy: {self.sampling!r}")

    def _sample_multinomial(self, probs: torch.Tensor) -> int:
        if not bool(torch.isfinite(probs).all()) or float(probs.sum()) <= 0.0:
            raise SamplingError("Sampling distribution is degenerate")
        return int(torch.multinomial(probs, num_samples=1, generator=self.generator).item())

    @staticmethod
    def _restrict_topk(probs: torch.Tensor, k: int) -> torch.Tensor:
        if k >= probs.size(-1):
            return probs
        values, indices = torch.topk(probs, k)
        restricted = torch.zeros_like(probs)
        restricted[indices] = values
        return restricted / restricted.sum()

    @staticmethod
    def _restrict_topp(probs: torch.Tensor, p: float) -> torch.Tensor:
        if p >= 1.0:
            return probs
        sorted_probs, sorted_indices = torch.sort(probs, descending=True, stable=True)
        cumulative = torch.cumsum(sorted_probs, dim=-1)
        # Keep a token while the mass before it is still short of p; the first token always survives.
        keep = (cumulative - sorted_probs) < p
        keep[0] = True
        restricted = torch.zeros_like(probs)
        restricted[sorted_indices[keep]] = sorted_probs[keep]
        return restricted / restricted.sum()

    def _sample_topk(self, probs: torch.Tensor, k: int) -> int:
        return self._sample_multinomial(self._restrict_topk(probs, k))

    def _sample_topp(self, probs: torch.Tensor, p: float) -> int:
        return self._sample_multinomial(self._restrict_topp(probs, p))

    def _sample_topk_topp(self, probs: torch.Tensor, k: int, p: float) -> int:
        return self._sample_multinomial(self._restrict_topp(self._restrict_topk(probs, k), p))
