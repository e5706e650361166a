import pytest
import torch
from transformers import LlamaConfig

from synapforge.generation.config import EosSpec, ModelSpec
from synapforge.models.cache import Cache
from synapforge.models.causal_lm import CausalLM
from synapforge.tokenization.simple_tokenizer import SimpleCharacterTokenizer

# 'a' -> 0 ... 'n' -> 13, '<PAD>' -> 14, '</s>' -> 15
SCRIPT_ALPHABET = "abcdefghijklmn"
SCRIPT_EOS_ID = 15


class ScriptedModel:
    """
    Forward-pass capability that favours one scripted token per step.

    Each script entry is the token id that receives the highest logit on that
    step (the last entry repeats), or ``NAN`` for an all-NaN logit vector.
    Every call is recorded as ``(context, index_pos)``.
    """

    NAN = "nan"

    def __init__(self, script, vocab_size=16, max_context=64, eos=EosSpec.single(SCRIPT_EOS_ID), fail_at=None):
        self.script = list(script)
        self.fail_at = fail_at
        self.calls: list[tuple[list[int], int]] = []
        self.spec = ModelSpec(
            vocab_size=vocab_size,
            max_context_length=max_context,
            eos=eos,
            dtype=torch.float32,
            device=torch.device("cpu"),
        )

    def new_cache(self, use_kv_cache, dtype=None, device=None):
        return Cache(
            use_kv_cache=use_kv_cache,
            dtype=dtype or torch.float32,
            device=device or torch.device("cpu"),
            max_seq_len=self.spec.max_context_length,
        )

    def forward(self, context, index_pos, cache):
        step = len(self.calls)
        self.calls.append((list(context), index_pos))
        cache.check_capacity(index_pos, len(context))
        if self.fail_at is not None and step == self.fail_at:
            raise RuntimeError("device lost")

        target = self.script[min(step, len(self.script) - 1)]
        if target == self.NAN:
            return torch.full((self.spec.vocab_size,), float("nan"))
        logits = torch.full((self.spec.vocab_size,), -10.0)
        logits[target] = 10.0
        return logits


@pytest.fixture
def script_tokenizer():
    """Character tokenizer whose ids line up with ``ScriptedModel`` scripts."""
    return SimpleCharacterTokenizer([SCRIPT_ALPHABET])


@pytest.fixture
def scripted_model():
    """Factory for ``ScriptedModel`` instances."""
    return ScriptedModel


@pytest.fixture
def char_tokenizer():
    return SimpleCharacterTokenizer(["hello world", "the quick brown fox jumps over the lazy dog", ".,!?"])


@pytest.fixture
def tiny_llama_config(char_tokenizer):
    """Minimal Llama configuration for fast tests (no download)."""
    return LlamaConfig(
        vocab_size=char_tokenizer.vocab_size,
        hidden_size=32,
        intermediate_size=64,
        num_hidden_layers=2,
        num_attention_heads=4,
        num_key_value_heads=4,
        max_position_embeddings=64,
        bos_token_id=None,
        eos_token_id=None,
        pad_token_id=char_tokenizer.pad_token_id,
    )


@pytest.fixture
def tiny_model(tiny_llama_config):
    return CausalLM.from_config(tiny_llama_config, device="cpu", dtype=torch.float32, seed=0)
