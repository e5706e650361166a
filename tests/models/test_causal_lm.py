"""Tests for the transformers-backed forward-pass capability and its cache."""

import pytest
import torch

from synapforge.generation.config import EosSpec
from synapforge.models.cache import Cache
from synapforge.models.causal_lm import CausalLM


@pytest.mark.quick
class TestCache:
    def test_disabled_cache_holds_no_state(self):
        cache = Cache(use_kv_cache=False, dtype=torch.float32, device=torch.device("cpu"), max_seq_len=8, state=[])
        assert cache.state is None
        assert cache.seq_len == 0

    def test_check_capacity(self):
        cache = Cache(use_kv_cache=True, dtype=torch.float32, device=torch.device("cpu"), max_seq_len=8)
        cache.check_capacity(4, 4)
        with pytest.raises(ValueError, match="Cache overflow"):
            cache.check_capacity(7, 2)


@pytest.mark.slow
class TestCausalLM:
    def test_spec_from_config(self, tiny_model, tiny_llama_config):
        spec = tiny_model.spec
        assert spec.vocab_size == tiny_llama_config.vocab_size
        assert spec.max_context_length == 64
        assert spec.eos is None
        assert spec.dtype == torch.float32
        assert spec.device == torch.device("cpu")

    def test_spec_reads_eos_ids(self, tiny_llama_config):
        tiny_llama_config.eos_token_id = [3, 5]
        model = CausalLM.from_config(tiny_llama_config)
        assert model.spec.eos == EosSpec.multiple([3, 5])

    def test_same_seed_same_weights(self, tiny_llama_config):
        a = CausalLM.from_config(tiny_llama_config, seed=3)
        b = CausalLM.from_config(tiny_llama_config, seed=3)
        for pa, pb in zip(a.model.parameters(), b.model.parameters()):
            assert torch.equal(pa, pb)

    def test_forward_returns_vocab_logits(self, tiny_model):
        cache = tiny_model.new_cache(use_kv_cache=True)
        logits = tiny_model.forward([1, 2, 3], 0, cache)
        assert logits.shape == (tiny_model.spec.vocab_size,)
        assert logits.dtype == torch.float32
        assert cache.seq_len == 3

    def test_incremental_forward_matches_full_recompute(self, tiny_model):
        tokens = [4, 7, 1, 9, 2]

        full = tiny_model.forward(tokens, 0, tiny_model.new_cache(use_kv_cache=False))

        cache = tiny_model.new_cache(use_kv_cache=True)
        tiny_model.forward(tokens[:3], 0, cache)
        tiny_model.forward(tokens[3:4], 3, cache)
        incremental = tiny_model.forward(tokens[4:], 4, cache)

        assert cache.seq_len == len(tokens)
        assert torch.allclose(full, incremental, atol=1e-4)

    def test_cache_overflow(self, tiny_model):
        cache = tiny_model.new_cache(use_kv_cache=True)
        with pytest.raises(ValueError):
            tiny_model.forward([1], 64, cache)

    def test_empty_context(self, tiny_model):
        with pytest.raises(ValueError):
            tiny_model.forward([], 0, tiny_model.new_cache(use_kv_cache=True))

    def test_cache_reset(self, tiny_model):
        cache = tiny_model.new_cache(use_kv_cache=True)
        tiny_model.forward([1, 2], 0, cache)
        cache.reset()
        assert cache.seq_len == 0

    def test_embed_is_normalised(self, tiny_model):
        vector = tiny_model.embed([1, 2, 3])
        assert len(vector) == 32
        assert abs(sum(v * v for v in vector) - 1.0) < 1e-4

    def test_embed_rejects_empty_input(self, tiny_model):
        with pytest.raises(ValueError):
            tiny_model.embed([])
