import pytest
import torch

from synapforge.generation.config import EosSpec, GenerationConfig
from synapforge.generation.errors import ContextLengthError, GenerationFailed, SamplingError, SetupError
from synapforge.generation.generator import DecodeStatus, TextGeneration, resolve_eos

NO_PENALTY = GenerationConfig(max_tokens=16, repeat_penalty=1.0)


def _generation(model, tokenizer, config=NO_PENALTY, **kwargs):
    return TextGeneration(model, tokenizer, config, **kwargs)


@pytest.mark.quick
class TestTermination:
    def test_stops_on_eos(self, scripted_model, script_tokenizer):
        model = scripted_model([0, 1, 2, script_tokenizer.eos_token_id])
        result = _generation(model, script_tokenizer).generate("abc")

        assert result.text == "abc"
        assert result.tokens_generated == 4
        assert result.prompt_tokens == 3
        assert result.status is DecodeStatus.STOPPED
        assert result.finish_reason == "stop"

    def test_stops_on_any_of_multiple_eos_ids(self, scripted_model, script_tokenizer):
        model = scripted_model([0, 1, 13, 2], eos=EosSpec.multiple([2, 13]))
        result = _generation(model, script_tokenizer).generate("ab")

        assert result.tokens_generated == 3
        assert result.text == "ab"
        assert result.status is DecodeStatus.STOPPED

    def test_budget_exhaustion(self, scripted_model, script_tokenizer):
        model = scripted_model([0])
        config = GenerationConfig(max_tokens=5, repeat_penalty=1.0)
        result = _generation(model, script_tokenizer, config).generate("b")

        assert result.tokens_generated == 5
        assert result.text == "aaaaa"
        assert result.status is DecodeStatus.EXHAUSTED
        assert result.finish_reason == "length"

    def test_max_tokens_argument_overrides_config(self, scripted_model, script_tokenizer):
        result = _generation(scripted_model([3]), script_tokenizer).generate("a", max_tokens=2)
        assert result.tokens_generated == 2
        assert result.text == "dd"

    def test_budget_takes_precedence_over_eos(self, scripted_model, script_tokenizer):
        model = scripted_model([0, script_tokenizer.eos_token_id])
        config = GenerationConfig(max_tokens=2, repeat_penalty=1.0)
        result = _generation(model, script_tokenizer, config).generate("b")

        assert result.tokens_generated == 2
        assert result.text == "a"
        assert result.status is DecodeStatus.EXHAUSTED

    def test_history_reaching_context_window_exhausts(self, scripted_model, script_tokenizer):
        model = scripted_model([0], max_context=6)
        result = _generation(model, script_tokenizer).generate("abc")

        assert result.tokens_generated == 3
        assert result.status is DecodeStatus.EXHAUSTED

    def test_cancellation(self, scripted_model, script_tokenizer):
        polls = []

        def should_stop():
            polls.append(1)
            return len(polls) > 3

        result = _generation(scripted_model([0]), script_tokenizer, should_stop=should_stop).generate("b")
        assert result.tokens_generated == 3
        assert result.status is DecodeStatus.EXHAUSTED

    def test_zero_budget_is_rejected(self, scripted_model, script_tokenizer):
        with pytest.raises(ValueError):
            _generation(scripted_model([0]), script_tokenizer).generate("a", max_tokens=0)


@pytest.mark.quick
class TestContextSlicing:
    def test_kv_cache_feeds_one_token_after_prompt(self, scripted_model, script_tokenizer):
        model = scripted_model([0, 1, script_tokenizer.eos_token_id])
        _generation(model, script_tokenizer, use_kv_cache=True).generate("abc")

        assert model.calls == [([0, 1, 2], 0), ([0], 3), ([1], 4)]

    def test_without_cache_feeds_full_history(self, scripted_model, script_tokenizer):
        model = scripted_model([0, 1, script_tokenizer.eos_token_id])
        _generation(model, script_tokenizer, use_kv_cache=False).generate("abc")

        assert model.calls == [([0, 1, 2], 0), ([0, 1, 2, 0], 0), ([0, 1, 2, 0, 1], 0)]

    def test_cursor_never_exceeds_history(self, scripted_model, script_tokenizer):
        for use_kv_cache in (True, False):
            model = scripted_model([4], max_context=12)
            _generation(model, script_tokenizer, use_kv_cache=use_kv_cache).generate("abcd")
            history = 4
            for context, index_pos in model.calls:
                assert index_pos + len(context) == history
                history += 1


@pytest.mark.quick
class TestSetup:
    def test_empty_prompt(self, scripted_model, script_tokenizer):
        model = scripted_model([0])
        with pytest.raises(SetupError):
            _generation(model, script_tokenizer).generate("")
        assert model.calls == []

    def test_prompt_filling_context_window(self, scripted_model, script_tokenizer):
        model = scripted_model([0], max_context=4)
        with pytest.raises(ContextLengthError) as exc_info:
            _generation(model, script_tokenizer).generate("abcd")
        assert exc_info.value.prompt_tokens == 4
        assert exc_info.value.max_context == 4
        assert model.calls == []

    def test_unencodable_prompt(self, scripted_model, script_tokenizer):
        with pytest.raises(SetupError, match="encode"):
            _generation(scripted_model([0]), script_tokenizer).generate("xyz")

    def test_eos_falls_back_to_vocabulary_entry(self, scripted_model, script_tokenizer):
        model = scripted_model([0, script_tokenizer.eos_token_id], eos=None)
        result = _generation(model, script_tokenizer).generate("b")
        assert result.status is DecodeStatus.STOPPED
        assert result.text == "a"

    def test_unresolvable_eos(self, scripted_model, script_tokenizer):
        model = scripted_model([0], eos=None)
        with pytest.raises(SetupError):
            _generation(model, script_tokenizer, eos_token="<eos>").generate("b")

    def test_resolve_eos_prefers_model_config(self, scripted_model, script_tokenizer):
        model = scripted_model([0], eos=EosSpec.single(3))
        assert resolve_eos(model.spec, script_tokenizer) == EosSpec.single(3)


@pytest.mark.quick
class TestFailures:
    def test_forward_failure_carries_partial_text(self, scripted_model, script_tokenizer):
        model = scripted_model([0, 1, 2], fail_at=2)
        with pytest.raises(GenerationFailed) as exc_info:
            _generation(model, script_tokenizer).generate("c")

        assert exc_info.value.partial_text == "ab"
        assert exc_info.value.tokens_generated == 2
        assert isinstance(exc_info.value.__cause__, RuntimeError)

    def test_degenerate_logits_fail_the_generation(self, scripted_model, script_tokenizer):
        model = scripted_model([0, scripted_model.NAN])
        with pytest.raises(GenerationFailed) as exc_info:
            _generation(model, script_tokenizer).generate("c")
        assert isinstance(exc_info.value.__cause__, SamplingError)
        assert exc_info.value.partial_text == "a"


@pytest.mark.quick
class TestFragments:
    def test_fragments_are_reported_as_they_are_confirmed(self, scripted_model, script_tokenizer):
        model = scripted_model([7, 4, 11, 11, 13, script_tokenizer.eos_token_id])
        fragments = []
        result = _generation(model, script_tokenizer).generate("a", on_fragment=fragments.append)

        assert fragments == ["h", "e", "l", "l", "n"]
        assert "".join(fragments) == result.text

    def test_generator_is_reusable(self, scripted_model, script_tokenizer):
        generation = _generation(scripted_model([0, 1]), script_tokenizer, GenerationConfig(max_tokens=3))
        first = generation.generate("c")
        generation.model.calls.clear()
        second = generation.generate("c")
        assert first.text == second.text

    def test_reuse_restarts_the_seeded_random_stream(self, scripted_model, script_tokenizer):
        class FlatModel(scripted_model):
            def forward(self, context, index_pos, cache):
                self.calls.append((list(context), index_pos))
                logits = torch.zeros(self.spec.vocab_size)
                logits[14:] = -float("inf")
                return logits

        config = GenerationConfig(max_tokens=12, temperature=1.0, repeat_penalty=1.0, seed=5)
        generation = _generation(FlatModel([0]), script_tokenizer, config)
        first = generation.generate("a")
        second = generation.generate("a")
        fresh = _generation(FlatModel([0]), script_tokenizer, config).generate("a")

        assert first.tokens_generated == 12
        assert second.text == first.text
        assert fresh.text == first.text

    def test_repeat_penalty_changes_argmax(self, scripted_model, script_tokenizer):
        class TiedModel(scripted_model):
            def forward(self, context, index_pos, cache):
                self.calls.append((list(context), index_pos))
                logits = torch.full((self.spec.vocab_size,), -10.0)
                logits[0] = 2.0
                logits[1] = 1.9
                return logits

        config = GenerationConfig(max_tokens=2, repeat_penalty=1.5, repeat_last_n=4)
        result = _generation(TiedModel([0]), script_tokenizer, config).generate("a")
        assert result.text == "ba"

        no_penalty = GenerationConfig(max_tokens=2, repeat_penalty=1.0)
        result = _generation(TiedModel([0]), script_tokenizer, no_penalty).generate("a")
        assert result.text == "aa"


@pytest.mark.slow
class TestTinyLlama:
    def test_greedy_is_deterministic(self, tiny_model, char_tokenizer):
        config = GenerationConfig(max_tokens=8)
        first = TextGeneration(tiny_model, char_tokenizer, config).generate("hello")
        second = TextGeneration(tiny_model, char_tokenizer, config).generate("hello")
        assert first.text == second.text
        assert first.tokens_generated == second.tokens_generated

    def test_seeded_sampling_is_reproducible(self, tiny_model, char_tokenizer):
        config = GenerationConfig(max_tokens=8, temperature=0.9, top_k=10, seed=1234)
        first = TextGeneration(tiny_model, char_tokenizer, config).generate("hello")
        second = TextGeneration(tiny_model, char_tokenizer, config).generate("hello")
        assert first.text == second.text

    def test_kv_cache_matches_full_recompute(self, tiny_model, char_tokenizer):
        config = GenerationConfig(max_tokens=10, repeat_penalty=1.0)
        cached = TextGeneration(tiny_model, char_tokenizer, config, use_kv_cache=True).generate("the quick")
        uncached = TextGeneration(tiny_model, char_tokenizer, config, use_kv_cache=False).generate("the quick")
        assert cached.text == uncached.text
        assert cached.status is uncached.status
