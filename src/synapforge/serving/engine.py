import logging
import string
import threading
import time
from collections.abc import Callable

import torch
from transformers import LlamaConfig

from synapforge.generation.config import GenerationConfig, ModelSpec
from synapforge.generation.generator import GenerationResult, TextGeneration
from synapforge.models.cache import Cache
from synapforge.models.causal_lm import CausalLM
from synapforge.serving.config import ServingConfig
from synapforge.tokenization.simple_tokenizer import SimpleCharacterTokenizer
from synapforge.tokenization.tokenizer import BaseTokenizer, HFTokenizer
from synapforge.utils.device import resolve_device, resolve_dtype

logger = logging.getLogger(__name__)


class ModelNotLoadedError(RuntimeError):
    """Raised when a request arrives while no model is loaded."""


class SerializedModel:
    """Forward-pass capability that lets one forward pass run at a time; other callers queue on the lock."""

    def __init__(self, model: CausalLM, lock: threading.Lock) -> None:
        self._model = model
        self._lock = lock
        self.spec: ModelSpec = model.spec

    def new_cache(
        self, use_kv_cache: bool, dtype: torch.dtype | None = None, device: torch.device | None = None
    ) -> Cache:
        return self._model.new_cache(use_kv_cache, dtype, device)

    def forward(self, context: list[int], index_pos: int, cache: Cache) -> torch.Tensor:
        with self._lock:
            return self._model.forward(context, index_pos, cache)


class LLMEngine:
    """
    LLM inference engine.

    Owns the shared, read-only model and tokenizer. Every call to :meth:`generate`
    builds its own :class:`TextGeneration` (sampler, detokenizer and cache), so
    concurrent generations never share mutable state.
    """

    def __init__(self, config: ServingConfig | None = None) -> None:
        self.config = config or ServingConfig()
        self.model: CausalLM | None = None
        self.tokenizer: BaseTokenizer | None = None
        self.loaded_at: int | None = None
        self._forward_lock = threading.Lock()

    @property
    def is_loaded(self) -> bool:
        return self.model is not None and self.tokenizer is not None

    @property
    def model_name(self) -> str:
        return self.config.served_model_name

    def load_model(self) -> None:
        """Load the model and tokenizer."""
        device = resolve_device(self.config.device)
        dtype = resolve_dtype(self.config.dtype, device)

        if self.config.model_id:
            logger.info(f"Loading tokenizer from {self.config.model_id}...")
            self.tokenizer = HFTokenizer.from_pretrained(
                self.config.model_id, revision=self.config.revision, token=self.config.hf_token
            )
            self.model = CausalLM.load(
                self.config.model_id,
                device=device,
                dtype=dtype,
                revision=self.config.revision,
                token=self.config.hf_token,
            )
        else:
            logger.warning("No model_id configured, serving a randomly initialised dummy model")
            self.tokenizer, self.model = self._build_dummy(device, dtype)

        self.loaded_at = int(time.time())
        logger.info(f"Model {self.model_name} loaded on {device} ({dtype})")

    def _build_dummy(self, device: torch.device, dtype: torch.dtype) -> tuple[SimpleCharacterTokenizer, CausalLM]:
        corpus = [
            "hello world",
            "this is a test",
            "the quick brown fox jumps over the lazy dog",
            string.printable,
        ]
        tokenizer = SimpleCharacterTokenizer(corpus)
        llama_config = LlamaConfig(
            vocab_size=tokenizer.vocab_size,
            hidden_size=self.config.hidden_size,
            intermediate_size=4 * self.config.hidden_size,
            num_hidden_layers=self.config.num_layers,
            num_attention_heads=self.config.num_heads,
            num_key_value_heads=self.config.num_heads,
            max_position_embeddings=self.config.max_seq_len,
            bos_token_id=None,
            eos_token_id=None,
            pad_token_id=tokenizer.pad_token_id,
        )
        model = CausalLM.from_config(llama_config, device=device, dtype=dtype, seed=self.config.seed)
        return tokenizer, model

    def unload_model(self) -> None:
        """Unload the model to free resources."""
        self.model = None
        self.tokenizer = None
        self.loaded_at = None

    def _require_loaded(self) -> tuple[CausalLM, BaseTokenizer]:
        model, tokenizer = self.model, self.tokenizer
        if model is None or tokenizer is None:
            raise ModelNotLoadedError("Model explicitly not loaded")
        return model, tokenizer

    def generation_config(
        self,
        max_tokens: int | None = None,
        temperature: float | None = None,
        top_k: int | None = None,
        top_p: float | None = None,
        repeat_penalty: float | None = None,
        repeat_last_n: int | None = None,
        seed: int | None = None,
    ) -> GenerationConfig:
        """
        Merge request parameters with the server defaults.

        Raises:
            ValueError: If a parameter is out of range or ``max_tokens`` exceeds the configured cap.
        """
        max_tokens = self.config.default_max_tokens if max_tokens is None else max_tokens
        if max_tokens > self.config.max_tokens_cap:
            raise ValueError(f"max_tokens must be at most {self.config.max_tokens_cap}")
        return GenerationConfig(
            max_tokens=max_tokens,
            temperature=self.config.default_temperature if temperature is None else temperature,
            top_k=top_k,
            top_p=top_p,
            repeat_penalty=self.config.repeat_penalty if repeat_penalty is None else repeat_penalty,
            repeat_last_n=self.config.repeat_last_n if repeat_last_n is None else repeat_last_n,
            seed=self.config.seed if seed is None else seed,
        )

    def generate(
        self,
        prompt: str,
        config: GenerationConfig | None = None,
        should_stop: Callable[[], bool] | None = None,
        on_fragment: Callable[[str], None] | None = None,
    ) -> GenerationResult:
        """Run one blocking generation. Call it from a worker thread, never from the event loop."""
        model, tokenizer = self._require_loaded()
        forward_model = SerializedModel(model, self._forward_lock) if self.config.serialize_forward else model

        text_gen = TextGeneration(
            forward_model,
            tokenizer,
            config or self.generation_config(),
            use_kv_cache=self.config.use_kv_cache,
            eos_token=self.config.eos_token,
            should_stop=should_stop,
        )
        return text_gen.generate(prompt, on_fragment=on_fragment)

    def build_chat_prompt(self, messages: list[dict[str, str]]) -> str:
        """Render chat messages with the tokenizer's chat template, or as ``role:content`` pairs."""
        _, tokenizer = self._require_loaded()
        if getattr(tokenizer, "has_chat_template", False):
            return tokenizer.apply_chat_template(messages)
        return " ".join(f"{m['role']}:{m['content']}" for m in messages)

    def embed(self, texts: list[str]) -> tuple[list[list[float]], int]:
        """Embed each text. Returns the vectors and the total number of input tokens."""
        model, tokenizer = self._require_loaded()
        vectors: list[list[float]] = []
        total_tokens = 0
        for text in texts:
            token_ids = tokenizer.encode(text, add_special_tokens=True)
            total_tokens += len(token_ids)
            with self._forward_lock:
                vectors.append(model.embed(token_ids))
        return vectors, total_tokens
