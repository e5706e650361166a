"""
Forward-pass capability backed by a HuggingFace causal language model.

Only the interface matters to the decode controller: ``forward`` maps a
context slice plus its cache position to next-token logits, and
``new_cache`` hands out a fresh cache for one generation.
"""

import logging

import torch
from transformers import AutoModelForCausalLM, DynamicCache, LlamaConfig, LlamaForCausalLM, PreTrainedModel

from synapforge.generation.config import EosSpec, ModelSpec
from synapforge.models.cache import Cache

logger = logging.getLogger(__name__)


class CausalLM:
    """
    Thin wrapper exposing a ``transformers`` causal LM as a forward-pass capability.

    The wrapped weights are read-only after loading, so one instance may be
    shared by concurrent generations as long as each brings its own :class:`Cache`.
    """

    def __init__(self, model: PreTrainedModel, device: torch.device, dtype: torch.dtype) -> None:
        self.model = model.to(device=device, dtype=dtype)
        self.model.eval()
        self.device = device
        self.dtype = dtype

        config = self.model.config
        self.spec = ModelSpec(
            vocab_size=config.vocab_size,
            max_context_length=getattr(config, "max_position_embeddings", 2048),
            eos=EosSpec.from_value(getattr(config, "eos_token_id", None)),
            dtype=dtype,
            device=device,
        )

    @classmethod
    def load(
        cls,
        model_id: str,
        device: torch.device,
        dtype: torch.dtype,
        revision: str | None = None,
        token: str | None = None,
    ) -> "CausalLM":
        """Load pretrained weights from the HuggingFace Hub or a local directory."""
        logger.info(f"Loading model {model_id} (revision={revision}) on {device} with dtype {dtype}")
        model = AutoModelForCausalLM.from_pretrained(model_id, revision=revision, token=token, torch_dtype=dtype)
        return cls(model, device=device, dtype=dtype)

    @classmethod
    def from_config(
        cls,
        config: LlamaConfig,
        device: torch.device | str = "cpu",
        dtype: torch.dtype = torch.float32,
        seed: int = 0,
    ) -> "CausalLM":
        """Build a randomly initialised Llama model (no download). Weights depend only on ``seed``."""
        with torch.random.fork_rng(devices=[]):
            torch.manual_seed(seed)
            model = LlamaForCausalLM(config)
        return cls(model, device=torch.device(device), dtype=dtype)

    def new_cache(
        self, use_kv_cache: bool, dtype: torch.dtype | None = None, device: torch.device | None = None
    ) -> Cache:
        """Create an empty cache for one generation."""
        return Cache(
            use_kv_cache=use_kv_cache,
            dtype=dtype or self.dtype,
            device=device or self.device,
            max_seq_len=self.spec.max_context_length,
            state=DynamicCache() if use_kv_cache else None,
        )

    @torch.inference_mode()
    def forward(self, context: list[int], index_pos: int, cache: Cache) -> torch.Tensor:
        """
        Run the model on ``context`` placed at position ``index_pos``.

        Args:
            context: Token ids to feed: the whole history on the first step, or
                only the newest token when ``cache`` already holds the rest.
            index_pos: Position of ``context[0]`` in the sequence.
            cache: Cache of the calling generation; updated in place.

        Returns:
            Float32 logits of shape [vocab_size] for the token following ``context``.
        """
        if not context:
            raise ValueError("forward() needs at least one context token")
        cache.check_capacity(index_pos, len(context))

        input_ids = torch.tensor([context], dtype=torch.long, device=self.device)
        position_ids = torch.arange(index_pos, index_pos + len(context), device=self.device).unsqueeze(0)
        outputs = self.model(
            input_ids=input_ids,
            position_ids=position_ids,
            past_key_values=cache.state,
            use_cache=cache.use_kv_cache,
        )
        if cache.use_kv_cache:
            cache.state = outputs.past_key_values
        return outputs.logits[0, -1, :].float()

    @torch.inference_mode()
    def embed(self, token_ids: list[int]) -> list[float]:
        """Mean-pooled, L2-normalised final hidden state of ``token_ids``."""
        if not token_ids:
            raise ValueError("Cannot embed an empty token sequence")
        input_ids = torch.tensor([token_ids], dtype=torch.long, device=self.device)
        outputs = self.model(input_ids=input_ids, output_hidden_states=True, use_cache=False)
        pooled = outputs.hidden_states[-1][0].float().mean(dim=0)
        pooled = torch.nn.functional.normalize(pooled, dim=-1)
        return pooled.cpu().tolist()
