from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from synapforge.generation.config import DEFAULT_MAX_TOKENS, DEFAULT_REPEAT_LAST_N, DEFAULT_REPEAT_PENALTY, DEFAULT_SEED


class ServingConfig(BaseSettings):
    """
    Serving Configuration using environment variables (prefix ``SYNAPFORGE_``).
    """

    # Model configuration
    model_id: str | None = None  # HF Hub repo id or local directory; None serves a tiny random model
    revision: str | None = None  # Pin a Hub revision (commit sha, branch or tag)
    hf_token: str | None = Field(default=None, validation_alias=AliasChoices("SYNAPFORGE_HF_TOKEN", "HF_TOKEN"))
    model_name: str | None = None  # Id reported by /v1/models (defaults to model_id)
    device: str = "auto"
    dtype: str = "auto"
    eos_token: str = "</s>"  # Fallback EOS vocabulary entry when the model config has none

    # Decode loop
    use_kv_cache: bool = True
    serialize_forward: bool = True  # One forward pass in flight at a time

    # Security & Observability
    api_key: str | None = None  # If set, requires this key for access
    log_level: str = "INFO"

    # Generation defaults
    default_max_tokens: int = DEFAULT_MAX_TOKENS
    max_tokens_cap: int = 4096
    default_temperature: float = 0.0
    seed: int = DEFAULT_SEED
    repeat_penalty: float = DEFAULT_REPEAT_PENALTY
    repeat_last_n: int = DEFAULT_REPEAT_LAST_N

    # Model Params (for dummy init if no model_id)
    hidden_size: int = 64
    num_layers: int = 2
    num_heads: int = 4
    max_seq_len: int = 256

    model_config = SettingsConfigDict(
        env_prefix="SYNAPFORGE_", env_file=".env", extra="ignore", protected_namespaces=()
    )

    @property
    def served_model_name(self) -> str:
        return self.model_name or self.model_id or "synapforge-dummy"
