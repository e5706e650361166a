from .cache import Cache
from .causal_lm import CausalLM

__all__ = ["Cache", "CausalLM"]
