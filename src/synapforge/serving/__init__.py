from synapforge.serving.config import ServingConfig
from synapforge.serving.engine import LLMEngine, ModelNotLoadedError

__all__ = ["LLMEngine", "ModelNotLoadedError", "ServingConfig"]
