from .config import DEFAULT_SEED, MAX_SEED, EosSpec, GenerationConfig, ModelSpec
from .errors import (
    ContextLengthError,
    DetokenizationError,
    GenerationError,
    GenerationFailed,
    SamplingError,
    SetupError,
)
from .generator import DecodeState, DecodeStatus, GenerationResult, TextGeneration, resolve_eos
from .output_stream import TokenOutputStream
from .sampling import LogitsProcessor, apply_repeat_penalty, select_sampling

__all__ = [
    "DEFAULT_SEED",
    "MAX_SEED",
    "ContextLengthError",
    "DecodeState",
    "DecodeStatus",
    "DetokenizationError",
    "EosSpec",
    "GenerationConfig",
    "GenerationError",
    "GenerationFailed",
    "GenerationResult",
    "LogitsProcessor",
    "ModelSpec",
    "SamplingError",
    "SetupError",
    "TextGeneration",
    "TokenOutputStream",
    "apply_repeat_penalty",
    "resolve_eos",
    "select_sampling",
]
