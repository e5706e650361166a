import torch

_DTYPES = {
    "float16": torch.float16,
    "fp16": torch.float16,
    "bfloat16": torch.bfloat16,
    "bf16": torch.bfloat16,
    "float32": torch.float32,
    "fp32": torch.float32,
}


def resolve_device(name: str = "auto") -> torch.device:
    """
    Pick the device to run the model on.

    ``"auto"`` prefers CUDA, then Apple MPS, then falls back to the CPU.
    Any other value is passed to :class:`torch.device` unchanged.
    """
    if name != "auto":
        return torch.device(name)
    if torch.cuda.is_available():
        return torch.device("cuda")
    if torch.backends.mps.is_available():
        return torch.device("mps")
    return torch.device("cpu")


def resolve_dtype(name: str, device: torch.device) -> torch.dtype:
    """
    Map a dtype name onto a torch dtype.

    ``"auto"`` selects float16 on accelerators and float32 on the CPU, where
    half precision matmuls are slow or unsupported.

    Raises:
        ValueError: When the name is not a supported floating point type.
    """
    if name == "auto":
        return torch.float32 if device.type == "cpu" else torch.float16
    try:
        return _DTYPES[name.lower()]
    except KeyError:
        raise ValueError(f"Unsupported dtype: {name}. Supported dtypes are: {sorted(_DTYPES)}") from None
