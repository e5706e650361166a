"""
Attention cache owned by a single generation.

The decode controller asks the model for a fresh :class:`Cache` at the start
of every generation and drops it when the loop ends; a cache is never shared
between generations.
"""

from __future__ import annotations

from typing import Any

import torch


class Cache:
    """Per-generation key/value cache handle.

    Args:
        use_kv_cache: When False the model recomputes the full history on every step.
        dtype: Data type of the cached tensors.
        device: Device the cached tensors live on.
        max_seq_len: Maximum number of positions the cache may hold.
        state: Backend specific key/value storage (``None`` when caching is disabled).
    """

    def __init__(
        self,
        use_kv_cache: bool,
        dtype: torch.dtype,
        device: torch.device,
        max_seq_len: int,
        state: Any = None,
    ) -> None:
        self.use_kv_cache = use_kv_cache
        self.dtype = dtype
        self.device = device
        self.max_seq_len = max_seq_len
        self.state = state if use_kv_cache else None

    @property
    def seq_len(self) -> int:
        """Number of positions currently folded into the cache."""
        if self.state is None:
            return 0
        return int(self.state.get_seq_length())

    def check_capacity(self, index_pos: int, new_tokens: int) -> None:
        """
        Raises:
            ValueError: If writing ``new_tokens`` at ``index_pos`` would exceed ``max_seq_len``.
        """
        if index_pos + new_tokens > self.max_seq_len:
            raise ValueError(
                f"Cache overflow: trying to cache {index_pos + new_tokens} tokens, but max_seq_len is {self.max_seq_len}"
            )

    def reset(self) -> None:
        """Reset cache to empty state."""
        if self.state is not None:
            self.state = type(self.state)()
