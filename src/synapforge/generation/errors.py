"""
Exceptions raised by the decode controller.

Every error is scoped to a single generation: nothing here is retried and
nothing leaks into other in-flight generations.
"""

from __future__ import annotations


class GenerationError(RuntimeError):
    """Base class for all generation-scoped failures."""


class SetupError(GenerationError):
    """Raised before the first token when a generation cannot be started.

    Covers prompt encoding failures, cache construction failures, an
    unresolvable end-of-sequence configuration and prompts that do not fit
    into the model's context window.
    """


class ContextLengthError(SetupError):
    """The prompt alone fills the model's context window."""

    def __init__(self, prompt_tokens: int, max_context: int) -> None:
        super().__init__(
            f"Prompt is {prompt_tokens} tokens long but the model context window is {max_context} tokens"
        )
        self.prompt_tokens = prompt_tokens
        self.max_context = max_context


class SamplingError(GenerationError):
    """The logits handed to the sampling policy were unusable."""


class DetokenizationError(GenerationError):
    """A token span could not be decoded back into text."""


class GenerationFailed(GenerationError):
    """The decode loop terminated in the ``Failed`` state.

    ``partial_text`` holds whatever the detokenizer had confirmed before the
    failure. It may be empty and callers must not treat it as a result.
    """

    def __init__(self, message: str, *, partial_text: str = "", tokens_generated: int = 0) -> None:
        super().__init__(message)
        self.partial_text = partial_text
        self.tokens_generated = tokens_generated
