from typing import Protocol


class BaseTokenizer(Protocol):
    """
    Tokenizer capability consumed by the decode controller.

    Implementations must be deterministic and keep no state between calls.
    """

    vocab_size: int
    eos_token: str | None

    def encode(self, text: str, add_special_tokens: bool = True) -> list[int]:
        """Encodes a string into a list of token IDs."""
        ...

    def decode(self, tokens: list[int], skip_special_tokens: bool = True) -> str:
        """Decodes a list of token IDs back into a string."""
        ...

    def token_to_id(self, token: str) -> int | None:
        """Looks up the id of a single vocabulary entry."""
        ...


class HFTokenizer:
    """
    Wrapper for HuggingFace Transformers Tokenizers.
    """

    def __init__(self, model_name_or_path: str, revision: str | None = None, token: str | None = None):
        from transformers import AutoTokenizer

        self._tokenizer = AutoTokenizer.from_pretrained(model_name_or_path, revision=revision, token=token)

    @property
    def vocab_size(self) -> int:
        return len(self._tokenizer)

    @property
    def eos_token(self) -> str | None:
        return self._tokenizer.eos_token

    @property
    def eos_token_id(self) -> int | None:
        return self._tokenizer.eos_token_id

    @property
    def has_chat_template(self) -> bool:
        return bool(getattr(self._tokenizer, "chat_template", None))

    def encode(self, text: str, add_special_tokens: bool = True) -> list[int]:
        return self._tokenizer.encode(text, add_special_tokens=add_special_tokens)

    def decode(self, tokens: list[int], skip_special_tokens: bool = True) -> str:
        return self._tokenizer.decode(tokens, skip_special_tokens=skip_special_tokens)

    def token_to_id(self, token: str) -> int | None:
        return self._tokenizer.get_vocab().get(token)

    def apply_chat_template(self, messages: list[dict[str, str]]) -> str:
        """Render chat messages into a single prompt ending with the assistant turn."""
        return self._tokenizer.apply_chat_template(messages, tokenize=False, add_generation_prompt=True)

    @classmethod
    def from_pretrained(cls, path: str, revision: str | None = None, token: str | None = None) -> "HFTokenizer":
        return cls(path, revision=revision, token=token)
