"""
Incremental detokenization of a growing token sequence.

Decoding sub-word tokens one at a time can split a visible character across
several tokens, so text is only released once the decoded tail looks stable.
"""

from __future__ import annotations

from synapforge.generation.errors import DetokenizationError
from synapforge.tokenization.tokenizer import BaseTokenizer


class TokenOutputStream:
    """
    Wraps a tokenizer and turns generated token ids into confirmed text fragments.

    ``prev_index`` and ``current_index`` delimit the span whose text has already
    been emitted (``[prev_index, current_index)``) from the tail that is still
    waiting for confirmation.
    """

    def __init__(self, tokenizer: BaseTokenizer) -> None:
        self.tokenizer = tokenizer
        self.tokens: list[int] = []
        self.prev_index = 0
        self.current_index = 0

    def _decode(self, tokens: list[int]) -> str:
        try:
            return self.tokenizer.decode(tokens, skip_special_tokens=True)
        except Exception as e:
            raise DetokenizationError(f"cannot decode: {e}") from e

    def _prev_text(self) -> str:
        if not self.tokens:
            return ""
        return self._decode(self.tokens[self.prev_index : self.current_index])

    def next_token(self, token_id: int) -> str | None:
        """
        Append ``token_id`` and return the newly confirmed text, if any.

        Text is confirmed when the decoded tail grew and ends with an
        alphanumeric character.
        """
        prev_text = self._prev_text()
        self.tokens.append(token_id)
        text = self._decode(self.tokens[self.prev_index :])
        if len(text) > len(prev_text) and text[-1].isalnum():
            self.prev_index = self.current_index
            self.current_index = len(self.tokens)
            return text[len(prev_text) :]
        return None

    def decode_rest(self) -> str | None:
        """Return the pending tail without the stability check. Used once, after the last token."""
        prev_text = self._prev_text()
        text = self._decode(self.tokens[self.prev_index :])
        if len(text) > len(prev_text):
            return text[len(prev_text) :]
        return None

    def decode_all(self) -> str:
        """Decode the whole history at once (debugging aid)."""
        return self._decode(self.tokens)

    def clear(self) -> None:
        """Forget the history; required before reusing the stream for another generation."""
        self.tokens.clear()
        self.prev_index = 0
        self.current_index = 0
